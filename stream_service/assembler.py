from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import Callable, Optional

from stream_service.decoder import StreamListener
from stream_service.models import Chunk

logger = logging.getLogger(__name__)


def find_overlap(previous: str, current: str, min_length: int = 1) -> int:
    """Length of the longest suffix of ``previous`` that is a prefix of ``current``."""
    min_length = max(1, min_length)
    for size in range(min(len(previous), len(current)), min_length - 1, -1):
        if previous.endswith(current[:size]):
            return size
    return 0


class ChunkAssembler(StreamListener):
    """Builds timestamped chunks from decoder events across sliding windows.

    ``chunks`` holds every chunk as decoded, including the open one.
    ``reconciled`` holds closed chunks with text repeated across window
    overlaps removed; it only ever grows at the tail.
    """

    def __init__(
        self,
        window_length_s: float = 30.0,
        stride_length_s: float = 5.0,
        min_overlap_chars: int = 1,
        clock: Callable[[], float] = time.perf_counter,
    ):
        if stride_length_s < 0 or stride_length_s >= window_length_s:
            raise ValueError(
                f"stride_length_s must be in [0, {window_length_s}), got {stride_length_s}"
            )
        self.window_length_s = window_length_s
        self.stride_length_s = stride_length_s
        self.min_overlap_chars = min_overlap_chars
        self._clock = clock

        self.chunks: list[Chunk] = []
        self.reconciled: list[Chunk] = []
        self.window_index = 0
        self._open: Optional[Chunk] = None

        self._window_chunks = 0
        self._start_time: Optional[float] = None
        self._num_tokens = 0
        self.tps: Optional[float] = None

    @property
    def overlapping(self) -> bool:
        return self.stride_length_s > 0

    @property
    def offset(self) -> float:
        return (self.window_length_s - self.stride_length_s) * self.window_index

    @property
    def text(self) -> str:
        return "".join(c.text for c in self.reconciled)

    def on_chunk_start(self, time: float) -> None:
        if self._open is not None:
            logger.warning("Chunk start at %.2fs while a chunk is open; closing it", time)
            self.on_chunk_end(time)
        start = self.offset + time
        if self.chunks:
            start = max(start, self.chunks[-1].start)
        chunk = Chunk(text="", timestamp=(start, None))
        self.chunks.append(chunk)
        self._open = chunk
        self._window_chunks += 1

    def on_token(self, token: int) -> None:
        now = self._clock()
        if self._start_time is None:
            self._start_time = now
        self._num_tokens += 1
        elapsed = now - self._start_time
        if self._num_tokens > 1 and elapsed > 0:
            self.tps = self._num_tokens / elapsed

    def on_text(self, text: str) -> None:
        if self._open is None:
            logger.debug("Dropping text outside a chunk: %r", text)
            return
        self._open.text += text

    def on_chunk_end(self, time: float) -> None:
        chunk = self._open
        if chunk is None:
            logger.debug("Chunk end at %.2fs with no open chunk", time)
            return
        chunk.timestamp = (chunk.start, max(chunk.start, self.offset + time))
        self._open = None
        self._reconcile(chunk)

    def on_finalize(self, end_of_window: bool) -> None:
        self._start_time = None
        self._num_tokens = 0
        if end_of_window:
            logger.debug(
                "Window %d finalized with %d chunks", self.window_index, self._window_chunks
            )
            self.window_index += 1
            self._window_chunks = 0

    def snapshot(self, include_open: bool = False) -> list[Chunk]:
        """Copies of the reconciled chunks, optionally followed by the open chunk."""
        result = [replace(c) for c in self.reconciled]
        if include_open and self._open is not None:
            result.append(replace(self._open))
        return result

    def reset(self) -> None:
        self.chunks = []
        self.reconciled = []
        self.window_index = 0
        self._open = None
        self._window_chunks = 0
        self._start_time = None
        self._num_tokens = 0
        self.tps = None

    def _reconcile(self, chunk: Chunk) -> None:
        if not self.reconciled:
            self.reconciled.append(replace(chunk))
            return

        previous = self.reconciled[-1]
        text = chunk.text
        if self.overlapping:
            overlap = find_overlap(previous.text, text, self.min_overlap_chars)
            if overlap:
                logger.debug("Trimming %d overlapping characters: %r", overlap, text[:overlap])
                text = text[overlap:]

        if not text.strip():
            previous.timestamp = (previous.start, max(previous.end, chunk.end))
            return

        start = max(chunk.start, previous.start)
        self.reconciled.append(replace(chunk, text=text, timestamp=(start, chunk.end)))
