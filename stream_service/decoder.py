"""Token stream decoding.

Turns generation steps (lists of token ids) into chunk boundary and text
events. Token ids at or above ``timestamp_begin`` are timestamps and toggle
between opening and closing a chunk; everything below is text.
"""

from __future__ import annotations

import enum
import logging
import numbers
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence, Union

from stream_service.tokenizer import Tokenizer

logger = logging.getLogger(__name__)


class DecoderState(str, enum.Enum):
    IDLE = "idle"
    CHUNK_OPEN = "chunk_open"


class StreamListener:
    """Receives decoder events. Override the hooks you need."""

    def on_chunk_start(self, time: float) -> None:
        pass

    def on_token(self, token: int) -> None:
        pass

    def on_text(self, text: str) -> None:
        pass

    def on_chunk_end(self, time: float) -> None:
        pass

    def on_finalize(self, end_of_window: bool) -> None:
        pass


@dataclass(frozen=True)
class ChunkStart:
    time: float

    def dispatch(self, listener: StreamListener) -> None:
        listener.on_chunk_start(self.time)


@dataclass(frozen=True)
class TokenReceived:
    token: int

    def dispatch(self, listener: StreamListener) -> None:
        listener.on_token(self.token)


@dataclass(frozen=True)
class TextDelta:
    text: str

    def dispatch(self, listener: StreamListener) -> None:
        listener.on_text(self.text)


@dataclass(frozen=True)
class ChunkEnd:
    time: float

    def dispatch(self, listener: StreamListener) -> None:
        listener.on_chunk_end(self.time)


@dataclass(frozen=True)
class Finalize:
    end_of_window: bool = False

    def dispatch(self, listener: StreamListener) -> None:
        listener.on_finalize(self.end_of_window)


StreamEvent = Union[ChunkStart, TokenReceived, TextDelta, ChunkEnd, Finalize]


def normalize_token(value: Any) -> Optional[int]:
    """Return ``value`` as a non-negative token id, or None if it is not one."""
    if isinstance(value, bool):
        return None
    if isinstance(value, numbers.Integral):
        token = int(value)
    elif isinstance(value, numbers.Real):
        if value != value or not float(value).is_integer():
            return None
        token = int(value)
    elif isinstance(value, str):
        try:
            token = int(value.strip())
        except ValueError:
            return None
    else:
        return None
    return token if token >= 0 else None


class TokenStreamDecoder:
    def __init__(
        self,
        tokenizer: Tokenizer,
        timestamp_begin: int = 50257,
        time_precision: float = 0.02,
        skip_prompt: bool = True,
        listeners: Iterable[StreamListener] = (),
    ):
        self.tokenizer = tokenizer
        self.timestamp_begin = timestamp_begin
        self.time_precision = time_precision
        self.skip_prompt = skip_prompt
        self.listeners: list[StreamListener] = list(listeners)

        self.state = DecoderState.IDLE
        self.token_cache: list[int] = []
        self.print_len = 0
        self._next_tokens_are_prompt = skip_prompt

    @property
    def chunk_started(self) -> bool:
        return self.state is DecoderState.CHUNK_OPEN

    def add_listener(self, listener: StreamListener) -> None:
        self.listeners.append(listener)

    def put(self, step: Sequence[Any]) -> list[StreamEvent]:
        """Consume one generation step and return the events it produced."""
        if self._next_tokens_are_prompt:
            self._next_tokens_are_prompt = False
            logger.debug("Skipping prompt step (%d tokens)", len(step))
            return []

        events: list[StreamEvent] = []
        pending = False
        for raw in step:
            token = normalize_token(raw)
            if token is None:
                logger.debug("Dropping malformed token %r", raw)
                continue

            if token >= self.timestamp_begin:
                if pending:
                    self._flush_text(events)
                    pending = False
                self._toggle((token - self.timestamp_begin) * self.time_precision, events)
            else:
                self.token_cache.append(token)
                events.append(TokenReceived(token))
                pending = True

        if pending:
            self._flush_text(events)
        self._emit(events)
        return events

    def end(self) -> list[StreamEvent]:
        """Close any open chunk, finalize the window and reset for reuse."""
        events: list[StreamEvent] = []
        if self.state is DecoderState.CHUNK_OPEN:
            events.append(ChunkEnd(0.0))
        events.append(Finalize(end_of_window=True))
        self.reset()
        self._emit(events)
        return events

    def reset(self) -> None:
        self.state = DecoderState.IDLE
        self.token_cache = []
        self.print_len = 0
        self._next_tokens_are_prompt = self.skip_prompt

    def _toggle(self, time: float, events: list[StreamEvent]) -> None:
        if self.state is DecoderState.IDLE:
            events.append(ChunkStart(time))
            self.state = DecoderState.CHUNK_OPEN
        else:
            events.append(ChunkEnd(time))
            events.append(Finalize(end_of_window=False))
            self.state = DecoderState.IDLE

    def _flush_text(self, events: list[StreamEvent]) -> None:
        try:
            decoded = self.tokenizer.decode(self.token_cache)
        except Exception:
            logger.warning(
                "Failed to decode %d buffered tokens", len(self.token_cache), exc_info=True
            )
            return

        new_text = decoded[self.print_len:]
        if new_text:
            events.append(TextDelta(new_text))
        self.print_len = len(decoded)

    def _emit(self, events: list[StreamEvent]) -> None:
        for event in events:
            for listener in self.listeners:
                event.dispatch(listener)
