from __future__ import annotations

import logging
from typing import Any, Sequence

from common.config import DiarizationSettings, StreamSettings
from stream_service import cleaner
from stream_service.assembler import ChunkAssembler
from stream_service.clusterer import SpeakerClusterer, label_segments
from stream_service.decoder import StreamEvent, TokenStreamDecoder
from stream_service.models import SpeakerSegment, TranscriptResult
from stream_service.stitcher import stitch
from stream_service.tokenizer import Tokenizer

logger = logging.getLogger(__name__)


class TranscriptionSession:
    """Per-stream state: decodes token steps into chunks and collects embeddings."""

    def __init__(
        self,
        stream_id: str,
        tokenizer: Tokenizer,
        settings: StreamSettings,
        diarization: DiarizationSettings | None = None,
    ):
        self.stream_id = stream_id
        self.settings = settings
        self.diarization = diarization or DiarizationSettings()

        self.assembler = ChunkAssembler(
            window_length_s=settings.window_length_s,
            stride_length_s=settings.stride_length_s,
            min_overlap_chars=settings.min_overlap_chars,
        )
        self.decoder = TokenStreamDecoder(
            tokenizer,
            timestamp_begin=settings.timestamp_begin,
            time_precision=settings.time_precision,
            skip_prompt=settings.skip_prompt,
            listeners=[self.assembler],
        )
        self.clusterer = SpeakerClusterer(
            thresholds=self.diarization.similarity_thresholds,
            fallback_threshold=self.diarization.fallback_threshold,
        )

        self._embeddings: list[list[float]] = []
        self._time_ranges: list[tuple[float, float]] = []

    def put(self, step: Sequence[Any]) -> list[StreamEvent]:
        return self.decoder.put(step)

    def end_window(self) -> list[StreamEvent]:
        return self.decoder.end()

    def add_embeddings(
        self,
        embeddings: Sequence[Sequence[float]],
        time_ranges: Sequence[tuple[float, float]],
    ) -> None:
        if len(embeddings) != len(time_ranges):
            raise ValueError(
                f"Got {len(embeddings)} embeddings for {len(time_ranges)} time ranges"
            )
        vectors = [list(e) for e in embeddings]
        if vectors:
            dim = len(self._embeddings[0]) if self._embeddings else len(vectors[0])
            for i, vector in enumerate(vectors):
                if len(vector) != dim:
                    raise ValueError(
                        f"Embedding {i} has dimension {len(vector)}, expected {dim}"
                    )
        self._embeddings.extend(vectors)
        self._time_ranges.extend((float(s), float(e)) for s, e in time_ranges)

    @property
    def embedding_count(self) -> int:
        return len(self._embeddings)

    def diarize(self) -> list[SpeakerSegment]:
        """Cluster the collected embeddings and clean the resulting segments."""
        if not self._embeddings:
            return []
        assignment = self.clusterer.cluster(self._embeddings)
        raw = label_segments(self._embeddings, self._time_ranges, assignment)
        return cleaner.clean(
            raw,
            min_speaking_time=self.diarization.min_speaking_time,
            min_segment_duration=self.diarization.min_segment_duration,
            max_gap=self.diarization.max_gap,
        )

    def finish(self) -> TranscriptResult:
        """Close the current window, diarize, and stitch speakers onto chunks."""
        if self.decoder.chunk_started or self.decoder.token_cache:
            self.end_window()
        segments = self.diarize()
        logger.info(
            "Session %s: %d chunks, %d speaker turns",
            self.stream_id, len(self.assembler.reconciled), len(segments),
        )
        chunks = stitch(self.assembler.snapshot(), segments)
        return TranscriptResult(chunks=chunks, speaker_segments=segments, tps=self.assembler.tps)

    def reset(self) -> None:
        self.decoder.reset()
        self.assembler.reset()
        self._embeddings = []
        self._time_ranges = []
