"""Internal models for stream processing."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

NO_SPEAKER = "NO_SPEAKER"


def is_speech_label(label: str) -> bool:
    return not label.startswith(NO_SPEAKER)


@dataclass
class Chunk:
    text: str
    timestamp: tuple[float, Optional[float]]
    speaker: Optional[str] = None
    confidence: Optional[float] = None

    @property
    def start(self) -> float:
        return self.timestamp[0]

    @property
    def end(self) -> Optional[float]:
        return self.timestamp[1]

    @property
    def is_open(self) -> bool:
        return self.timestamp[1] is None


@dataclass
class SpeakerSegment:
    label: str
    start: float
    end: float
    confidence: Optional[float] = None

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass
class SpeakerTurn:
    """Consecutive chunks attributed to the same speaker."""

    speaker: Optional[str]
    chunks: list[Chunk] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(c.text for c in self.chunks).strip()

    @property
    def start(self) -> float:
        return self.chunks[0].start

    @property
    def end(self) -> Optional[float]:
        return self.chunks[-1].end


@dataclass
class TranscriptResult:
    chunks: list[Chunk]
    speaker_segments: list[SpeakerSegment]
    tps: Optional[float] = None
