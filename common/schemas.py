from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


# --- WebSocket messages: inference client -> stream service ---

class ClientMessageType(str, Enum):
    start = "start"
    step = "step"
    window_end = "window_end"
    embeddings = "embeddings"
    end = "end"


class StartMessage(BaseModel):
    type: ClientMessageType = ClientMessageType.start
    stream_id: str
    window_length_s: Optional[float] = None
    stride_length_s: Optional[float] = None
    time_precision: Optional[float] = None
    diarize: bool = True


class StepMessage(BaseModel):
    type: ClientMessageType = ClientMessageType.step
    stream_id: str
    # Raw values; malformed entries are filtered by the decoder.
    tokens: list[Any] = []


class WindowEndMessage(BaseModel):
    type: ClientMessageType = ClientMessageType.window_end
    stream_id: str


class EmbeddingsMessage(BaseModel):
    type: ClientMessageType = ClientMessageType.embeddings
    stream_id: str
    embeddings: list[list[float]]
    time_ranges: list[tuple[float, float]]


class EndMessage(BaseModel):
    type: ClientMessageType = ClientMessageType.end
    stream_id: str


# --- Transcript payloads ---

class TranscriptChunk(BaseModel):
    text: str
    timestamp: tuple[float, Optional[float]]
    speaker: Optional[str] = None
    confidence: Optional[float] = None


class SpeakerSegmentModel(BaseModel):
    label: str
    start: float
    end: float
    confidence: Optional[float] = None


class SpeakerTurnModel(BaseModel):
    speaker: Optional[str] = None
    start: float
    end: Optional[float] = None
    text: str


# --- Stream service -> client ---

class ServerMessageType(str, Enum):
    chunks = "chunks"
    transcript_complete = "transcript_complete"
    error = "error"


class ChunksMessage(BaseModel):
    type: ServerMessageType = ServerMessageType.chunks
    stream_id: str
    chunks: list[TranscriptChunk]
    tps: Optional[float] = None


class TranscriptCompleteMessage(BaseModel):
    type: ServerMessageType = ServerMessageType.transcript_complete
    stream_id: str
    text: str = ""
    chunks: list[TranscriptChunk]
    speaker_segments: list[SpeakerSegmentModel] = Field(default_factory=list)
    turns: list[SpeakerTurnModel] = Field(default_factory=list)
    tps: Optional[float] = None


class ErrorMessage(BaseModel):
    type: ServerMessageType = ServerMessageType.error
    stream_id: str
    detail: str
