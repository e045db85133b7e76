from typing import Optional

from pydantic_settings import BaseSettings


class StreamSettings(BaseSettings):
    host: str = "0.0.0.0"
    port: int = 8001
    max_sessions: int = 10
    tokenizer_encoding: str = "gpt2"
    timestamp_begin: int = 50257
    time_precision: float = 0.02
    window_length_s: float = 30.0
    stride_length_s: float = 5.0
    skip_prompt: bool = True
    min_overlap_chars: int = 1

    model_config = {"env_prefix": "STREAM_"}


class DiarizationSettings(BaseSettings):
    min_speaking_time: float = 1.0
    min_segment_duration: float = 0.2
    max_gap: Optional[float] = None
    similarity_thresholds: list[float] = [0.85, 0.75, 0.65]
    fallback_threshold: Optional[float] = None

    model_config = {"env_prefix": "DIARIZE_"}
