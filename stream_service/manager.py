from __future__ import annotations

import asyncio
import logging
from typing import Any

from stream_service.session import TranscriptionSession

logger = logging.getLogger(__name__)


class SessionManager:
    """Bounded registry of live transcription sessions, keyed by stream id."""

    def __init__(self, max_sessions: int = 10) -> None:
        self._max = max_sessions
        self._sessions: dict[str, TranscriptionSession] = {}
        self._lock = asyncio.Lock()

    async def create(self, stream_id: str, **kwargs: Any) -> TranscriptionSession:
        async with self._lock:
            if stream_id in self._sessions:
                raise RuntimeError(f"Session {stream_id} already exists")
            if len(self._sessions) >= self._max:
                raise RuntimeError(f"Max sessions ({self._max}) reached")
            session = TranscriptionSession(stream_id=stream_id, **kwargs)
            self._sessions[stream_id] = session
            logger.info("Stream %s opened (%d/%d sessions)", stream_id, len(self._sessions), self._max)
            return session

    async def remove(self, stream_id: str) -> TranscriptionSession | None:
        """Unregister a session and discard its buffered tokens, chunks and embeddings."""
        async with self._lock:
            session = self._sessions.pop(stream_id, None)
        if session is None:
            logger.debug("Stream %s already closed", stream_id)
            return None
        chunks, embeddings = len(session.assembler.chunks), session.embedding_count
        session.reset()
        logger.info(
            "Stream %s closed: dropped %d chunks and %d embeddings (%d active)",
            stream_id, chunks, embeddings, len(self._sessions),
        )
        return session

    def get(self, stream_id: str) -> TranscriptionSession | None:
        return self._sessions.get(stream_id)

    @property
    def active_count(self) -> int:
        return len(self._sessions)
