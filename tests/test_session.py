import pytest

from common.config import DiarizationSettings, StreamSettings
from stream_service.manager import SessionManager
from stream_service.session import TranscriptionSession
from tests.helpers import ts

PROMPT = [50258]


class TestTranscriptionSession:
    @pytest.fixture
    def session(self, tokenizer):
        settings = StreamSettings(window_length_s=30.0, stride_length_s=5.0)
        diarization = DiarizationSettings(min_speaking_time=1.0, max_gap=1.0)
        return TranscriptionSession("test", tokenizer, settings, diarization)

    def feed(self, session, steps):
        session.put(PROMPT)
        for step in steps:
            session.put(step)

    def test_chunks_and_speakers(self, session):
        self.feed(session, [[ts(0.0)], [7], [8], [ts(2.0)], [ts(2.0)], [9], [ts(4.0)]])
        session.end_window()

        session.add_embeddings(
            [[1.0, 0.0], [0.99, 0.05], [0.0, 1.0], [0.05, 0.99]],
            [(0.0, 1.0), (1.0, 2.0), (2.0, 3.0), (3.0, 4.0)],
        )
        result = session.finish()

        assert [c.text for c in result.chunks] == ["hello world", "!"]
        assert [c.speaker for c in result.chunks] == ["SPEAKER_00", "SPEAKER_01"]
        assert [(s.label, s.start, s.end) for s in result.speaker_segments] == [
            ("SPEAKER_00", 0.0, 2.0),
            ("SPEAKER_01", 2.0, 4.0),
        ]

    def test_finish_without_embeddings(self, session):
        self.feed(session, [[ts(0.0)], [7], [ts(1.0)]])
        result = session.finish()
        assert [c.text for c in result.chunks] == ["hello"]
        assert result.chunks[0].speaker is None
        assert result.speaker_segments == []

    def test_finish_closes_open_window(self, session):
        self.feed(session, [[ts(0.5)], [7]])
        result = session.finish()
        assert result.chunks[0].text == "hello"
        assert result.chunks[0].end == result.chunks[0].start

    def test_finish_returns_copies(self, session):
        self.feed(session, [[ts(0.0)], [7], [ts(1.0)]])
        result = session.finish()
        result.chunks[0].text = "changed"
        assert session.assembler.reconciled[0].text == "hello"

    def test_embedding_length_mismatch(self, session):
        with pytest.raises(ValueError):
            session.add_embeddings([[1.0, 0.0]], [(0.0, 1.0), (1.0, 2.0)])

    def test_embedding_dimension_mismatch(self, session):
        with pytest.raises(ValueError, match="dimension"):
            session.add_embeddings([[1.0, 0.0], [1.0, 0.0, 0.0]], [(0.0, 1.0), (1.0, 2.0)])
        assert session.embedding_count == 0

        session.add_embeddings([[1.0, 0.0]], [(0.0, 1.0)])
        with pytest.raises(ValueError, match="expected 2"):
            session.add_embeddings([[1.0, 0.0, 0.0]], [(1.0, 2.0)])
        assert session.embedding_count == 1

    def test_reset_discards_state(self, session):
        self.feed(session, [[ts(0.0)], [7]])
        session.add_embeddings([[1.0, 0.0]], [(0.0, 1.0)])
        session.reset()

        assert session.embedding_count == 0
        assert session.assembler.chunks == []
        assert not session.decoder.chunk_started
        # The prompt is skipped again after a reset.
        assert session.put([ts(0.0), 8]) == []


class TestSessionManager:
    @pytest.fixture
    def manager(self):
        return SessionManager(max_sessions=2)

    def kwargs(self, tokenizer):
        return {"tokenizer": tokenizer, "settings": StreamSettings()}

    @pytest.mark.asyncio
    async def test_create_and_remove(self, manager, tokenizer):
        session = await manager.create("s1", **self.kwargs(tokenizer))
        assert session.stream_id == "s1"
        assert manager.get("s1") is session
        assert manager.active_count == 1
        assert await manager.remove("s1") is session
        assert manager.active_count == 0
        assert manager.get("s1") is None

    @pytest.mark.asyncio
    async def test_remove_resets_session(self, manager, tokenizer):
        session = await manager.create("s1", **self.kwargs(tokenizer))
        session.put(PROMPT)
        session.put([ts(0.0), 7, ts(1.0)])
        session.add_embeddings([[1.0, 0.0]], [(0.0, 1.0)])

        await manager.remove("s1")
        assert session.assembler.chunks == []
        assert session.embedding_count == 0
        assert session.decoder.token_cache == []

    @pytest.mark.asyncio
    async def test_remove_unknown_stream(self, manager):
        assert await manager.remove("missing") is None

    @pytest.mark.asyncio
    async def test_stream_id_reusable_after_remove(self, manager, tokenizer):
        first = await manager.create("s1", **self.kwargs(tokenizer))
        await manager.remove("s1")
        second = await manager.create("s1", **self.kwargs(tokenizer))
        assert second is not first

    @pytest.mark.asyncio
    async def test_max_sessions_enforced(self, manager, tokenizer):
        await manager.create("s1", **self.kwargs(tokenizer))
        await manager.create("s2", **self.kwargs(tokenizer))
        with pytest.raises(RuntimeError, match="Max sessions"):
            await manager.create("s3", **self.kwargs(tokenizer))

    @pytest.mark.asyncio
    async def test_duplicate_stream_id_rejected(self, manager, tokenizer):
        await manager.create("s1", **self.kwargs(tokenizer))
        with pytest.raises(RuntimeError, match="already exists"):
            await manager.create("s1", **self.kwargs(tokenizer))

    @pytest.mark.asyncio
    async def test_sessions_do_not_share_state(self, manager, tokenizer):
        a = await manager.create("a", **self.kwargs(tokenizer))
        b = await manager.create("b", **self.kwargs(tokenizer))
        a.put(PROMPT)
        a.put([ts(0.0), 7])
        assert b.assembler.chunks == []
