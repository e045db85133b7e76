from __future__ import annotations

import json
import logging

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from common.config import DiarizationSettings, StreamSettings
from common.schemas import (
    ChunksMessage,
    ClientMessageType,
    EmbeddingsMessage,
    ErrorMessage,
    SpeakerSegmentModel,
    SpeakerTurnModel,
    StartMessage,
    StepMessage,
    TranscriptChunk,
    TranscriptCompleteMessage,
)
from stream_service.manager import SessionManager
from stream_service.models import Chunk, TranscriptResult
from stream_service.session import TranscriptionSession
from stream_service.stitcher import group_by_speaker
from stream_service.tokenizer import Tokenizer, load_tokenizer

logger = logging.getLogger(__name__)

settings = StreamSettings()
diarization_settings = DiarizationSettings()
app = FastAPI(title="Stream Stitcher Service")
manager = SessionManager(max_sessions=settings.max_sessions)


def get_tokenizer() -> Tokenizer:
    tokenizer = getattr(app.state, "tokenizer", None)
    if tokenizer is None:
        tokenizer = load_tokenizer(settings)
        app.state.tokenizer = tokenizer
    return tokenizer


@app.on_event("startup")
async def startup():
    get_tokenizer()


@app.get("/health")
async def health():
    return {"status": "ok", "active_sessions": manager.active_count}


def _chunk_models(chunks: list[Chunk]) -> list[TranscriptChunk]:
    return [
        TranscriptChunk(
            text=c.text,
            timestamp=c.timestamp,
            speaker=c.speaker,
            confidence=c.confidence,
        )
        for c in chunks
    ]


def _complete_message(stream_id: str, result: TranscriptResult) -> TranscriptCompleteMessage:
    return TranscriptCompleteMessage(
        stream_id=stream_id,
        text="".join(c.text for c in result.chunks).strip(),
        chunks=_chunk_models(result.chunks),
        speaker_segments=[
            SpeakerSegmentModel(label=s.label, start=s.start, end=s.end, confidence=s.confidence)
            for s in result.speaker_segments
        ],
        turns=[
            SpeakerTurnModel(speaker=t.speaker, start=t.start, end=t.end, text=t.text)
            for t in group_by_speaker(result.chunks)
        ],
        tps=result.tps,
    )


async def _send_chunks(ws: WebSocket, session: TranscriptionSession) -> None:
    update = ChunksMessage(
        stream_id=session.stream_id,
        chunks=_chunk_models(session.assembler.snapshot(include_open=True)),
        tps=session.assembler.tps,
    )
    await ws.send_text(update.model_dump_json())


@app.websocket("/stream")
async def stream_endpoint(ws: WebSocket):
    await ws.accept()
    session: TranscriptionSession | None = None

    try:
        # Expect start message
        raw = await ws.receive_text()
        msg = json.loads(raw)
        if msg.get("type") != ClientMessageType.start:
            await ws.send_text(ErrorMessage(stream_id="", detail="Expected start message").model_dump_json())
            await ws.close()
            return

        start = StartMessage(**msg)
        overrides = {
            key: value
            for key, value in (
                ("window_length_s", start.window_length_s),
                ("stride_length_s", start.stride_length_s),
                ("time_precision", start.time_precision),
            )
            if value is not None
        }
        try:
            session = await manager.create(
                start.stream_id,
                tokenizer=get_tokenizer(),
                settings=settings.model_copy(update=overrides),
                diarization=diarization_settings,
            )
        except (RuntimeError, ValueError) as exc:
            logger.warning("Session error: %s", exc)
            await ws.send_text(ErrorMessage(stream_id=start.stream_id, detail=str(exc)).model_dump_json())
            await ws.close()
            return
        logger.info("Stream session started: %s", start.stream_id)

        ended = False
        while True:
            message = await ws.receive()
            if message.get("type") == "websocket.disconnect":
                break

            if message.get("text") is None:
                await ws.send_text(
                    ErrorMessage(stream_id=session.stream_id, detail="Expected JSON text frame").model_dump_json()
                )
                continue

            try:
                data = json.loads(message["text"])
                kind = data.get("type")
                if kind == ClientMessageType.step:
                    events = session.put(StepMessage(**data).tokens)
                    if events:
                        await _send_chunks(ws, session)
                elif kind == ClientMessageType.window_end:
                    session.end_window()
                    await _send_chunks(ws, session)
                elif kind == ClientMessageType.embeddings:
                    emb = EmbeddingsMessage(**data)
                    if start.diarize:
                        session.add_embeddings(emb.embeddings, emb.time_ranges)
                    else:
                        logger.debug("Diarization disabled for %s; ignoring embeddings", session.stream_id)
                elif kind == ClientMessageType.end:
                    ended = True
                    break
                else:
                    raise ValueError(f"Unknown message type: {kind!r}")
            except (json.JSONDecodeError, ValidationError, ValueError) as exc:
                logger.warning("Rejected message on %s: %s", session.stream_id, exc)
                await ws.send_text(ErrorMessage(stream_id=session.stream_id, detail=str(exc)).model_dump_json())

        if ended:
            result = session.finish()
            await ws.send_text(_complete_message(session.stream_id, result).model_dump_json())

    except WebSocketDisconnect:
        logger.info("Stream client disconnected: %s", session.stream_id if session else "unknown")
    except Exception as exc:
        logger.exception("Stream error: %s", exc)
        try:
            await ws.send_text(
                ErrorMessage(
                    stream_id=session.stream_id if session else "",
                    detail="Internal stream error",
                ).model_dump_json()
            )
        except Exception:
            pass
    finally:
        if session:
            await manager.remove(session.stream_id)
        logger.info("Stream session ended: %s", session.stream_id if session else "unknown")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
