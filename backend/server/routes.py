"""
Route registration for the transcoder API.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Wire TranscodeSession to the WebSocket lifecycle
- Map PipelineErrors to status payloads
- Pull dependencies from app.state
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

from fastapi import FastAPI, File, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from config import AppConfig
from media.errors import (
    DemuxError,
    PipelineAborted,
    PipelineError,
    UnsupportedConfigurationError,
    UploadError,
)
from media.segments import base_name_from_filename
from observability.logger import log_event, now_ms
from pipeline.runner import TranscodePipeline
from services.collaborators import CollaboratorsFactory
from session.transcode_session import SessionResult, TranscodeSession


def status_code_for(error: PipelineError) -> int:
    """HTTP status for a failed run."""
    if isinstance(error, (UnsupportedConfigurationError, DemuxError)):
        return 422
    if isinstance(error, UploadError):
        return 502
    if isinstance(error, PipelineAborted):
        return 499
    return 500


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""
    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.post("/transcode")
    async def transcode(file: UploadFile = File(...)) -> JSONResponse: # pyright: ignore[reportUnusedFunction]
        config: AppConfig = app.state.config
        factory: CollaboratorsFactory = app.state.collaborators_factory
        collaborators = factory()

        pipeline = TranscodePipeline(
            source=file.file,
            encoder_config=config.encoder_config(),
            collaborators=collaborators,
            settings=config.pipeline_settings(),
            base_name=base_name_from_filename(file.filename),
        )
        try:
            result = await pipeline.run()
        except PipelineError as exc:
            return JSONResponse(
                status_code=status_code_for(exc),
                content={"status": "error", **exc.to_payload()},
            )
        finally:
            await collaborators.uploader.aclose()
            await file.close()

        return JSONResponse(content=result.to_payload())

    @app.websocket("/ws/transcode")
    async def transcode_ws(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        await ws.accept()

        session: TranscodeSession

        async def send_preview(payload: bytes) -> None:
            try:
                await ws.send_bytes(payload)
            except WebSocketDisconnect:
                session.abort("client disconnected")

        session = TranscodeSession(
            config=app.state.config,
            collaborators_factory=app.state.collaborators_factory,
            send_preview=send_preview,
        )

        try:
            while True:
                msg = await ws.receive()
                if msg["type"] == "websocket.disconnect":
                    break

                result = _dispatch(session, msg)
                await _flush_session_result(ws, result)

                if result.run_requested:
                    final = await _run_with_watch(ws, session)
                    await ws.send_text(json.dumps(final))
                    break

        except WebSocketDisconnect:
            session.abort("client disconnected")

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": now_ms(),
                "event_type": "WS_FATAL_ERROR",
                "level": "ERROR",
                "session_id": session.session_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
            session.abort("server error")

        finally:
            session.close()


def _dispatch(session: TranscodeSession, msg: Any) -> SessionResult:
    if msg.get("text") is not None:
        return session.on_json_message(msg["text"])
    if msg.get("bytes") is not None:
        return session.on_binary_message(msg["bytes"])
    return SessionResult()


async def _run_with_watch(ws: WebSocket, session: TranscodeSession) -> dict[str, Any]:
    """
    Run the session while still reading the socket, so ABORT messages and
    disconnects reach the pipeline.
    """
    watcher = asyncio.create_task(_watch_socket(ws, session))
    try:
        return await session.run()
    finally:
        watcher.cancel()
        await asyncio.gather(watcher, return_exceptions=True)


async def _watch_socket(ws: WebSocket, session: TranscodeSession) -> None:
    while True:
        msg = await ws.receive()
        if msg["type"] == "websocket.disconnect":
            session.abort("client disconnected")
            return
        if msg.get("text") is not None:
            session.on_json_message(msg["text"])


async def _flush_session_result(
    ws: WebSocket,
    result: SessionResult,
) -> None:
    for msg in result.outbound_json:
        await ws.send_text(json.dumps(msg))
