"""
Transcode session (one websocket connection == one session == at most one run).

Responsibilities:
- Validate inbound control messages (START / END_OF_FILE / ABORT)
- Spool the uploaded video bytes (memory first, disk past a limit)
- Build and run one TranscodePipeline once the upload is complete
- Turn preview frames into binary preview messages
- Produce exactly one terminal status message per run

Not responsible for:
- Socket IO (routes own the websocket)
- Any pipeline stage behavior

Client protocol:
    → {"type": "START", "file_name": "clip.mp4"}
    ← {"type": "READY", "session_id": ...}
    → <binary> ... <binary>
    → {"type": "END_OF_FILE"}
    ← <binary preview frames>
    ← {"status": "done", ...} | {"status": "error", "stage", "kind", "message"}

    → {"type": "ABORT"} at any time tears the run down.
"""

from __future__ import annotations

import json
import tempfile
from dataclasses import dataclass
from enum import Enum
from typing import IO, Any, Awaitable, Callable, Optional
from uuid import uuid4

from config import AppConfig
from constants import SPOOL_MAX_MEMORY_BYTES, WS_UPLOAD_MAX_BYTES
from media.errors import PipelineError
from media.frames import DecodedFrame
from media.segments import base_name_from_filename
from observability.logger import log_event, now_ms
from pipeline.runner import PipelineCollaborators, TranscodePipeline
from protocol.binary import encode_preview_frame, next_seq


def _new_session_id() -> str:
    return f"sess_{uuid4().hex[:12]}"


class SessionPhase(str, Enum):
    AWAITING_START = "awaiting_start"
    RECEIVING = "receiving"
    RUNNING = "running"
    FINISHED = "finished"


@dataclass(frozen=True)
class SessionResult:
    """
    Return value for session boundary methods.

    outbound_json:
        JSON messages to send to the client.

    run_requested:
        True once the upload is complete and run() should be started.
    """
    outbound_json: tuple[dict[str, Any], ...] = ()
    run_requested: bool = False


def _protocol_error(message: str) -> SessionResult:
    return SessionResult(outbound_json=({"type": "ERROR", "message": message},))


class TranscodeSession:
    """One client upload and its transcode run."""

    def __init__(
        self,
        *,
        config: AppConfig,
        collaborators_factory: Callable[[], PipelineCollaborators],
        send_preview: Callable[[bytes], Awaitable[None]],
    ) -> None:
        self.session_id = _new_session_id()
        self.phase = SessionPhase.AWAITING_START
        self.bytes_received = 0
        self.file_name: Optional[str] = None

        self._config = config
        self._collaborators_factory = collaborators_factory
        self._send_preview = send_preview

        self._spool: Optional[IO[bytes]] = None
        self._pipeline: Optional[TranscodePipeline] = None
        self._abort_reason: Optional[str] = None
        self._preview_seq = 0

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------

    def on_json_message(self, text: str) -> SessionResult:
        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            return _protocol_error("invalid JSON")
        if not isinstance(message, dict):
            return _protocol_error("expected a JSON object")

        msg_type = message.get("type")

        if msg_type == "START":
            if self.phase is not SessionPhase.AWAITING_START:
                return _protocol_error("START already received")
            file_name = message.get("file_name")
            if file_name is not None and not isinstance(file_name, str):
                return _protocol_error("file_name must be a string")

            self.file_name = file_name
            self._spool = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_MEMORY_BYTES)
            self.phase = SessionPhase.RECEIVING
            self._log("session_upload_started", file_name=file_name)
            return SessionResult(
                outbound_json=({"type": "READY", "session_id": self.session_id},)
            )

        if msg_type == "END_OF_FILE":
            if self.phase is not SessionPhase.RECEIVING:
                return _protocol_error("END_OF_FILE before START")
            if self.bytes_received == 0:
                return _protocol_error("no video bytes received")
            self._log("session_upload_completed", upload_bytes=self.bytes_received)
            return SessionResult(run_requested=True)

        if msg_type == "ABORT":
            self.abort("client requested abort")
            return SessionResult()

        return _protocol_error(f"unknown message type: {msg_type!r}")

    def on_binary_message(self, data: bytes) -> SessionResult:
        if self.phase is not SessionPhase.RECEIVING or self._spool is None:
            return _protocol_error("binary data outside of an upload")
        if self.bytes_received + len(data) > WS_UPLOAD_MAX_BYTES:
            return _protocol_error(f"upload exceeds {WS_UPLOAD_MAX_BYTES} bytes")

        self._spool.write(data)
        self.bytes_received += len(data)
        return SessionResult()

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self) -> dict[str, Any]:
        """
        Run the pipeline over the spooled upload.

        Returns the terminal status message. Never raises PipelineError.
        """
        if self.phase is not SessionPhase.RECEIVING or self._spool is None:
            raise RuntimeError("run() requires a completed upload")
        self.phase = SessionPhase.RUNNING

        spool = self._spool
        spool.seek(0)
        collaborators = self._collaborators_factory()

        self._pipeline = TranscodePipeline(
            source=spool,
            encoder_config=self._config.encoder_config(),
            render=self._render,
            collaborators=collaborators,
            settings=self._config.pipeline_settings(),
            base_name=base_name_from_filename(self.file_name),
            run_id=self.session_id,
        )
        if self._abort_reason is not None:
            self._pipeline.abort(self._abort_reason)

        try:
            result = await self._pipeline.run()
            return result.to_payload()
        except PipelineError as exc:
            return {"status": "error", **exc.to_payload()}
        finally:
            self.phase = SessionPhase.FINISHED
            spool.close()
            self._spool = None
            await collaborators.uploader.aclose()

    def abort(self, reason: str) -> None:
        if self._abort_reason is None:
            self._abort_reason = reason
        if self._pipeline is not None:
            self._pipeline.abort(reason)

    def close(self) -> None:
        """Drop the spool of an upload that never ran."""
        if self._spool is not None and self.phase is not SessionPhase.RUNNING:
            self._spool.close()
            self._spool = None
            self.phase = SessionPhase.FINISHED

    async def _render(self, frame: DecodedFrame) -> None:
        self._preview_seq = next_seq(self._preview_seq)
        payload = encode_preview_frame(
            sequence_num=self._preview_seq,
            timestamp_us=frame.timestamp_us,
            pixels=frame.pixels,
        )
        await self._send_preview(payload)

    def _log(self, event_type: str, **fields: Any) -> None:
        log_event({
            "ts_ms": now_ms(),
            "event_type": event_type,
            "session_id": self.session_id,
            **fields,
        })
