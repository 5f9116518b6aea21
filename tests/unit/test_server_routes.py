# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from typing import Any, Optional

import pytest
from fastapi.testclient import TestClient

from config import AppConfig
from fakes import FakeWorld, RecordingUploader, source_stream
from observability import logger
from pipeline.runner import PipelineCollaborators
from protocol.binary import decode_preview_frame
from server.app import create_app


@pytest.fixture(autouse=True)
def captured(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    events: list[dict[str, Any]] = []
    monkeypatch.setattr(logger, "_print", lambda line: events.append(json.loads(line)))
    return events


class WorldFactory:
    """Collaborators factory that builds a fresh FakeWorld for every run."""

    def __init__(self, **world_options: Any) -> None:
        self.world_options = world_options
        self.worlds: list[FakeWorld] = []

    def __call__(self) -> PipelineCollaborators:
        world = FakeWorld(**self.world_options)
        self.worlds.append(world)
        return world.collaborators()

    @property
    def last(self) -> FakeWorld:
        return self.worlds[-1]


def make_client(factory: WorldFactory, config: Optional[AppConfig] = None) -> TestClient:
    app = create_app(config or AppConfig(), collaborators_factory=factory)
    return TestClient(app)


# ---------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------

def test_health():
    client = make_client(WorldFactory(items=[]))

    assert client.get("/health").json() == {"status": "ok"}


def test_post_transcode_returns_completion_payload():
    factory = WorldFactory(items=source_stream(6))
    client = make_client(factory, AppConfig(segment_threshold_bytes=40))

    response = client.post(
        "/transcode",
        files={"file": ("holiday.mp4", b"not really an mp4", "video/mp4")},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "done"
    assert body["base_name"] == "holiday"
    # 6 chunks x 16 bytes, flushed past 40 bytes
    assert [s["bytes"] for s in body["segments"]] == [48, 48]
    assert [s["name"] for s in body["segments"]] == ["holiday-144p.1.webm", "holiday-144p.2.webm"]
    assert body["bytes_uploaded"] == 96
    assert factory.last.uploader.aclose_calls == 1


@pytest.mark.parametrize(
    "world_options,status,kind",
    [
        ({"items": source_stream(3), "demux_fail_at": 1}, 422, "DemuxError"),
        ({"items": source_stream(3), "encoder_options": {"supported": False}}, 422,
         "UnsupportedConfigurationError"),
        ({"items": source_stream(3), "decoder_options": {"fail_at": 1}}, 500, "DecodeError"),
        ({"items": source_stream(3), "uploader": RecordingUploader(fail_at=0)}, 502,
         "UploadError"),
    ],
)
def test_post_transcode_maps_errors_to_status(world_options, status, kind):
    factory = WorldFactory(**world_options)
    client = make_client(factory)

    response = client.post("/transcode", files={"file": ("clip.mov", b"x", "video/quicktime")})

    assert response.status_code == status
    body = response.json()
    assert body["status"] == "error"
    assert body["kind"] == kind
    assert factory.last.uploader.aclose_calls == 1


# ---------------------------------------------------------------------
# WebSocket
# ---------------------------------------------------------------------

def test_ws_upload_streams_previews_then_completion():
    factory = WorldFactory(items=source_stream(5))
    client = make_client(factory)

    with client.websocket_connect("/ws/transcode") as ws:
        ws.send_text(json.dumps({"type": "START", "file_name": "trip.mp4"}))
        ready = ws.receive_json()
        assert ready["type"] == "READY"
        session_id = ready["session_id"]

        ws.send_bytes(b"\x00" * 100)
        ws.send_bytes(b"\x01" * 100)
        ws.send_text(json.dumps({"type": "END_OF_FILE"}))

        previews = [decode_preview_frame(ws.receive_bytes()) for _ in range(5)]
        final = ws.receive_json()

    assert [p.sequence_num for p in previews] == [1, 2, 3, 4, 5]
    assert [p.timestamp_us for p in previews] == [i * 33_333 for i in range(5)]
    assert (previews[0].width, previews[0].height) == (2, 2)

    assert final["status"] == "done"
    assert final["run_id"] == session_id
    assert final["base_name"] == "trip"
    assert [s["name"] for s in final["segments"]] == ["trip-144p.1.webm"]

    world = factory.last
    assert world.uploader.aclose_calls == 1
    assert all(frame.released for frame in world.all_frames)


def test_ws_reports_pipeline_error_as_status_message():
    factory = WorldFactory(items=source_stream(4), encoder_options={"fail_at": 0})
    client = make_client(factory)

    with client.websocket_connect("/ws/transcode") as ws:
        ws.send_text(json.dumps({"type": "START"}))
        ws.receive_json()
        ws.send_bytes(b"x")
        ws.send_text(json.dumps({"type": "END_OF_FILE"}))

        # Frames rendered before the failure may or may not arrive first
        while True:
            message = ws.receive()
            if message.get("text") is not None:
                final = json.loads(message["text"])
                break

    assert final == {
        "status": "error",
        "stage": "encode",
        "kind": "EncodeError",
        "message": final["message"],
    }
    assert "encoder overloaded" in final["message"]


def test_ws_abort_before_end_of_file_aborts_the_run():
    factory = WorldFactory(items=source_stream(4))
    client = make_client(factory)

    with client.websocket_connect("/ws/transcode") as ws:
        ws.send_text(json.dumps({"type": "START", "file_name": "a.mp4"}))
        ws.receive_json()
        ws.send_bytes(b"x")
        ws.send_text(json.dumps({"type": "ABORT"}))
        ws.send_text(json.dumps({"type": "END_OF_FILE"}))

        while True:
            message = ws.receive()
            if message.get("text") is not None:
                final = json.loads(message["text"])
                break

    assert final["status"] == "error"
    assert final["kind"] == "PipelineAborted"
    assert "client requested abort" in final["message"]
    assert not factory.last.uploader.segments


@pytest.mark.parametrize(
    "first_message,error",
    [
        ({"type": "END_OF_FILE"}, "END_OF_FILE before START"),
        ({"type": "PING"}, "unknown message type: 'PING'"),
        ({"type": "START", "file_name": 7}, "file_name must be a string"),
    ],
)
def test_ws_protocol_errors(first_message, error):
    client = make_client(WorldFactory(items=[]))

    with client.websocket_connect("/ws/transcode") as ws:
        ws.send_text(json.dumps(first_message))
        reply = ws.receive_json()

    assert reply == {"type": "ERROR", "message": error}


def test_ws_end_of_file_without_bytes_is_rejected():
    client = make_client(WorldFactory(items=[]))

    with client.websocket_connect("/ws/transcode") as ws:
        ws.send_text(json.dumps({"type": "START"}))
        ws.receive_json()
        ws.send_text(json.dumps({"type": "END_OF_FILE"}))
        reply = ws.receive_json()

    assert reply == {"type": "ERROR", "message": "no video bytes received"}


def test_ws_binary_before_start_is_rejected():
    client = make_client(WorldFactory(items=[]))

    with client.websocket_connect("/ws/transcode") as ws:
        ws.send_bytes(b"early")
        reply = ws.receive_json()

    assert reply == {"type": "ERROR", "message": "binary data outside of an upload"}
