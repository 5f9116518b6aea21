# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import json
from typing import Any

import pytest

from fakes import FakeWorld, RecordingUploader, SOURCE_CONFIG, data_chunk, source_stream
from media.codec_config import EncoderConfig
from media.errors import (
    DecodeError,
    DemuxError,
    EncodeError,
    PipelineAborted,
    UnsupportedConfigurationError,
    UploadError,
)
from media.frames import DecodedFrame
from observability import logger
from pipeline.runner import PipelineResult, PipelineSettings, TranscodePipeline


@pytest.fixture(autouse=True)
def quiet_logger(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    events: list[dict[str, Any]] = []
    monkeypatch.setattr(logger, "_print", lambda line: events.append(json.loads(line)))
    return events


def make_pipeline(world: FakeWorld, **kwargs: Any) -> TranscodePipeline:
    kwargs.setdefault("source", "uploads/holiday.mp4")
    kwargs.setdefault("encoder_config", EncoderConfig())
    return TranscodePipeline(collaborators=world.collaborators(), **kwargs)


def assert_torn_down_cleanly(world: FakeWorld) -> None:
    assert world.close_counts() == {"decoder": 1, "preview": 1, "encoder": 1, "muxer": 1}
    assert all(frame.released for frame in world.all_frames)


# ---------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------

def test_large_run_produces_three_segments_in_order():
    world = FakeWorld(
        items=source_stream(500, config_at=(0, 250)),
        encoder_options={"payload_size": 50_000, "epoch_at": (0, 250)},
        trailer=b"\x00",
    )
    pipeline = make_pipeline(world)

    result = asyncio.run(pipeline.run())

    assert isinstance(result, PipelineResult)
    assert [r.sequence_number for r in result.segments] == [1, 2, 3]
    assert [r.byte_length for r in result.segments] == [10_050_000, 10_050_000, 4_900_001]
    assert world.uploader.names == [
        "holiday-144p.1.webm",
        "holiday-144p.2.webm",
        "holiday-144p.3.webm",
    ]
    assert [r.final for r in result.segments] == [False, False, True]
    assert result.bytes_uploaded == 25_000_001

    # Concatenated segments == muxed output
    uploaded = b"".join(data for _, data in world.uploader.segments)
    assert uploaded == b"\xAB" * 50_000 * 500 + b"\x00"

    assert_torn_down_cleanly(world)


def test_config_chunks_precede_dependent_data():
    world = FakeWorld(
        items=source_stream(20, config_at=(0, 10)),
        encoder_options={"epoch_at": (0, 10)},
    )

    asyncio.run(make_pipeline(world).run())

    muxer = world.muxers[0]
    assert muxer.events == ["config"] + ["data"] * 10 + ["config"] + ["data"] * 10
    assert len(muxer.track_configs) == 2

    # Decoder saw both source configurations
    assert [c.codec for c in world.decoders[0].configs] == ["avc1.42E01E", "avc1.64001F"]
    # Preview decoder saw both encoder epochs
    assert len(world.preview_decoders[0].configs) == 2


def test_every_frame_is_released_exactly_once():
    world = FakeWorld(items=source_stream(50))

    result = asyncio.run(make_pipeline(world).run())

    assert result.counters["frames_decoded"] == 50
    assert result.counters["frames_encoded"] == 50
    assert world.encoders[0].saw_released_frame is False
    assert len(world.all_frames) == 100  # 50 decoded + 50 preview
    assert all(frame.released for frame in world.all_frames)
    assert_torn_down_cleanly(world)


def test_small_run_uploads_single_final_segment():
    world = FakeWorld(items=source_stream(3))

    result = asyncio.run(make_pipeline(world, base_name="clip").run())

    assert world.uploader.names == ["clip-144p.1.webm"]
    assert result.segments[0].final is True
    assert result.to_payload()["status"] == "done"


def test_empty_stream_uploads_nothing():
    world = FakeWorld(items=[SOURCE_CONFIG])

    result = asyncio.run(make_pipeline(world).run())

    assert not result.segments
    assert not world.uploader.segments


def test_render_callback_receives_every_preview_frame():
    rendered: list[int] = []

    def render(frame: DecodedFrame) -> None:
        rendered.append(frame.timestamp_us)

    world = FakeWorld(items=source_stream(5))

    asyncio.run(make_pipeline(world, render=render).run())

    assert rendered == [i * 33_333 for i in range(5)]


def test_render_failures_are_not_fatal(quiet_logger: list[dict[str, Any]]):
    def render(frame: DecodedFrame) -> None:
        raise RuntimeError("canvas gone")

    world = FakeWorld(items=source_stream(4))

    result = asyncio.run(make_pipeline(world, render=render).run())

    assert result.counters["preview_render_failures"] == 4
    assert len(world.uploader.segments) == 1
    assert all(frame.released for frame in world.all_frames)
    assert sum(1 for e in quiet_logger if e["event_type"] == "preview_render_failed") == 4


def test_custom_settings_control_naming_and_threshold():
    world = FakeWorld(items=source_stream(10), encoder_options={"payload_size": 100})
    settings = PipelineSettings(resolution_label="360p", extension=".mkv", threshold_bytes=250)

    result = asyncio.run(make_pipeline(world, settings=settings, base_name="a").run())

    # 100-byte writes: flush after the 3rd write each time (300 > 250)
    assert [r.byte_length for r in result.segments] == [300, 300, 300, 100]
    assert world.uploader.names == ["a-360p.1.mkv", "a-360p.2.mkv", "a-360p.3.mkv", "a-360p.4.mkv"]


def test_pipeline_is_single_use():
    world = FakeWorld(items=source_stream(1))
    pipeline = make_pipeline(world)
    asyncio.run(pipeline.run())

    with pytest.raises(RuntimeError):
        asyncio.run(pipeline.run())


# ---------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------

def test_unsupported_encoder_config_fails_before_any_frame():
    world = FakeWorld(
        items=source_stream(30),
        encoder_options={"supported": False},
    )

    with pytest.raises(UnsupportedConfigurationError) as excinfo:
        asyncio.run(make_pipeline(world).run())

    assert excinfo.value.stage == "encode"
    assert world.encoders[0].frames_seen == 0
    assert world.encoders[0].config is None
    assert not world.uploader.segments
    assert_torn_down_cleanly(world)


def test_unsupported_decoder_config_is_fatal():
    world = FakeWorld(items=source_stream(5), decoder_options={"supported": False})

    with pytest.raises(UnsupportedConfigurationError) as excinfo:
        asyncio.run(make_pipeline(world).run())

    assert excinfo.value.stage == "decode"
    assert not world.uploader.segments


def test_decode_error_mid_stream_stops_everything(quiet_logger: list[dict[str, Any]]):
    world = FakeWorld(
        items=source_stream(400),
        decoder_options={"fail_at": 100},
        encoder_options={"payload_size": 50_000},
    )

    with pytest.raises(DecodeError) as excinfo:
        asyncio.run(make_pipeline(world).run())

    assert excinfo.value.stage == "decode"
    assert isinstance(excinfo.value.__cause__, RuntimeError)

    # Nothing past the failure point reached the muxer; 100 * 50 kB never
    # crossed the threshold, so nothing was uploaded
    assert world.muxers[0].data_chunks <= 100
    assert not world.uploader.segments
    assert world.muxers[0].finalize_calls == 0
    assert_torn_down_cleanly(world)

    failed = [e for e in quiet_logger if e["event_type"] == "pipeline_failed"]
    assert len(failed) == 1
    assert failed[0]["stage"] == "decode"
    assert failed[0]["kind"] == "DecodeError"


def test_decoder_reported_error_is_fatal():
    world = FakeWorld(items=source_stream(20), decoder_options={"report_at": 5})

    with pytest.raises(DecodeError):
        asyncio.run(make_pipeline(world).run())

    assert_torn_down_cleanly(world)


def test_preview_decoder_error_is_tagged_preview():
    world = FakeWorld(items=source_stream(20), preview_options={"fail_at": 3})

    with pytest.raises(DecodeError) as excinfo:
        asyncio.run(make_pipeline(world).run())

    assert excinfo.value.stage == "preview"
    assert_torn_down_cleanly(world)


def test_encoder_error_is_fatal():
    world = FakeWorld(items=source_stream(20), encoder_options={"fail_at": 7})

    with pytest.raises(EncodeError):
        asyncio.run(make_pipeline(world).run())

    assert world.muxers[0].data_chunks <= 7
    assert_torn_down_cleanly(world)


def test_demux_error_is_fatal():
    world = FakeWorld(items=source_stream(20), demux_fail_at=8)

    with pytest.raises(DemuxError) as excinfo:
        asyncio.run(make_pipeline(world).run())

    assert isinstance(excinfo.value.__cause__, ValueError)
    assert_torn_down_cleanly(world)


def test_data_before_config_is_a_demux_error():
    world = FakeWorld(items=[data_chunk(0), SOURCE_CONFIG, data_chunk(1)])

    with pytest.raises(DemuxError):
        asyncio.run(make_pipeline(world).run())


def test_upload_failure_is_fatal_and_not_retried():
    world = FakeWorld(
        items=source_stream(10),
        encoder_options={"payload_size": 100},
    )
    world.uploader.fail_at = 1
    settings = PipelineSettings(threshold_bytes=250)

    with pytest.raises(UploadError) as excinfo:
        asyncio.run(make_pipeline(world, settings=settings).run())

    assert excinfo.value.stage == "upload"
    assert isinstance(excinfo.value.__cause__, ConnectionError)
    assert world.uploader.names == ["holiday-144p.1.webm"]
    assert_torn_down_cleanly(world)


# ---------------------------------------------------------------------
# Abort / cancellation
# ---------------------------------------------------------------------

def test_abort_tears_down_and_raises_pipeline_aborted():
    world = FakeWorld(items=source_stream(200), encoder_options={"payload_size": 100})
    world.uploader.block = True
    pipeline = make_pipeline(world, settings=PipelineSettings(threshold_bytes=150))

    async def scenario() -> None:
        task = asyncio.create_task(pipeline.run())
        await world.uploader.started.wait()
        pipeline.abort("user navigated away")
        await task

    with pytest.raises(PipelineAborted) as excinfo:
        asyncio.run(scenario())

    assert excinfo.value.message == "user navigated away"
    assert not world.uploader.segments
    assert all(channel.aborted for channel in pipeline.channels)
    assert all(stage.closed for stage in pipeline.stages)
    assert_torn_down_cleanly(world)


def test_stage_failure_racing_an_abort_is_reported_as_itself():
    class AbortingUploader(RecordingUploader):
        pipeline: TranscodePipeline

        async def upload_segment(self, name: str, data: bytes) -> None:
            # Abort request and upload failure land in the same loop step
            self.pipeline.abort("client went away")
            raise ConnectionError("upload service unavailable")

    uploader = AbortingUploader()
    world = FakeWorld(items=source_stream(5), uploader=uploader)
    pipeline = make_pipeline(world)
    uploader.pipeline = pipeline

    with pytest.raises(UploadError) as excinfo:
        asyncio.run(pipeline.run())

    assert isinstance(excinfo.value.__cause__, ConnectionError)
    assert_torn_down_cleanly(world)


def test_external_cancellation_tears_down_and_propagates():
    world = FakeWorld(items=source_stream(200), encoder_options={"payload_size": 100})
    world.uploader.block = True
    pipeline = make_pipeline(world, settings=PipelineSettings(threshold_bytes=150))

    async def scenario() -> None:
        task = asyncio.create_task(pipeline.run())
        await world.uploader.started.wait()
        task.cancel()
        await task

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(scenario())

    assert_torn_down_cleanly(world)


def test_concurrent_runs_do_not_share_state():
    world_a = FakeWorld(items=source_stream(30), encoder_options={"payload_size": 10})
    world_b = FakeWorld(items=source_stream(12), encoder_options={"payload_size": 20})

    async def scenario() -> tuple[PipelineResult, PipelineResult]:
        return await asyncio.gather(
            make_pipeline(world_a, base_name="a").run(),
            make_pipeline(world_b, base_name="b").run(),
        )

    result_a, result_b = asyncio.run(scenario())

    assert result_a.bytes_uploaded == 300
    assert result_b.bytes_uploaded == 240
    payload = result_a.to_payload()
    assert payload["bytes_uploaded"] == sum(s["bytes"] for s in payload["segments"])
    assert payload["bytes_received"] == 300
    assert world_a.uploader.names == ["a-144p.1.webm"]
    assert world_b.uploader.names == ["b-144p.1.webm"]


# ---------------------------------------------------------------------
# Settings validation
# ---------------------------------------------------------------------

def test_settings_reject_pool_not_larger_than_reorder_window():
    with pytest.raises(ValueError):
        PipelineSettings(frame_pool_size=4, reorder_depth=4)


def test_settings_reject_non_positive_threshold():
    with pytest.raises(ValueError):
        PipelineSettings(threshold_bytes=0)
