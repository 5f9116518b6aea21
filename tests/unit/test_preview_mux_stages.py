# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import json
from typing import Any

import pytest

from adapters.codec.base import DecoderBindings
from adapters.mux.base import MuxerBindings
from fakes import FakeDecoder, FakeMuxer, data_chunk
from media.chunks import EncodedChunk
from media.codec_config import DecoderConfig, EncoderConfig
from media.errors import DecodeError, MuxError
from media.frames import DecodedFrame, FramePool
from media.segments import ContainerByteRun
from observability import logger
from pipeline.channel import StageChannel
from pipeline.mux_stage import MuxStage
from pipeline.preview_stage import PreviewTeeStage

VP9 = DecoderConfig(codec="vp09.00.10.08", coded_width=320, coded_height=240)


@pytest.fixture(autouse=True)
def captured(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    events: list[dict[str, Any]] = []
    monkeypatch.setattr(logger, "_print", lambda line: events.append(json.loads(line)))
    return events


def encoded_stream(count: int) -> list[EncodedChunk]:
    return [EncodedChunk.config(VP9)] + [data_chunk(i, b"\x10" * 4) for i in range(count)]


# ---------------------------------------------------------------------
# Preview tee
# ---------------------------------------------------------------------

def run_preview(items, render, *, decoder_options=None):
    engines: list[FakeDecoder] = []

    def factory(bindings: DecoderBindings) -> FakeDecoder:
        engine = FakeDecoder(bindings, **(decoder_options or {}))
        engines.append(engine)
        return engine

    async def scenario() -> list[EncodedChunk]:
        inp: StageChannel[EncodedChunk] = StageChannel(name="in", max_items=64)
        out: StageChannel[EncodedChunk] = StageChannel(name="out", max_items=64)
        stage = PreviewTeeStage(
            decoder_factory=factory,
            frame_pool=FramePool(capacity=2),
            render=render,
            input=inp,
            output=out,
            run_id="r",
        )
        for item in items:
            await inp.put(item)
        inp.close()
        try:
            await stage.run()
        finally:
            await stage.aclose()
        return [c async for c in out]

    forwarded = asyncio.run(scenario())
    return forwarded, engines


def test_preview_forwards_every_chunk_unchanged():
    items = encoded_stream(5)
    rendered: list[int] = []

    forwarded, engines = run_preview(items, lambda f: rendered.append(f.timestamp_us))

    assert forwarded == items
    assert rendered == [i * 33_333 for i in range(5)]
    assert engines[0].configs == [VP9]
    assert all(f.released for f in engines[0].frames)
    assert engines[0].close_calls == 1


def test_async_render_callback_is_awaited():
    rendered: list[int] = []

    async def render(frame: DecodedFrame) -> None:
        await asyncio.sleep(0)
        rendered.append(frame.timestamp_us)

    run_preview(encoded_stream(3), render)

    assert len(rendered) == 3


def test_pool_of_two_never_stalls_because_frames_are_released():
    # More frames than pool capacity: only passes if each frame is released
    forwarded, engines = run_preview(encoded_stream(10), None)

    assert len(forwarded) == 11
    assert len(engines[0].frames) == 10


def test_render_failure_is_logged_and_frame_released(captured: list[dict[str, Any]]):
    def render(frame: DecodedFrame) -> None:
        raise ValueError("no canvas")

    forwarded, engines = run_preview(encoded_stream(3), render)

    assert len(forwarded) == 4
    assert all(f.released for f in engines[0].frames)
    failures = [e for e in captured if e["event_type"] == "preview_render_failed"]
    assert len(failures) == 3
    assert failures[0]["level"] == "WARNING"


def test_render_may_release_frame_itself():
    forwarded, engines = run_preview(encoded_stream(2), lambda f: f.release())

    assert len(forwarded) == 3
    assert all(f.released for f in engines[0].frames)


def test_preview_decoder_failure_is_fatal_and_tagged():
    with pytest.raises(DecodeError) as excinfo:
        run_preview(encoded_stream(4), None, decoder_options={"fail_at": 2})

    assert excinfo.value.stage == "preview"


# ---------------------------------------------------------------------
# Mux stage
# ---------------------------------------------------------------------

def run_mux(items, *, trailer: bytes = b""):
    muxers: list[FakeMuxer] = []

    def factory(bindings: MuxerBindings) -> FakeMuxer:
        muxer = FakeMuxer(bindings, trailer=trailer)
        muxers.append(muxer)
        return muxer

    async def scenario() -> list[ContainerByteRun]:
        inp: StageChannel[EncodedChunk] = StageChannel(name="in", max_items=64)
        out: StageChannel[ContainerByteRun] = StageChannel(name="out", max_items=64)
        stage = MuxStage(
            muxer_factory=factory,
            target=EncoderConfig(),
            input=inp,
            output=out,
            run_id="r",
        )
        for item in items:
            await inp.put(item)
        inp.close()
        try:
            await stage.run()
        finally:
            await stage.aclose()
        return [r async for r in out]

    runs = asyncio.run(scenario())
    return runs, muxers


def test_mux_emits_runs_in_order_then_trailer():
    runs, muxers = run_mux(encoded_stream(3), trailer=b"END")

    assert b"".join(r.data for r in runs) == b"\x10" * 12 + b"END"
    assert [r.position for r in runs] == [0, 4, 8, 12]
    assert muxers[0].track_configs == [VP9]
    assert muxers[0].finalize_calls == 1
    assert muxers[0].close_calls == 1


def test_mux_skips_empty_runs():
    runs, _ = run_mux(encoded_stream(0))

    assert runs == []


def test_mux_rejects_data_before_track_configuration():
    with pytest.raises(MuxError):
        run_mux([data_chunk(0)])
