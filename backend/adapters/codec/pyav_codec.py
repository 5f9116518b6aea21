# pyright: reportUnknownVariableType=false
# pyright: reportUnknownMemberType=false
# pyright: reportUnknownArgumentType=false
"""
PyAV (libavcodec) decoder and encoder engines.

Both engines are mechanism only:
- Map WebCodecs codec strings to FFmpeg codecs (media.codecs)
- Run blocking libavcodec calls in a worker thread (asyncio.to_thread)
- Deliver output through the bound async callbacks, awaiting each one

Timestamps are carried in microseconds end to end: packets and frames are
stamped with a 1/1_000_000 time base.

Must NOT:
- Release frames delivered downstream
- Insert config chunks (the encode stage does)
- Retry anything
"""

from __future__ import annotations

import asyncio
from fractions import Fraction
from typing import Any, Iterable, Optional

import av

from adapters.codec.base import (
    DecoderBindings,
    DecoderFactory,
    EncodedOutput,
    EncoderBindings,
    VideoDecoderEngine,
    VideoEncoderEngine,
)
from constants import TIMESTAMP_UNITS_PER_SECOND
from media.chunks import EncodedChunk
from media.codec_config import DecoderConfig, EncoderConfig
from media.codecs import ffmpeg_decoder_name, ffmpeg_encoder_candidates
from media.frames import DecodedFrame

US_TIME_BASE = Fraction(1, TIMESTAMP_UNITS_PER_SECOND)

# Encoders here only accept planar 4:2:0
ENCODER_PIXEL_FORMAT = "yuv420p"

_CODEC_ERRORS = (av.FFmpegError, ValueError)


def _codec_available(name: str, mode: str) -> bool:
    try:
        av.CodecContext.create(name, mode)
    except _CODEC_ERRORS:
        return False
    return True


def _pick_encoder(codec: str) -> Optional[str]:
    for candidate in ffmpeg_encoder_candidates(codec):
        if _codec_available(candidate, "w"):
            return candidate
    return None


# =============================================================================
# Decoder
# =============================================================================

class PyAVDecoderEngine(VideoDecoderEngine):
    """
    libavcodec video decoder producing RGB frames from the bound FramePool.

    output_size:
        Optional (width, height) every frame is scaled to. The preview path
        uses this to keep preview frames small.
    """

    def __init__(
        self,
        bindings: DecoderBindings,
        *,
        output_size: Optional[tuple[int, int]] = None,
    ) -> None:
        self._bindings = bindings
        self._output_size = output_size
        self._ctx: Any = None
        self._last_ts_us = 0

    async def is_config_supported(self, config: DecoderConfig) -> bool:
        name = ffmpeg_decoder_name(config.codec)
        if name is None:
            return False
        return await asyncio.to_thread(_codec_available, name, "r")

    async def configure(self, config: DecoderConfig) -> None:
        if self._ctx is not None:
            await self.flush()

        name = ffmpeg_decoder_name(config.codec)
        if name is None:
            raise ValueError(f"no decoder for codec {config.codec!r}")

        ctx = av.CodecContext.create(name, "r")
        if config.description:
            ctx.extradata = config.description
        if config.coded_width and config.coded_height:
            ctx.width = config.coded_width
            ctx.height = config.coded_height
        self._ctx = ctx

    async def decode(self, chunk: EncodedChunk) -> None:
        if self._ctx is None:
            raise RuntimeError("decode() before configure()")

        packet = av.Packet(chunk.payload)
        packet.pts = chunk.timestamp_us
        packet.dts = None
        packet.time_base = US_TIME_BASE
        frames = await asyncio.to_thread(self._ctx.decode, packet)
        await self._deliver(frames)

    async def flush(self) -> None:
        if self._ctx is None:
            return
        ctx = self._ctx
        frames = await asyncio.to_thread(ctx.decode, None)
        await self._deliver(frames)
        # A drained context accepts no more packets; configure() makes a new one
        self._ctx = None

    async def close(self) -> None:
        self._ctx = None

    async def _deliver(self, frames: Iterable[Any]) -> None:
        for frame in frames:
            if self._output_size is not None:
                width, height = self._output_size
                rgb = frame.to_ndarray(width=width, height=height, format="rgb24")
            else:
                rgb = frame.to_ndarray(format="rgb24")

            ts_us = frame.pts
            if ts_us is None:
                ts_us = self._last_ts_us + 1
            self._last_ts_us = ts_us

            duration_us = 0
            if getattr(frame, "duration", None):
                duration_us = int(frame.duration)

            decoded: DecodedFrame = await self._bindings.frame_pool.acquire(
                rgb, timestamp_us=int(ts_us), duration_us=duration_us
            )
            await self._bindings.on_output(decoded)


# =============================================================================
# Encoder
# =============================================================================

class PyAVEncoderEngine(VideoEncoderEngine):
    """
    libavcodec video encoder.

    Every input frame is scaled to the configured size and converted to
    yuv420p before encoding. The first packet after configure() carries the
    DecoderConfig describing the produced stream.
    """

    def __init__(self, bindings: EncoderBindings) -> None:
        self._bindings = bindings
        self._ctx: Any = None
        self._config: Optional[EncoderConfig] = None
        self._pending_decoder_config: Optional[DecoderConfig] = None
        self.encoder_name: Optional[str] = None

    async def is_config_supported(self, config: EncoderConfig) -> bool:
        # yuv420p needs even dimensions
        if config.width % 2 or config.height % 2:
            return False
        return await asyncio.to_thread(_pick_encoder, config.codec) is not None

    async def configure(self, config: EncoderConfig) -> None:
        if self._ctx is not None:
            await self.flush()

        name = await asyncio.to_thread(_pick_encoder, config.codec)
        if name is None:
            raise ValueError(f"no encoder for codec {config.codec!r}")

        ctx = av.CodecContext.create(name, "w")
        ctx.width = config.width
        ctx.height = config.height
        ctx.pix_fmt = ENCODER_PIXEL_FORMAT
        ctx.bit_rate = config.bitrate
        ctx.framerate = Fraction(config.framerate, 1)
        ctx.time_base = US_TIME_BASE
        if config.extras:
            ctx.options = {str(k): str(v) for k, v in config.extras.items()}

        self._ctx = ctx
        self._config = config
        self.encoder_name = name
        self._pending_decoder_config = None

    async def encode(self, frame: DecodedFrame) -> None:
        if self._ctx is None or self._config is None:
            raise RuntimeError("encode() before configure()")

        packets = await asyncio.to_thread(
            self._encode_sync, frame.pixels, frame.timestamp_us
        )
        await self._deliver(packets)

    def _encode_sync(self, pixels: Any, timestamp_us: int) -> list[Any]:
        assert self._config is not None
        video_frame = av.VideoFrame.from_ndarray(pixels, format="rgb24")
        video_frame = video_frame.reformat(
            width=self._config.width,
            height=self._config.height,
            format=ENCODER_PIXEL_FORMAT,
        )
        video_frame.pts = timestamp_us
        video_frame.time_base = US_TIME_BASE
        return list(self._ctx.encode(video_frame))

    async def flush(self) -> None:
        if self._ctx is None:
            return
        ctx = self._ctx
        packets = await asyncio.to_thread(lambda: list(ctx.encode(None)))
        await self._deliver(packets)
        self._ctx = None

    async def close(self) -> None:
        self._ctx = None

    async def _deliver(self, packets: Iterable[Any]) -> None:
        for packet in packets:
            decoder_config = None
            if self._pending_decoder_config is None:
                self._pending_decoder_config = self._describe_output()
                decoder_config = self._pending_decoder_config

            await self._bindings.on_output(
                EncodedOutput(
                    payload=bytes(packet),
                    timestamp_us=int(packet.pts or 0),
                    duration_us=max(0, int(packet.duration or 0)),
                    is_key=bool(packet.is_keyframe),
                    decoder_config=decoder_config,
                )
            )

    def _describe_output(self) -> DecoderConfig:
        assert self._config is not None
        extradata = b""
        if self._ctx is not None and self._ctx.extradata:
            extradata = bytes(self._ctx.extradata)
        return DecoderConfig(
            codec=self._config.codec,
            coded_width=self._config.width,
            coded_height=self._config.height,
            description=extradata,
        )


# =============================================================================
# Factories
# =============================================================================

def pyav_decoder_factory(bindings: DecoderBindings) -> VideoDecoderEngine:
    return PyAVDecoderEngine(bindings)


def pyav_preview_decoder_factory(max_edge_px: int) -> DecoderFactory:
    """
    Decoder factory for preview frames scaled so the longer edge is at most
    `max_edge_px`. Frames already within the limit are left alone.
    """
    def factory(bindings: DecoderBindings) -> VideoDecoderEngine:
        return _PreviewDecoderEngine(bindings, max_edge_px=max_edge_px)

    return factory


def pyav_encoder_factory(bindings: EncoderBindings) -> VideoEncoderEngine:
    return PyAVEncoderEngine(bindings)


class _PreviewDecoderEngine(PyAVDecoderEngine):
    """Decoder whose output size follows the configured coded size."""

    def __init__(self, bindings: DecoderBindings, *, max_edge_px: int) -> None:
        super().__init__(bindings)
        self._max_edge_px = max_edge_px

    async def configure(self, config: DecoderConfig) -> None:
        await super().configure(config)
        self._output_size = _fit_within(
            config.coded_width, config.coded_height, self._max_edge_px
        )


def _fit_within(width: int, height: int, max_edge: int) -> Optional[tuple[int, int]]:
    if width <= 0 or height <= 0 or max(width, height) <= max_edge:
        return None
    scale = max_edge / max(width, height)
    # Even sizes keep the RGB conversion simple for every pixel format
    return (
        max(2, int(width * scale) // 2 * 2),
        max(2, int(height * scale) // 2 * 2),
    )
