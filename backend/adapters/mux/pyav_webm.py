# pyright: reportUnknownVariableType=false
# pyright: reportUnknownMemberType=false
# pyright: reportUnknownArgumentType=false
"""
PyAV WebM muxer.

libavformat writes into an append-only, non-seekable writer. Without seek
support the Matroska muxer never patches earlier bytes, so every write can
be forwarded as a ContainerByteRun the moment it happens.

Track rules:
- The first configure_track() opens the container and adds the video
  stream (VP8 / VP9 / AV1 only).
- Later configure_track() calls must describe the same codec and size;
  WebM has no way to change a track mid-file.
"""

from __future__ import annotations

import asyncio
from fractions import Fraction
from typing import Any, Optional

import av

from adapters.mux.base import ContainerMuxer, MuxerBindings
from constants import TIMESTAMP_UNITS_PER_SECOND
from media.chunks import EncodedChunk
from media.codec_config import DecoderConfig
from media.codecs import WEBM_CODECS, ffmpeg_decoder_name
from media.segments import ContainerByteRun

US_TIME_BASE = Fraction(1, TIMESTAMP_UNITS_PER_SECOND)


class AppendOnlyWriter:
    """
    File-like object handed to libavformat.

    Only write() is provided, which makes the output non-seekable. Written
    data is buffered until the muxer drains it.
    """

    def __init__(self) -> None:
        self.position = 0
        self._pending: list[ContainerByteRun] = []

    def write(self, data: Any) -> int:
        chunk = bytes(data)
        if chunk:
            self._pending.append(ContainerByteRun(position=self.position, data=chunk))
            self.position += len(chunk)
        return len(chunk)

    def flush(self) -> None:
        return None

    def take(self) -> list[ContainerByteRun]:
        runs, self._pending = self._pending, []
        return runs


class PyAVWebMMuxer(ContainerMuxer):
    """Incremental WebM writer for one video track."""

    def __init__(self, bindings: MuxerBindings) -> None:
        self._bindings = bindings
        self._writer = AppendOnlyWriter()
        self._container: Any = None
        self._stream: Any = None
        self._track: Optional[DecoderConfig] = None
        self._closed = False

    async def configure_track(self, config: DecoderConfig) -> None:
        if self._track is not None:
            if (config.codec, config.coded_width, config.coded_height) != (
                self._track.codec,
                self._track.coded_width,
                self._track.coded_height,
            ):
                raise ValueError(
                    f"webm track cannot change from {self._track.codec} "
                    f"{self._track.coded_width}x{self._track.coded_height} to "
                    f"{config.codec} {config.coded_width}x{config.coded_height}"
                )
            return

        codec_name = ffmpeg_decoder_name(config.codec)
        if codec_name not in WEBM_CODECS:
            raise ValueError(f"codec {config.codec!r} cannot be stored in webm")

        target = self._bindings.target
        container = av.open(self._writer, mode="w", format="webm")
        stream = container.add_stream(codec_name, rate=target.framerate)
        stream.width = config.coded_width or target.width
        stream.height = config.coded_height or target.height
        stream.pix_fmt = "yuv420p"
        if config.description:
            stream.codec_context.extradata = config.description

        self._container = container
        self._stream = stream
        self._track = config

    async def add_chunk(self, chunk: EncodedChunk) -> None:
        if self._stream is None:
            raise RuntimeError("add_chunk() before configure_track()")

        packet = av.Packet(chunk.payload)
        packet.stream = self._stream
        packet.time_base = US_TIME_BASE
        packet.pts = chunk.timestamp_us
        packet.dts = chunk.timestamp_us
        if chunk.duration_us:
            packet.duration = chunk.duration_us
        packet.is_keyframe = chunk.is_key

        await asyncio.to_thread(self._container.mux, packet)
        await self._drain()

    async def finalize(self) -> None:
        if self._container is not None and not self._closed:
            self._closed = True
            await asyncio.to_thread(self._container.close)
        await self._drain()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._container is not None:
            await asyncio.to_thread(self._container.close)
        # Bytes written while closing after an abort are dropped
        self._writer.take()

    async def _drain(self) -> None:
        for byte_run in self._writer.take():
            await self._bindings.on_output(byte_run)


def pyav_webm_muxer_factory(bindings: MuxerBindings) -> ContainerMuxer:
    return PyAVWebMMuxer(bindings)
