# pyright: reportUnknownVariableType=false
# pyright: reportUnknownMemberType=false
# pyright: reportUnknownArgumentType=false
"""
PyAV container demuxer.

Reads the first video stream of any container FFmpeg can open (MP4, WebM,
MKV, ...) and reports:
- one DecoderConfig (codec string, coded size, extradata)
- every packet of that stream as a DATA chunk, in container order

Blocking FFmpeg calls run in a worker thread via asyncio.to_thread; the
callbacks are awaited on the event loop, so a full pipeline suspends
packet reading.

Must NOT:
- Decode anything
- Decide whether the codec is supported (the decode stage does)
"""

from __future__ import annotations

import asyncio
import os
from fractions import Fraction
from typing import Any, Iterator, Optional

import av

from adapters.demux.base import ByteSource, ChunkSink, ConfigSink, Demuxer
from constants import STAGE_DEMUX, TIMESTAMP_UNITS_PER_SECOND
from media.chunks import EncodedChunk
from media.codec_config import DecoderConfig
from media.codecs import codec_string_for_stream
from media.errors import DemuxError


def _to_us(value: Optional[int], time_base: Optional[Fraction]) -> Optional[int]:
    if value is None or time_base is None:
        return None
    return int(round(value * time_base * TIMESTAMP_UNITS_PER_SECOND))


class PyAVDemuxer(Demuxer):
    """
    Demuxer backed by libavformat.

    One instance may be reused for several runs; no state survives run().
    """

    async def run(
        self,
        source: ByteSource,
        *,
        on_config: ConfigSink,
        on_chunk: ChunkSink,
    ) -> None:
        container = await asyncio.to_thread(self._open, source)
        try:
            if not container.streams.video:
                raise DemuxError("input has no video track", stage=STAGE_DEMUX)
            stream = container.streams.video[0]

            await on_config(self._decoder_config(stream))

            packets: Iterator[Any] = container.demux(stream)
            last_ts_us = 0
            while True:
                packet = await asyncio.to_thread(next, packets, None)
                if packet is None:
                    break
                # demux() ends with an empty flush packet
                if packet.size == 0:
                    continue

                time_base = packet.time_base or stream.time_base
                ts_us = _to_us(packet.pts, time_base)
                if ts_us is None:
                    ts_us = _to_us(packet.dts, time_base)
                if ts_us is None:
                    ts_us = last_ts_us
                last_ts_us = ts_us

                await on_chunk(
                    EncodedChunk.data(
                        bytes(packet),
                        timestamp_us=ts_us,
                        duration_us=max(0, _to_us(packet.duration, time_base) or 0),
                        is_key=bool(packet.is_keyframe),
                    )
                )
        finally:
            await asyncio.to_thread(container.close)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _open(source: ByteSource) -> Any:
        if isinstance(source, (str, os.PathLike)):
            return av.open(os.fspath(source), mode="r")
        return av.open(source, mode="r")

    @staticmethod
    def _decoder_config(stream: Any) -> DecoderConfig:
        ctx = stream.codec_context
        extradata = bytes(ctx.extradata or b"")
        codec = codec_string_for_stream(ctx.name, extradata)
        if codec is None:
            # Not a codec we know a WebCodecs string for; keep FFmpeg's name
            # so the decode stage can report it as unsupported
            codec = ctx.name
        return DecoderConfig(
            codec=codec,
            coded_width=int(ctx.width or 0),
            coded_height=int(ctx.height or 0),
            description=extradata,
        )
