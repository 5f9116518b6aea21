"""
Demux source stage.

Drives the demux collaborator once and turns its callbacks into an ordered
stream of EncodedChunks:
- on_config(cfg) -> CONFIG chunk carrying cfg
- on_chunk(chunk) -> DATA chunk, unchanged

Both callbacks await the output channel, so the demuxer is suspended
whenever the decode stage falls behind.
"""

from __future__ import annotations

from typing import Any

from adapters.demux.base import ByteSource, Demuxer
from constants import STAGE_DEMUX
from media.chunks import EncodedChunk
from media.codec_config import DecoderConfig
from media.errors import DemuxError
from pipeline.channel import StageChannel
from pipeline.stage import PipelineStage, guarded


class DemuxSource(PipelineStage):
    """Source stage: container bytes in, chunk events out."""

    name = STAGE_DEMUX

    def __init__(
        self,
        *,
        demuxer: Demuxer,
        source: ByteSource,
        output: StageChannel[EncodedChunk],
        run_id: str,
    ) -> None:
        super().__init__(run_id=run_id)
        self._demuxer = demuxer
        self._source = source
        self._output = output

        self._configured = False
        self._last_timestamp_us = 0

        self.configs_out = 0
        self.chunks_out = 0
        self.bytes_in = 0

    async def run(self) -> None:
        await guarded(
            self._demuxer.run(
                self._source,
                on_config=self._on_config,
                on_chunk=self._on_chunk,
            ),
            wrap=lambda msg: DemuxError(msg, stage=self.name),
            what="demuxer",
        )
        self._output.close()

        self._log(
            "demux_completed",
            configs=self.configs_out,
            chunks=self.chunks_out,
            payload_bytes=self.bytes_in,
        )

    async def _on_config(self, config: DecoderConfig) -> None:
        self._configured = True
        self.configs_out += 1
        self._log("demux_config", **config.log_fields())
        await self._output.put(
            EncodedChunk.config(config, timestamp_us=self._last_timestamp_us)
        )

    async def _on_chunk(self, chunk: EncodedChunk) -> None:
        if chunk.is_config:
            assert chunk.decoder_config is not None
            await self._on_config(chunk.decoder_config)
            return

        if not self._configured:
            raise DemuxError(
                "data chunk delivered before any stream configuration",
                stage=self.name,
            )

        self.chunks_out += 1
        self.bytes_in += chunk.byte_length
        self._last_timestamp_us = chunk.timestamp_us
        await self._output.put(chunk)

    def counters(self) -> dict[str, Any]:
        return {
            "chunks_demuxed": self.chunks_out,
            "configs_demuxed": self.configs_out,
        }
