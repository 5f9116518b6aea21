"""
Mux stage.

Feeds ordered encoded chunks to the container muxer and forwards the
container bytes it produces, in order, to the upload sink.

- CONFIG chunks carry no payload: they only (re)describe the track
- DATA chunks are appended; a DATA chunk before any track description is
  a MuxError
- End-of-stream finalizes the muxer so trailer / index bytes are emitted
  before the output channel closes
"""

from __future__ import annotations

from typing import Any

from adapters.mux.base import MuxerBindings, MuxerFactory
from constants import STAGE_MUX
from media.chunks import EncodedChunk
from media.codec_config import EncoderConfig
from media.errors import MuxError
from media.segments import ContainerByteRun
from pipeline.channel import StageChannel
from pipeline.stage import PipelineStage, guarded


class MuxStage(PipelineStage):
    """Encoded chunks in, container byte runs out."""

    name = STAGE_MUX

    def __init__(
        self,
        *,
        muxer_factory: MuxerFactory,
        target: EncoderConfig,
        input: StageChannel[EncodedChunk],  # pylint: disable=redefined-builtin
        output: StageChannel[ContainerByteRun],
        run_id: str,
    ) -> None:
        super().__init__(run_id=run_id)
        self._input = input
        self._output = output
        self._track_configured = False

        self.data_chunks_in = 0
        self.config_chunks_skipped = 0
        self.runs_out = 0
        self.bytes_out = 0

        self._muxer = muxer_factory(
            MuxerBindings(on_output=self._on_output, target=target)
        )

    def _wrap(self, message: str) -> MuxError:
        return MuxError(message, stage=self.name)

    async def run(self) -> None:
        async for chunk in self._input:
            if chunk.is_config:
                assert chunk.decoder_config is not None
                self.config_chunks_skipped += 1
                await guarded(
                    self._muxer.configure_track(chunk.decoder_config),
                    wrap=self._wrap,
                    what="muxer configure_track",
                )
                self._track_configured = True
                continue

            if not self._track_configured:
                raise MuxError(
                    f"data chunk at {chunk.timestamp_us}us before track configuration",
                    stage=self.name,
                )
            await guarded(
                self._muxer.add_chunk(chunk),
                wrap=self._wrap,
                what="muxer add_chunk",
            )
            self.data_chunks_in += 1

        await guarded(self._muxer.finalize(), wrap=self._wrap, what="muxer finalize")
        self._output.close()

        self._log(
            "mux_completed",
            data_chunks=self.data_chunks_in,
            config_chunks=self.config_chunks_skipped,
            byte_runs=self.runs_out,
            container_bytes=self.bytes_out,
        )

    async def _on_output(self, run: ContainerByteRun) -> None:
        if not run.data:
            return
        self.runs_out += 1
        self.bytes_out += len(run.data)
        await self._output.put(run)

    async def _release_resources(self) -> None:
        await self._muxer.close()

    def counters(self) -> dict[str, Any]:
        return {
            "chunks_muxed": self.data_chunks_in,
            "bytes_muxed": self.bytes_out,
        }
