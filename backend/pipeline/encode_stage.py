"""
Encode stage.

Responsibilities:
- Support-check and configure the encoder BEFORE accepting any frame
- Encode every frame, releasing it right after the call (success or
  failure)
- Insert a synthetic CONFIG chunk immediately before the first DATA chunk
  of every new encoder configuration epoch
- Flush the encoder at end-of-stream

Non-responsibilities:
- Scaling (the engine encodes at the configured size)
- Muxing or preview decoding
"""

from __future__ import annotations

from typing import Any, Optional

from adapters.codec.base import EncodedOutput, EncoderBindings, EncoderFactory
from constants import STAGE_ENCODE
from media.chunks import EncodedChunk
from media.codec_config import DecoderConfig, EncoderConfig
from media.errors import EncodeError, UnsupportedConfigurationError
from media.frames import DecodedFrame
from pipeline.channel import StageChannel
from pipeline.stage import PipelineStage, guarded


class EncodeStage(PipelineStage):
    """Frames in, encoded chunks (with config records) out."""

    name = STAGE_ENCODE

    def __init__(
        self,
        *,
        encoder_factory: EncoderFactory,
        config: EncoderConfig,
        input: StageChannel[DecodedFrame],  # pylint: disable=redefined-builtin
        output: StageChannel[EncodedChunk],
        run_id: str,
    ) -> None:
        super().__init__(run_id=run_id)
        self._config = config
        self._input = input
        self._output = output

        self._engine_error: Optional[BaseException] = None
        self._epoch_config: Optional[DecoderConfig] = None
        self._configured = False

        self.frames_in = 0
        self.chunks_out = 0
        self.configs_out = 0
        self.bytes_out = 0

        self._engine = encoder_factory(
            EncoderBindings(
                on_output=self._on_output,
                on_error=self._on_engine_error,
            )
        )

    async def run(self) -> None:
        await self._configure()

        async for frame in self._input:
            with frame:
                self.frames_in += 1
                await self._call(self._engine.encode(frame), "encode")

        await self._call(self._engine.flush(), "flush")
        self._output.close()

        self._log(
            "encode_completed",
            frames=self.frames_in,
            chunks=self.chunks_out,
            configs=self.configs_out,
            encoded_bytes=self.bytes_out,
        )

    async def _configure(self) -> None:
        supported = await self._call(
            self._engine.is_config_supported(self._config), "is_config_supported"
        )
        if not supported:
            raise UnsupportedConfigurationError(
                f"encoder configuration not supported: {self._config.codec} "
                f"{self._config.width}x{self._config.height} @ {self._config.bitrate}bps",
                stage=self.name,
            )
        await self._call(self._engine.configure(self._config), "configure")
        self._configured = True
        self._log("encoder_configured", **self._config.log_fields())

    # ------------------------------------------------------------------
    # Engine callbacks
    # ------------------------------------------------------------------

    async def _on_output(self, output: EncodedOutput) -> None:
        new_config = output.decoder_config
        if new_config is not None and new_config != self._epoch_config:
            self._epoch_config = new_config
            self.configs_out += 1
            self._log("encoder_config_epoch", **new_config.log_fields())
            await self._output.put(
                EncodedChunk.config(new_config, timestamp_us=output.timestamp_us)
            )
        elif self._epoch_config is None:
            raise EncodeError(
                f"encoder produced data at {output.timestamp_us}us "
                "without a decoder configuration",
                stage=self.name,
            )

        self.chunks_out += 1
        self.bytes_out += len(output.payload)
        await self._output.put(
            EncodedChunk.data(
                output.payload,
                timestamp_us=output.timestamp_us,
                duration_us=output.duration_us,
                is_key=output.is_key,
            )
        )

    def _on_engine_error(self, error: BaseException) -> None:
        if self._engine_error is None:
            self._engine_error = error

    async def _call(self, call: Any, what: str) -> Any:
        result = await guarded(
            call,
            wrap=lambda msg: EncodeError(msg, stage=self.name),
            what=f"encoder {what}",
        )
        if self._engine_error is not None:
            error = self._engine_error
            raise EncodeError(
                f"encoder reported error: {type(error).__name__}: {error}",
                stage=self.name,
            ) from error
        return result

    async def _release_resources(self) -> None:
        await self._engine.close()

    def counters(self) -> dict[str, Any]:
        return {
            "frames_encoded": self.frames_in,
            "chunks_encoded": self.chunks_out,
        }
