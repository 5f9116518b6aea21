"""
Decode stage.

Responsibilities:
- Support-check and (re)configure the decoder on every CONFIG chunk
- Feed DATA chunks to the decoder engine
- Deliver frames downstream in presentation order
- Flush the engine at end-of-stream so trailing frames are not lost

Engine output arrives through a callback; the callback awaits the output
channel, so a full channel suspends the engine and therefore this stage.

Presentation order: decoders may report frames in decode order. A bounded
reorder window (min-heap on timestamp, `reorder_depth` frames) restores
presentation order; it is drained on every reconfiguration and at
end-of-stream. A depth of 0 forwards frames as they arrive.
"""

from __future__ import annotations

import heapq
import itertools
from typing import Any, Awaitable, Callable, Optional

from adapters.codec.base import DecoderBindings, DecoderFactory
from constants import DECODE_REORDER_DEPTH, STAGE_DECODE
from media.chunks import EncodedChunk
from media.codec_config import DecoderConfig
from media.errors import DecodeError, UnsupportedConfigurationError
from media.frames import DecodedFrame, FramePool
from observability.logger import log_event, now_ms
from pipeline.channel import StageChannel
from pipeline.stage import PipelineStage, guarded


class DecodePath:
    """
    One decoder engine plus the rules around it.

    Shared by the decode stage and the preview tee:
    - unsupported configuration -> UnsupportedConfigurationError
    - decode before configure   -> DecodeError
    - engine failure (raised or reported via on_error) -> DecodeError

    All errors are tagged with `stage`.
    """

    def __init__(
        self,
        *,
        factory: DecoderFactory,
        frame_pool: FramePool,
        on_frame: Callable[[DecodedFrame], Awaitable[None]],
        stage: str,
        run_id: str,
    ) -> None:
        self._stage = stage
        self._run_id = run_id
        self._on_frame = on_frame
        self._engine_error: Optional[BaseException] = None
        self._config: Optional[DecoderConfig] = None
        self._closed = False

        self.frames_out = 0
        self.chunks_in = 0
        self.reconfigurations = 0

        self._engine = factory(
            DecoderBindings(
                frame_pool=frame_pool,
                on_output=self._deliver,
                on_error=self._on_engine_error,
            )
        )

    @property
    def configured(self) -> bool:
        return self._config is not None

    async def configure(self, config: DecoderConfig) -> None:
        supported = await self._call(
            self._engine.is_config_supported(config), "is_config_supported"
        )
        if not supported:
            raise UnsupportedConfigurationError(
                f"decoder configuration not supported: {config.codec} "
                f"{config.coded_width}x{config.coded_height}",
                stage=self._stage,
            )

        if self._config is not None:
            self.reconfigurations += 1

        await self._call(self._engine.configure(config), "configure")
        self._config = config

        log_event({
            "ts_ms": now_ms(),
            "event_type": "decoder_configured",
            "run_id": self._run_id,
            "stage": self._stage,
            **config.log_fields(),
        })

    async def decode(self, chunk: EncodedChunk) -> None:
        if self._config is None:
            raise DecodeError(
                f"data chunk at {chunk.timestamp_us}us received before decoder configuration",
                stage=self._stage,
            )
        self.chunks_in += 1
        await self._call(self._engine.decode(chunk), "decode")

    async def flush(self) -> None:
        if self._config is None:
            return
        await self._call(self._engine.flush(), "flush")

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._engine.close()

    # ------------------------------------------------------------------
    # Engine callbacks
    # ------------------------------------------------------------------

    async def _deliver(self, frame: DecodedFrame) -> None:
        self.frames_out += 1
        await self._on_frame(frame)

    def _on_engine_error(self, error: BaseException) -> None:
        if self._engine_error is None:
            self._engine_error = error

    async def _call(self, call: Awaitable[Any], what: str) -> Any:
        result = await guarded(
            call,
            wrap=lambda msg: DecodeError(msg, stage=self._stage),
            what=f"decoder {what}",
        )
        if self._engine_error is not None:
            error = self._engine_error
            raise DecodeError(
                f"decoder reported error: {type(error).__name__}: {error}",
                stage=self._stage,
            ) from error
        return result


class DecodeStage(PipelineStage):
    """Chunks in, presentation-ordered frames out."""

    name = STAGE_DECODE

    def __init__(
        self,
        *,
        decoder_factory: DecoderFactory,
        frame_pool: FramePool,
        input: StageChannel[EncodedChunk],  # pylint: disable=redefined-builtin
        output: StageChannel[DecodedFrame],
        run_id: str,
        reorder_depth: int = DECODE_REORDER_DEPTH,
    ) -> None:
        super().__init__(run_id=run_id)
        if reorder_depth < 0:
            raise ValueError("reorder_depth must be >= 0")

        self._input = input
        self._output = output
        self._pool = frame_pool
        self._reorder_depth = reorder_depth

        # (timestamp_us, arrival_seq, frame); arrival_seq keeps ties FIFO
        self._reorder: list[tuple[int, int, DecodedFrame]] = []
        self._arrival = itertools.count()
        self._last_emitted_us: Optional[int] = None

        self.frames_emitted = 0
        self.order_violations = 0

        self._path = DecodePath(
            factory=decoder_factory,
            frame_pool=frame_pool,
            on_frame=self._on_frame,
            stage=self.name,
            run_id=run_id,
        )

    async def run(self) -> None:
        async for chunk in self._input:
            if chunk.is_config:
                assert chunk.decoder_config is not None
                if self._path.configured:
                    # Frames of the previous configuration go out first
                    await self._path.flush()
                    await self._drain_reorder()
                await self._path.configure(chunk.decoder_config)
            else:
                await self._path.decode(chunk)

        await self._path.flush()
        await self._drain_reorder()
        self._output.close()

        self._log(
            "decode_completed",
            chunks=self._path.chunks_in,
            frames=self.frames_emitted,
            reconfigurations=self._path.reconfigurations,
            order_violations=self.order_violations,
            **self._pool.snapshot(),
        )

    # ------------------------------------------------------------------
    # Reorder window
    # ------------------------------------------------------------------

    async def _on_frame(self, frame: DecodedFrame) -> None:
        heapq.heappush(self._reorder, (frame.timestamp_us, next(self._arrival), frame))
        while len(self._reorder) > self._reorder_depth:
            _, _, ready = heapq.heappop(self._reorder)
            await self._emit(ready)

    async def _drain_reorder(self) -> None:
        while self._reorder:
            _, _, ready = heapq.heappop(self._reorder)
            await self._emit(ready)

    async def _emit(self, frame: DecodedFrame) -> None:
        if self._last_emitted_us is not None and frame.timestamp_us < self._last_emitted_us:
            self.order_violations += 1
            self._log(
                "presentation_order_violation",
                level="WARNING",
                timestamp_us=frame.timestamp_us,
                previous_timestamp_us=self._last_emitted_us,
            )
        self._last_emitted_us = frame.timestamp_us
        self.frames_emitted += 1
        await self._output.put(frame)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def _release_resources(self) -> None:
        while self._reorder:
            _, _, frame = heapq.heappop(self._reorder)
            if not frame.released:
                frame.release()
        await self._path.close()

    def counters(self) -> dict[str, Any]:
        return {
            "frames_decoded": self.frames_emitted,
        }
