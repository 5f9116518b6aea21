"""
Preview tee + decode stage.

For every encoded chunk, in input order:
- CONFIG: reconfigure the preview decoder, forward the chunk unchanged
- DATA:   decode it for preview (frames go to the render callback), then
          forward the chunk unchanged

The two side effects happen in one task, one chunk at a time, so the
preview path and the forwarded stream can never drift apart.

Render callback failures are observational only: logged, counted, never
fatal. Preview DECODER failures are fatal (DecodeError tagged "preview").
Every preview frame is released after its render call, whatever happened.
"""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Optional, Union

from adapters.codec.base import DecoderFactory
from constants import STAGE_PREVIEW
from media.chunks import EncodedChunk
from media.frames import DecodedFrame, FramePool
from pipeline.channel import StageChannel
from pipeline.decode_stage import DecodePath
from pipeline.stage import PipelineStage


RenderCallback = Callable[[DecodedFrame], Union[None, Awaitable[None]]]


class PreviewTeeStage(PipelineStage):
    """Pass-through of encoded chunks with a preview-decode side effect."""

    name = STAGE_PREVIEW

    def __init__(
        self,
        *,
        decoder_factory: DecoderFactory,
        frame_pool: FramePool,
        render: Optional[RenderCallback],
        input: StageChannel[EncodedChunk],  # pylint: disable=redefined-builtin
        output: StageChannel[EncodedChunk],
        run_id: str,
    ) -> None:
        super().__init__(run_id=run_id)
        self._render = render
        self._input = input
        self._output = output

        self.chunks_forwarded = 0
        self.frames_rendered = 0
        self.render_failures = 0

        self._path = DecodePath(
            factory=decoder_factory,
            frame_pool=frame_pool,
            on_frame=self._render_frame,
            stage=self.name,
            run_id=run_id,
        )

    async def run(self) -> None:
        async for chunk in self._input:
            if chunk.is_config:
                assert chunk.decoder_config is not None
                await self._path.configure(chunk.decoder_config)
            else:
                await self._path.decode(chunk)

            await self._output.put(chunk)
            self.chunks_forwarded += 1

        await self._path.flush()
        self._output.close()

        self._log(
            "preview_completed",
            chunks=self.chunks_forwarded,
            frames_rendered=self.frames_rendered,
            render_failures=self.render_failures,
        )

    async def _render_frame(self, frame: DecodedFrame) -> None:
        try:
            if self._render is not None:
                result = self._render(frame)
                if inspect.isawaitable(result):
                    await result
            self.frames_rendered += 1
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self.render_failures += 1
            self._log(
                "preview_render_failed",
                level="WARNING",
                timestamp_us=frame.timestamp_us,
                exception=type(exc).__name__,
                message=str(exc),
            )
        finally:
            if not frame.released:
                frame.release()

    async def _release_resources(self) -> None:
        await self._path.close()

    def counters(self) -> dict[str, Any]:
        return {
            "preview_frames_rendered": self.frames_rendered,
            "preview_render_failures": self.render_failures,
        }
