"""
Pipeline runner: wiring, supervision and teardown for one transcode run.

Topology (fixed):

    DemuxSource -> DecodeStage -> EncodeStage -> PreviewTeeStage -> MuxStage -> SegmentedUploadSink

Responsibilities:
- Build one bounded StageChannel per edge and one task per stage
- Supervise the tasks as a single failure domain: the first failure (or an
  abort() request) cancels every other stage
- Tear down exactly once: abort channels (queued frames are released),
  cancel and await stage tasks, close every stage's engine
- Report one PipelineResult on success or raise one typed PipelineError

Non-responsibilities:
- No retries
- No knowledge of codec, container or transport details (collaborators)

Each TranscodePipeline instance is single-use and shares no mutable state
with other instances, so several runs may execute concurrently.
"""

from __future__ import annotations

import asyncio
import os
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from adapters.codec.base import DecoderFactory, EncoderFactory
from adapters.demux.base import ByteSource, Demuxer
from adapters.mux.base import MuxerFactory
from adapters.upload.base import SegmentUploader
from constants import (
    DECODE_REORDER_DEPTH,
    DEFAULT_OUTPUT_EXTENSION,
    DEFAULT_RESOLUTION_LABEL,
    FRAME_POOL_SIZE,
    SEGMENT_FLUSH_THRESHOLD_BYTES,
    STAGE_PIPELINE,
    STAGE_QUEUE_MAX_ITEMS,
)
from media.chunks import EncodedChunk
from media.codec_config import EncoderConfig
from media.errors import PipelineAborted, PipelineError
from media.frames import DecodedFrame, FramePool
from media.segments import ContainerByteRun, base_name_from_filename
from observability.logger import log_event, now_ms
from pipeline.channel import ChannelAborted, StageChannel
from pipeline.decode_stage import DecodeStage
from pipeline.demux_source import DemuxSource
from pipeline.encode_stage import EncodeStage
from pipeline.mux_stage import MuxStage
from pipeline.preview_stage import PreviewTeeStage, RenderCallback
from pipeline.stage import PipelineStage
from pipeline.upload_sink import SegmentReceipt, SegmentedUploadSink


# ---------------------------------------------------------------------
# Inputs / outputs
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class PipelineCollaborators:
    """External services the pipeline is assembled from."""
    demuxer: Demuxer
    decoder_factory: DecoderFactory
    encoder_factory: EncoderFactory
    preview_decoder_factory: DecoderFactory
    muxer_factory: MuxerFactory
    uploader: SegmentUploader


@dataclass(frozen=True)
class PipelineSettings:
    """
    Per-process tuning. None of these are per-call parameters of a stage.
    """
    resolution_label: str = DEFAULT_RESOLUTION_LABEL
    extension: str = DEFAULT_OUTPUT_EXTENSION
    threshold_bytes: int = SEGMENT_FLUSH_THRESHOLD_BYTES
    queue_max_items: int = STAGE_QUEUE_MAX_ITEMS
    frame_pool_size: int = FRAME_POOL_SIZE
    reorder_depth: int = DECODE_REORDER_DEPTH

    def __post_init__(self) -> None:
        if self.threshold_bytes <= 0:
            raise ValueError("threshold_bytes must be > 0")
        if self.queue_max_items <= 0:
            raise ValueError("queue_max_items must be > 0")
        if self.reorder_depth < 0:
            raise ValueError("reorder_depth must be >= 0")
        # The reorder window alone must never exhaust the pool
        if self.frame_pool_size <= self.reorder_depth:
            raise ValueError("frame_pool_size must exceed reorder_depth")


@dataclass(frozen=True)
class PipelineResult:
    """Single completion notification of a successful run."""
    run_id: str
    base_name: str
    segments: tuple[SegmentReceipt, ...]
    counters: dict[str, Any] = field(default_factory=dict)
    duration_ms: int = 0

    @property
    def segment_names(self) -> list[str]:
        return [s.name for s in self.segments]

    @property
    def bytes_uploaded(self) -> int:
        return sum(s.byte_length for s in self.segments)

    def to_payload(self) -> dict[str, Any]:
        # Result fields win over stage counters of the same name
        return {
            **self.counters,
            "status": "done",
            "run_id": self.run_id,
            "base_name": self.base_name,
            "segments": [s.to_payload() for s in self.segments],
            "bytes_uploaded": self.bytes_uploaded,
            "duration_ms": self.duration_ms,
        }


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------

def _release_discarded(item: Any) -> None:
    if isinstance(item, DecodedFrame) and not item.released:
        item.release()


def _source_name(source: ByteSource) -> Optional[str]:
    if isinstance(source, (str, os.PathLike)):
        return os.fspath(source)
    name = getattr(source, "name", None)
    return name if isinstance(name, str) else None


# ---------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------

class TranscodePipeline:
    """
    One transcode run.

    Usage:
        pipeline = TranscodePipeline(
            source="clip.mp4",
            encoder_config=EncoderConfig(),
            render=show_frame,
            collaborators=collaborators,
        )
        result = await pipeline.run()
    """

    def __init__(
        self,
        *,
        source: ByteSource,
        encoder_config: EncoderConfig,
        collaborators: PipelineCollaborators,
        render: Optional[RenderCallback] = None,
        settings: PipelineSettings = PipelineSettings(),
        base_name: Optional[str] = None,
        run_id: Optional[str] = None,
    ) -> None:
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.base_name = base_name or base_name_from_filename(_source_name(source))

        self._source = source
        self._encoder_config = encoder_config
        self._collaborators = collaborators
        self._render = render
        self._settings = settings

        self._started = False
        self._abort_requested = asyncio.Event()
        self._abort_reason = "aborted"

        self._channels: list[StageChannel[Any]] = []
        self._stages: list[PipelineStage] = []

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def abort(self, reason: str = "aborted") -> None:
        """
        Request teardown of a running pipeline.

        run() then raises PipelineAborted. Idempotent.
        """
        if not self._abort_requested.is_set():
            self._abort_reason = reason
            self._abort_requested.set()

    @property
    def stages(self) -> tuple[PipelineStage, ...]:
        return tuple(self._stages)

    @property
    def channels(self) -> tuple[StageChannel[Any], ...]:
        return tuple(self._channels)

    async def run(self) -> PipelineResult:
        """
        Run the pipeline to completion.

        Returns:
            PipelineResult on success.

        Raises:
            PipelineError subclass identifying the failing stage and kind.
            asyncio.CancelledError if the calling task is cancelled (after
            full teardown).
        """
        if self._started:
            raise RuntimeError("TranscodePipeline instances are single-use")
        self._started = True

        started_ns = time.monotonic_ns()
        self._build()

        self._log(
            "pipeline_started",
            base_name=self.base_name,
            **self._encoder_config.log_fields(),
        )

        tasks: dict[asyncio.Task[None], PipelineStage] = {
            asyncio.create_task(
                stage.run(), name=f"transcode:{self.run_id}:{stage.name}"
            ): stage
            for stage in self._stages
        }
        abort_waiter = asyncio.create_task(self._abort_requested.wait())

        try:
            failure = await self._supervise(tasks, abort_waiter)
        except asyncio.CancelledError:
            await self._teardown(tasks, PipelineAborted("run cancelled"))
            raise
        finally:
            abort_waiter.cancel()

        duration_ms = (time.monotonic_ns() - started_ns) // 1_000_000

        if failure is not None:
            await self._teardown(tasks, failure)
            self._log(
                "pipeline_failed",
                level="ERROR",
                duration_ms=duration_ms,
                channels=[c.snapshot() for c in self._channels],
                **failure.to_payload(),
            )
            raise failure

        await self._close_stages()

        result = PipelineResult(
            run_id=self.run_id,
            base_name=self.base_name,
            segments=tuple(self._sink.receipts),
            counters=self._collect_counters(),
            duration_ms=duration_ms,
        )
        self._log(
            "pipeline_completed",
            duration_ms=duration_ms,
            segments=len(result.segments),
            **result.counters,
        )
        return result

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def _build(self) -> None:
        s = self._settings
        c = self._collaborators

        chunks_in: StageChannel[EncodedChunk] = StageChannel(
            name="demux->decode", max_items=s.queue_max_items
        )
        frames: StageChannel[DecodedFrame] = StageChannel(
            name="decode->encode",
            max_items=s.queue_max_items,
            on_discard=_release_discarded,
        )
        encoded: StageChannel[EncodedChunk] = StageChannel(
            name="encode->preview", max_items=s.queue_max_items
        )
        forwarded: StageChannel[EncodedChunk] = StageChannel(
            name="preview->mux", max_items=s.queue_max_items
        )
        container: StageChannel[ContainerByteRun] = StageChannel(
            name="mux->upload", max_items=s.queue_max_items
        )
        self._channels = [chunks_in, frames, encoded, forwarded, container]

        self._sink = SegmentedUploadSink(
            uploader=c.uploader,
            input=container,
            base_name=self.base_name,
            resolution_label=s.resolution_label,
            extension=s.extension,
            threshold_bytes=s.threshold_bytes,
            run_id=self.run_id,
        )
        self._stages = [
            DemuxSource(
                demuxer=c.demuxer,
                source=self._source,
                output=chunks_in,
                run_id=self.run_id,
            ),
            DecodeStage(
                decoder_factory=c.decoder_factory,
                frame_pool=FramePool(capacity=s.frame_pool_size, name="decode"),
                input=chunks_in,
                output=frames,
                run_id=self.run_id,
                reorder_depth=s.reorder_depth,
            ),
            EncodeStage(
                encoder_factory=c.encoder_factory,
                config=self._encoder_config,
                input=frames,
                output=encoded,
                run_id=self.run_id,
            ),
            PreviewTeeStage(
                decoder_factory=c.preview_decoder_factory,
                frame_pool=FramePool(capacity=s.frame_pool_size, name="preview"),
                render=self._render,
                input=encoded,
                output=forwarded,
                run_id=self.run_id,
            ),
            MuxStage(
                muxer_factory=c.muxer_factory,
                target=self._encoder_config,
                input=forwarded,
                output=container,
                run_id=self.run_id,
            ),
            self._sink,
        ]

    # ------------------------------------------------------------------
    # Supervision
    # ------------------------------------------------------------------

    async def _supervise(
        self,
        tasks: dict[asyncio.Task[None], PipelineStage],
        abort_waiter: asyncio.Task[Any],
    ) -> Optional[PipelineError]:
        """
        Wait until every stage finished (returns None) or the first failure
        or abort request (returns the error to surface).
        """
        order = {stage: i for i, stage in enumerate(self._stages)}
        pending: set[asyncio.Task[Any]] = set(tasks) | {abort_waiter}

        while pending - {abort_waiter}:
            done, pending = await asyncio.wait(
                pending, return_when=asyncio.FIRST_COMPLETED
            )

            # A stage failure in the same batch as an abort request is reported
            # as itself
            secondary: Optional[PipelineError] = None
            for task in sorted(done - {abort_waiter}, key=lambda t: order[tasks[t]]):
                stage = tasks[task]
                if task.cancelled():
                    return PipelineAborted(
                        f"stage {stage.name} was cancelled", stage=stage.name
                    )
                exc = task.exception()
                if exc is None:
                    self._log("stage_completed", completed_stage=stage.name)
                    continue
                if isinstance(exc, ChannelAborted):
                    secondary = secondary or _as_pipeline_error(exc, stage)
                    continue
                return _as_pipeline_error(exc, stage)

            if abort_waiter in done:
                return PipelineAborted(self._abort_reason, stage=STAGE_PIPELINE)
            if secondary is not None:
                return secondary

        return None

    async def _teardown(
        self,
        tasks: dict[asyncio.Task[None], PipelineStage],
        reason: BaseException,
    ) -> None:
        discarded = sum(channel.abort(reason) for channel in self._channels)

        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        # Anything put between the first abort and task exit
        discarded += sum(channel.abort(reason) for channel in self._channels)

        await self._close_stages()

        self._log(
            "pipeline_torn_down",
            level="WARNING",
            discarded_items=discarded,
            reason=type(reason).__name__,
        )

    async def _close_stages(self) -> None:
        for stage in self._stages:
            try:
                await stage.aclose()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                self._log(
                    "stage_close_failed",
                    level="ERROR",
                    failed_stage=stage.name,
                    exception=type(exc).__name__,
                    message=str(exc),
                )

    def _collect_counters(self) -> dict[str, Any]:
        counters: dict[str, Any] = {}
        for stage in self._stages:
            counters.update(stage.counters())
        return counters

    def _log(self, event_type: str, **fields: Any) -> None:
        log_event({
            "ts_ms": now_ms(),
            "event_type": event_type,
            "run_id": self.run_id,
            "stage": STAGE_PIPELINE,
            **fields,
        })


def _as_pipeline_error(exc: BaseException, stage: PipelineStage) -> PipelineError:
    if isinstance(exc, PipelineError):
        return exc
    error = PipelineError(
        f"unexpected {type(exc).__name__}: {exc}", stage=stage.name
    )
    error.__cause__ = exc
    return error
