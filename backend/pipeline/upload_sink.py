"""
Segmented upload sink.

State machine per run:

    ACCUMULATING --(bytes > threshold)--> FLUSHING --(uploaded)--> ACCUMULATING
    ACCUMULATING --(input closed, residual > 0)--> FINAL_FLUSH --> CLOSED
    ACCUMULATING --(input closed, residual == 0)--> CLOSED

Rules:
- A flush fires iff the accumulated byte count STRICTLY exceeds the
  threshold right after a write.
- The accumulator is emptied the moment a segment is dispatched; the
  upload is awaited before the next write is accepted, so at most one
  segment is in flight and memory stays bounded.
- Sequence numbers start at 1 and increase by one per segment.
- Exactly one final flush on close iff residual bytes remain.
- Upload failures are fatal (UploadError); no retry here.

All mutable accumulation state lives in a SegmentAccumulator owned by one
sink instance, i.e. one pipeline run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from adapters.upload.base import SegmentUploader
from constants import (
    DEFAULT_OUTPUT_EXTENSION,
    DEFAULT_RESOLUTION_LABEL,
    SEGMENT_FLUSH_THRESHOLD_BYTES,
    SEGMENT_SEQ_START,
    STAGE_UPLOAD,
)
from media.errors import UploadError
from media.segments import ContainerByteRun, UploadSegment, segment_name
from observability.metrics import timed
from pipeline.channel import StageChannel
from pipeline.stage import PipelineStage, guarded


class SinkState(str, Enum):
    """Upload sink lifecycle."""
    ACCUMULATING = "accumulating"
    FLUSHING = "flushing"
    FINAL_FLUSH = "final_flush"
    CLOSED = "closed"


@dataclass
class SegmentAccumulator:
    """
    Run-scoped byte accumulator.

    Holds the parts of the segment being built; take() hands them over as
    one bytes object and resets the accumulator.
    """
    parts: list[bytes] = field(default_factory=list)
    byte_count: int = 0

    def append(self, data: bytes) -> None:
        if not data:
            return
        self.parts.append(data)
        self.byte_count += len(data)

    def take(self) -> bytes:
        data = b"".join(self.parts)
        self.parts.clear()
        self.byte_count = 0
        return data


@dataclass(frozen=True)
class SegmentReceipt:
    """What the caller learns about one delivered segment."""
    sequence_number: int
    name: str
    byte_length: int
    final: bool

    def to_payload(self) -> dict[str, Any]:
        return {
            "sequence_number": self.sequence_number,
            "name": self.name,
            "bytes": self.byte_length,
            "final": self.final,
        }


class SegmentedUploadSink(PipelineStage):
    """Container bytes in, uploaded segments out."""

    name = STAGE_UPLOAD

    def __init__(
        self,
        *,
        uploader: SegmentUploader,
        input: StageChannel[ContainerByteRun],  # pylint: disable=redefined-builtin
        base_name: str,
        run_id: str,
        resolution_label: str = DEFAULT_RESOLUTION_LABEL,
        extension: str = DEFAULT_OUTPUT_EXTENSION,
        threshold_bytes: int = SEGMENT_FLUSH_THRESHOLD_BYTES,
    ) -> None:
        super().__init__(run_id=run_id)
        if threshold_bytes <= 0:
            raise ValueError("threshold_bytes must be > 0")

        self._uploader = uploader
        self._input = input
        self._base_name = base_name
        self._resolution_label = resolution_label
        self._extension = extension
        self._threshold = threshold_bytes

        self._accumulator = SegmentAccumulator()
        self._next_sequence = SEGMENT_SEQ_START
        self.state = SinkState.ACCUMULATING

        self.receipts: list[SegmentReceipt] = []
        self.bytes_in = 0

    # ------------------------------------------------------------------
    # Stage driver
    # ------------------------------------------------------------------

    async def run(self) -> None:
        async for byte_run in self._input:
            await self.write(byte_run.data)
        await self.close()

        self._log(
            "upload_completed",
            segments=len(self.receipts),
            uploaded_bytes=self.bytes_in,
        )

    # ------------------------------------------------------------------
    # Sink operations
    # ------------------------------------------------------------------

    async def write(self, data: bytes) -> None:
        """
        Accumulate `data`; flush (and await the upload) once the
        accumulated count exceeds the threshold.
        """
        if self.state is SinkState.CLOSED:
            raise RuntimeError("write() after close()")

        self._accumulator.append(data)
        self.bytes_in += len(data)

        if self._accumulator.byte_count > self._threshold:
            await self._flush(final=False)

    async def close(self) -> None:
        """Issue the final flush iff residual bytes remain. Idempotent."""
        if self.state is SinkState.CLOSED:
            return
        if self._accumulator.byte_count > 0:
            await self._flush(final=True)
        self.state = SinkState.CLOSED

    async def _flush(self, *, final: bool) -> None:
        sequence_number = self._next_sequence
        self._next_sequence += 1

        segment = UploadSegment(
            sequence_number=sequence_number,
            data=self._accumulator.take(),
            name=segment_name(
                self._base_name,
                self._resolution_label,
                sequence_number,
                self._extension,
            ),
        )

        self.state = SinkState.FINAL_FLUSH if final else SinkState.FLUSHING
        self._log("segment_flush_started", final=final, **segment.log_fields())

        with timed(
            "segment_upload",
            run_id=self.run_id,
            stage=self.name,
            details=segment.log_fields(),
        ):
            await guarded(
                self._uploader.upload_segment(segment.name, segment.data),
                wrap=lambda msg: UploadError(msg, stage=self.name),
                what=f"upload of {segment.name}",
            )

        self.receipts.append(
            SegmentReceipt(
                sequence_number=segment.sequence_number,
                name=segment.name,
                byte_length=segment.byte_length,
                final=final,
            )
        )
        if not final:
            self.state = SinkState.ACCUMULATING

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def pending_bytes(self) -> int:
        return self._accumulator.byte_count

    def counters(self) -> dict[str, Any]:
        return {
            "segments_uploaded": len(self.receipts),
            "bytes_received": self.bytes_in,
        }
