"""
Pipeline error taxonomy.

Every failure that crosses a stage boundary is one of these types. All of
them are fatal to the run: the pipeline aborts and surfaces exactly one
typed failure to the caller.

Each error carries:
- stage: which stage raised it (constants.STAGE_*)
- kind:  the error class name, for logs and wire payloads

Render callback failures are deliberately absent: preview is best-effort
and never aborts a run.
"""

from __future__ import annotations

from typing import Any

from constants import (
    STAGE_DECODE,
    STAGE_DEMUX,
    STAGE_ENCODE,
    STAGE_MUX,
    STAGE_PIPELINE,
    STAGE_UPLOAD,
)


class PipelineError(Exception):
    """Base class for all fatal pipeline errors."""

    default_stage: str = STAGE_PIPELINE

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage or self.default_stage

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_payload(self) -> dict[str, Any]:
        """Serializable summary for logs and client status messages."""
        return {
            "stage": self.stage,
            "kind": self.kind,
            "message": self.message,
        }

    def __str__(self) -> str:
        return f"[{self.stage}] {self.message}"


class DemuxError(PipelineError):
    """Malformed or unsupported input container."""

    default_stage = STAGE_DEMUX


class UnsupportedConfigurationError(PipelineError):
    """A codec engine rejected a configuration before first use."""


class DecodeError(PipelineError):
    """Decode engine reported a runtime failure."""

    default_stage = STAGE_DECODE


class EncodeError(PipelineError):
    """Encode engine reported a runtime failure."""

    default_stage = STAGE_ENCODE


class MuxError(PipelineError):
    """Container muxer failed to accept a chunk or finalize."""

    default_stage = STAGE_MUX


class UploadError(PipelineError):
    """Segment delivery to the upload collaborator failed."""

    default_stage = STAGE_UPLOAD


class PipelineAborted(PipelineError):
    """The run was cancelled from outside before it completed."""


class FrameReleasedError(RuntimeError):
    """
    A DecodedFrame was used or released after its buffer was returned.

    This is an ownership bug in the caller, not a media failure, so it is
    not a PipelineError.
    """
