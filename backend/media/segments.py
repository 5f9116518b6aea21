"""
Container byte runs and upload segments.

Pure data containers plus the segment naming rule:

    <base_name>-<resolution_label>.<sequence_number>.<extension>

Sequence numbers start at SEGMENT_SEQ_START (1) and increase by one per
segment. Concatenating every segment's data in sequence order reproduces
the muxed container byte-for-byte.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath, PureWindowsPath
from typing import Any

from constants import DEFAULT_BASE_NAME, SEGMENT_SEQ_MAX, SEGMENT_SEQ_START


@dataclass(frozen=True)
class ContainerByteRun:
    """
    Append-only fragment of the output container.

    position:
        Byte offset of `data` within the container. Observability only;
        consumers append runs in arrival order.
    """
    position: int
    data: bytes

    def __len__(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class UploadSegment:
    """One flushed, independently delivered slice of the container."""
    sequence_number: int
    data: bytes
    name: str

    def __post_init__(self) -> None:
        if not SEGMENT_SEQ_START <= self.sequence_number <= SEGMENT_SEQ_MAX:
            raise ValueError(f"Invalid sequence_number: {self.sequence_number}")

    @property
    def byte_length(self) -> int:
        return len(self.data)

    def log_fields(self) -> dict[str, Any]:
        return {
            "segment_name": self.name,
            "sequence_number": self.sequence_number,
            "segment_bytes": len(self.data),
        }


def segment_name(
    base_name: str,
    resolution_label: str,
    sequence_number: int,
    extension: str,
) -> str:
    """Build the storage name of one upload segment."""
    if sequence_number < SEGMENT_SEQ_START or sequence_number > SEGMENT_SEQ_MAX:
        raise ValueError(f"Invalid sequence_number: {sequence_number}")
    ext = extension.lstrip(".")
    if not ext:
        raise ValueError("extension must be non-empty")
    return f"{base_name}-{resolution_label}.{sequence_number}.{ext}"


def base_name_from_filename(file_name: str | None) -> str:
    """
    Derive the segment base name from an input file name.

    Directory components and the final extension are dropped:
        "uploads/holiday.mp4" -> "holiday"
    """
    if not file_name:
        return DEFAULT_BASE_NAME
    leaf = PureWindowsPath(PurePosixPath(file_name).name).name
    stem = PurePosixPath(leaf).stem
    return stem or DEFAULT_BASE_NAME
