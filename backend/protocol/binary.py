# backend/protocol/binary.py
"""
Binary framing helpers for preview transport.

Server → Client (preview frame), little-endian:
    4 bytes  seq_num      (u32)
    8 bytes  timestamp_us (u64)
    2 bytes  width        (u16)
    2 bytes  height       (u16)
    width * height * 3 bytes RGB24, row-major

Usage example:

    payload = encode_preview_frame(
        sequence_num=seq,
        timestamp_us=frame.timestamp_us,
        pixels=frame.pixels,
    )
    await ws.send_bytes(payload)

    # client side
    preview = decode_preview_frame(payload)
    result = check_sequence_gap(last_seq=prev_seq, current_seq=preview.sequence_num)
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from constants import (
    PREVIEW_CHANNELS,
    PREVIEW_DIMENSION_MAX,
    PREVIEW_HEADER_BYTES,
    PREVIEW_SEQ_MAX,
    PREVIEW_SEQ_START,
)

_HEADER = struct.Struct("<IQHH")
assert _HEADER.size == PREVIEW_HEADER_BYTES


# -------------------------
# Exceptions
# -------------------------

class BinaryProtocolError(Exception):
    """Base class for binary protocol errors."""


class InvalidFrameLength(BinaryProtocolError):
    """
    Raised when a preview frame's byte length does not match its header.

    The frame is truncated or oversized and must be dropped.
    """


class InvalidSequenceNumber(BinaryProtocolError):
    """Raised when a sequence number is outside [PREVIEW_SEQ_START, PREVIEW_SEQ_MAX]."""


class InvalidFrameShape(BinaryProtocolError):
    """Raised when pixels are not (height, width, 3) uint8 within u16 dimensions."""


# -------------------------
# Frame type
# -------------------------

@dataclass(frozen=True)
class PreviewFrame:
    """One decoded preview frame as seen by the client."""
    sequence_num: int
    timestamp_us: int
    width: int
    height: int
    rgb: bytes

    def to_array(self) -> NDArray[np.uint8]:
        return np.frombuffer(self.rgb, dtype=np.uint8).reshape(
            self.height, self.width, PREVIEW_CHANNELS
        )


def is_seq_next(prev: int, current: int) -> bool:
    """
    Return True if `current` is the expected next sequence number
    after `prev`, accounting for wraparound.
    """
    if prev == PREVIEW_SEQ_MAX:
        return current == PREVIEW_SEQ_START
    return current == prev + 1


def next_seq(prev: int) -> int:
    return PREVIEW_SEQ_START if prev >= PREVIEW_SEQ_MAX else prev + 1


# -------------------------
# Server → Client
# -------------------------

def encode_preview_frame(
    *,
    sequence_num: int,
    timestamp_us: int,
    pixels: NDArray[np.uint8],
) -> bytes:
    """
    Encode one RGB frame for the preview websocket.

    Negative timestamps (edit-list offsets) are sent as 0.
    """
    if sequence_num < PREVIEW_SEQ_START or sequence_num > PREVIEW_SEQ_MAX:
        raise InvalidSequenceNumber(f"Invalid seq_num: {sequence_num}")

    if pixels.ndim != 3 or pixels.shape[2] != PREVIEW_CHANNELS or pixels.dtype != np.uint8:
        raise InvalidFrameShape(
            f"expected (h, w, {PREVIEW_CHANNELS}) uint8, got {pixels.shape} {pixels.dtype}"
        )

    height, width = int(pixels.shape[0]), int(pixels.shape[1])
    if width > PREVIEW_DIMENSION_MAX or height > PREVIEW_DIMENSION_MAX:
        raise InvalidFrameShape(f"frame {width}x{height} exceeds u16 dimensions")

    header = _HEADER.pack(sequence_num, max(0, timestamp_us), width, height)
    return header + np.ascontiguousarray(pixels).tobytes()


def decode_preview_frame(payload: bytes) -> PreviewFrame:
    """Decode a server→client preview frame."""
    if len(payload) < PREVIEW_HEADER_BYTES:
        raise InvalidFrameLength(
            f"preview frame length {len(payload)} < header {PREVIEW_HEADER_BYTES}"
        )

    seq, timestamp_us, width, height = _HEADER.unpack_from(payload, 0)
    if seq < PREVIEW_SEQ_START:
        raise InvalidSequenceNumber(f"Invalid seq_num: {seq}")

    expected = PREVIEW_HEADER_BYTES + width * height * PREVIEW_CHANNELS
    if len(payload) != expected:
        raise InvalidFrameLength(
            f"preview frame length {len(payload)} != {expected} for {width}x{height}"
        )

    return PreviewFrame(
        sequence_num=seq,
        timestamp_us=timestamp_us,
        width=width,
        height=height,
        rgb=payload[PREVIEW_HEADER_BYTES:],
    )


# -------------------------
# Sequence gap detection
# -------------------------

@dataclass(frozen=True)
class SeqCheckResult:
    """
    Result of a sequence continuity check.
    """
    gap: bool
    expected: int
    actual: int

    @property
    def gap_size(self) -> int:
        """
        Number of frames skipped (0 if no gap).

        Handles wraparound correctly.
        """
        if not self.gap:
            return 0

        if self.actual > self.expected:
            return self.actual - self.expected

        # Wraparound
        return (PREVIEW_SEQ_MAX - self.expected + 1) + (self.actual - PREVIEW_SEQ_START)


def check_sequence_gap(
    *,
    last_seq: Optional[int],
    current_seq: int,
) -> SeqCheckResult:
    """
    Check whether `current_seq` follows `last_seq`.

    Pure function; never raises.
    """
    if last_seq is None or is_seq_next(last_seq, current_seq):
        return SeqCheckResult(gap=False, expected=current_seq, actual=current_seq)

    return SeqCheckResult(
        gap=True,
        expected=next_seq(last_seq),
        actual=current_seq,
    )
