# pylint: disable=missing-module-docstring,missing-function-docstring

import numpy as np
import pytest

from constants import PREVIEW_HEADER_BYTES, PREVIEW_SEQ_MAX, PREVIEW_SEQ_START
from protocol.binary import (
    InvalidFrameLength,
    InvalidFrameShape,
    InvalidSequenceNumber,
    check_sequence_gap,
    decode_preview_frame,
    encode_preview_frame,
    next_seq,
)


def make_pixels(width: int = 4, height: int = 2) -> np.ndarray:
    return np.arange(width * height * 3, dtype=np.uint8).reshape(height, width, 3)


# ---------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------

def test_encode_then_decode_preserves_header_and_pixels():
    pixels = make_pixels()
    payload = encode_preview_frame(sequence_num=7, timestamp_us=1_000_000, pixels=pixels)

    assert len(payload) == PREVIEW_HEADER_BYTES + 4 * 2 * 3

    frame = decode_preview_frame(payload)
    assert (frame.sequence_num, frame.timestamp_us) == (7, 1_000_000)
    assert (frame.width, frame.height) == (4, 2)
    assert np.array_equal(frame.to_array(), pixels)


def test_negative_timestamp_is_sent_as_zero():
    payload = encode_preview_frame(sequence_num=1, timestamp_us=-40_000, pixels=make_pixels())

    assert decode_preview_frame(payload).timestamp_us == 0


def test_encode_rejects_invalid_seq():
    with pytest.raises(InvalidSequenceNumber):
        encode_preview_frame(sequence_num=0, timestamp_us=0, pixels=make_pixels())
    with pytest.raises(InvalidSequenceNumber):
        encode_preview_frame(sequence_num=PREVIEW_SEQ_MAX + 1, timestamp_us=0, pixels=make_pixels())


def test_encode_rejects_non_rgb_pixels():
    with pytest.raises(InvalidFrameShape):
        encode_preview_frame(
            sequence_num=1, timestamp_us=0, pixels=np.zeros((2, 2, 4), dtype=np.uint8)
        )
    with pytest.raises(InvalidFrameShape):
        encode_preview_frame(
            sequence_num=1, timestamp_us=0, pixels=np.zeros((2, 2, 3), dtype=np.float32)
        )


# ---------------------------------------------------------------------
# Invalid frame lengths
# ---------------------------------------------------------------------

def test_decode_rejects_short_header():
    with pytest.raises(InvalidFrameLength):
        decode_preview_frame(b"\x01\x00\x00")


def test_decode_rejects_truncated_pixels():
    payload = encode_preview_frame(sequence_num=1, timestamp_us=0, pixels=make_pixels())

    with pytest.raises(InvalidFrameLength):
        decode_preview_frame(payload[:-1])


def test_decode_rejects_oversized_frame():
    payload = encode_preview_frame(sequence_num=1, timestamp_us=0, pixels=make_pixels())

    with pytest.raises(InvalidFrameLength):
        decode_preview_frame(payload + b"\x00")


def test_decode_rejects_seq_zero():
    payload = encode_preview_frame(sequence_num=1, timestamp_us=0, pixels=make_pixels())
    payload = (0).to_bytes(4, "little") + payload[4:]

    with pytest.raises(InvalidSequenceNumber):
        decode_preview_frame(payload)


# ---------------------------------------------------------------------
# Sequence gap detection
# ---------------------------------------------------------------------

def test_sequence_gap_detected():
    result = check_sequence_gap(last_seq=5, current_seq=8)

    assert result.gap is True
    assert result.expected == 6
    assert result.actual == 8
    assert result.gap_size == 2


def test_sequence_no_gap():
    result = check_sequence_gap(last_seq=5, current_seq=6)

    assert result.gap is False
    assert result.gap_size == 0


def test_first_frame_never_a_gap():
    assert check_sequence_gap(last_seq=None, current_seq=99).gap is False


# ---------------------------------------------------------------------
# Wraparound handling
# ---------------------------------------------------------------------

def test_next_seq_wraps_to_start():
    assert next_seq(PREVIEW_SEQ_MAX) == PREVIEW_SEQ_START
    assert next_seq(0) == PREVIEW_SEQ_START


def test_sequence_wraparound_no_gap():
    result = check_sequence_gap(last_seq=PREVIEW_SEQ_MAX, current_seq=PREVIEW_SEQ_START)

    assert result.gap is False


def test_sequence_wraparound_gap():
    result = check_sequence_gap(last_seq=PREVIEW_SEQ_MAX - 2, current_seq=1)

    assert result.gap is True
    assert result.gap_size == 2
