"""
Codec string helpers (pure).

Configurations use WebCodecs-style codec strings ("vp09.00.10.08",
"avc1.42002A", ...). FFmpeg-backed engines need FFmpeg codec names. This
module maps between the two.

No engine access, no IO.
"""

from __future__ import annotations

from typing import Final, Optional, Tuple

# prefix -> (ffmpeg decoder, ffmpeg encoder candidates in preference order)
_CODEC_FAMILIES: Final[Tuple[Tuple[str, str, Tuple[str, ...]], ...]] = (
    ("vp09", "vp9", ("libvpx-vp9",)),
    ("vp9", "vp9", ("libvpx-vp9",)),
    ("vp8", "vp8", ("libvpx",)),
    ("avc1", "h264", ("libx264", "h264")),
    ("avc3", "h264", ("libx264", "h264")),
    ("hvc1", "hevc", ("libx265", "hevc")),
    ("hev1", "hevc", ("libx265", "hevc")),
    ("av01", "av1", ("libaom-av1", "libsvtav1")),
)

# ffmpeg name -> codec string used when the stream gives no better hint
_DEFAULT_CODEC_STRINGS: Final[dict[str, str]] = {
    "vp9": "vp09.00.10.08",
    "vp8": "vp8",
    "h264": "avc1.42E01E",
    "hevc": "hvc1.1.6.L93.B0",
    "av1": "av01.0.04M.08",
}

# Container codec ids accepted by the WebM muxer
WEBM_CODECS: Final[frozenset[str]] = frozenset({"vp8", "vp9", "av1"})


def ffmpeg_decoder_name(codec: str) -> Optional[str]:
    """Return the FFmpeg decoder name for a codec string, or None."""
    prefix = codec.strip().lower().split(".", 1)[0]
    for family_prefix, decoder, _ in _CODEC_FAMILIES:
        if prefix == family_prefix:
            return decoder
    return None


def ffmpeg_encoder_candidates(codec: str) -> Tuple[str, ...]:
    """FFmpeg encoder names able to produce `codec`, best first."""
    prefix = codec.strip().lower().split(".", 1)[0]
    for family_prefix, _, encoders in _CODEC_FAMILIES:
        if prefix == family_prefix:
            return encoders
    return ()


def codec_string_for_stream(ffmpeg_name: str, extradata: bytes = b"") -> Optional[str]:
    """
    Build a codec string for a demuxed stream.

    For H.264 the profile/constraint/level triple is read from an avcC
    record when one is present.
    """
    name = ffmpeg_name.lower()
    if name == "h264" and len(extradata) >= 4 and extradata[0] == 1:
        return "avc1." + extradata[1:4].hex().upper()
    return _DEFAULT_CODEC_STRINGS.get(name)
