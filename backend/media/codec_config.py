"""
Codec configuration records.

Pure data containers only. Configurations are immutable and travel through
the pipeline as explicit events (config chunks); no stage ever infers one
from payload bytes.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Mapping

from constants import (
    DEFAULT_HARDWARE_ACCELERATION,
    DEFAULT_TARGET_BITRATE,
    DEFAULT_TARGET_CODEC,
    DEFAULT_TARGET_FRAMERATE,
    DEFAULT_TARGET_HEIGHT,
    DEFAULT_TARGET_WIDTH,
)


@dataclass(frozen=True)
class DecoderConfig:
    """
    Everything a decoder needs before it can accept the first data chunk.

    codec:
        WebCodecs-style codec string ("vp09.00.10.08", "avc1.42002A", ...).

    coded_width / coded_height:
        Dimensions of the encoded pictures. 0 means "unknown, take them
        from the bitstream".

    description:
        Codec private data (avcC / hvcC / extradata). Empty when the codec
        carries its parameters in-band.

    extras:
        Engine-specific parameters, passed through untouched.
    """
    codec: str
    coded_width: int = 0
    coded_height: int = 0
    description: bytes = b""
    extras: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.codec:
            raise ValueError("DecoderConfig.codec must be non-empty")
        if self.coded_width < 0 or self.coded_height < 0:
            raise ValueError("DecoderConfig dimensions must be >= 0")

    def log_fields(self) -> dict[str, Any]:
        return {
            "codec": self.codec,
            "coded_width": self.coded_width,
            "coded_height": self.coded_height,
            "description_bytes": len(self.description),
        }


@dataclass(frozen=True)
class EncoderConfig:
    """
    Target of the encode stage: codec, output dimensions and bitrate.

    Dimensions smaller than the source mean the encoder downscales.
    """
    codec: str = DEFAULT_TARGET_CODEC
    width: int = DEFAULT_TARGET_WIDTH
    height: int = DEFAULT_TARGET_HEIGHT
    bitrate: int = DEFAULT_TARGET_BITRATE
    framerate: int = DEFAULT_TARGET_FRAMERATE
    hardware_acceleration: str = DEFAULT_HARDWARE_ACCELERATION
    extras: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.codec:
            raise ValueError("EncoderConfig.codec must be non-empty")
        if self.width <= 0 or self.height <= 0:
            raise ValueError("EncoderConfig dimensions must be > 0")
        if self.bitrate <= 0:
            raise ValueError("EncoderConfig.bitrate must be > 0")
        if self.framerate <= 0:
            raise ValueError("EncoderConfig.framerate must be > 0")

    def with_size(self, width: int, height: int) -> EncoderConfig:
        return replace(self, width=width, height=height)

    def log_fields(self) -> dict[str, Any]:
        return {
            "codec": self.codec,
            "width": self.width,
            "height": self.height,
            "bitrate": self.bitrate,
            "framerate": self.framerate,
            "hardware_acceleration": self.hardware_acceleration,
        }
