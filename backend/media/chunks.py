"""
Encoded chunk primitives.

A chunk is either:
- CONFIG: no payload; announces the decoder configuration that the
  following DATA chunks require.
- DATA:   one encoded access unit.

Ordering contract: a CONFIG chunk always precedes the first DATA chunk that
depends on it. Stages never reorder chunks; the encode stage is the only
one allowed to insert a CONFIG chunk.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from media.codec_config import DecoderConfig


class ChunkKind(str, Enum):
    """Discriminator for EncodedChunk."""
    CONFIG = "config"
    DATA = "data"


@dataclass(frozen=True)
class EncodedChunk:
    """
    Unit of encoded media flowing between demux, decode, encode, preview
    and mux.

    timestamp_us:
        Presentation timestamp in microseconds.

    duration_us:
        Presentation duration in microseconds (0 when unknown).

    is_key:
        True when the chunk can be decoded without earlier DATA chunks.
    """
    kind: ChunkKind
    timestamp_us: int
    payload: bytes = b""
    decoder_config: Optional[DecoderConfig] = None
    duration_us: int = 0
    is_key: bool = False

    def __post_init__(self) -> None:
        if self.kind is ChunkKind.CONFIG:
            if self.decoder_config is None:
                raise ValueError("config chunk requires a decoder_config")
            if self.payload:
                raise ValueError("config chunk must not carry payload bytes")
        else:
            if self.decoder_config is not None:
                raise ValueError("data chunk must not carry a decoder_config")
        if self.duration_us < 0:
            raise ValueError("duration_us must be >= 0")

    # -------------------------
    # Constructors
    # -------------------------

    @classmethod
    def config(cls, decoder_config: DecoderConfig, *, timestamp_us: int = 0) -> EncodedChunk:
        return cls(
            kind=ChunkKind.CONFIG,
            timestamp_us=timestamp_us,
            decoder_config=decoder_config,
        )

    @classmethod
    def data(
        cls,
        payload: bytes,
        *,
        timestamp_us: int,
        duration_us: int = 0,
        is_key: bool = False,
    ) -> EncodedChunk:
        return cls(
            kind=ChunkKind.DATA,
            timestamp_us=timestamp_us,
            payload=bytes(payload),
            duration_us=duration_us,
            is_key=is_key,
        )

    # -------------------------
    # Introspection
    # -------------------------

    @property
    def is_config(self) -> bool:
        return self.kind is ChunkKind.CONFIG

    @property
    def byte_length(self) -> int:
        return len(self.payload)

    def log_fields(self) -> dict[str, Any]:
        return {
            "chunk_kind": self.kind.value,
            "timestamp_us": self.timestamp_us,
            "payload_bytes": len(self.payload),
            "is_key": self.is_key,
        }
