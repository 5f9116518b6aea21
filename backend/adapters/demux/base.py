"""
Demuxer contract.

This module defines the *interface only*. Parsing a specific container
format is the implementation's business.

Key invariants:
- on_config(cfg) is awaited before any on_chunk() that depends on cfg.
- on_chunk() receives DATA chunks in container order.
- Both callbacks are awaited: a slow pipeline suspends the demuxer.
- Malformed input ends run() with an exception; the demux stage turns it
  into DemuxError.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from typing import Awaitable, BinaryIO, Callable, Union

from media.chunks import EncodedChunk
from media.codec_config import DecoderConfig


ByteSource = Union[str, "os.PathLike[str]", BinaryIO]

ConfigSink = Callable[[DecoderConfig], Awaitable[None]]
ChunkSink = Callable[[EncodedChunk], Awaitable[None]]


class Demuxer(ABC):
    """
    Abstract interface for a container demuxer.

    Implementations are responsible for:
    - Reading one byte source exactly once (not restartable)
    - Emitting the video track configuration and its DATA chunks

    Non-responsibilities:
    - No decoding
    - No validation of codec support (decode stage does that)
    """

    @abstractmethod
    async def run(
        self,
        source: ByteSource,
        *,
        on_config: ConfigSink,
        on_chunk: ChunkSink,
    ) -> None:
        """
        Demux `source` to completion.

        Returns when the last chunk has been delivered.
        """
        raise NotImplementedError
