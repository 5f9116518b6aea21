"""
Container muxer contract.

This module defines the *interface only*. The binary layout is the
implementation's business; the pipeline only relies on ordering and
completeness:
- output is delivered as append-only ContainerByteRuns via an awaited
  async callback, in container order
- every DATA chunk accepted by add_chunk() is reflected in the output by
  the time finalize() returns
- finalize() flushes any buffered trailer / index bytes
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable

from media.chunks import EncodedChunk
from media.codec_config import DecoderConfig, EncoderConfig
from media.segments import ContainerByteRun


ByteRunSink = Callable[[ContainerByteRun], Awaitable[None]]


@dataclass(frozen=True)
class MuxerBindings:
    """Output callback plus the target the container is written for."""
    on_output: ByteRunSink
    target: EncoderConfig


class ContainerMuxer(ABC):
    """
    Abstract interface for an incremental container muxer.

    Non-responsibilities:
    - No byte accumulation for upload (the upload sink owns that)
    - No seeking back into already emitted output
    """

    @abstractmethod
    async def configure_track(self, config: DecoderConfig) -> None:
        """
        Describe the video track. Called for every CONFIG chunk; the first
        call happens before the first add_chunk().
        """
        raise NotImplementedError

    @abstractmethod
    async def add_chunk(self, chunk: EncodedChunk) -> None:
        """Append one DATA chunk."""
        raise NotImplementedError

    @abstractmethod
    async def finalize(self) -> None:
        """Emit all remaining container bytes."""
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """Release resources without finalizing. Idempotent."""
        raise NotImplementedError


MuxerFactory = Callable[[MuxerBindings], ContainerMuxer]
