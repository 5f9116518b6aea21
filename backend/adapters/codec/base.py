"""
Codec engine contracts.

This module defines the *interface only*: no ordering policy, no frame
release, no retries or pipeline decisions live here.

Key invariants:
- Engines deliver output through an injected async callback and await it,
  so a full downstream channel suspends the engine (backpressure).
- Engines report asynchronous failures through the injected error
  callback, or by raising from the call in progress. The owning stage maps
  both to DecodeError / EncodeError.
- close() releases engine resources and MUST be idempotent; the owning
  stage calls it exactly once per run, on success and on abort.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from media.chunks import EncodedChunk
from media.codec_config import DecoderConfig, EncoderConfig
from media.frames import DecodedFrame, FramePool


FrameSink = Callable[[DecodedFrame], Awaitable[None]]
ErrorSink = Callable[[BaseException], None]


@dataclass(frozen=True)
class EncodedOutput:
    """
    One encoded access unit as reported by an encoder.

    decoder_config:
        Set when this unit starts a new configuration epoch (first output,
        keyframe after a parameter change, ...). Downstream decoders must be
        configured with it before decoding this unit.
    """
    payload: bytes
    timestamp_us: int
    duration_us: int = 0
    is_key: bool = False
    decoder_config: Optional[DecoderConfig] = None


EncodedOutputSink = Callable[[EncodedOutput], Awaitable[None]]


@dataclass(frozen=True)
class DecoderBindings:
    """Callbacks and budgets a decoder engine is constructed with."""
    frame_pool: FramePool
    on_output: FrameSink
    on_error: ErrorSink


@dataclass(frozen=True)
class EncoderBindings:
    """Callbacks an encoder engine is constructed with."""
    on_output: EncodedOutputSink
    on_error: ErrorSink


class VideoDecoderEngine(ABC):
    """
    Abstract interface for a video decoder engine.

    Implementations are responsible for:
    - Reporting whether a DecoderConfig is supported
    - Decoding DATA chunks into DecodedFrames drawn from the bound FramePool
    - Delivering frames via on_output, in presentation order where the
      engine can guarantee it

    Non-responsibilities:
    - No frame release (consumers own delivered frames)
    - No channel or pipeline knowledge
    """

    @abstractmethod
    async def is_config_supported(self, config: DecoderConfig) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def configure(self, config: DecoderConfig) -> None:
        """
        (Re)configure the engine.

        Frames still buffered for the previous configuration are delivered
        before the new configuration takes effect.
        """
        raise NotImplementedError

    @abstractmethod
    async def decode(self, chunk: EncodedChunk) -> None:
        """
        Feed one DATA chunk. Zero or more frames may be delivered, now or
        during later calls.
        """
        raise NotImplementedError

    @abstractmethod
    async def flush(self) -> None:
        """Deliver every frame still held by the engine."""
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """Release engine resources. Idempotent."""
        raise NotImplementedError


class VideoEncoderEngine(ABC):
    """
    Abstract interface for a video encoder engine.

    Implementations are responsible for:
    - Reporting whether an EncoderConfig is supported
    - Scaling frames to the configured dimensions
    - Delivering EncodedOutputs via on_output, attaching decoder_config at
      the start of every configuration epoch

    Non-responsibilities:
    - No frame release (the encode stage releases after each call)
    - No synthetic config chunks (the encode stage builds those)
    """

    @abstractmethod
    async def is_config_supported(self, config: EncoderConfig) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def configure(self, config: EncoderConfig) -> None:
        raise NotImplementedError

    @abstractmethod
    async def encode(self, frame: DecodedFrame) -> None:
        """
        Encode one frame.

        Contract:
        - The engine MUST NOT keep a reference to frame.pixels after
          returning; the caller releases the frame immediately.
        """
        raise NotImplementedError

    @abstractmethod
    async def flush(self) -> None:
        """Deliver every unit still held by the engine."""
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """Release engine resources. Idempotent."""
        raise NotImplementedError


DecoderFactory = Callable[[DecoderBindings], VideoDecoderEngine]
EncoderFactory = Callable[[EncoderBindings], VideoEncoderEngine]
