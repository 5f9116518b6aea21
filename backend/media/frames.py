"""
Decoded frame primitives.

A DecodedFrame is an exclusively-owned raw image buffer drawn from a finite
FramePool. Ownership rules:
- Exactly one stage holds a frame at a time.
- The holder MUST call release() exactly once when done (or use the frame
  as a context manager, which releases on exit).
- A released frame must not be touched again; doing so raises
  FrameReleasedError.

An unreleased frame keeps consuming its pool's budget. When the budget is
exhausted, FramePool.acquire() suspends the producing decoder until a
downstream consumer releases something: leaks stall the pipeline instead of
growing memory.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np
from numpy.typing import NDArray

from media.errors import FrameReleasedError


@dataclass(eq=False)
class DecodedFrame:
    """
    One decoded picture.

    pixels:
        uint8 array, shape (height, width, 3), RGB.

    timestamp_us / duration_us:
        Presentation timing in microseconds.
    """
    _pixels: NDArray[np.uint8]
    timestamp_us: int
    duration_us: int = 0
    _pool: Optional[FramePool] = field(default=None, repr=False)
    _released: bool = field(default=False, init=False, repr=False)

    @property
    def pixels(self) -> NDArray[np.uint8]:
        if self._released:
            raise FrameReleasedError(
                f"frame at {self.timestamp_us}us used after release"
            )
        return self._pixels

    @property
    def width(self) -> int:
        return int(self._pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self._pixels.shape[0])

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        """
        Return the buffer to its pool.

        Raises FrameReleasedError on a second call.
        """
        if self._released:
            raise FrameReleasedError(
                f"frame at {self.timestamp_us}us released twice"
            )
        self._released = True
        # Drop the array reference so the buffer can be reclaimed
        self._pixels = _EMPTY_PIXELS
        if self._pool is not None:
            self._pool._give_back()  # pylint: disable=protected-access

    def __enter__(self) -> DecodedFrame:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if not self._released:
            self.release()

    def log_fields(self) -> dict[str, Any]:
        return {
            "timestamp_us": self.timestamp_us,
            "width": self.width,
            "height": self.height,
        }


_EMPTY_PIXELS: NDArray[np.uint8] = np.zeros((0, 0, 3), dtype=np.uint8)


class FramePool:
    """
    Finite budget of outstanding decoded frames for one decoder.

    The pool does not recycle memory itself (engines allocate the arrays);
    it bounds how many frames may be alive at once and keeps counters that
    make leaks visible.
    """

    def __init__(self, *, capacity: int, name: str = "frames") -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")

        self.name = name
        self.capacity = capacity
        self._slots = asyncio.Semaphore(capacity)
        self.acquired_total: int = 0
        self.released_total: int = 0

    async def acquire(
        self,
        pixels: NDArray[np.uint8],
        *,
        timestamp_us: int,
        duration_us: int = 0,
    ) -> DecodedFrame:
        """
        Wrap `pixels` in a pool-owned DecodedFrame.

        Suspends while `capacity` frames are outstanding.
        """
        if pixels.ndim != 3 or pixels.shape[2] != 3:
            raise ValueError(
                f"expected (height, width, 3) pixels, got shape {pixels.shape}"
            )
        await self._slots.acquire()
        self.acquired_total += 1
        return DecodedFrame(
            _pixels=pixels,
            timestamp_us=timestamp_us,
            duration_us=duration_us,
            _pool=self,
        )

    def _give_back(self) -> None:
        self.released_total += 1
        self._slots.release()

    @property
    def outstanding(self) -> int:
        return self.acquired_total - self.released_total

    def snapshot(self) -> dict[str, int | str]:
        """Lightweight snapshot for logging."""
        return {
            "pool": self.name,
            "capacity": self.capacity,
            "outstanding": self.outstanding,
            "acquired_total": self.acquired_total,
            "released_total": self.released_total,
        }
