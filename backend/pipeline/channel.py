"""
Bounded single-producer / single-consumer channels between pipeline stages.

Rules:
- Strict FIFO
- Bounded: put() suspends while the channel holds max_items items
  (this is how a slow upload throttles the demuxer)
- close(): producer is done; the consumer drains what is left, then sees
  end-of-stream
- abort(): the run is being torn down; queued items are discarded through
  the on_discard hook (frames get released there) and every blocked or
  later put()/get() raises ChannelAborted

Deterministic, single event loop. No threads.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Deque, Generic, Optional, TypeVar

T = TypeVar("T")


class ChannelClosed(Exception):
    """put() was called after close()."""


class ChannelAborted(Exception):
    """The channel was aborted; the run is being torn down."""


@dataclass
class ChannelCounters:
    """
    Counters for observability.
    """
    items_total: int = 0
    put_waits: int = 0
    discarded: int = 0
    max_depth_seen: int = 0


class StageChannel(Generic[T]):
    """
    Bounded FIFO connecting exactly one producer stage to one consumer stage.
    """

    def __init__(
        self,
        *,
        name: str,
        max_items: int,
        on_discard: Optional[Callable[[T], None]] = None,
    ) -> None:
        if max_items <= 0:
            raise ValueError("max_items must be > 0")

        self.name = name
        self._max_items = max_items
        self._items: Deque[T] = deque()
        self._on_discard = on_discard

        self._not_empty = asyncio.Event()
        self._not_full = asyncio.Event()
        self._not_full.set()

        self._closed = False
        self._abort_reason: Optional[BaseException] = None

        self.counters = ChannelCounters()

    # -------------------------
    # Producer side
    # -------------------------

    async def put(self, item: T) -> None:
        """
        Append one item, suspending while the channel is full.

        Raises:
            ChannelAborted if the channel is (or becomes) aborted; the item
            is discarded first.
            ChannelClosed if called after close().
        """
        waited = False
        try:
            while (
                len(self._items) >= self._max_items
                and not self._closed
                and self._abort_reason is None
            ):
                if not waited:
                    self.counters.put_waits += 1
                    waited = True
                self._not_full.clear()
                await self._not_full.wait()
        except asyncio.CancelledError:
            # The producer is being torn down; the item has no owner left
            self._discard(item)
            raise

        if self._abort_reason is not None:
            self._discard(item)
            raise ChannelAborted(self.name) from self._abort_reason
        if self._closed:
            raise ChannelClosed(self.name)

        self._items.append(item)
        self.counters.items_total += 1
        self.counters.max_depth_seen = max(self.counters.max_depth_seen, len(self._items))
        self._not_empty.set()

    def close(self) -> None:
        """
        Mark end-of-stream. Idempotent.

        Items already queued remain available to the consumer.
        """
        self._closed = True
        self._not_empty.set()
        self._not_full.set()

    # -------------------------
    # Consumer side
    # -------------------------

    async def get(self) -> Optional[T]:
        """
        Remove the oldest item.

        Returns None once the channel is closed and fully drained.
        Raises ChannelAborted if the channel was aborted.
        """
        while not self._items and not self._closed and self._abort_reason is None:
            self._not_empty.clear()
            await self._not_empty.wait()

        if self._abort_reason is not None:
            raise ChannelAborted(self.name) from self._abort_reason

        if not self._items:
            return None

        item = self._items.popleft()
        self._not_full.set()
        return item

    def __aiter__(self) -> AsyncIterator[T]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[T]:
        while True:
            item = await self.get()
            if item is None:
                return
            yield item

    # -------------------------
    # Teardown
    # -------------------------

    def abort(self, reason: BaseException) -> int:
        """
        Discard everything queued and wake both sides. Idempotent.

        Returns the number of items discarded by this call.
        """
        if self._abort_reason is None:
            self._abort_reason = reason

        dropped = 0
        while self._items:
            self._discard(self._items.popleft())
            dropped += 1

        self._not_empty.set()
        self._not_full.set()
        return dropped

    def _discard(self, item: T) -> None:
        self.counters.discarded += 1
        if self._on_discard is not None:
            self._on_discard(item)

    # -------------------------
    # Introspection helpers
    # -------------------------

    def __len__(self) -> int:
        return len(self._items)

    @property
    def max_items(self) -> int:
        return self._max_items

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def aborted(self) -> bool:
        return self._abort_reason is not None

    def snapshot(self) -> dict[str, int | str | bool]:
        """
        Lightweight snapshot for logging / metrics.
        """
        return {
            "channel": self.name,
            "depth": len(self._items),
            "max_items": self._max_items,
            "items_total": self.counters.items_total,
            "put_waits": self.counters.put_waits,
            "discarded": self.counters.discarded,
            "max_depth_seen": self.counters.max_depth_seen,
            "closed": self._closed,
            "aborted": self.aborted,
        }
