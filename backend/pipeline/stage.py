"""
Pipeline stage base class.

Every stage:
- runs as exactly one asyncio task, driven by run()
- reads from at most one StageChannel and writes to at most one
- owns its engine / collaborator resources and releases them in aclose()

aclose() is called by the runner exactly once per stage, after run() has
finished or been cancelled, on both the success and the abort path.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, TypeVar

from media.errors import PipelineError
from observability.logger import log_event, now_ms
from pipeline.channel import ChannelAborted

R = TypeVar("R")

ErrorWrapper = Callable[[str], PipelineError]


class PipelineStage(ABC):
    """Abstract pipeline stage."""

    name: str = "stage"

    def __init__(self, *, run_id: str) -> None:
        self.run_id = run_id
        self._closed = False

    @abstractmethod
    async def run(self) -> None:
        """Process input until end-of-stream, then close the output."""
        raise NotImplementedError

    async def aclose(self) -> None:
        """Release stage resources. Runs its body at most once."""
        if self._closed:
            return
        self._closed = True
        await self._release_resources()

    async def _release_resources(self) -> None:
        return None

    @property
    def closed(self) -> bool:
        return self._closed

    def counters(self) -> dict[str, Any]:
        """Stage-specific counters for logs and PipelineResult."""
        return {}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _log(self, event_type: str, **fields: Any) -> None:
        log_event({
            "ts_ms": now_ms(),
            "event_type": event_type,
            "run_id": self.run_id,
            "stage": self.name,
            **fields,
        })


async def guarded(
    call: Awaitable[R],
    *,
    wrap: ErrorWrapper,
    what: str,
) -> R:
    """
    Await a collaborator call, mapping foreign exceptions to a PipelineError.

    PipelineErrors and ChannelAborted pass through untouched, so an error
    raised by our own output callback inside an engine keeps its type.
    Cancellation is never intercepted.
    """
    try:
        return await call
    except (PipelineError, ChannelAborted):
        raise
    except Exception as exc:  # pylint: disable=broad-exception-caught
        raise wrap(f"{what} failed: {type(exc).__name__}: {exc}") from exc
