"""
Stage and upload timers.

A StageTimer measures one span (a segment upload, a demux pass) on the
monotonic clock and reports it as a single METRIC_TIMER log event. Nothing
is aggregated in process; dashboards sum the events.

Timers are plain objects owned by the caller. There is no module-level
registry, so concurrent pipeline runs never share timer state.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator

from observability.logger import log_event, now_ms


@dataclass
class StageTimer:
    """
    One running measurement.

    stop() is idempotent: the metric is emitted on the first call only.
    """
    name: str
    run_id: str | None = None
    stage: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    _start_ns: int = field(default_factory=time.monotonic_ns, init=False, repr=False)
    _stopped: bool = field(default=False, init=False, repr=False)

    def stop(self, *, outcome: str = "ok") -> int | None:
        """
        Stop the timer and emit a METRIC_TIMER event.

        Returns:
            duration_ms on the first call, else None
        """
        if self._stopped:
            return None
        self._stopped = True

        duration_ms = (time.monotonic_ns() - self._start_ns) // 1_000_000

        log_event({
            "ts_ms": now_ms(),
            "event_type": "METRIC_TIMER",
            "metric": self.name,
            "value_ms": duration_ms,
            "run_id": self.run_id,
            "stage": self.stage,
            "outcome": outcome,
            "details": self.details,
        })

        return duration_ms


def start_timer(
    name: str,
    *,
    run_id: str | None = None,
    stage: str | None = None,
    details: dict[str, Any] | None = None,
) -> StageTimer:
    """Start a StageTimer. The caller stops it, normally from a finally block."""
    return StageTimer(name=name, run_id=run_id, stage=stage, details=details or {})


@contextmanager
def timed(
    name: str,
    *,
    run_id: str | None = None,
    stage: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[StageTimer]:
    """
    Time the enclosed block.

    The metric is emitted once when the block exits. An exception
    propagates unchanged and the metric carries outcome="error".

    Usage:
        with timed("segment_upload", run_id=run_id, stage="upload"):
            await uploader.upload_segment(name, data)
    """
    timer = start_timer(name, run_id=run_id, stage=stage, details=details)
    try:
        yield timer
    except BaseException:
        timer.stop(outcome="error")
        raise
    finally:
        timer.stop()
