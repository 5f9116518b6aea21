"""
Structured logging for pipeline runs.

Each event becomes one JSON line on stdout, written and flushed
immediately so a crashed run still leaves its last events behind.

Every event is a flat dict carrying at least "event_type". An optional
"level" key ("DEBUG" | "INFO" | "WARNING" | "ERROR") is compared against
the configured minimum level; events without one are INFO.
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Mapping, Callable


_LEVELS: dict[str, int] = {
    "DEBUG": 10,
    "INFO": 20,
    "WARNING": 30,
    "ERROR": 40,
}

_min_level: int = _LEVELS["INFO"]


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print


def configure(*, level: str = "INFO") -> None:
    """
    Set the minimum level that reaches the sink.

    Unknown level names fall back to INFO.
    """
    global _min_level  # pylint: disable=global-statement
    _min_level = _LEVELS.get(level.upper(), _LEVELS["INFO"])


def now_ms() -> int:
    """Wall-clock timestamp for event correlation."""
    return time.time_ns() // 1_000_000


def log_event(event: Mapping[str, Any]) -> None:
    """
    Emit one event.

    Events below the configured level are dropped. "ts_ms" is filled in
    when the caller left it out. An event that cannot be serialized is
    replaced by a LOGGER_SERIALIZATION_ERROR line; this function does not
    raise.
    """
    level = _LEVELS.get(str(event.get("level", "INFO")).upper(), _LEVELS["INFO"])
    if level < _min_level:
        return

    payload = dict(event)
    payload.setdefault("ts_ms", now_ms())

    try:
        line = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        # Logging must never crash a pipeline run
        fallback: dict[str, Any] = {
            "ts_ms": payload.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)
