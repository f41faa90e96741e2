"""
In-process telemetry helpers for the cache and Gmail layers.

Nothing is shipped externally; events go to the log and counters/latencies
stay in memory so tests can assert instrumentation.
"""

from __future__ import annotations

import contextlib
import logging
import time
from collections.abc import Iterator
from hashlib import sha256
from typing import Any

logger = logging.getLogger("inboxq.telemetry")

_COUNTERS: dict[str, int] = {}
_LATENCIES: dict[str, list[float]] = {}


def hash_identifier(value: str | None) -> str:
    """Short stable hash for owner/message ids in telemetry fields."""
    return sha256(str(value or "").encode("utf-8")).hexdigest()[:12]


def log_event(event_name: str, **fields: Any) -> None:
    """
    Structured log event. Caller must hash owner and message ids first.

    Side Effects:
        - Writes to logger (info level)
    """
    logger.info("event=%s %s", event_name, fields)


def counter(name: str, increment: int = 1) -> int:
    """
    Increment an in-memory counter and emit a debug log.

    Side Effects:
        - Modifies _COUNTERS dict (in-memory state)
    """
    value = _COUNTERS.get(name, 0) + increment
    _COUNTERS[name] = value
    logger.debug("counter=%s value=%s", name, value)
    return value


@contextlib.contextmanager
def time_block(metric_name: str) -> Iterator[None]:
    """Record wall time of the wrapped block under ``metric_name``."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        logger.debug("timing=%s seconds=%.6f", metric_name, elapsed)
        _LATENCIES.setdefault(metric_name, []).append(elapsed)


def get_latency_stats(metric_name: str) -> dict[str, float]:
    samples = sorted(_LATENCIES.get(metric_name, []))
    if not samples:
        return {"count": 0, "min": 0.0, "max": 0.0, "avg": 0.0, "p95": 0.0}

    count = len(samples)
    return {
        "count": count,
        "min": samples[0],
        "max": samples[-1],
        "avg": sum(samples) / count,
        "p95": samples[min(int(count * 0.95), count - 1)],
    }


def reset_telemetry() -> None:
    """Clear counters and latencies (used by tests)."""
    _COUNTERS.clear()
    _LATENCIES.clear()
