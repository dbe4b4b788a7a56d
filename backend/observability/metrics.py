"""
Metrics and timing helpers for observability.

Responsibilities:
- Measure gateway call durations using monotonic time
- Emit metrics as JSONL events via observability.logger
- Never aggregate: one metric = one log event
- Provide a context manager so timers cannot leak

Design notes:
- Durations use monotonic time for correctness
- Event timestamps (ts_ms) use wall-clock time for human readability
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event


@contextmanager
def timed(
    name: str,
    *,
    store_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[dict[str, Any]]:
    """
    Measure the duration of the enclosed block.

    Guarantees:
    - Metric is emitted exactly once, also when the block raises
    - Exceptions inside the block are NOT suppressed
    - The yielded dict may be filled in by the caller and is merged
      into the metric's details (e.g. the gateway status observed)

    Usage:
        with timed("gateway_check_status", store_id=store_id) as extra:
            status = await gateway.check_status(...)
            extra["status"] = status
    """
    extra: dict[str, Any] = {}
    start_ns = time.monotonic_ns()
    outcome = "ok"
    try:
        yield extra
    except BaseException as exc:
        outcome = type(exc).__name__
        raise
    finally:
        duration_ms = (time.monotonic_ns() - start_ns) // 1_000_000
        log_event({
            # Wall-clock timestamp for log correlation / readability
            "ts_ms": int(time.time() * 1000),
            "event_type": "METRIC_TIMER",
            "level": "debug",
            "metric": name,
            "value_ms": duration_ms,
            "outcome": outcome,
            "store_id": store_id,
            "details": {**(details or {}), **extra},
        })
