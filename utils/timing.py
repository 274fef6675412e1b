"""
Clock and timing utilities.

Two kinds of time live here and they must not be mixed:
  - epoch_ms(): wall-clock milliseconds. Bucket window starts, retention
    horizons and uptime are all expressed in this unit because they are
    shown to humans and compared across snapshots.
  - timed(): perf_counter_ns() based latency measurement for logging
    how long a piece of work took. Monotonic, nanosecond resolution.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Callable, Generator

from utils.logger import get_logger

_log = get_logger(__name__)

# Anything that returns epoch milliseconds. Engines accept one of these
# so tests can drive time by hand.
Clock = Callable[[], int]


def epoch_ms() -> int:
    """Current Unix epoch in whole milliseconds."""
    return time.time_ns() // 1_000_000


@contextmanager
def timed(label: str) -> Generator[dict, None, None]:
    """
    Context manager that measures elapsed time in milliseconds.

    Usage:
        with timed("retention_pass") as t:
            evicted = engine.evict_expired()
        print(t["ms"])  # e.g. 0.21

    The dict is populated *after* the block finishes, so you can
    read t["ms"] or t["ns"] after the `with` block.
    """
    result: dict = {}
    start = time.perf_counter_ns()
    try:
        yield result
    finally:
        elapsed_ns = time.perf_counter_ns() - start
        result["ns"] = elapsed_ns
        result["ms"] = elapsed_ns / 1_000_000
        _log.debug(f"{label}", latency_ms=round(result["ms"], 3))
