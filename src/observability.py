"""Observability: in-process counters and timers."""

import threading
import time
from contextlib import contextmanager
from typing import Any


class Metrics:
    """Dict-based metrics collector for counters and timers.

    Request handlers run on a thread pool, so every mutation takes the lock.
    Timers keep running aggregates (count, total, min, max), not samples.
    """

    def __init__(self):
        self._counters: dict[str, int] = {}
        self._timers: dict[str, dict[str, float]] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, value: int = 1):
        """Increment a counter by the given value."""
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + value

    def get(self, name: str) -> int:
        """Current value of a counter (0 if never incremented)."""
        with self._lock:
            return self._counters.get(name, 0)

    def observe(self, name: str, duration: float):
        """Fold one duration into the named timer."""
        with self._lock:
            agg = self._timers.get(name)
            if agg is None:
                self._timers[name] = {
                    "count": 1,
                    "total": duration,
                    "min": duration,
                    "max": duration,
                }
                return
            agg["count"] += 1
            agg["total"] += duration
            agg["min"] = min(agg["min"], duration)
            agg["max"] = max(agg["max"], duration)

    @contextmanager
    def timer(self, name: str):
        """Context manager to time an operation and record its duration."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.observe(name, time.perf_counter() - start)

    def summary(self) -> dict[str, Any]:
        """Return a summary of all collected metrics."""
        with self._lock:
            counters = dict(self._counters)
            timers = {k: dict(v) for k, v in self._timers.items()}

        for agg in timers.values():
            agg["avg"] = agg["total"] / agg["count"]

        return {
            "counters": counters,
            "timers": timers,
        }

    def reset(self):
        """Clear all metrics."""
        with self._lock:
            self._counters.clear()
            self._timers.clear()


# Module-level singleton
metrics = Metrics()
