"""Single-slot statistics cache with TTL and single-flight recompute."""

import threading
import time
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable, Optional

import structlog

from observability import metrics

from .errors import TransientStoreError

logger = structlog.get_logger()

STATS_CACHE_TTL = 300
RECOMPUTE_WAIT_TIMEOUT = 10.0


@dataclass(frozen=True)
class AggregatedStats:
    median: date
    min: Optional[date]
    max: Optional[date]
    count: int
    computed_at: datetime

    def to_dict(self) -> dict:
        return {
            "median": self.median.isoformat(),
            "min": self.min.isoformat() if self.min else None,
            "max": self.max.isoformat() if self.max else None,
            "count": self.count,
            "computed_at": self.computed_at.isoformat(),
        }


class StatsCache:
    """Memoizes the latest AggregatedStats.

    A value is served while it is younger than ``ttl`` and has not been
    invalidated. Otherwise one caller recomputes and every concurrent caller
    waits for that result; recomputation never runs twice at once.
    ``invalidate`` only marks the slot stale.
    """

    def __init__(
        self,
        compute: Callable[[], AggregatedStats],
        ttl: float = STATS_CACHE_TTL,
        wait_timeout: float = RECOMPUTE_WAIT_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._compute = compute
        self.ttl = ttl
        self.wait_timeout = wait_timeout
        self._clock = clock
        self._cond = threading.Condition()
        self._value: Optional[AggregatedStats] = None
        self._stored_at = 0.0
        self._stale = True
        self._generation = 0
        self._inflight = False
        self._completed = 0
        self._last_ok = False

    def _fresh(self) -> bool:
        return (
            self._value is not None
            and not self._stale
            and self._clock() - self._stored_at < self.ttl
        )

    def get(self) -> AggregatedStats:
        return self.lookup()[0]

    def lookup(self) -> tuple[AggregatedStats, bool]:
        """Current stats and whether they were served from the slot without recomputing."""
        with self._cond:
            deadline = time.monotonic() + self.wait_timeout
            while True:
                if self._fresh():
                    metrics.counter("stats.cache_hit")
                    return self._value, True
                if not self._inflight:
                    self._inflight = True
                    generation = self._generation
                    break

                seen = self._completed
                while self._inflight and self._completed == seen:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        logger.error("stats.recompute_wait_timeout", timeout=self.wait_timeout)
                        raise TransientStoreError()
                    self._cond.wait(remaining)
                # Waiters share the result even if an invalidation landed
                # mid-flight; the slot stays stale for the next reader.
                if self._completed != seen and self._last_ok:
                    metrics.counter("stats.shared_recompute")
                    return self._value, False

        try:
            with metrics.timer("stats.recompute"):
                value = self._compute()
        except BaseException:
            with self._cond:
                self._inflight = False
                self._completed += 1
                self._last_ok = False
                self._cond.notify_all()
            raise

        with self._cond:
            self._value = value
            self._stored_at = self._clock()
            self._stale = generation != self._generation
            self._inflight = False
            self._completed += 1
            self._last_ok = True
            self._cond.notify_all()
        metrics.counter("stats.recompute")
        logger.info("stats.recomputed", count=value.count, median=value.median.isoformat())
        return value, False

    def invalidate(self) -> None:
        with self._cond:
            self._stale = True
            self._generation += 1
