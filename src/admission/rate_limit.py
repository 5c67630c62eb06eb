"""Sliding-window rate limiting per identity and operation class.

Each key keeps a log of request instants inside the current window. A check
prunes the log, decides, and records the request in one locked step, so there
is no gap between "is there room?" and "count this one".
"""

import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

import structlog

from observability import metrics
from shared_types import OperationClass

logger = structlog.get_logger()


@dataclass(frozen=True)
class RateLimitRule:
    limit: int
    window_seconds: float


DEFAULT_RULES: dict[OperationClass, RateLimitRule] = {
    OperationClass.SUBMIT: RateLimitRule(limit=10, window_seconds=60),
    OperationClass.UPDATE: RateLimitRule(limit=30, window_seconds=60),
    OperationClass.READ: RateLimitRule(limit=60, window_seconds=60),
    OperationClass.DELETE: RateLimitRule(limit=10, window_seconds=60),
}


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int = 0

    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class InMemoryCounterStore:
    """Shared request logs with automatic eviction of idle keys.

    Logs live only in process memory and vanish on restart.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, sweep_every: int = 1000):
        self._clock = clock
        self._lock = threading.Lock()
        self._logs: dict[str, deque] = {}
        self._windows: dict[str, float] = {}
        self._sweep_every = sweep_every
        self._ops = 0

    def hit(self, key: str, limit: int, window_seconds: float) -> tuple[bool, int, float]:
        """Atomically check and, if allowed, record a request.

        Returns:
            (allowed, count in window after this call, seconds until a slot frees)
        """
        with self._lock:
            now = self._clock()
            log = self._logs.setdefault(key, deque())
            self._windows[key] = window_seconds
            cutoff = now - window_seconds
            while log and log[0] <= cutoff:
                log.popleft()

            self._ops += 1
            if self._ops % self._sweep_every == 0:
                self._sweep(now)

            if len(log) >= limit:
                wait = log[0] + window_seconds - now
                return False, len(log), wait
            log.append(now)
            return True, len(log), 0.0

    def _sweep(self, now: float) -> None:
        expired = [
            k for k, log in self._logs.items()
            if not log or log[-1] <= now - self._windows.get(k, 0)
        ]
        for k in expired:
            self._logs.pop(k, None)
            self._windows.pop(k, None)

    def sweep(self) -> None:
        """Drop every key whose window has fully closed."""
        with self._lock:
            self._sweep(self._clock())

    def __len__(self) -> int:
        with self._lock:
            return len(self._logs)

    def reset(self) -> None:
        """Clear all rate limit state. Used in tests."""
        with self._lock:
            self._logs.clear()
            self._windows.clear()


class RateLimiter:
    """Per-(identity, operation class) sliding-window throttle.

    Args:
        rules: Limit and window per operation class; missing classes are unlimited.
        store: Counter store; defaults to a private in-memory one.
        fail_open: When the counter store errors, allow (True) or throttle (False).
    """

    def __init__(
        self,
        rules: Optional[Mapping[OperationClass, RateLimitRule]] = None,
        store: Optional[InMemoryCounterStore] = None,
        fail_open: bool = True,
    ):
        self.rules = dict(DEFAULT_RULES if rules is None else rules)
        self.store = store or InMemoryCounterStore()
        self.fail_open = fail_open

    def check(self, identity_hash: str, operation: OperationClass) -> RateDecision:
        rule = self.rules.get(operation)
        if rule is None:
            return RateDecision(allowed=True, limit=0, remaining=0)

        key = f"ratelimit:{identity_hash}:{operation.value}"
        try:
            allowed, count, wait = self.store.hit(key, rule.limit, rule.window_seconds)
        except Exception as e:
            logger.error(
                "ratelimit.store_error",
                operation=operation.value,
                fail_open=self.fail_open,
                error=str(e),
            )
            if self.fail_open:
                return RateDecision(allowed=True, limit=rule.limit, remaining=rule.limit)
            return RateDecision(
                allowed=False,
                limit=rule.limit,
                remaining=0,
                retry_after=max(1, math.ceil(rule.window_seconds)),
            )

        if not allowed:
            metrics.counter("ratelimit.throttled")
            retry_after = max(1, math.ceil(wait))
            logger.info(
                "ratelimit.throttled",
                operation=operation.value,
                identity=identity_hash[:8],
                retry_after=retry_after,
            )
            return RateDecision(allowed=False, limit=rule.limit, remaining=0, retry_after=retry_after)

        return RateDecision(allowed=True, limit=rule.limit, remaining=max(0, rule.limit - count))
