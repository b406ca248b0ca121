"""Rate limiters that decide how long a failed work item waits before it is
retried.
"""

from __future__ import annotations

__all__ = (
    "BucketRateLimiter",
    "ItemExponentialFailureRateLimiter",
    "MaxOfRateLimiter",
    "RateLimiter",
    "default_controller_rate_limiter",
)

import threading
import time
from collections.abc import Callable, Hashable
from typing import Protocol


class RateLimiter(Protocol):
    """Interface of a per-item rate limiter."""

    def when(self, item: Hashable) -> float:
        """Record a failure for ``item`` and return the seconds it should
        wait before being retried.
        """

    def forget(self, item: Hashable) -> None:
        """Stop tracking ``item``, resetting its backoff."""

    def num_requeues(self, item: Hashable) -> int:
        """Return how many times ``item`` has been rate limited."""


class ItemExponentialFailureRateLimiter:
    """Per-item exponential backoff: ``base_delay * 2 ** failures``, capped
    at ``max_delay``.

    Parameters
    ----------
    base_delay : `float`
        Delay in seconds after the first failure.
    max_delay : `float`
        Ceiling for the delay, in seconds.
    """

    def __init__(
        self, base_delay: float = 0.005, max_delay: float = 1000.0
    ) -> None:
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._failures: dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def when(self, item: Hashable) -> float:
        with self._lock:
            exponent = self._failures.get(item, 0)
            self._failures[item] = exponent + 1
        # Clamp the exponent so a long-failing item cannot overflow a float.
        if exponent > 62:
            return self.max_delay
        return min(self.base_delay * 2**exponent, self.max_delay)

    def forget(self, item: Hashable) -> None:
        with self._lock:
            self._failures.pop(item, None)

    def num_requeues(self, item: Hashable) -> int:
        with self._lock:
            return self._failures.get(item, 0)


class BucketRateLimiter:
    """A token bucket shared by all items.

    Each call to `when` reserves one token and returns how long the caller
    must wait for it. This bounds the overall retry rate regardless of how
    many items are failing.

    Parameters
    ----------
    qps : `float`
        Token refill rate, per second.
    burst : `int`
        Bucket capacity.
    clock : callable, optional
        Monotonic clock, for tests.
    """

    def __init__(
        self,
        qps: float = 10.0,
        burst: int = 100,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if qps <= 0:
            raise ValueError("qps must be positive")
        self.qps = qps
        self.burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()
        self._lock = threading.Lock()

    def when(self, item: Hashable) -> float:
        with self._lock:
            now = self._clock()
            self._tokens = min(
                float(self.burst), self._tokens + (now - self._last) * self.qps
            )
            self._last = now
            self._tokens -= 1.0
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self.qps

    def forget(self, item: Hashable) -> None:
        pass

    def num_requeues(self, item: Hashable) -> int:
        return 0


class MaxOfRateLimiter:
    """Combine limiters, using the longest delay any of them asks for."""

    def __init__(self, *limiters: RateLimiter) -> None:
        if not limiters:
            raise ValueError("At least one rate limiter is required")
        self.limiters = limiters

    def when(self, item: Hashable) -> float:
        return max(limiter.when(item) for limiter in self.limiters)

    def forget(self, item: Hashable) -> None:
        for limiter in self.limiters:
            limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return max(limiter.num_requeues(item) for limiter in self.limiters)


def default_controller_rate_limiter() -> MaxOfRateLimiter:
    """Return the limiter used for reconciliation retries: per-item
    exponential backoff from 5 ms to 1000 s, plus an overall budget of
    10 retries per second with bursts of 100.
    """
    return MaxOfRateLimiter(
        ItemExponentialFailureRateLimiter(0.005, 1000.0),
        BucketRateLimiter(qps=10.0, burst=100),
    )
