"""A deduplicating, rate-limited work queue for reconciliation.

The queue guarantees that an item is never handed to two workers at the
same time: adding an item that is already pending is a no-op, and adding an
item that is being processed marks it dirty so it is queued again once the
worker calls `RateLimitingQueue.done`.
"""

from __future__ import annotations

__all__ = ("RateLimitingQueue",)

import heapq
import itertools
import threading
import time
from collections import deque
from collections.abc import Callable, Hashable
from typing import Any

import structlog

from deploykeyoperator.ratelimit import (
    RateLimiter,
    default_controller_rate_limiter,
)

logger = structlog.getLogger(__name__)


class RateLimitingQueue:
    """Work queue with coalescing, delayed adds and per-item backoff.

    Parameters
    ----------
    rate_limiter : `deploykeyoperator.ratelimit.RateLimiter`, optional
        Decides the delay used by `add_rate_limited`. Defaults to
        `deploykeyoperator.ratelimit.default_controller_rate_limiter`.
    name : `str`, optional
        Name used in log messages.
    clock : callable, optional
        Monotonic clock, for tests.
    """

    def __init__(
        self,
        rate_limiter: RateLimiter | None = None,
        *,
        name: str = "secrets",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if rate_limiter is None:
            rate_limiter = default_controller_rate_limiter()
        self.rate_limiter = rate_limiter
        self.name = name
        self._clock = clock
        self._cond = threading.Condition()
        self._queue: deque[Any] = deque()
        self._dirty: set[Hashable] = set()
        self._processing: set[Hashable] = set()
        # Heap of (ready_at, sequence, item) for delayed adds.
        self._waiting: list[tuple[float, int, Any]] = []
        self._sequence = itertools.count()
        self._shutting_down = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def add(self, item: Hashable) -> None:
        """Queue an item for processing.

        Adding an item that is already pending does nothing. Adding an item
        that a worker is processing defers it until `done` is called.
        """
        with self._cond:
            self._add_locked(item)

    def _add_locked(self, item: Hashable) -> None:
        if self._shutting_down or item in self._dirty:
            return
        self._dirty.add(item)
        if item in self._processing:
            return
        self._queue.append(item)
        self._cond.notify()

    def add_after(self, item: Hashable, delay: float) -> None:
        """Queue an item once ``delay`` seconds have elapsed."""
        with self._cond:
            if self._shutting_down:
                return
            if delay <= 0:
                self._add_locked(item)
                return
            heapq.heappush(
                self._waiting,
                (self._clock() + delay, next(self._sequence), item),
            )
            # Wake a getter so it shortens its wait to the new deadline.
            self._cond.notify()

    def add_rate_limited(self, item: Hashable) -> None:
        """Queue an item after the delay chosen by the rate limiter."""
        delay = self.rate_limiter.when(item)
        logger.debug(
            "Requeuing with backoff",
            queue=self.name,
            item=str(item),
            delay=delay,
        )
        self.add_after(item, delay)

    def forget(self, item: Hashable) -> None:
        """Reset the backoff history of an item."""
        self.rate_limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return self.rate_limiter.num_requeues(item)

    def get(self, timeout: float | None = None) -> tuple[Any, bool]:
        """Take the next item, blocking until one is ready.

        Parameters
        ----------
        timeout : `float`, optional
            Give up after this many seconds and return ``(None, False)``.

        Returns
        -------
        item
            The next item, or `None` if the queue shut down or timed out.
        shutdown : `bool`
            `True` once the queue is shut down and has no pending items left.
        """
        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while True:
                self._promote_ready_locked()
                if self._queue:
                    item = self._queue.popleft()
                    self._processing.add(item)
                    self._dirty.discard(item)
                    return item, False
                if self._shutting_down:
                    return None, True

                wait_for = self._next_wait_locked()
                if deadline is not None:
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        return None, False
                    wait_for = (
                        remaining if wait_for is None
                        else min(wait_for, remaining)
                    )
                self._cond.wait(wait_for)

    def done(self, item: Hashable) -> None:
        """Mark an item as processed.

        If the item was added again while it was being processed, it goes
        back into the queue now.
        """
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._cond.notify()

    def shut_down(self) -> None:
        """Stop accepting items and wake every blocked `get`.

        Items already pending are still handed out; delayed items are
        dropped.
        """
        with self._cond:
            self._shutting_down = True
            self._waiting.clear()
            self._cond.notify_all()
        logger.info("Work queue shut down", queue=self.name)

    def _promote_ready_locked(self) -> None:
        now = self._clock()
        while self._waiting and self._waiting[0][0] <= now:
            _, _, item = heapq.heappop(self._waiting)
            self._add_locked(item)

    def _next_wait_locked(self) -> float | None:
        if not self._waiting:
            return None
        return max(0.0, self._waiting[0][0] - self._clock())
