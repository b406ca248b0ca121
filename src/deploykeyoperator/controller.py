"""Worker pool that drains the reconciliation queue."""

from __future__ import annotations

__all__ = ("Controller",)

import threading
import time
from collections.abc import Callable

import structlog

from deploykeyoperator.cache import SecretCache
from deploykeyoperator.exceptions import CacheSyncError, PermanentError
from deploykeyoperator.models import ObjectKey
from deploykeyoperator.reconciler import Reconciler
from deploykeyoperator.workqueue import RateLimitingQueue

logger = structlog.getLogger(__name__)


class Controller:
    """Run reconciler workers against a shared queue.

    Each worker loops: take a key from the queue, reconcile it, then
    acknowledge it. Keys that fail with a transient error are re-queued
    with a backoff; keys that fail permanently are dropped until the Secret
    changes again.

    Parameters
    ----------
    queue : `deploykeyoperator.workqueue.RateLimitingQueue`
        The queue filled by the change observer.
    reconciler : `deploykeyoperator.reconciler.Reconciler`
        The sync handler.
    cache : `deploykeyoperator.cache.SecretCache`
        Workers start only once this cache has synced.
    workers : `int`
        Number of worker threads.
    shutdown_timeout : `float`
        Seconds to wait for workers to finish their current item on
        shutdown.
    resync : callable, optional
        Relists Secrets into the cache; called every ``resync_period``
        seconds.
    resync_period : `float`
        Seconds between resyncs. ``0`` disables them.
    """

    def __init__(
        self,
        *,
        queue: RateLimitingQueue,
        reconciler: Reconciler,
        cache: SecretCache,
        workers: int = 2,
        shutdown_timeout: float = 30.0,
        resync: Callable[[], None] | None = None,
        resync_period: float = 0.0,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.queue = queue
        self.reconciler = reconciler
        self.cache = cache
        self.workers = workers
        self.shutdown_timeout = shutdown_timeout
        self.resync = resync
        self.resync_period = resync_period
        self.started = threading.Event()
        self._threads: list[threading.Thread] = []

    def run(self, stop: threading.Event) -> None:
        """Start the workers and block until ``stop`` is set.

        On return the queue is shut down and the workers have exited, or
        ``shutdown_timeout`` has passed.

        Raises
        ------
        deploykeyoperator.exceptions.CacheSyncError
            Raised if ``stop`` is set before the cache has synced.
        """
        try:
            logger.info("Starting Secret controller")
            logger.info("Waiting for informer caches to sync")
            while not self.cache.wait_for_sync(timeout=0.1):
                if stop.is_set():
                    raise CacheSyncError("failed to wait for caches to sync")

            logger.info("Starting workers", workers=self.workers)
            for i in range(self.workers):
                thread = threading.Thread(
                    target=self._run_worker,
                    args=(stop,),
                    name=f"deploykey-worker-{i}",
                    daemon=True,
                )
                thread.start()
                self._threads.append(thread)

            if self.resync is not None and self.resync_period > 0:
                threading.Thread(
                    target=self._run_resync,
                    args=(stop,),
                    name="deploykey-resync",
                    daemon=True,
                ).start()

            logger.info("Started workers")
            self.started.set()
            stop.wait()
            logger.info("Shutting down workers")
        finally:
            self.queue.shut_down()
            self._join_workers()

    def _join_workers(self) -> None:
        deadline = time.monotonic() + self.shutdown_timeout
        for thread in self._threads:
            thread.join(max(0.0, deadline - time.monotonic()))
        alive = [t.name for t in self._threads if t.is_alive()]
        if alive:
            logger.warning("Abandoning busy workers", workers=alive)
        else:
            logger.info("Workers stopped")

    def _run_worker(self, stop: threading.Event) -> None:
        # Restart the loop if it ever crashes, until the queue shuts down.
        while True:
            try:
                while self.process_next_work_item():
                    pass
                return
            except Exception:
                logger.exception("Worker crashed, restarting")
                if stop.wait(1.0):
                    return

    def _run_resync(self, stop: threading.Event) -> None:
        while not stop.wait(self.resync_period):
            try:
                self.resync()
            except Exception:
                logger.exception("Failed to resync Secret cache")

    def process_next_work_item(self) -> bool:
        """Process one queue item.

        Returns
        -------
        more : `bool`
            `False` once the queue has shut down.
        """
        item, shutdown = self.queue.get()
        if shutdown:
            return False

        try:
            if not isinstance(item, ObjectKey):
                # A producer bug; retrying would loop forever.
                self.queue.forget(item)
                logger.error(
                    "Expected ObjectKey in workqueue", item=repr(item)
                )
                return True

            log = logger.bind(secret=str(item))
            try:
                self.reconciler.sync(item)
            except PermanentError as err:
                self.queue.forget(item)
                log.error("Error syncing, not retrying", error=str(err))
            except Exception:
                self.queue.add_rate_limited(item)
                log.exception(
                    "Error syncing, requeuing",
                    requeues=self.queue.num_requeues(item),
                )
            else:
                self.queue.forget(item)
                log.debug("Successfully synced")
        finally:
            self.queue.done(item)
        return True
