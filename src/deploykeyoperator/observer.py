"""Turn Secret watch events into work queue entries."""

from __future__ import annotations

__all__ = ("ChangeObserver",)

from collections.abc import Callable, Iterable, Mapping
from typing import Any

import structlog

from deploykeyoperator.cache import SecretCache
from deploykeyoperator.models import (
    Added,
    Deleted,
    Event,
    ObjectKey,
    Secret,
    Tombstone,
    Updated,
)
from deploykeyoperator.workqueue import RateLimitingQueue

logger = structlog.getLogger(__name__)


class ChangeObserver:
    """Feed Secret changes into the read cache and the work queue.

    Only the `deploykeyoperator.models.ObjectKey` of a changed Secret is
    queued. The reconciler reads the Secret again when it gets to the key,
    so a queued key never carries a stale payload.

    Parameters
    ----------
    cache : `deploykeyoperator.cache.SecretCache`
        The read cache to keep up to date.
    queue : `deploykeyoperator.workqueue.RateLimitingQueue`
        The reconciliation queue.
    namespace : `str`, optional
        Ignore events from other namespaces.
    """

    def __init__(
        self,
        cache: SecretCache,
        queue: RateLimitingQueue,
        *,
        namespace: str | None = None,
    ) -> None:
        self.cache = cache
        self.queue = queue
        self.namespace = namespace

    def observe(self, event: Event) -> None:
        """Apply one normalized event and enqueue its key."""
        key = event.key
        if self.namespace and key.namespace != self.namespace:
            return

        if isinstance(event, (Added, Updated)):
            self.cache.upsert(event.secret)
        elif isinstance(event, Deleted):
            last_known = self.cache.delete(key)
            if isinstance(event.obj, Secret):
                last_known = event.obj
            elif event.obj.last_known is not None:
                last_known = event.obj.last_known
                logger.debug(
                    "Recovered deleted object from tombstone",
                    secret=str(key),
                )
            if last_known is not None:
                self.cache.record_deletion(last_known)
        else:
            logger.error(
                "Error decoding event, invalid type",
                event_type=type(event).__name__,
            )
            return

        logger.debug(
            "Processing object",
            secret=str(key),
            event_type=type(event).__name__,
        )
        self.queue.add(key)

    def observe_raw(self, event_type: str, body: Mapping[str, Any]) -> None:
        """Normalize a raw watch event and apply it.

        Parameters
        ----------
        event_type : `str`
            ``ADDED``, ``MODIFIED`` or ``DELETED``. Anything else is
            ignored.
        body : `collections.abc.Mapping`
            The JSON body of the Secret.
        """
        try:
            secret = Secret.from_body(body)
        except ValueError:
            logger.error(
                "Error decoding object, invalid type", event_type=event_type
            )
            return

        if event_type == "ADDED":
            self.observe(Added(secret))
        elif event_type == "MODIFIED":
            self.observe(Updated(secret))
        elif event_type == "DELETED":
            self.observe(Deleted(secret))
        else:
            logger.debug(
                "Ignoring watch event",
                event_type=event_type,
                secret=str(secret.key),
            )

    def resync(
        self,
        secrets: Iterable[Secret],
        *,
        lookup: Callable[[ObjectKey], Secret | None] | None = None,
    ) -> None:
        """Reconcile the cache with a fresh listing.

        Every listed Secret is re-queued as an update. Cached Secrets absent
        from the listing are turned into tombstone deletions carrying their
        last cached state.

        Parameters
        ----------
        secrets : iterable of `deploykeyoperator.models.Secret`
            The listing.
        lookup : callable, optional
            Reads a single Secret from the API server, returning `None` if
            it does not exist. Used to confirm that a Secret missing from
            the listing is really gone, since the listing can be older than
            the latest watch event.
        """
        if self.namespace:
            secrets = [s for s in secrets if s.namespace == self.namespace]
        listed = list(secrets)
        vanished = self.cache.replace(listed)

        for secret in listed:
            self.observe(Updated(secret))

        for last_known in vanished:
            current = lookup(last_known.key) if lookup else None
            if current is not None and current.uid == last_known.uid:
                self.observe(Updated(current))
                continue
            self.observe(Deleted(Tombstone(last_known.key, last_known)))
            if current is not None:
                self.observe(Added(current))
