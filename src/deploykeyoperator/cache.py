"""Local, thread-safe read cache of watched Secrets."""

from __future__ import annotations

__all__ = ("SecretCache",)

import threading
from collections.abc import Iterable

from deploykeyoperator.config import DEPLOY_KEY_ANNOTATION
from deploykeyoperator.models import ObjectKey, Secret


def _is_older(incoming: Secret, current: Secret) -> bool:
    """Return `True` if ``incoming`` is a strictly older revision of
    ``current``.

    Resource versions are only compared when both belong to the same object
    (same uid) and both are integers, which is what the API server issues
    in practice. Anything else is treated as newer.
    """
    if incoming.uid != current.uid:
        return False
    try:
        return int(incoming.resource_version) < int(current.resource_version)
    except ValueError:
        return False


class SecretCache:
    """Eventually-consistent copy of the watched Secrets.

    The cache holds immutable `deploykeyoperator.models.Secret` values, so
    readers can share them freely. It also keeps a deletion ledger: the last
    known state of Secrets that were deleted but whose deploy key has not
    been revoked yet.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: dict[ObjectKey, Secret] = {}
        self._deleted: dict[ObjectKey, dict[str, Secret]] = {}
        self._synced = threading.Event()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def get(self, key: ObjectKey) -> Secret | None:
        with self._lock:
            return self._items.get(key)

    def keys(self) -> list[ObjectKey]:
        with self._lock:
            return list(self._items)

    def upsert(self, secret: Secret) -> bool:
        """Store a Secret unless the cache already holds a newer revision.

        Returns
        -------
        stored : `bool`
            `False` if the Secret was older than the cached one.
        """
        with self._lock:
            current = self._items.get(secret.key)
            if current is not None and _is_older(secret, current):
                return False
            self._items[secret.key] = secret
            return True

    def delete(self, key: ObjectKey) -> Secret | None:
        """Remove a Secret, returning the last state the cache held."""
        with self._lock:
            return self._items.pop(key, None)

    def replace(self, secrets: Iterable[Secret]) -> list[Secret]:
        """Replace the whole cache with a fresh listing.

        Returns
        -------
        vanished : `list` of `deploykeyoperator.models.Secret`
            Cached Secrets that are absent from the listing.
        """
        fresh = {secret.key: secret for secret in secrets}
        with self._lock:
            vanished = [
                secret
                for key, secret in self._items.items()
                if key not in fresh
            ]
            # A listing can race with a write-through from the store; keep
            # whichever revision is newer.
            for key, secret in fresh.items():
                current = self._items.get(key)
                if current is not None and _is_older(secret, current):
                    fresh[key] = current
            self._items = fresh
        return vanished

    def record_deletion(self, secret: Secret) -> None:
        """Remember the final state of a deleted Secret until its deploy
        key is revoked.

        Records are kept per object uid, so a Secret that is deleted,
        recreated and deleted again keeps one record for each incarnation.
        A repeated deletion event without a deploy key id does not erase
        an id recorded earlier.
        """
        with self._lock:
            records = self._deleted.setdefault(secret.key, {})
            existing = records.get(secret.uid)
            if (
                existing is not None
                and DEPLOY_KEY_ANNOTATION in existing.annotations
                and DEPLOY_KEY_ANNOTATION not in secret.annotations
            ):
                return
            records[secret.uid] = secret

    def pending_deletions(self, key: ObjectKey) -> list[Secret]:
        with self._lock:
            return list(self._deleted.get(key, {}).values())

    def clear_deletion(self, key: ObjectKey, uid: str) -> None:
        """Drop the deletion record of the ``uid`` incarnation of ``key``."""
        with self._lock:
            records = self._deleted.get(key)
            if records is None:
                return
            records.pop(uid, None)
            if not records:
                del self._deleted[key]

    def mark_synced(self) -> None:
        self._synced.set()

    def has_synced(self) -> bool:
        return self._synced.is_set()

    def wait_for_sync(self, timeout: float | None = None) -> bool:
        """Block until the initial listing has been loaded."""
        return self._synced.wait(timeout)
