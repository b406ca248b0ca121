"""Converge a Flux Secret with the deploy keys registered on GitLab."""

from __future__ import annotations

__all__ = ("Reconciler",)

import structlog
from kubernetes.client.exceptions import ApiException

from deploykeyoperator.cache import SecretCache
from deploykeyoperator.config import (
    DEPLOY_KEY_ANNOTATION,
    DEPLOY_KEY_TITLE,
    GIT_URL_ANNOTATION,
    IDENTITY_DATA_KEY,
    SYNC_LABEL,
)
from deploykeyoperator.exceptions import ConflictError, MalformedSecretError
from deploykeyoperator.gitlab import KeyRegistry, project_path_from_git_url
from deploykeyoperator.k8s import EventRecorder, SecretStore
from deploykeyoperator.models import ObjectKey, Secret
from deploykeyoperator.sshkeys import public_key_from_private

logger = structlog.getLogger(__name__)

SUCCESS_SYNCED = "Synced"
"""Event reason recorded when a Secret is synced."""

MESSAGE_SYNCED = "Secret synced successfully"

FAILED_SYNC = "ErrInvalidSecret"
"""Event reason recorded when a Secret can never be synced as it stands."""


class Reconciler:
    """Sync handler for one Secret at a time.

    The reconciler keeps no state between calls. Each `sync` reads the
    current state of one Secret and performs at most one transition:
    revoke the key of a deleted Secret, create a key for an unsynced
    Secret, or nothing.

    Parameters
    ----------
    store : `deploykeyoperator.k8s.SecretStore`
        Cached reads and authoritative writes of Secrets.
    cache : `deploykeyoperator.cache.SecretCache`
        The cache holding the deletion ledger.
    registry : `deploykeyoperator.gitlab.KeyRegistry`
        The GitLab deploy key API.
    recorder : `deploykeyoperator.k8s.EventRecorder`
        Audit event sink.
    gitlab_hostname : `str`
        Host name used to parse git URLs.
    """

    def __init__(
        self,
        *,
        store: SecretStore,
        cache: SecretCache,
        registry: KeyRegistry,
        recorder: EventRecorder,
        gitlab_hostname: str,
    ) -> None:
        self.store = store
        self.cache = cache
        self.registry = registry
        self.recorder = recorder
        self.gitlab_hostname = gitlab_hostname

    def sync(self, key: ObjectKey) -> None:
        """Reconcile the Secret identified by ``key``.

        Raises
        ------
        deploykeyoperator.exceptions.PermanentError
            Raised if the Secret can never be synced as it stands.
        Exception
            Any other exception is a transient failure and the caller
            should retry.
        """
        log = logger.bind(secret=str(key))
        secret = self.store.get(key)

        # Revoke keys of deleted incarnations first. A Secret that was
        # deleted and recreated under the same name still leaves a key
        # behind from its previous life.
        for deleted in self.cache.pending_deletions(key):
            if secret is not None and deleted.uid == secret.uid:
                continue
            self._revoke(deleted, log)

        if secret is None:
            log.debug("Secret no longer exists")
            return

        if SYNC_LABEL not in secret.labels:
            log.debug("Secret is not a flux secret")
            return
        git_url = secret.annotations.get(GIT_URL_ANNOTATION)
        if not git_url:
            log.debug("Secret has no git url annotation")
            return

        # Deliberately not verified against GitLab, which would mean one
        # API call per Secret per resync.
        if DEPLOY_KEY_ANNOTATION in secret.annotations:
            log.debug("Secret already has a deploy key")
            return

        self._create(secret, git_url, log)

    def _create(
        self, secret: Secret, git_url: str, log: structlog.BoundLogger
    ) -> None:
        project_path = project_path_from_git_url(git_url, self.gitlab_hostname)
        project = self.registry.get_project(project_path)

        try:
            public_key = public_key_from_private(
                secret.decoded(IDENTITY_DATA_KEY)
            )
        except MalformedSecretError as err:
            self.recorder.record(
                secret,
                event_type="Warning",
                reason=FAILED_SYNC,
                message=str(err),
            )
            raise

        deploy_key = self.registry.create_deploy_key(
            project.id, DEPLOY_KEY_TITLE, public_key, can_push=True
        )
        log.info(
            "Added deploy key", project=project_path, key_id=deploy_key.id
        )

        try:
            self.store.update(
                secret.with_annotation(
                    DEPLOY_KEY_ANNOTATION, str(deploy_key.id)
                )
            )
        except (ConflictError, ApiException) as err:
            # The id was not recorded, so a retry would create another key.
            log.warning(
                "Failed to record deploy key, revoking it",
                key_id=deploy_key.id,
                error=str(err),
            )
            self._discard_key(project.id, deploy_key.id, log)
            if isinstance(err, ApiException) and err.status == 404:
                # The Secret is gone; there is nothing left to sync.
                return
            raise

        self.recorder.record(
            secret,
            event_type="Normal",
            reason=SUCCESS_SYNCED,
            message=MESSAGE_SYNCED,
        )

    def _discard_key(
        self, project_id: int, key_id: int, log: structlog.BoundLogger
    ) -> None:
        try:
            self.registry.delete_deploy_key(project_id, key_id)
        except Exception:
            # Keep the write failure as the error the worker sees.
            log.exception(
                "Failed to revoke unrecorded deploy key",
                project_id=project_id,
                key_id=key_id,
            )

    def _revoke(self, deleted: Secret, log: structlog.BoundLogger) -> None:
        raw_id = deleted.annotations.get(DEPLOY_KEY_ANNOTATION)
        git_url = deleted.annotations.get(GIT_URL_ANNOTATION)
        if raw_id is None or not git_url:
            self.cache.clear_deletion(deleted.key, deleted.uid)
            return

        try:
            key_id = int(raw_id)
        except ValueError:
            log.error(
                "Cannot revoke deploy key, malformed id",
                key_id=raw_id,
            )
            self.cache.clear_deletion(deleted.key, deleted.uid)
            return

        project_path = project_path_from_git_url(git_url, self.gitlab_hostname)
        log.info("Deleting deploy key", project=project_path, key_id=key_id)
        self.registry.delete_deploy_key(project_path, key_id)
        self.cache.clear_deletion(deleted.key, deleted.uid)
