"""Helpers for interacting with Kubernetes APIs."""

from __future__ import annotations

__all__ = (
    "EventRecorder",
    "KubernetesEventRecorder",
    "KubernetesSecretStore",
    "SecretStore",
    "create_k8sclient",
    "list_secrets",
    "read_secret",
)

import datetime
from typing import Any, Protocol

import kubernetes
import structlog
from kubernetes.client.exceptions import ApiException

from deploykeyoperator.cache import SecretCache
from deploykeyoperator.exceptions import ConflictError
from deploykeyoperator.models import ObjectKey, Secret

logger = structlog.getLogger(__name__)

COMPONENT_NAME = "gitlab-deploykey-operator"
"""Reporting component for Kubernetes Events."""


def create_k8sclient() -> kubernetes.client:
    """Get a Kubernetes client configured with available cluster
    authentication.

    If in-cluster authentication is available, that is used. Otherwise
    this function falls-back to using a kubectl config file, which is
    appropriate for development.
    """
    try:
        kubernetes.config.load_incluster_config()
    except kubernetes.config.ConfigException:
        kubernetes.config.load_kube_config()
    return kubernetes.client


def list_secrets(
    *,
    core_api: Any,
    label_selector: str,
    namespace: str | None = None,
) -> list[Secret]:
    """List the Secrets matching a label selector.

    Parameters
    ----------
    core_api : `kubernetes.client.CoreV1Api`
        The core API.
    label_selector : `str`
        A Kubernetes label selector.
    namespace : `str`, optional
        Restrict the listing to one namespace. All namespaces are listed if
        not set.

    Returns
    -------
    secrets : `list` of `deploykeyoperator.models.Secret`
        The listed Secrets.
    """
    if namespace:
        response = core_api.list_namespaced_secret(
            namespace, label_selector=label_selector
        )
    else:
        response = core_api.list_secret_for_all_namespaces(
            label_selector=label_selector
        )
    sanitize = core_api.api_client.sanitize_for_serialization
    return [Secret.from_body(sanitize(item)) for item in response.items]


def read_secret(*, core_api: Any, key: ObjectKey) -> Secret | None:
    """Read one Secret straight from the API server.

    Returns
    -------
    secret : `deploykeyoperator.models.Secret` or `None`
        The Secret, or `None` if it does not exist.
    """
    try:
        result = core_api.read_namespaced_secret(key.name, key.namespace)
    except ApiException as e:
        if e.status == 404:
            return None
        raise
    body = core_api.api_client.sanitize_for_serialization(result)
    return Secret.from_body(body)


class SecretStore(Protocol):
    """Read and write access to watched Secrets."""

    def get(self, key: ObjectKey) -> Secret | None:
        ...

    def update(self, secret: Secret) -> Secret:
        ...


class KubernetesSecretStore:
    """Secret store backed by the local cache for reads and by the API
    server for writes.

    Parameters
    ----------
    cache : `deploykeyoperator.cache.SecretCache`
        The shared read cache.
    core_api : `kubernetes.client.CoreV1Api`
        The core API used for authoritative writes.
    """

    def __init__(self, cache: SecretCache, core_api: Any) -> None:
        self.cache = cache
        self.core_api = core_api

    def get(self, key: ObjectKey) -> Secret | None:
        return self.cache.get(key)

    def update(self, secret: Secret) -> Secret:
        """Write a Secret's annotations to the API server.

        The write is a strategic merge patch of the annotations carrying the
        Secret's uid and resourceVersion as preconditions. It fails if the
        Secret was replaced by a new object of the same name, or modified
        in any way, since the given revision was read. The returned object
        is stored in the cache right away.

        Raises
        ------
        deploykeyoperator.exceptions.ConflictError
            Raised if the Secret was replaced or modified concurrently.
        kubernetes.client.exceptions.ApiException
            Raised for other API failures, including 404 if the Secret was
            deleted.
        """
        metadata: dict[str, Any] = {"annotations": dict(secret.annotations)}
        if secret.uid:
            metadata["uid"] = secret.uid
        if secret.resource_version:
            metadata["resourceVersion"] = secret.resource_version
        try:
            result = self.core_api.patch_namespaced_secret(
                secret.name, secret.namespace, {"metadata": metadata}
            )
        except ApiException as e:
            if e.status == 409:
                raise ConflictError(
                    f"Secret {secret.key} changed since revision "
                    f"{secret.resource_version or '<unknown>'}"
                ) from e
            raise
        body = self.core_api.api_client.sanitize_for_serialization(result)
        updated = Secret.from_body(body)
        self.cache.upsert(updated)
        return updated


class EventRecorder(Protocol):
    """Records audit events about a Secret."""

    def record(
        self, secret: Secret, *, event_type: str, reason: str, message: str
    ) -> None:
        ...


class KubernetesEventRecorder:
    """Post ``core/v1`` Events that show up in ``kubectl describe secret``.

    Failures to post an event are logged and otherwise ignored, since
    events are informational.
    """

    def __init__(self, core_api: Any) -> None:
        self.core_api = core_api

    def record(
        self, secret: Secret, *, event_type: str, reason: str, message: str
    ) -> None:
        k8s = kubernetes.client
        now = datetime.datetime.now(datetime.timezone.utc)
        event = k8s.CoreV1Event(
            metadata=k8s.V1ObjectMeta(
                generate_name=f"{secret.name}.",
                namespace=secret.namespace,
            ),
            involved_object=k8s.V1ObjectReference(
                api_version="v1",
                kind="Secret",
                name=secret.name,
                namespace=secret.namespace,
                uid=secret.uid or None,
                resource_version=secret.resource_version or None,
            ),
            type=event_type,
            reason=reason,
            message=message,
            first_timestamp=now,
            last_timestamp=now,
            count=1,
            source=k8s.V1EventSource(component=COMPONENT_NAME),
            reporting_component=COMPONENT_NAME,
        )
        try:
            self.core_api.create_namespaced_event(secret.namespace, event)
        except ApiException:
            logger.exception(
                "Failed to record event",
                secret=str(secret.key),
                reason=reason,
            )
