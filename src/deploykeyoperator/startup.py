"""Assemble the operator's components and run them alongside kopf."""

from __future__ import annotations

__all__ = ("Operator", "build_operator", "start_operator", "stop_operator")

import threading
from dataclasses import dataclass, field
from typing import Any

import structlog

from deploykeyoperator.cache import SecretCache
from deploykeyoperator.config import OperatorConfig
from deploykeyoperator.controller import Controller
from deploykeyoperator.gitlab import GitLabClient
from deploykeyoperator.k8s import (
    KubernetesEventRecorder,
    KubernetesSecretStore,
    create_k8sclient,
    list_secrets,
    read_secret,
)
from deploykeyoperator.models import Secret
from deploykeyoperator.observer import ChangeObserver
from deploykeyoperator.reconciler import Reconciler
from deploykeyoperator.workqueue import RateLimitingQueue

logger = structlog.getLogger(__name__)


@dataclass
class Operator:
    """Everything a running operator holds on to.

    One instance is created per process and kept in kopf's ``memo``.
    """

    config: OperatorConfig
    core_api: Any
    gitlab: GitLabClient
    cache: SecretCache
    queue: RateLimitingQueue
    observer: ChangeObserver
    controller: Controller
    stop: threading.Event = field(default_factory=threading.Event)
    thread: threading.Thread | None = None

    def list_secrets(self) -> list[Secret]:
        return list_secrets(
            core_api=self.core_api,
            label_selector=self.config.label_selector,
            namespace=self.config.namespace,
        )

    def resync(self) -> None:
        """Relist the watched Secrets and feed them to the observer."""
        self.observer.resync(
            self.list_secrets(),
            lookup=lambda key: read_secret(core_api=self.core_api, key=key),
        )


def build_operator(
    config: OperatorConfig, *, k8s_client: Any | None = None
) -> Operator:
    """Create the operator's components, wired together.

    Parameters
    ----------
    config : `deploykeyoperator.config.OperatorConfig`
        The operator configuration.
    k8s_client : optional
        The ``kubernetes.client`` module, already configured. If not set,
        `deploykeyoperator.k8s.create_k8sclient` is called.
    """
    if k8s_client is None:
        k8s_client = create_k8sclient()
    core_api = k8s_client.CoreV1Api()

    cache = SecretCache()
    queue = RateLimitingQueue(name="Secrets")
    gitlab = GitLabClient(config.gitlab_hostname, config.gitlab_token)
    reconciler = Reconciler(
        store=KubernetesSecretStore(cache, core_api),
        cache=cache,
        registry=gitlab,
        recorder=KubernetesEventRecorder(core_api),
        gitlab_hostname=config.gitlab_hostname,
    )
    observer = ChangeObserver(cache, queue, namespace=config.namespace)
    controller = Controller(
        queue=queue,
        reconciler=reconciler,
        cache=cache,
        workers=config.workers,
        shutdown_timeout=config.shutdown_timeout,
        resync_period=config.resync_period,
    )
    operator = Operator(
        config=config,
        core_api=core_api,
        gitlab=gitlab,
        cache=cache,
        queue=queue,
        observer=observer,
        controller=controller,
    )
    controller.resync = operator.resync
    return operator


def start_operator(operator: Operator) -> None:
    """Prime the Secret cache and start the worker pool in the background.

    Raises
    ------
    kubernetes.client.exceptions.ApiException
        Raised if the initial listing fails. The workers are not started.
    """
    secrets = operator.list_secrets()
    operator.cache.replace(secrets)
    for secret in secrets:
        operator.queue.add(secret.key)
    operator.cache.mark_synced()
    logger.info("Primed Secret cache", secrets=len(secrets))

    operator.thread = threading.Thread(
        target=operator.controller.run,
        args=(operator.stop,),
        name="deploykey-controller",
        daemon=True,
    )
    operator.thread.start()


def stop_operator(operator: Operator) -> None:
    """Stop the worker pool, let in-flight items finish, and release the
    GitLab client.
    """
    operator.stop.set()
    if operator.thread is not None:
        # The controller bounds its own drain with shutdown_timeout.
        operator.thread.join(operator.config.shutdown_timeout + 1.0)
    operator.gitlab.close()
    logger.info("Operator stopped")
