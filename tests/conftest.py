"""Shared fixtures and in-memory fakes for the operator tests."""

from __future__ import annotations

import base64
import itertools
import threading
from collections.abc import Callable
from typing import Any

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from deploykeyoperator.cache import SecretCache
from deploykeyoperator.config import (
    DEPLOY_KEY_ANNOTATION,
    GIT_URL_ANNOTATION,
    SYNC_LABEL,
)
from deploykeyoperator.exceptions import ConflictError, ProjectNotFoundError
from deploykeyoperator.models import DeployKey, ObjectKey, Project, Secret


def make_identity() -> bytes:
    """Generate an unencrypted OpenSSH private key."""
    return ed25519.Ed25519PrivateKey.generate().private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.OpenSSH,
        encryption_algorithm=serialization.NoEncryption(),
    )


_IDENTITY = make_identity()


def make_secret(
    name: str = "flux-git-deploy",
    namespace: str = "flux",
    *,
    uid: str = "uid-1",
    resource_version: str = "1",
    git_url: str | None = "git@gitlab.com:org/repo.git",
    key_id: str | None = None,
    labelled: bool = True,
    identity: bytes | None = _IDENTITY,
) -> Secret:
    """Build a Flux Secret in the shape the operator watches."""
    annotations = {}
    if git_url is not None:
        annotations[GIT_URL_ANNOTATION] = git_url
    if key_id is not None:
        annotations[DEPLOY_KEY_ANNOTATION] = key_id
    data = {}
    if identity is not None:
        data["identity"] = base64.b64encode(identity).decode("ascii")
    return Secret(
        namespace=namespace,
        name=name,
        uid=uid,
        resource_version=resource_version,
        labels={SYNC_LABEL: "flux"} if labelled else {},
        annotations=annotations,
        data=data,
    )


class FakeRegistry:
    """In-memory deploy key registry that counts its calls."""

    def __init__(self, projects: dict[str, int] | None = None) -> None:
        if projects is None:
            projects = {"org/repo": 42}
        self.projects = projects
        self.keys: dict[int, tuple[int, str]] = {}
        self.created: list[int] = []
        self.deleted: list[tuple[str | int, int]] = []
        self.fail_create: Exception | None = None
        self.fail_delete: Exception | None = None
        self._ids = itertools.count(100)
        self._lock = threading.Lock()

    def get_project(self, path: str) -> Project:
        if path not in self.projects:
            raise ProjectNotFoundError(f"{path}: not found", status=404)
        return Project(id=self.projects[path], path_with_namespace=path)

    def create_deploy_key(
        self, project_id: int, title: str, key: str, *, can_push: bool
    ) -> DeployKey:
        with self._lock:
            if self.fail_create is not None:
                raise self.fail_create
            key_id = next(self._ids)
            self.keys[key_id] = (project_id, key)
            self.created.append(key_id)
        return DeployKey(id=key_id, title=title, key=key, can_push=can_push)

    def delete_deploy_key(self, project: str | int, key_id: int) -> None:
        with self._lock:
            if self.fail_delete is not None:
                raise self.fail_delete
            self.keys.pop(key_id, None)
            self.deleted.append((project, key_id))


class FakeStore:
    """Secret store that writes straight into a `SecretCache`."""

    def __init__(self, cache: SecretCache) -> None:
        self.cache = cache
        self.updates: list[Secret] = []
        self.fail_update: Exception | None = None
        self.before_update: Callable[[Secret], None] | None = None
        self._versions = itertools.count(1000)
        self._lock = threading.Lock()

    def get(self, key: ObjectKey) -> Secret | None:
        return self.cache.get(key)

    def update(self, secret: Secret) -> Secret:
        if self.before_update is not None:
            self.before_update(secret)
        if self.fail_update is not None:
            raise self.fail_update
        with self._lock:
            current = self.cache.get(secret.key)
            if current is not None and (
                current.uid != secret.uid
                or current.resource_version != secret.resource_version
            ):
                raise ConflictError(f"Secret {secret.key} changed")
            updated = Secret(
                namespace=secret.namespace,
                name=secret.name,
                uid=secret.uid,
                resource_version=str(next(self._versions)),
                labels=secret.labels,
                annotations=secret.annotations,
                data=secret.data,
            )
            self.updates.append(updated)
        self.cache.upsert(updated)
        return updated


class FakeRecorder:
    """Collects recorded events."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    def record(
        self, secret: Secret, *, event_type: str, reason: str, message: str
    ) -> None:
        self.events.append(
            {
                "secret": secret.key,
                "type": event_type,
                "reason": reason,
                "message": message,
            }
        )


@pytest.fixture
def cache() -> SecretCache:
    cache = SecretCache()
    cache.mark_synced()
    return cache


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def store(cache: SecretCache) -> FakeStore:
    return FakeStore(cache)


@pytest.fixture
def recorder() -> FakeRecorder:
    return FakeRecorder()
