"""Tests for the deploykeyoperator.k8s module."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest
from conftest import make_secret
from kubernetes.client.exceptions import ApiException

from deploykeyoperator.cache import SecretCache
from deploykeyoperator.config import DEPLOY_KEY_ANNOTATION, SYNC_LABEL
from deploykeyoperator.exceptions import ConflictError
from deploykeyoperator.k8s import (
    KubernetesEventRecorder,
    KubernetesSecretStore,
    list_secrets,
    read_secret,
)
from deploykeyoperator.models import ObjectKey


def secret_body(name: str = "flux-git-deploy", **metadata: Any) -> dict:
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {
            "name": name,
            "namespace": "flux",
            "uid": "uid-1",
            "resourceVersion": "5",
            "labels": {SYNC_LABEL: "x"},
            **metadata,
        },
        "data": {},
    }


def make_core_api() -> MagicMock:
    core_api = MagicMock()
    # Return API objects as-is; the tests hand in plain dicts.
    core_api.api_client.sanitize_for_serialization.side_effect = lambda o: o
    return core_api


def test_list_secrets_all_namespaces() -> None:
    core_api = make_core_api()
    core_api.list_secret_for_all_namespaces.return_value = MagicMock(
        items=[secret_body("a"), secret_body("b")]
    )

    secrets = list_secrets(core_api=core_api, label_selector=SYNC_LABEL)

    assert [s.name for s in secrets] == ["a", "b"]
    core_api.list_secret_for_all_namespaces.assert_called_once_with(
        label_selector=SYNC_LABEL
    )


def test_list_secrets_one_namespace() -> None:
    core_api = make_core_api()
    core_api.list_namespaced_secret.return_value = MagicMock(items=[])

    assert (
        list_secrets(
            core_api=core_api, label_selector=SYNC_LABEL, namespace="flux"
        )
        == []
    )
    core_api.list_namespaced_secret.assert_called_once_with(
        "flux", label_selector=SYNC_LABEL
    )


def test_read_secret() -> None:
    core_api = make_core_api()
    core_api.read_namespaced_secret.return_value = secret_body()

    secret = read_secret(core_api=core_api, key=ObjectKey("flux", "x"))

    assert secret is not None
    assert secret.uid == "uid-1"
    core_api.read_namespaced_secret.assert_called_once_with("x", "flux")


def test_read_missing_secret() -> None:
    core_api = make_core_api()
    core_api.read_namespaced_secret.side_effect = ApiException(status=404)
    assert read_secret(core_api=core_api, key=ObjectKey("flux", "x")) is None


def test_read_secret_other_errors_propagate() -> None:
    core_api = make_core_api()
    core_api.read_namespaced_secret.side_effect = ApiException(status=403)
    with pytest.raises(ApiException):
        read_secret(core_api=core_api, key=ObjectKey("flux", "x"))


def test_update_patches_annotations_with_uid_precondition() -> None:
    cache = SecretCache()
    secret = make_secret(uid="uid-1", resource_version="5")
    cache.upsert(secret)
    core_api = make_core_api()
    core_api.patch_namespaced_secret.return_value = secret_body(
        resourceVersion="6",
        annotations={DEPLOY_KEY_ANNOTATION: "7"},
    )
    store = KubernetesSecretStore(cache, core_api)

    updated = store.update(secret.with_annotation(DEPLOY_KEY_ANNOTATION, "7"))

    name, namespace, body = core_api.patch_namespaced_secret.call_args.args
    assert (name, namespace) == ("flux-git-deploy", "flux")
    assert body["metadata"]["uid"] == "uid-1"
    assert body["metadata"]["resourceVersion"] == "5"
    assert body["metadata"]["annotations"][DEPLOY_KEY_ANNOTATION] == "7"
    assert updated.resource_version == "6"
    # Written through to the cache.
    assert cache.get(secret.key) == updated
    assert store.get(secret.key) == updated


def test_update_conflict() -> None:
    core_api = make_core_api()
    core_api.patch_namespaced_secret.side_effect = ApiException(status=409)
    store = KubernetesSecretStore(SecretCache(), core_api)

    with pytest.raises(ConflictError):
        store.update(make_secret())


def test_update_not_found_propagates() -> None:
    core_api = make_core_api()
    core_api.patch_namespaced_secret.side_effect = ApiException(status=404)
    store = KubernetesSecretStore(SecretCache(), core_api)

    with pytest.raises(ApiException) as excinfo:
        store.update(make_secret())
    assert excinfo.value.status == 404


def test_event_recorder_posts_event() -> None:
    core_api = make_core_api()
    recorder = KubernetesEventRecorder(core_api)
    secret = make_secret()

    recorder.record(
        secret, event_type="Normal", reason="Synced", message="done"
    )

    namespace, event = core_api.create_namespaced_event.call_args.args
    assert namespace == "flux"
    assert event.type == "Normal"
    assert event.reason == "Synced"
    assert event.involved_object.kind == "Secret"
    assert event.involved_object.name == "flux-git-deploy"
    assert event.involved_object.uid == "uid-1"


def test_event_recorder_swallows_api_errors() -> None:
    core_api = make_core_api()
    core_api.create_namespaced_event.side_effect = ApiException(status=403)
    recorder = KubernetesEventRecorder(core_api)

    recorder.record(
        make_secret(), event_type="Warning", reason="X", message="y"
    )
