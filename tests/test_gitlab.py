"""Tests for the deploykeyoperator.gitlab module."""

from __future__ import annotations

import json

import httpx
import pytest

from deploykeyoperator.exceptions import ProjectNotFoundError, RegistryError
from deploykeyoperator.gitlab import GitLabClient, project_path_from_git_url


@pytest.mark.parametrize(
    "git_url,expected",
    [
        ("git@gitlab.com:org/repo.git", "org/repo"),
        ("git@gitlab.com:org/repo", "org/repo"),
        ("git@gitlab.com:group/sub/repo.git", "group/sub/repo"),
        ("  git@gitlab.com:org/repo.git\n", "org/repo"),
    ],
)
def test_project_path_from_git_url(git_url: str, expected: str) -> None:
    assert project_path_from_git_url(git_url, "gitlab.com") == expected


def test_project_path_uses_configured_host() -> None:
    assert (
        project_path_from_git_url(
            "git@git.example.org:infra/cluster.git", "git.example.org"
        )
        == "infra/cluster"
    )
    # A URL for another host is not stripped.
    assert project_path_from_git_url(
        "git@gitlab.com:org/repo.git", "git.example.org"
    ) == "git@gitlab.com:org/repo"


def make_client(handler) -> GitLabClient:
    return GitLabClient(
        "gitlab.example.com",
        "s3cr3t",
        transport=httpx.MockTransport(handler),
    )


def test_get_project() -> None:
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            200, json={"id": 42, "path_with_namespace": "org/repo"}
        )

    with make_client(handler) as client:
        project = client.get_project("org/repo")

    assert project.id == 42
    assert project.path_with_namespace == "org/repo"
    request = requests[0]
    assert request.method == "GET"
    assert request.url.host == "gitlab.example.com"
    assert request.url.raw_path == b"/api/v4/projects/org%2Frepo"
    assert request.headers["PRIVATE-TOKEN"] == "s3cr3t"
    assert request.headers["User-Agent"].startswith(
        "gitlab-deploykey-operator/"
    )


def test_get_project_not_found() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"message": "404 Project Not Found"})

    with make_client(handler) as client:
        with pytest.raises(ProjectNotFoundError) as excinfo:
            client.get_project("org/missing")
    assert excinfo.value.status == 404


def test_create_deploy_key() -> None:
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        payload = json.loads(request.content)
        return httpx.Response(
            201,
            json={
                "id": 7,
                "title": payload["title"],
                "key": payload["key"],
                "can_push": payload["can_push"],
            },
        )

    with make_client(handler) as client:
        key = client.create_deploy_key(
            42, "Flux deployment key", "ssh-ed25519 AAAA\n", can_push=True
        )

    assert key.id == 7
    assert key.can_push
    request = requests[0]
    assert request.method == "POST"
    assert request.url.path == "/api/v4/projects/42/deploy_keys"
    assert json.loads(request.content) == {
        "title": "Flux deployment key",
        "key": "ssh-ed25519 AAAA\n",
        "can_push": True,
    }


def test_server_error_is_registry_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="bad gateway")

    with make_client(handler) as client:
        with pytest.raises(RegistryError) as excinfo:
            client.create_deploy_key(42, "t", "k", can_push=True)
    assert excinfo.value.status == 502
    assert not isinstance(excinfo.value, ProjectNotFoundError)


def test_transport_error_is_registry_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with make_client(handler) as client:
        with pytest.raises(RegistryError) as excinfo:
            client.get_project("org/repo")
    assert excinfo.value.status is None


def test_delete_deploy_key() -> None:
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(204)

    with make_client(handler) as client:
        client.delete_deploy_key("org/repo", 7)
        client.delete_deploy_key(42, 8)

    assert [r.method for r in requests] == ["DELETE", "DELETE"]
    assert requests[0].url.raw_path == (
        b"/api/v4/projects/org%2Frepo/deploy_keys/7"
    )
    assert requests[1].url.raw_path == b"/api/v4/projects/42/deploy_keys/8"


def test_delete_missing_deploy_key_succeeds() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"message": "404 Not found"})

    with make_client(handler) as client:
        client.delete_deploy_key("org/repo", 7)
