"""Client for the GitLab deploy key API."""

from __future__ import annotations

__all__ = (
    "GitLabClient",
    "KeyRegistry",
    "project_path_from_git_url",
)

import re
from types import TracebackType
from typing import Any, Protocol
from urllib.parse import quote

import httpx
import structlog

from deploykeyoperator.exceptions import (
    ProjectNotFoundError,
    RegistryError,
)
from deploykeyoperator.models import DeployKey, Project
from deploykeyoperator.version import get_user_agent

logger = structlog.getLogger(__name__)


def project_path_from_git_url(git_url: str, hostname: str) -> str:
    """Derive a GitLab project path from a Flux git URL.

    Parameters
    ----------
    git_url : `str`
        The SSH-style git URL, ``<user>@<hostname>:<path>[.git]``.
    hostname : `str`
        The GitLab host name.

    Returns
    -------
    path : `str`
        The ``namespace/project`` path, e.g. ``org/repo`` for
        ``git@gitlab.com:org/repo.git``.
    """
    path = re.sub(rf"^[^@/:]+@{re.escape(hostname)}:", "", git_url.strip())
    return path.removesuffix(".git")


class KeyRegistry(Protocol):
    """Operations the reconciler needs from the deploy key registry."""

    def get_project(self, path: str) -> Project:
        ...

    def create_deploy_key(
        self, project_id: int, title: str, key: str, *, can_push: bool
    ) -> DeployKey:
        ...

    def delete_deploy_key(self, project: str | int, key_id: int) -> None:
        ...


class GitLabClient:
    """Minimal GitLab REST (v4) client for deploy keys.

    Parameters
    ----------
    hostname : `str`
        Host name of the GitLab server.
    token : `str`
        A personal, group or project access token with ``api`` scope.
    timeout : `float`
        Timeout in seconds for each request.
    transport : `httpx.BaseTransport`, optional
        Alternate transport, for tests.
    """

    def __init__(
        self,
        hostname: str,
        token: str,
        *,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.hostname = hostname
        self._http = httpx.Client(
            base_url=f"https://{hostname}/api/v4",
            headers={
                "PRIVATE-TOKEN": token,
                "User-Agent": get_user_agent(),
            },
            timeout=timeout,
            transport=transport,
        )

    def __enter__(self) -> GitLabClient:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    def get_project(self, path: str) -> Project:
        """Look up a project by its ``namespace/project`` path.

        Raises
        ------
        deploykeyoperator.exceptions.ProjectNotFoundError
            Raised if GitLab answers 404 (which it also does when the token
            cannot see the project).
        deploykeyoperator.exceptions.RegistryError
            Raised for any other failure.
        """
        data = self._request("GET", f"/projects/{_encode(path)}")
        return Project(
            id=int(data["id"]),
            path_with_namespace=data.get("path_with_namespace", path),
        )

    def create_deploy_key(
        self, project_id: int, title: str, key: str, *, can_push: bool
    ) -> DeployKey:
        """Register a deploy key on a project."""
        data = self._request(
            "POST",
            f"/projects/{project_id}/deploy_keys",
            json={"title": title, "key": key, "can_push": can_push},
        )
        logger.info(
            "Created deploy key", project_id=project_id, key_id=data["id"]
        )
        return DeployKey(
            id=int(data["id"]),
            title=data.get("title", title),
            key=data.get("key", key),
            can_push=bool(data.get("can_push", can_push)),
        )

    def delete_deploy_key(self, project: str | int, key_id: int) -> None:
        """Remove a deploy key from a project.

        A key that no longer exists counts as deleted.

        Parameters
        ----------
        project : `str` or `int`
            The project path or numeric id.
        key_id : `int`
            The deploy key id.
        """
        try:
            self._request(
                "DELETE",
                f"/projects/{_encode(str(project))}/deploy_keys/{key_id}",
            )
        except ProjectNotFoundError:
            logger.info(
                "Deploy key already absent", project=project, key_id=key_id
            )
            return
        logger.info("Deleted deploy key", project=project, key_id=key_id)

    def _request(
        self, method: str, url: str, *, json: Any | None = None
    ) -> Any:
        try:
            response = self._http.request(method, url, json=json)
        except httpx.HTTPError as err:
            raise RegistryError(
                f"{method} {url} failed: {err}"
            ) from err

        if response.status_code == 404:
            raise ProjectNotFoundError(
                f"{method} {url}: not found", status=404
            )
        if response.is_error:
            raise RegistryError(
                f"{method} {url} returned {response.status_code}: "
                f"{response.text[:200]}",
                status=response.status_code,
            )
        if response.status_code == 204 or not response.content:
            return None
        return response.json()


def _encode(path: str) -> str:
    """URL-encode a project path, including slashes, as GitLab expects."""
    return quote(path, safe="")
