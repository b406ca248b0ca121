"""Operator configuration and the annotation contract on watched Secrets."""

from __future__ import annotations

__all__ = (
    "DEPLOY_KEY_ANNOTATION",
    "DEPLOY_KEY_TITLE",
    "GIT_URL_ANNOTATION",
    "IDENTITY_DATA_KEY",
    "SYNC_LABEL",
    "OperatorConfig",
)

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from deploykeyoperator.exceptions import ConfigurationError

SYNC_LABEL = "fluxcd.io/sync-gc-mark"
"""Label that marks a Secret as a Flux synchronization credential.

Only Secrets carrying this label are watched.
"""

GIT_URL_ANNOTATION = "fluxcd.io/git-url"
"""Annotation with the ``user@host:path[.git]`` URL of the synced project."""

DEPLOY_KEY_ANNOTATION = "fluxcd.io/deployKeyId"
"""Annotation recording the id of the deploy key created for the Secret.

Absence of this annotation means the Secret has not been synced.
"""

IDENTITY_DATA_KEY = "identity"
"""Key in the Secret's ``data`` holding the SSH private key."""

DEPLOY_KEY_TITLE = "Flux deployment key"
"""Title of every deploy key registered by the operator."""

_ENV_PREFIX = "DEPLOYKEY_"


@dataclass(frozen=True)
class OperatorConfig:
    """Runtime configuration for the operator.

    Build instances with `OperatorConfig.from_environment`; the object is
    passed explicitly to everything that needs it.
    """

    gitlab_token: str
    """Token used to authenticate against the GitLab API."""

    gitlab_hostname: str = "gitlab.com"
    """Host name of the GitLab server, also used to parse git URLs."""

    namespace: str | None = None
    """Namespace to watch. `None` watches every namespace."""

    workers: int = 2
    """Number of concurrent reconciler threads."""

    resync_period: float = 30.0
    """Seconds between relists of the Secret cache; ``0`` disables them."""

    shutdown_timeout: float = 30.0
    """Seconds to wait for workers to drain on shutdown."""

    log_format: str = "console"
    """Either ``console`` or ``json``."""

    @property
    def label_selector(self) -> str:
        return SYNC_LABEL

    @classmethod
    def from_environment(
        cls, environ: Mapping[str, str] | None = None
    ) -> OperatorConfig:
        """Read the configuration from ``DEPLOYKEY_*`` environment variables.

        Parameters
        ----------
        environ : `collections.abc.Mapping`, optional
            The environment to read. Defaults to `os.environ`.

        Returns
        -------
        config : `OperatorConfig`
            The parsed configuration.

        Raises
        ------
        deploykeyoperator.exceptions.ConfigurationError
            Raised if a value is missing or invalid.
        """
        if environ is None:
            environ = os.environ

        def get(name: str, default: str = "") -> str:
            return environ.get(f"{_ENV_PREFIX}{name}", default).strip()

        token = get("GITLAB_TOKEN") or environ.get("GITLAB_TOKEN", "").strip()
        if not token:
            raise ConfigurationError(
                f"{_ENV_PREFIX}GITLAB_TOKEN or GITLAB_TOKEN must be set"
            )

        hostname = get("GITLAB_HOSTNAME", "gitlab.com")
        if not hostname:
            raise ConfigurationError(
                f"{_ENV_PREFIX}GITLAB_HOSTNAME must not be empty"
            )

        log_format = get("LOG_FORMAT", "console").lower()
        if log_format not in ("console", "json"):
            raise ConfigurationError(
                f"{_ENV_PREFIX}LOG_FORMAT must be console or json, "
                f"got {log_format!r}"
            )

        return cls(
            gitlab_token=token,
            gitlab_hostname=hostname,
            namespace=get("NAMESPACE") or None,
            workers=int(
                _parse_number(get, "WORKERS", "2", minimum=1, integer=True)
            ),
            resync_period=_parse_number(
                get, "RESYNC_SECONDS", "30", minimum=0
            ),
            shutdown_timeout=_parse_number(
                get, "SHUTDOWN_TIMEOUT", "30", minimum=0
            ),
            log_format=log_format,
        )


def _parse_number(
    get: Callable[[str, str], str],
    name: str,
    default: str,
    *,
    minimum: float,
    integer: bool = False,
) -> float:
    raw = get(name, default) or default
    try:
        value = int(raw) if integer else float(raw)
    except ValueError as err:
        raise ConfigurationError(
            f"{_ENV_PREFIX}{name} must be a number, got {raw!r}"
        ) from err
    if value < minimum:
        raise ConfigurationError(
            f"{_ENV_PREFIX}{name} must be >= {minimum}, got {raw!r}"
        )
    return value
