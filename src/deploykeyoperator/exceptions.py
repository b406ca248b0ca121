"""Exceptions raised by the operator.

Errors that derive from `PermanentError` are never retried by the worker
pool. Every other exception raised during reconciliation is treated as
transient and the Secret is re-queued with a backoff.
"""

__all__ = (
    "CacheSyncError",
    "ConfigurationError",
    "ConflictError",
    "DeployKeyOperatorError",
    "MalformedSecretError",
    "PermanentError",
    "ProjectNotFoundError",
    "RegistryError",
)


class DeployKeyOperatorError(Exception):
    """Base class for operator errors."""


class ConfigurationError(DeployKeyOperatorError):
    """The operator's environment configuration is invalid."""


class CacheSyncError(DeployKeyOperatorError):
    """The controller stopped before the Secret cache was synchronized."""


class RegistryError(DeployKeyOperatorError):
    """A call to the GitLab API failed.

    Parameters
    ----------
    message : `str`
        Description of the failure.
    status : `int`, optional
        HTTP status code of the response, if there was one.
    """

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class ProjectNotFoundError(RegistryError):
    """The GitLab project named by a Secret's git URL does not exist, or the
    token cannot see it.
    """


class ConflictError(DeployKeyOperatorError):
    """The authoritative write lost an optimistic concurrency race."""


class PermanentError(DeployKeyOperatorError):
    """A failure that retrying cannot fix without a change to the Secret."""


class MalformedSecretError(PermanentError):
    """A Secret's key material or recorded deploy key id cannot be parsed."""
