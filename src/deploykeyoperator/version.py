"""Version information, also reported to GitLab as the client's
``User-Agent``.
"""

__all__ = ("__version__", "get_user_agent")

from importlib.metadata import PackageNotFoundError, version

distribution_name = "gitlab-deploykey-operator"

try:
    __version__ = version(distribution_name)
except PackageNotFoundError:
    # Running from a source tree that was never installed.
    __version__ = "0.0.0"


def get_user_agent() -> str:
    """Return the ``User-Agent`` header value sent to the GitLab API."""
    return f"{distribution_name}/{__version__}"
