"""Kubernetes operator that provisions GitLab deploy keys for Flux
synchronization secrets.
"""

from deploykeyoperator.version import __version__

__all__ = ("__version__",)
