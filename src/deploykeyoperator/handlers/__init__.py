"""Kopf handlers for the gitlab-deploykey-operator.

Run the operator with::

    kopf run -m deploykeyoperator.handlers --all-namespaces
"""

__all__ = (
    "handle_secret_event",
    "shutdown",
    "startup",
)

from deploykeyoperator.handlers.lifecycle import shutdown, startup
from deploykeyoperator.handlers.secretwatcher import handle_secret_event
