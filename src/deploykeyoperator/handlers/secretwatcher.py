"""Kopf handler that feeds Secret watch events to the change observer."""

__all__ = ("handle_secret_event",)

from typing import Any

import kopf

from ..config import SYNC_LABEL


@kopf.on.event("", "v1", "secrets", labels={SYNC_LABEL: kopf.PRESENT})  # type: ignore[arg-type]
def handle_secret_event(
    *,
    event: dict[str, Any],
    memo: kopf.Memo,
    logger: Any,
    **kwargs: Any,
) -> None:
    """Forward a raw Secret event to the operator's change observer.

    Parameters
    ----------
    event : `dict`
        The raw watch event, with ``type`` and ``object`` keys. The type is
        `None` for objects seen in kopf's initial listing.
    memo : `kopf.Memo`
        Operator-wide storage holding the running operator.
    logger : `Any`
        The kopf logger.
    kwargs : `Any`
        Additional keyword arguments provided by kopf.
    """
    operator = memo.get("operator")
    if operator is None:
        logger.warning("Operator not started yet, dropping Secret event")
        return
    operator.observer.observe_raw(
        event.get("type") or "ADDED", event["object"]
    )
