"""Kopf handlers that start and stop the reconciliation workers."""

__all__ = ("shutdown", "startup")

import logging
from typing import Any

import kopf

from ..config import OperatorConfig
from ..exceptions import ConfigurationError
from ..logging import configure_logging
from ..startup import (
    build_operator,
    start_operator,
    stop_operator,
)


@kopf.on.startup()
def startup(
    *,
    settings: kopf.OperatorSettings,
    memo: kopf.Memo,
    logger: Any,
    **kwargs: Any,
) -> None:
    """Configure kopf, prime the Secret cache and start the workers.

    Parameters
    ----------
    settings : `kopf.OperatorSettings`
        The kopf settings, adjusted in place.
    memo : `kopf.Memo`
        Operator-wide storage; the running operator is kept here.
    logger : `Any`
        The kopf logger.
    kwargs : `Any`
        Additional keyword arguments provided by kopf.
    """
    try:
        config = OperatorConfig.from_environment()
    except ConfigurationError as err:
        raise kopf.PermanentError(str(err)) from err

    configure_logging(config.log_format)

    # No CRDs are involved, so there is nothing to coordinate with peers.
    settings.peering.standalone = True
    settings.posting.level = logging.WARNING

    operator = build_operator(config)
    start_operator(operator)
    memo.operator = operator
    logger.info(
        f"Watching Secrets labelled {config.label_selector} with "
        f"{config.workers} workers"
    )


@kopf.on.cleanup()
def shutdown(*, memo: kopf.Memo, logger: Any, **kwargs: Any) -> None:
    """Drain the workers when kopf shuts down."""
    operator = memo.get("operator")
    if operator is None:
        return
    logger.info("Stopping reconciliation workers")
    stop_operator(operator)
