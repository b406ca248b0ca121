"""structlog configuration for the operator process."""

from __future__ import annotations

__all__ = ("configure_logging",)

import logging
import sys

import structlog


def configure_logging(log_format: str = "console") -> None:
    """Configure structlog to write to stdout.

    Parameters
    ----------
    log_format : `str`
        ``console`` for human-readable key/value lines, or ``json`` for one
        JSON object per line.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if log_format == "json":
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
        logger_factory=structlog.PrintLoggerFactory(sys.stdout),
        cache_logger_on_first_use=True,
    )
