"""Logging helpers: level mapping and an event-to-log observer."""

from __future__ import annotations

import logging

from ragmodule.errors import invalid_input
from ragmodule.observability.events import ServiceEvent

LOGGER = logging.getLogger(__name__)

ROOT_LOGGER_NAME = "ragmodule"

LOG_LEVEL_MAP = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def set_log_level(level: str) -> None:
    """Apply one of ``debug``, ``info``, ``warn``, ``error`` to the package logger."""
    try:
        numeric = LOG_LEVEL_MAP[level]
    except (KeyError, TypeError) as exc:
        raise invalid_input(
            f"Log level must be one of: {', '.join(LOG_LEVEL_MAP)}"
        ) from exc
    logging.getLogger(ROOT_LOGGER_NAME).setLevel(numeric)


def logging_observer(event: ServiceEvent) -> None:
    """Write service events to the log; errors at WARNING, the rest at DEBUG."""
    if event.phase == "error":
        LOGGER.warning(
            "%s %s failed: %s",
            event.service,
            event.operation,
            event.payload.get("error"),
        )
    elif event.phase == "complete":
        LOGGER.debug(
            "%s %s completed in %.2f ms",
            event.service,
            event.operation,
            event.payload.get("duration_ms", 0.0),
        )
    else:
        LOGGER.debug("%s %s %s", event.service, event.name, event.payload)
