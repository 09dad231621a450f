"""Observability primitives for ragmodule components."""

from ragmodule.observability.events import (
    EventObserver,
    EventRecorder,
    ServiceEvent,
    get_event_recorder,
    reset_event_recorder,
    set_event_recorder,
)
from ragmodule.observability.logging import (
    LOG_LEVEL_MAP,
    logging_observer,
    set_log_level,
)

__all__ = [
    "EventObserver",
    "EventRecorder",
    "LOG_LEVEL_MAP",
    "ServiceEvent",
    "get_event_recorder",
    "logging_observer",
    "reset_event_recorder",
    "set_event_recorder",
    "set_log_level",
]
