"""
Service events for ragmodule components.

Each component records ``<operation>.<phase>`` events (``upsert.start``,
``search.complete``, ``initialize.error``) on an :class:`EventRecorder`
scoped to its service name. Recorders derived with :meth:`EventRecorder.scoped`
share one observer set, so a single observer sees the whole module::

    recorder = EventRecorder()
    recorder.register(print)
    store_events = recorder.scoped("rag.vector_store")
    store_events.record("upsert.complete", {"collection": "docs"})
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, Iterator, List, Optional, Tuple

Metadata = Dict[str, Any]
EventObserver = Callable[["ServiceEvent"], None]

LOGGER = logging.getLogger(__name__)

PHASES = ("start", "complete", "error")


@dataclass(slots=True, frozen=True)
class ServiceEvent:
    """One step of a component operation."""

    timestamp: datetime
    service: str
    name: str
    payload: Metadata = field(default_factory=dict)

    @property
    def operation(self) -> str:
        """``name`` without a trailing phase (``"upsert.error"`` -> ``"upsert"``)."""
        head, _, tail = self.name.rpartition(".")
        return head if head and tail in PHASES else self.name

    @property
    def phase(self) -> Optional[str]:
        tail = self.name.rpartition(".")[2]
        return tail if tail in PHASES else None


class _ObserverSet:
    """Observers shared by a recorder and every recorder scoped from it."""

    __slots__ = ("_lock", "_observers")

    def __init__(self) -> None:
        self._lock = Lock()
        self._observers: List[EventObserver] = []

    def add(self, observer: EventObserver) -> None:
        with self._lock:
            if observer not in self._observers:
                self._observers.append(observer)

    def discard(self, observer: EventObserver) -> None:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def snapshot(self) -> Tuple[EventObserver, ...]:
        with self._lock:
            return tuple(self._observers)


def _join_service(*parts: Optional[str]) -> str:
    segments: List[str] = []
    for part in parts:
        if part:
            segments.extend(piece for piece in part.split(".") if piece)
    return ".".join(segments)


class EventRecorder:
    """Creates :class:`ServiceEvent` objects and hands them to observers."""

    __slots__ = ("_service", "_observers")

    def __init__(
        self,
        service: Optional[str] = None,
        *,
        observers: Optional[_ObserverSet] = None,
    ) -> None:
        self._service = _join_service(service)
        self._observers = observers if observers is not None else _ObserverSet()

    @property
    def service(self) -> str:
        return self._service

    def scoped(self, service: str) -> "EventRecorder":
        """Child recorder whose service name extends this one's."""
        return EventRecorder(_join_service(self._service, service), observers=self._observers)

    def register(self, observer: EventObserver) -> None:
        self._observers.add(observer)

    def unregister(self, observer: EventObserver) -> None:
        self._observers.discard(observer)

    @contextmanager
    def temporary_observer(self, observer: EventObserver) -> Iterator[None]:
        self.register(observer)
        try:
            yield
        finally:
            self.unregister(observer)

    def record(
        self,
        name: str,
        payload: Metadata | None = None,
        *,
        timestamp: Optional[datetime] = None,
    ) -> ServiceEvent:
        event = ServiceEvent(
            timestamp=timestamp or datetime.now(timezone.utc),
            service=self._service,
            name=name,
            payload=dict(payload or {}),
        )
        for observer in self._observers.snapshot():
            try:
                observer(event)
            except Exception:
                LOGGER.debug(
                    "Observer %r failed for %s %s",
                    observer,
                    event.service,
                    event.name,
                    exc_info=True,
                )
        return event


_GLOBAL_RECORDER = EventRecorder()


def get_event_recorder(service: Optional[str] = None) -> EventRecorder:
    """Return the process-wide recorder, optionally scoped to ``service``."""
    if service is None:
        return _GLOBAL_RECORDER
    return _GLOBAL_RECORDER.scoped(service)


def set_event_recorder(recorder: EventRecorder) -> None:
    global _GLOBAL_RECORDER
    _GLOBAL_RECORDER = recorder


def reset_event_recorder() -> None:
    set_event_recorder(EventRecorder())
