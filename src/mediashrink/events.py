"""Typed engine events and the in-process event bus.

Publishers (job manager, progress tracker, storage manager, cleanup service)
only know the EventBus and the event classes below. Subscribers register a
handler, optionally restricted to event types, and receive events on the
publishing thread. Events of one job are published in order.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Event:
    """Base class of every engine event."""

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass(frozen=True)
class JobAdded(Event):
    job_id: str
    input_path: str
    priority: int
    qualities: tuple[str, ...]


@dataclass(frozen=True)
class JobStarted(Event):
    job_id: str
    input_path: str
    attempt: int


@dataclass(frozen=True)
class JobPhaseProgress(Event):
    """Raw progress inside one pipeline phase (0-100 within the phase)."""

    job_id: str
    phase: str  # "analyzing", "transcoding" or "finalizing"
    raw_progress: float
    message: str | None = None
    metrics: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class JobCompleted(Event):
    job_id: str
    result_count: int
    skip_reason: str | None = None


@dataclass(frozen=True)
class JobFailed(Event):
    job_id: str
    error: str
    attempts: int
    max_attempts: int
    will_retry: bool


@dataclass(frozen=True)
class JobCancelled(Event):
    job_id: str


@dataclass(frozen=True)
class JobRetried(Event):
    job_id: str


@dataclass(frozen=True)
class ProgressUpdated(Event):
    """Phase-weighted, monotonic progress of one job (0-100)."""

    job_id: str
    status: str
    progress: float
    phase: str | None = None
    message: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class OverallProgress(Event):
    active_jobs: int
    average_progress: float
    jobs: tuple[tuple[str, float], ...] = ()


@dataclass(frozen=True)
class BatchAnalysisProgress(Event):
    completed: int
    total: int


@dataclass(frozen=True)
class AnalyticsUpdated(Event):
    snapshot: dict[str, Any]


@dataclass(frozen=True)
class CleanupCompleted(Event):
    report: dict[str, Any]


@dataclass(frozen=True)
class ConfigUpdated(Event):
    sections: tuple[str, ...]


EventHandler = Callable[[Event], None]
_EventFilter = tuple[type[Event], ...] | None


class EventBus:
    """Thread-safe observer registry.

    A handler that raises is logged and does not prevent delivery to the
    remaining handlers.

    Example:
        bus = EventBus()
        unsubscribe = bus.subscribe(print, [JobCompleted])
        bus.publish(JobCompleted(job_id="abc", result_count=2))
        unsubscribe()
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[int, tuple[EventHandler, _EventFilter]] = {}
        self._ids = itertools.count(1)

    def subscribe(
        self,
        handler: EventHandler,
        event_types: Iterable[type[Event]] | None = None,
    ) -> Callable[[], None]:
        """Register a handler.

        Args:
            handler: Callable invoked with each matching event.
            event_types: Event classes to receive (subclasses match).
                None receives everything.

        Returns:
            A callable that removes the subscription.
        """
        types = tuple(event_types) if event_types is not None else None
        with self._lock:
            handler_id = next(self._ids)
            self._handlers[handler_id] = (handler, types)

        def unsubscribe() -> None:
            with self._lock:
                self._handlers.pop(handler_id, None)

        return unsubscribe

    def publish(self, event: Event) -> None:
        """Deliver an event to every matching handler."""
        with self._lock:
            handlers = list(self._handlers.values())
        for handler, types in handlers:
            if types is not None and not isinstance(event, types):
                continue
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event.name)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._handlers)
