"""Structured event log for batch fitting operations.

Batch operations (fitting a collection, screening, bootstrapping) do not print
progress.  Instead they record :class:`Event` objects in an :class:`EventLog`
which is returned alongside the result; the presentation layer decides how to
render them.  Subscribers can also be attached to receive events as they are
recorded.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Callable


def _now() -> datetime:
    """Return current UTC timestamp."""
    return datetime.now(UTC).replace(tzinfo=None)


# Canonical event types
MODEL_FITTED = "model.fitted"
MODEL_FAILED = "model.failed"
PARAM_STATS_UNAVAILABLE = "model.param_stats_unavailable"
MODEL_EXCLUDED = "model.excluded"
DEGENERATE_DATA = "data.degenerate"
SELECTOR_MISMATCH = "average.selector_mismatch"
ENSEMBLE_BUILT = "average.ensemble_built"
RESIDUALS_UNUSABLE = "bootstrap.residuals_unusable"
REPLICATE_DISCARDED = "bootstrap.replicate_discarded"

# Levels mirror the ``logging`` level names.
INFO = "info"
WARNING = "warning"


@dataclass(frozen=True)
class Event:
    """An immutable record of something that happened during a batch run.

    Attributes
    ----------
    type:
        Event category, e.g. ``"model.excluded"``.
    level:
        ``"info"`` or ``"warning"``.
    model_name:
        The model the event refers to, or ``None`` for dataset-level events.
    message:
        Human-readable reason.
    payload:
        Extra structured data (p-values, counts, exclusion reason).
    timestamp:
        UTC time at which the event was created.
    """

    type: str
    level: str = INFO
    model_name: str | None = None
    message: str = ""
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_now)


# Type alias for subscriber callbacks.
EventHandler = Callable[[Event], None]


class EventLog:
    """A thread-safe, append-only list of :class:`Event` records.

    Example
    -------
    >>> log = EventLog()
    >>> seen: list[Event] = []
    >>> log.subscribe(MODEL_FAILED, seen.append)
    >>> log.record(MODEL_FAILED, model_name="gompertz", message="singular")
    >>> len(log), len(seen)
    (1, 1)
    """

    def __init__(self, events: list[Event] | tuple[Event, ...] = ()) -> None:
        self._events: list[Event] = list(events)
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._lock = threading.Lock()

    # -- public API --------------------------------------------------------

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """Register *handler* to be called when *event_type* is recorded."""
        with self._lock:
            self._handlers[event_type].append(handler)

    def record(
        self,
        event: Event | str,
        *,
        level: str = INFO,
        model_name: str | None = None,
        message: str = "",
        payload: dict[str, Any] | None = None,
    ) -> Event:
        """Append an event and dispatch it to subscribers.

        Accepts either a pre-built :class:`Event` **or** an event-type string
        with keyword fields (convenience form).  Handlers run synchronously in
        registration order, outside the lock.
        """
        if isinstance(event, str):
            event = Event(
                type=event, level=level, model_name=model_name,
                message=message, payload=payload or {},
            )
        with self._lock:
            self._events.append(event)
            handlers = list(self._handlers.get(event.type, []))
        for handler in handlers:
            handler(event)
        return event

    def extend(self, events: list[Event] | tuple[Event, ...]) -> None:
        """Append several already-built events."""
        for event in events:
            self.record(event)

    # -- introspection -----------------------------------------------------

    @property
    def events(self) -> tuple[Event, ...]:
        """Snapshot of the recorded events in insertion order."""
        with self._lock:
            return tuple(self._events)

    def of_type(self, event_type: str) -> list[Event]:
        """Return recorded events of one category."""
        return [e for e in self.events if e.type == event_type]

    def for_model(self, model_name: str) -> list[Event]:
        """Return recorded events that refer to *model_name*."""
        return [e for e in self.events if e.model_name == model_name]

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
