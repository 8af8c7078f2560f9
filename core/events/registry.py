"""
Event registry: storage contract for event records and lifecycle state.

The registry is the only place event state is persisted. State changes go
through apply_transitions(), a compare-and-swap over (state, version) that
applies a batch of transitions atomically and refuses any result with more
than one active event.
"""

from __future__ import annotations

import itertools
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from core.errors import (
    ActiveEventExists,
    EventNotFound,
    InvalidStateTransition,
    StaleEventError,
)
from core.events.models import (
    STATE_ACTIVE,
    Event,
    Transition,
    is_transition_allowed,
)
from core.events.retention import AutoDeletePolicy

logger = logging.getLogger(__name__)


class EventRegistry(ABC):
    """Abstract base class for event stores."""

    @abstractmethod
    def create(
        self,
        *,
        name: str,
        code: str,
        start_at: Optional[datetime] = None,
        end_at: Optional[datetime] = None,
        description: Optional[str] = None,
        location: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Event:
        """Insert a new event in draft state and return it."""

    @abstractmethod
    def get(self, event_id: int) -> Optional[Event]:
        """Fetch a single event, or None."""

    @abstractmethod
    def list(self, state: Optional[str] = None) -> List[Event]:
        """List events, newest start first, optionally filtered by state."""

    @abstractmethod
    def find_active(self) -> List[Event]:
        """All events currently in the active state (zero or one)."""

    @abstractmethod
    def apply_transitions(self, transitions: Sequence[Transition]) -> List[Event]:
        """
        Apply every transition or none of them.

        Raises:
            EventNotFound: a transition names an unknown event
            StaleEventError: an event's version no longer matches
            InvalidStateTransition: the state machine forbids a transition
            ActiveEventExists: the result would hold two active events
        """

    @abstractmethod
    def update_auto_delete(self, event_id: int, policy: AutoDeletePolicy) -> Event:
        """Replace an event's retention policy."""

    def require(self, event_id: int) -> Event:
        event = self.get(event_id)
        if event is None:
            raise EventNotFound(event_id)
        return event


def check_transition(event: Event, transition: Transition) -> None:
    """Validate one compare-and-swap step against the current record."""
    if event.version != transition.expected_version:
        raise StaleEventError(event.id, transition.expected_version, event.version)
    if event.state != transition.from_state or not is_transition_allowed(
        transition.from_state, transition.to_state
    ):
        raise InvalidStateTransition(event.id, event.state, transition.to_state)


def _sort_key(event: Event):
    start = event.start_at or datetime.min.replace(tzinfo=timezone.utc)
    return (start, event.id)


class InMemoryEventRegistry(EventRegistry):
    """Thread-safe in-process registry."""

    def __init__(self):
        self._lock = threading.RLock()
        self._events: Dict[int, Event] = {}
        self._ids = itertools.count(1)

    def create(
        self,
        *,
        name: str,
        code: str,
        start_at: Optional[datetime] = None,
        end_at: Optional[datetime] = None,
        description: Optional[str] = None,
        location: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Event:
        with self._lock:
            event = Event(
                id=next(self._ids),
                code=code,
                name=name,
                start_at=start_at,
                end_at=end_at,
                description=description,
                location=location,
                created_by=created_by,
                updated_at=datetime.now(timezone.utc),
            )
            self._events[event.id] = event
            return event

    def get(self, event_id: int) -> Optional[Event]:
        with self._lock:
            return self._events.get(event_id)

    def list(self, state: Optional[str] = None) -> List[Event]:
        with self._lock:
            events = [e for e in self._events.values() if state is None or e.state == state]
        return sorted(events, key=_sort_key, reverse=True)

    def find_active(self) -> List[Event]:
        return self.list(state=STATE_ACTIVE)

    def apply_transitions(self, transitions: Sequence[Transition]) -> List[Event]:
        now = datetime.now(timezone.utc)
        with self._lock:
            staged: Dict[int, Event] = {}
            for transition in transitions:
                current = staged.get(transition.event_id) or self._events.get(transition.event_id)
                if current is None:
                    raise EventNotFound(transition.event_id)
                check_transition(current, transition)
                staged[current.id] = current.with_state(transition.to_state, now)

            merged = dict(self._events)
            merged.update(staged)
            active = [e for e in merged.values() if e.state == STATE_ACTIVE]
            if len(active) > 1:
                touched = set(staged)
                conflict = next((e for e in active if e.id not in touched), active[0])
                logger.warning(
                    "Rejected transition batch that would leave %d active events",
                    len(active),
                )
                raise ActiveEventExists(conflict.snapshot())

            # Commit point
            self._events.update(staged)
            return [staged[t.event_id] for t in transitions]

    def update_auto_delete(self, event_id: int, policy: AutoDeletePolicy) -> Event:
        with self._lock:
            event = self.require(event_id)
            updated = replace(event, auto_delete=policy, updated_at=datetime.now(timezone.utc))
            self._events[event_id] = updated
            return updated
