"""
Event lifecycle coordinator.

Owns the single-active-event invariant. All activation paths go through
activate(), which serialises callers in-process with a lock and relies on the
registry's compare-and-swap to serialise across processes sharing a store.

States: draft -> active -> completed -> archived
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, List, Optional

from core.errors import (
    ActiveEventExists,
    InvalidEventData,
    InvalidStateTransition,
    StaleEventError,
)
from core.events.models import (
    STATE_ACTIVE,
    STATE_ARCHIVED,
    STATE_COMPLETED,
    STATE_DRAFT,
    Event,
    Transition,
    generate_event_code,
)
from core.events.registry import EventRegistry
from core.events.retention import AutoDeletePolicy
from core.metrics import LifecycleMetrics, time_operation

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3


class EventLifecycleCoordinator:
    """
    Enforces the activation protocol and the lifecycle state machine.

    Usage:
        >>> coordinator = EventLifecycleCoordinator(InMemoryEventRegistry())
        >>> event = coordinator.create_event("Spring Camp", start_at=...)
        >>> coordinator.activate(event.id)
        >>> coordinator.current_active().id == event.id
        True
    """

    def __init__(
        self,
        registry: EventRegistry,
        max_retries: int = DEFAULT_MAX_RETRIES,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.registry = registry
        self.max_retries = max(1, max_retries)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._activation_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Creation and settings
    # ------------------------------------------------------------------

    def create_event(
        self,
        name: str,
        start_at: Optional[datetime] = None,
        end_at: Optional[datetime] = None,
        description: Optional[str] = None,
        location: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Event:
        """Create a draft event with a generated human code."""
        if not name or not name.strip():
            raise InvalidEventData("Event name is required", {"field": "name"})
        if start_at and end_at and end_at < start_at:
            raise InvalidEventData("Event end must not precede its start", {"field": "end_at"})

        event = self.registry.create(
            name=name.strip(),
            code=generate_event_code(self._clock()),
            start_at=start_at,
            end_at=end_at,
            description=description,
            location=location,
            created_by=created_by,
        )
        logger.info(f"Created event {event.id} ({event.code}) in draft")
        return event

    def update_auto_delete(self, event_id: int, policy: AutoDeletePolicy) -> Event:
        """Replace the retention policy; frozen once media has been deleted."""
        event = self.registry.require(event_id)
        if event.media_deleted_at is not None:
            raise InvalidEventData(
                "Media has already been deleted for this event",
                {"event_id": event_id},
            )
        policy.validate_new(self._clock().date())
        updated = self.registry.update_auto_delete(event_id, policy)
        logger.info(f"Updated auto-delete policy for event {event_id}: {policy.to_dict()}")
        return updated

    # ------------------------------------------------------------------
    # Lifecycle transitions
    # ------------------------------------------------------------------

    def activate(self, event_id: int, force: bool = False, actor: Optional[str] = None) -> Event:
        """
        Make `event_id` the single active event.

        Args:
            event_id: Draft event to activate
            force: Complete any currently active event in the same atomic step
            actor: User id recorded in the audit log

        Returns:
            The activated event

        Raises:
            EventNotFound: unknown event
            InvalidStateTransition: event is not in draft
            ActiveEventExists: another event is active and force is False
        """
        with time_operation("events.activate"), self._activation_lock:
            for attempt in range(1, self.max_retries + 1):
                try:
                    return self._activate_once(event_id, force, actor)
                except StaleEventError as e:
                    # Another process changed an event between our read and write.
                    LifecycleMetrics.record_retry(event_id)
                    logger.info(
                        f"Activation of event {event_id} lost a race on event {e.event_id} "
                        f"(attempt {attempt}/{self.max_retries}); re-reading state"
                    )

            LifecycleMetrics.record_activation("retry_exhausted", forced=force)
            raise StaleEventError(event_id, -1, None)

    def _activate_once(self, event_id: int, force: bool, actor: Optional[str]) -> Event:
        event = self.registry.require(event_id)
        if event.state != STATE_DRAFT:
            LifecycleMetrics.record_activation("invalid", forced=force)
            raise InvalidStateTransition(event.id, event.state, STATE_ACTIVE)

        others = [e for e in self.registry.find_active() if e.id != event.id]
        if others and not force:
            conflict = others[0]
            LifecycleMetrics.record_activation("conflict", forced=False)
            logger.info(
                f"Activation of event {event_id} refused: event {conflict.id} "
                f"({conflict.code}) is active"
            )
            raise ActiveEventExists(conflict.snapshot())

        transitions: List[Transition] = [
            Transition(other.id, STATE_ACTIVE, STATE_COMPLETED, other.version)
            for other in others
        ]
        transitions.append(Transition(event.id, STATE_DRAFT, STATE_ACTIVE, event.version))

        try:
            applied = self.registry.apply_transitions(transitions)
        except ActiveEventExists:
            # An event became active after our read; without force this is the
            # ordinary conflict, with force we must re-read and complete it too.
            if force:
                raise StaleEventError(event.id, event.version, None)
            LifecycleMetrics.record_activation("conflict", forced=False)
            raise

        for other in others:
            LifecycleMetrics.record_transition(
                "event.auto_complete", other.id, STATE_ACTIVE, STATE_COMPLETED, actor
            )
        LifecycleMetrics.record_transition(
            "event.activate", event.id, STATE_DRAFT, STATE_ACTIVE, actor
        )
        LifecycleMetrics.record_activation("activated", forced=bool(others))
        return applied[-1]

    def complete(self, event_id: int, actor: Optional[str] = None) -> Event:
        """Move an active event to completed. Zero active events is a valid outcome."""
        return self._simple_transition(event_id, STATE_ACTIVE, STATE_COMPLETED, "event.complete", actor)

    def archive(self, event_id: int, actor: Optional[str] = None) -> Event:
        """Move a completed event to the terminal archived state."""
        return self._simple_transition(event_id, STATE_COMPLETED, STATE_ARCHIVED, "event.archive", actor)

    def _simple_transition(
        self,
        event_id: int,
        from_state: str,
        to_state: str,
        action: str,
        actor: Optional[str],
    ) -> Event:
        event = self.registry.require(event_id)
        if event.state != from_state:
            raise InvalidStateTransition(event.id, event.state, to_state)

        try:
            (updated,) = self.registry.apply_transitions(
                [Transition(event.id, from_state, to_state, event.version)]
            )
        except StaleEventError:
            # Re-read once so the caller sees the state that won the race.
            current = self.registry.require(event_id)
            raise InvalidStateTransition(current.id, current.state, to_state)

        LifecycleMetrics.record_transition(action, event.id, from_state, to_state, actor)
        return updated

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def current_active(self) -> Optional[Event]:
        """The active event, or None. Callers must not cache the result."""
        active = self.registry.find_active()
        if not active:
            return None
        if len(active) > 1:
            logger.error(
                f"Single-active invariant violated: events "
                f"{[e.id for e in active]} are all active"
            )
        return active[0]

    def list_events(self, state: Optional[str] = None) -> List[Event]:
        return self.registry.list(state=state)
