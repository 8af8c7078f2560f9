"""
Event lifecycle module.

Provides event records, the lifecycle state machine, the event registries and
the coordinator that owns the single-active-event invariant.
"""

from .models import (
    STATE_DRAFT,
    STATE_ACTIVE,
    STATE_COMPLETED,
    STATE_ARCHIVED,
    ALL_STATES,
    Event,
    EventSnapshot,
    Transition,
    generate_event_code,
    is_transition_allowed,
)

from .retention import AutoDeletePolicy

from .registry import (
    EventRegistry,
    InMemoryEventRegistry,
)

from .sqlite_registry import SqliteEventRegistry

from .lifecycle import EventLifecycleCoordinator

__all__ = [
    # States
    "STATE_DRAFT",
    "STATE_ACTIVE",
    "STATE_COMPLETED",
    "STATE_ARCHIVED",
    "ALL_STATES",
    # Records
    "Event",
    "EventSnapshot",
    "Transition",
    "AutoDeletePolicy",
    "generate_event_code",
    "is_transition_allowed",
    # Registries
    "EventRegistry",
    "InMemoryEventRegistry",
    "SqliteEventRegistry",
    # Coordinator
    "EventLifecycleCoordinator",
]
