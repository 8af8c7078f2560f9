"""
Event records and lifecycle states.
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Optional

from core.events.retention import AutoDeletePolicy


# ============================================================================
# Lifecycle States
# ============================================================================

STATE_DRAFT = "draft"
STATE_ACTIVE = "active"
STATE_COMPLETED = "completed"
STATE_ARCHIVED = "archived"

ALL_STATES = frozenset({
    STATE_DRAFT,
    STATE_ACTIVE,
    STATE_COMPLETED,
    STATE_ARCHIVED,
})

# Legal transitions, keyed by source state
ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    STATE_DRAFT: frozenset({STATE_ACTIVE}),
    STATE_ACTIVE: frozenset({STATE_COMPLETED}),
    STATE_COMPLETED: frozenset({STATE_ARCHIVED}),
    STATE_ARCHIVED: frozenset(),
}


def is_transition_allowed(from_state: str, to_state: str) -> bool:
    """Check the lifecycle state machine."""
    return to_state in ALLOWED_TRANSITIONS.get(from_state, frozenset())


_CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_event_code(now: Optional[datetime] = None) -> str:
    """Human code in the form EVT-<year>-<6 chars>."""
    now = now or datetime.now(timezone.utc)
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(6))
    return f"EVT-{now.year}-{suffix}"


# ============================================================================
# Records
# ============================================================================

@dataclass(frozen=True)
class EventSnapshot:
    """The slice of a conflicting event returned with ActiveEventExists."""
    id: int
    code: str
    name: str
    end_at: Optional[datetime]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "end_at": self.end_at.isoformat() if self.end_at else None,
        }


@dataclass(frozen=True)
class Event:
    """An event record as held by the registry.

    Records are immutable; the registry hands out new instances whenever the
    state or version changes.
    """
    id: int
    code: str
    name: str
    state: str = STATE_DRAFT
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    description: Optional[str] = None
    location: Optional[str] = None
    created_by: Optional[str] = None
    version: int = 1
    auto_delete: AutoDeletePolicy = field(default_factory=AutoDeletePolicy)
    media_deleted_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.state == STATE_ACTIVE

    def snapshot(self) -> EventSnapshot:
        return EventSnapshot(id=self.id, code=self.code, name=self.name, end_at=self.end_at)

    def with_state(self, state: str, at: Optional[datetime] = None) -> "Event":
        """Return a copy moved to `state` with the version bumped."""
        return replace(
            self,
            state=state,
            version=self.version + 1,
            updated_at=at or datetime.now(timezone.utc),
        )

    def effective_delete_date(self):
        return self.auto_delete.effective_delete_date(self.end_at)

    def should_auto_delete(self, now: Optional[datetime] = None) -> bool:
        if self.media_deleted_at is not None:
            return False
        return self.auto_delete.is_due(self.end_at, now)

    def to_dict(self) -> Dict[str, Any]:
        delete_date = self.effective_delete_date()
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "state": self.state,
            "start_at": self.start_at.isoformat() if self.start_at else None,
            "end_at": self.end_at.isoformat() if self.end_at else None,
            "description": self.description,
            "location": self.location,
            "created_by": self.created_by,
            "version": self.version,
            "auto_delete": self.auto_delete.to_dict(),
            "auto_delete_effective_date": delete_date.isoformat() if delete_date else None,
            "media_deleted_at": self.media_deleted_at.isoformat() if self.media_deleted_at else None,
        }


@dataclass(frozen=True)
class Transition:
    """A single compare-and-swap state change."""
    event_id: int
    from_state: str
    to_state: str
    expected_version: int
