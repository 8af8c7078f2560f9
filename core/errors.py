"""
Error taxonomy for the access and scoping core.

Every failure surfaced to callers is a typed subclass of AccessCoreError with a
stable machine-readable code. The API layer maps these to HTTP responses; the
core itself never raises a bare Exception for a policy or lifecycle outcome.
"""

from typing import Any, Dict, Optional


class AccessCoreError(Exception):
    """Base class for all typed core failures."""

    code = "access_core_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialise for API responses."""
        payload = {"error": self.code, "message": self.message}
        if self.details:
            payload.update(self.details)
        return payload


# ============================================================================
# Event Lifecycle
# ============================================================================

class EventNotFound(AccessCoreError):
    """Raised when an event id does not exist in the registry."""

    code = "event_not_found"

    def __init__(self, event_id: int):
        super().__init__(f"Event {event_id} not found", {"event_id": event_id})
        self.event_id = event_id


class ActiveEventExists(AccessCoreError):
    """
    Activation conflict: another event already holds the active state.

    Carries a snapshot of the conflicting event so the caller can decide
    whether to retry with force=True.
    """

    code = "active_event_exists"

    def __init__(self, conflict):
        super().__init__(
            f"Another event is already active: {conflict.code}",
            {"active_event": conflict.to_dict()},
        )
        self.conflict = conflict


class InvalidStateTransition(AccessCoreError):
    """Attempted lifecycle transition is not legal from the current state."""

    code = "invalid_state_transition"

    def __init__(self, event_id: int, current_state: str, target_state: str):
        super().__init__(
            f"Event {event_id} cannot move from '{current_state}' to '{target_state}'",
            {
                "event_id": event_id,
                "current_state": current_state,
                "target_state": target_state,
            },
        )
        self.event_id = event_id
        self.current_state = current_state
        self.target_state = target_state


class StaleEventError(AccessCoreError):
    """Compare-and-swap lost: the event changed between read and write."""

    code = "stale_event"

    def __init__(self, event_id: int, expected_version: int, actual_version: Optional[int]):
        super().__init__(
            f"Event {event_id} changed concurrently "
            f"(expected version {expected_version}, found {actual_version})",
            {"event_id": event_id},
        )
        self.event_id = event_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class InvalidEventData(AccessCoreError):
    """Event attributes or auto-delete policy failed validation."""

    code = "invalid_event_data"


# ============================================================================
# Scoping and Policy
# ============================================================================

class NoActiveEvent(AccessCoreError):
    """A scoped write was attempted while no event is active."""

    code = "no_active_event"

    def __init__(self, resource_type: str, action: str):
        super().__init__(
            "No event is currently active; activate an event before making changes",
            {"resource_type": resource_type, "action": action},
        )


class Forbidden(AccessCoreError):
    """Policy denies the action or a requested field."""

    code = "forbidden"

    def __init__(self, message: str, action: Optional[str] = None, field: Optional[str] = None):
        details: Dict[str, Any] = {}
        if action:
            details["action"] = action
        if field:
            details["field"] = field
        super().__init__(message, details)
        self.action = action
        self.field = field


class InvalidFilterValue(AccessCoreError):
    """A query filter value could not be converted to the field's type."""

    code = "invalid_filter"

    def __init__(self, field: str, value: str):
        super().__init__(f"Invalid value for filter '{field}': {value!r}", {"field": field})
        self.field = field


class InvalidPolicyError(AccessCoreError):
    """A capability grant table failed validation."""

    code = "invalid_policy"


# ============================================================================
# Playback
# ============================================================================

class RecordNotFound(AccessCoreError):
    """Raised when a record id is unknown to the repository."""

    code = "not_found"

    def __init__(self, resource_type: str, record_id):
        super().__init__(
            f"{resource_type.capitalize()} {record_id} not found",
            {"resource_type": resource_type, "record_id": record_id},
        )
        self.resource_type = resource_type
        self.record_id = record_id


class MediaNotFound(RecordNotFound):
    """Raised when a media id is unknown to the repository."""

    code = "media_not_found"

    def __init__(self, media_id: str):
        super().__init__("media", media_id)
        self.media_id = media_id


class SourceOffline(AccessCoreError):
    """No viable playback source exists for the media item right now."""

    code = "source_offline"

    def __init__(self, media_id: str):
        super().__init__(
            "No playback or download source is currently available",
            {"media_id": media_id},
        )
        self.media_id = media_id


class AuditWriteError(AccessCoreError):
    """The audit sink failed to durably record a playback intent."""

    code = "audit_write_failed"
