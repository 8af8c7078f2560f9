"""
Action, resource and field constants.

Defines every action a role can be granted, the resource types the policy
engine knows about, and the field catalogue of each resource type.
"""

from typing import Dict, FrozenSet
import logging

logger = logging.getLogger(__name__)

# ============================================================================
# Action Constants
# ============================================================================

ACTION_SEARCH = "search"
"""Run a filtered query over a resource."""

ACTION_LIST = "list"
"""List records of a resource without search filters."""

ACTION_EXPORT = "export"
"""Export a resource listing (report generation itself is handled elsewhere)."""

ACTION_UPDATE = "update"
"""Modify records of a resource."""

ACTION_SEARCH_BY_NAME = "search_by_name"
ACTION_SEARCH_BY_REGION = "search_by_region"
ACTION_SEARCH_BY_CONDITION = "search_by_condition"
ACTION_SEARCH_BY_EDITOR = "search_by_editor"
ACTION_SEARCH_BY_GROUP = "search_by_group"

ACTION_DOWNLOAD = "download"
"""Obtain a download URL for a media file."""

ACTION_PLAYBACK_ALL = "playback_all"
"""Stream any media item within scope."""

ACTION_PLAYBACK_ISSUES_ONLY = "playback_issues_only"
"""Stream only media items that carry an open issue."""

ACTION_APPROVE_REGISTRATION = "approve_registration"
"""Approve pending user registrations."""

ACTION_MANAGE_EVENTS = "manage_events"
"""Create, activate, complete and archive events."""

ACTION_VIEW_DEBUG = "view_debug"
"""Access debug endpoints and metrics."""

ALL_ACTIONS = frozenset({
    ACTION_SEARCH,
    ACTION_LIST,
    ACTION_EXPORT,
    ACTION_UPDATE,
    ACTION_SEARCH_BY_NAME,
    ACTION_SEARCH_BY_REGION,
    ACTION_SEARCH_BY_CONDITION,
    ACTION_SEARCH_BY_EDITOR,
    ACTION_SEARCH_BY_GROUP,
    ACTION_DOWNLOAD,
    ACTION_PLAYBACK_ALL,
    ACTION_PLAYBACK_ISSUES_ONLY,
    ACTION_APPROVE_REGISTRATION,
    ACTION_MANAGE_EVENTS,
    ACTION_VIEW_DEBUG,
})

# Actions that mutate state; these fail instead of returning empty when no
# event is active.
WRITE_ACTIONS = frozenset({ACTION_UPDATE})


# ============================================================================
# Resource Types and Fields
# ============================================================================

RESOURCE_MEDIA = "media"
RESOURCE_ISSUE = "issue"
RESOURCE_EVENT = "event"
RESOURCE_BACKUP = "backup"

ALL_RESOURCES = frozenset({
    RESOURCE_MEDIA,
    RESOURCE_ISSUE,
    RESOURCE_EVENT,
    RESOURCE_BACKUP,
})

# Resources whose queries are confined to the active event
EVENT_SCOPED_RESOURCES = frozenset({
    RESOURCE_MEDIA,
    RESOURCE_ISSUE,
    RESOURCE_BACKUP,
})

MEDIA_FIELDS = frozenset({
    "media_id",
    "event_id",
    "file_name",
    "full_name",
    "region",
    "condition",
    "editor_id",
    "group_id",
    "camera_number",
    "sd_label",
    "status",
    "has_issues",
    "issue_type",
    "issue_status",
    "backup_verified",
    "backup_pending",
    "captured_at",
})

ISSUE_FIELDS = frozenset({
    "issue_id",
    "media_id",
    "event_id",
    "group_id",
    "editor_id",
    "camera_number",
    "sd_label",
    "issue_type",
    "issue_status",
    "severity",
    "description",
    "reported_by",
    "assigned_to",
})

EVENT_FIELDS = frozenset({
    "id",
    "code",
    "name",
    "state",
    "start_at",
    "end_at",
    "description",
    "location",
    "created_by",
    "version",
    "auto_delete",
    "auto_delete_effective_date",
    "media_deleted_at",
})

BACKUP_FIELDS = frozenset({
    "backup_id",
    "media_id",
    "event_id",
    "editor_id",
    "group_id",
    "disk_label",
    "status",
    "backup_verified",
    "backup_pending",
    "verified_at",
})

RESOURCE_FIELDS: Dict[str, FrozenSet[str]] = {
    RESOURCE_MEDIA: MEDIA_FIELDS,
    RESOURCE_ISSUE: ISSUE_FIELDS,
    RESOURCE_EVENT: EVENT_FIELDS,
    RESOURCE_BACKUP: BACKUP_FIELDS,
}

# Identity key of each resource; always visible so callers can address rows
IDENTITY_FIELDS: Dict[str, str] = {
    RESOURCE_MEDIA: "media_id",
    RESOURCE_ISSUE: "issue_id",
    RESOURCE_EVENT: "id",
    RESOURCE_BACKUP: "backup_id",
}

# Filter keys that need a search-dimension action on top of field visibility
SEARCH_DIMENSIONS: Dict[str, str] = {
    "full_name": ACTION_SEARCH_BY_NAME,
    "region": ACTION_SEARCH_BY_REGION,
    "condition": ACTION_SEARCH_BY_CONDITION,
    "editor_id": ACTION_SEARCH_BY_EDITOR,
    "group_id": ACTION_SEARCH_BY_GROUP,
}


# ============================================================================
# Helpers
# ============================================================================

def validate_action(action: str) -> bool:
    """
    Check if an action is known.

    Examples:
        >>> validate_action("download")
        True
        >>> validate_action("fly")
        False
    """
    return bool(action) and action in ALL_ACTIONS


def validate_resource(resource_type: str) -> bool:
    """Check if a resource type is known."""
    return bool(resource_type) and resource_type in ALL_RESOURCES


def is_write_action(action: str) -> bool:
    return action in WRITE_ACTIONS


def is_event_scoped(resource_type: str) -> bool:
    return resource_type in EVENT_SCOPED_RESOURCES


def has_capability(role: str, action: str, grants=None) -> bool:
    """
    Check if a role is granted an action.

    Args:
        role: Role slug or display name (e.g., "admin", "TeamLead", "qa")
        action: Action constant (e.g., ACTION_DOWNLOAD)
        grants: Grant table; defaults to the built-in CAPABILITY_GRANTS

    Returns:
        True if the role holds the action, False otherwise

    Examples:
        >>> has_capability("admin", ACTION_DOWNLOAD)
        True
        >>> has_capability("qa", ACTION_DOWNLOAD)
        False
        >>> has_capability("TeamLead", ACTION_MANAGE_EVENTS)
        True
    """
    # Import here to avoid circular dependency
    from .grants import CAPABILITY_GRANTS
    from .roles import normalize_role

    if not role:
        logger.warning("has_capability called with empty role")
        return False

    if action not in ALL_ACTIONS:
        logger.warning(f"Unknown action: {action}")
        return False

    table = CAPABILITY_GRANTS if grants is None else grants
    normalized_role = normalize_role(role)
    grant = table.get(normalized_role) if normalized_role else None
    if grant is None:
        logger.warning(f"No grant for role: {role}")
        return False

    return action in grant.actions
