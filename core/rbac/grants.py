"""
Capability grant table.

One immutable CapabilityGrant per role: the fields the role may see on each
resource type, the actions it may perform and the scope predicate restricting
which records it may reach. The default table below can be replaced by a YAML
file at startup (CAPABILITY_GRANTS_PATH).
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Mapping, Union

import yaml

from core.errors import InvalidPolicyError
from .capabilities import (
    ACTION_APPROVE_REGISTRATION,
    ACTION_DOWNLOAD,
    ACTION_EXPORT,
    ACTION_LIST,
    ACTION_PLAYBACK_ALL,
    ACTION_PLAYBACK_ISSUES_ONLY,
    ACTION_SEARCH,
    ACTION_SEARCH_BY_CONDITION,
    ACTION_UPDATE,
    ALL_ACTIONS,
    BACKUP_FIELDS,
    EVENT_FIELDS,
    ISSUE_FIELDS,
    MEDIA_FIELDS,
    RESOURCE_BACKUP,
    RESOURCE_EVENT,
    RESOURCE_FIELDS,
    RESOURCE_ISSUE,
    RESOURCE_MEDIA,
)
from .roles import (
    ALL_ROLES,
    ROLE_ADMIN,
    ROLE_BACKUP,
    ROLE_BACKUP_LEAD,
    ROLE_EDITOR,
    ROLE_GROUP_LEADER,
    ROLE_QA,
    ROLE_QA_LEAD,
    ROLE_TEAM_LEAD,
    normalize_role,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Scope Predicates
# ============================================================================

SCOPE_GLOBAL = "global"
SCOPE_OWN_GROUPS = "own_groups"
SCOPE_ISSUES_ONLY = "issues_only"
SCOPE_OWN_ITEMS = "own_items"

# Lower is narrower
SCOPE_NARROWNESS: Dict[str, int] = {
    SCOPE_OWN_ITEMS: 0,
    SCOPE_ISSUES_ONLY: 1,
    SCOPE_OWN_GROUPS: 2,
    SCOPE_GLOBAL: 3,
}

ALL_SCOPES = frozenset(SCOPE_NARROWNESS)


def narrowest_scope(scopes) -> str:
    """
    Pick the most restrictive scope.

    Examples:
        >>> narrowest_scope(["global", "issues_only", "own_groups"])
        'issues_only'
    """
    scopes = list(scopes)
    if not scopes:
        return SCOPE_GLOBAL
    return min(scopes, key=lambda s: SCOPE_NARROWNESS[s])


# ============================================================================
# Grant Record
# ============================================================================

@dataclass(frozen=True)
class CapabilityGrant:
    """Immutable policy record for one role."""
    role: str
    actions: FrozenSet[str]
    visible_fields: Mapping[str, FrozenSet[str]] = field(default_factory=dict)
    scope: str = SCOPE_GLOBAL

    def __post_init__(self):
        if self.scope not in ALL_SCOPES:
            raise InvalidPolicyError(
                f"Unknown scope '{self.scope}' for role {self.role}",
                {"role": self.role, "scope": self.scope},
            )
        unknown_actions = set(self.actions) - ALL_ACTIONS
        if unknown_actions:
            raise InvalidPolicyError(
                f"Unknown actions for role {self.role}: {sorted(unknown_actions)}",
                {"role": self.role, "actions": sorted(unknown_actions)},
            )
        for resource_type, fields in self.visible_fields.items():
            catalogue = RESOURCE_FIELDS.get(resource_type)
            if catalogue is None:
                raise InvalidPolicyError(
                    f"Unknown resource type '{resource_type}' for role {self.role}",
                    {"role": self.role, "resource_type": resource_type},
                )
            unknown_fields = set(fields) - catalogue
            if unknown_fields:
                raise InvalidPolicyError(
                    f"Unknown {resource_type} fields for role {self.role}: {sorted(unknown_fields)}",
                    {"role": self.role, "fields": sorted(unknown_fields)},
                )

    def covers(self, resource_type: str) -> bool:
        """True when the role may touch this resource type at all."""
        return resource_type in self.visible_fields

    def fields_for(self, resource_type: str) -> FrozenSet[str]:
        return frozenset(self.visible_fields.get(resource_type, frozenset()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "scope": self.scope,
            "actions": sorted(self.actions),
            "visible_fields": {r: sorted(f) for r, f in self.visible_fields.items()},
        }


# ============================================================================
# Default Grant Table
# ============================================================================

QA_MEDIA_FIELDS = frozenset({
    "media_id", "camera_number", "sd_label", "issue_type", "issue_status", "event_id",
})

BACKUP_MEDIA_FIELDS = frozenset({
    "media_id", "status", "backup_verified", "backup_pending",
})

EDITOR_MEDIA_FIELDS = MEDIA_FIELDS - {"condition"}

_FULL_VISIBILITY = {
    RESOURCE_MEDIA: MEDIA_FIELDS,
    RESOURCE_ISSUE: ISSUE_FIELDS,
    RESOURCE_EVENT: EVENT_FIELDS,
    RESOURCE_BACKUP: BACKUP_FIELDS,
}

_READ_ACTIONS = frozenset({ACTION_SEARCH, ACTION_LIST, ACTION_EXPORT})

CAPABILITY_GRANTS: Dict[str, CapabilityGrant] = {
    # Admin, TeamLead: everything, everywhere
    ROLE_ADMIN: CapabilityGrant(
        role=ROLE_ADMIN,
        actions=ALL_ACTIONS,
        visible_fields=_FULL_VISIBILITY,
        scope=SCOPE_GLOBAL,
    ),
    ROLE_TEAM_LEAD: CapabilityGrant(
        role=ROLE_TEAM_LEAD,
        actions=ALL_ACTIONS,
        visible_fields=_FULL_VISIBILITY,
        scope=SCOPE_GLOBAL,
    ),

    # GroupLeader: full fields, but only for groups they lead; no download
    ROLE_GROUP_LEADER: CapabilityGrant(
        role=ROLE_GROUP_LEADER,
        actions=_READ_ACTIONS | {
            ACTION_UPDATE,
            ACTION_SEARCH_BY_CONDITION,
            ACTION_PLAYBACK_ALL,
            ACTION_APPROVE_REGISTRATION,
        },
        visible_fields={
            RESOURCE_MEDIA: MEDIA_FIELDS,
            RESOURCE_ISSUE: ISSUE_FIELDS,
            RESOURCE_EVENT: EVENT_FIELDS,
        },
        scope=SCOPE_OWN_GROUPS,
    ),

    # QA: issue media only, identity fields hidden
    ROLE_QA: CapabilityGrant(
        role=ROLE_QA,
        actions=_READ_ACTIONS | {ACTION_UPDATE, ACTION_PLAYBACK_ISSUES_ONLY},
        visible_fields={
            RESOURCE_MEDIA: QA_MEDIA_FIELDS,
            RESOURCE_ISSUE: ISSUE_FIELDS,
            RESOURCE_EVENT: EVENT_FIELDS,
        },
        scope=SCOPE_ISSUES_ONLY,
    ),
    ROLE_QA_LEAD: CapabilityGrant(
        role=ROLE_QA_LEAD,
        actions=_READ_ACTIONS | {
            ACTION_UPDATE,
            ACTION_PLAYBACK_ISSUES_ONLY,
            ACTION_APPROVE_REGISTRATION,
        },
        visible_fields={
            RESOURCE_MEDIA: QA_MEDIA_FIELDS,
            RESOURCE_ISSUE: ISSUE_FIELDS,
            RESOURCE_EVENT: EVENT_FIELDS,
        },
        scope=SCOPE_ISSUES_ONLY,
    ),

    # Backup: coverage and status only, no playback
    ROLE_BACKUP: CapabilityGrant(
        role=ROLE_BACKUP,
        actions=_READ_ACTIONS | {ACTION_UPDATE},
        visible_fields={
            RESOURCE_MEDIA: BACKUP_MEDIA_FIELDS,
            RESOURCE_BACKUP: BACKUP_FIELDS,
            RESOURCE_EVENT: EVENT_FIELDS,
        },
        scope=SCOPE_GLOBAL,
    ),
    ROLE_BACKUP_LEAD: CapabilityGrant(
        role=ROLE_BACKUP_LEAD,
        actions=_READ_ACTIONS | {ACTION_UPDATE, ACTION_APPROVE_REGISTRATION},
        visible_fields={
            RESOURCE_MEDIA: BACKUP_MEDIA_FIELDS,
            RESOURCE_BACKUP: BACKUP_FIELDS,
            RESOURCE_EVENT: EVENT_FIELDS,
        },
        scope=SCOPE_GLOBAL,
    ),

    # Editor: own items only, no cross-editor search
    ROLE_EDITOR: CapabilityGrant(
        role=ROLE_EDITOR,
        actions=frozenset({ACTION_SEARCH, ACTION_LIST, ACTION_UPDATE, ACTION_PLAYBACK_ALL}),
        visible_fields={
            RESOURCE_MEDIA: EDITOR_MEDIA_FIELDS,
            RESOURCE_ISSUE: ISSUE_FIELDS,
            RESOURCE_BACKUP: BACKUP_FIELDS,
            RESOURCE_EVENT: EVENT_FIELDS,
        },
        scope=SCOPE_OWN_ITEMS,
    ),
}


# ============================================================================
# YAML Loading
# ============================================================================

def _parse_fields(role: str, resource_type: str, raw: Any) -> FrozenSet[str]:
    if raw == "*":
        catalogue = RESOURCE_FIELDS.get(resource_type)
        if catalogue is None:
            raise InvalidPolicyError(
                f"Unknown resource type '{resource_type}' for role {role}",
                {"role": role, "resource_type": resource_type},
            )
        return catalogue
    if not isinstance(raw, list) or not all(isinstance(f, str) for f in raw):
        raise InvalidPolicyError(
            f"visible_fields.{resource_type} for role {role} must be a list of names or '*'",
            {"role": role, "resource_type": resource_type},
        )
    return frozenset(raw)


def load_grants_from_dict(data: Any) -> Dict[str, CapabilityGrant]:
    """
    Build a grant table from parsed configuration.

    Expected shape:
        grants:
          qa:
            scope: issues_only
            actions: [search, list, playback_issues_only]
            visible_fields:
              media: [media_id, camera_number]
              event: "*"

    Raises:
        InvalidPolicyError: unknown role, action, scope, resource or field
    """
    if not isinstance(data, dict) or not isinstance(data.get("grants"), dict):
        raise InvalidPolicyError("Grant file must contain a 'grants' mapping")

    table: Dict[str, CapabilityGrant] = {}
    for raw_role, entry in data["grants"].items():
        role = normalize_role(str(raw_role))
        if role is None:
            raise InvalidPolicyError(f"Unknown role in grant file: {raw_role}", {"role": raw_role})
        if role in table:
            raise InvalidPolicyError(f"Duplicate grant for role {role}", {"role": role})
        if not isinstance(entry, dict):
            raise InvalidPolicyError(f"Grant for role {role} must be a mapping", {"role": role})

        actions = entry.get("actions", [])
        if not isinstance(actions, list):
            raise InvalidPolicyError(f"actions for role {role} must be a list", {"role": role})

        raw_fields = entry.get("visible_fields", {})
        if not isinstance(raw_fields, dict):
            raise InvalidPolicyError(f"visible_fields for role {role} must be a mapping", {"role": role})

        table[role] = CapabilityGrant(
            role=role,
            actions=frozenset(actions),
            visible_fields={
                resource_type: _parse_fields(role, resource_type, fields)
                for resource_type, fields in raw_fields.items()
            },
            scope=entry.get("scope", SCOPE_GLOBAL),
        )

    ungranted = sorted(ALL_ROLES - set(table))
    if ungranted:
        logger.warning(f"Grant file leaves roles without capabilities: {ungranted}")

    return table


def load_grants_from_yaml(path: Union[str, Path]) -> Dict[str, CapabilityGrant]:
    """
    Load and validate a grant table from a YAML file.

    A broken grant file is fatal; the defaults are never substituted.
    """
    path = Path(path)
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise InvalidPolicyError(f"Grant file not found: {path}", {"path": str(path)})
    except yaml.YAMLError as e:
        raise InvalidPolicyError(f"Failed to parse grant file {path}: {e}", {"path": str(path)})

    table = load_grants_from_dict(data)
    logger.info(f"Loaded capability grants for {len(table)} roles from {path}")
    return table
