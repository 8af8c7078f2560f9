"""
Role-Based Access Control (RBAC) module.

Provides role definitions, action and field constants, the capability grant
table, the policy engine, and role resolution from JWT/API keys.
"""

from .roles import (
    ROLE_ADMIN,
    ROLE_TEAM_LEAD,
    ROLE_GROUP_LEADER,
    ROLE_QA,
    ROLE_QA_LEAD,
    ROLE_BACKUP,
    ROLE_BACKUP_LEAD,
    ROLE_EDITOR,
    ALL_ROLES,
    normalize_role,
    normalize_roles,
)

from .capabilities import (
    # Action constants
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
    ALL_ACTIONS,
    # Resources
    RESOURCE_MEDIA,
    RESOURCE_ISSUE,
    RESOURCE_EVENT,
    RESOURCE_BACKUP,
    ALL_RESOURCES,
    # Functions
    has_capability,
    is_write_action,
    is_event_scoped,
)

from .grants import (
    SCOPE_GLOBAL,
    SCOPE_OWN_GROUPS,
    SCOPE_ISSUES_ONLY,
    SCOPE_OWN_ITEMS,
    CAPABILITY_GRANTS,
    CapabilityGrant,
    load_grants_from_dict,
    load_grants_from_yaml,
)

from .policy import (
    OwnerContext,
    PolicyDecision,
    evaluate,
)

from .resolve import (
    # Data classes
    ResolvedUser,
    RoleResolver,
    # Functions
    configure_resolver,
    get_resolver,
    reset_resolver,
)

__all__ = [
    # Roles
    "ROLE_ADMIN",
    "ROLE_TEAM_LEAD",
    "ROLE_GROUP_LEADER",
    "ROLE_QA",
    "ROLE_QA_LEAD",
    "ROLE_BACKUP",
    "ROLE_BACKUP_LEAD",
    "ROLE_EDITOR",
    "ALL_ROLES",
    "normalize_role",
    "normalize_roles",
    # Actions
    "ACTION_SEARCH",
    "ACTION_LIST",
    "ACTION_EXPORT",
    "ACTION_UPDATE",
    "ACTION_SEARCH_BY_NAME",
    "ACTION_SEARCH_BY_REGION",
    "ACTION_SEARCH_BY_CONDITION",
    "ACTION_SEARCH_BY_EDITOR",
    "ACTION_SEARCH_BY_GROUP",
    "ACTION_DOWNLOAD",
    "ACTION_PLAYBACK_ALL",
    "ACTION_PLAYBACK_ISSUES_ONLY",
    "ACTION_APPROVE_REGISTRATION",
    "ACTION_MANAGE_EVENTS",
    "ACTION_VIEW_DEBUG",
    "ALL_ACTIONS",
    # Resources
    "RESOURCE_MEDIA",
    "RESOURCE_ISSUE",
    "RESOURCE_EVENT",
    "RESOURCE_BACKUP",
    "ALL_RESOURCES",
    # Capability Functions
    "has_capability",
    "is_write_action",
    "is_event_scoped",
    # Grants
    "SCOPE_GLOBAL",
    "SCOPE_OWN_GROUPS",
    "SCOPE_ISSUES_ONLY",
    "SCOPE_OWN_ITEMS",
    "CAPABILITY_GRANTS",
    "CapabilityGrant",
    "load_grants_from_dict",
    "load_grants_from_yaml",
    # Policy
    "OwnerContext",
    "PolicyDecision",
    "evaluate",
    # Resolver Classes
    "ResolvedUser",
    "RoleResolver",
    # Resolver Functions
    "configure_resolver",
    "get_resolver",
    "reset_resolver",
]
