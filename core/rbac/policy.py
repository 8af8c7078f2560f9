"""
Role capability policy engine.

evaluate() is a pure function from (roles, resource type, action, owner
context) to a PolicyDecision. It is called on every scoped request, so it
performs no I/O and records no metrics; callers do that.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from .capabilities import (
    IDENTITY_FIELDS,
    RESOURCE_FIELDS,
    validate_action,
    validate_resource,
)
from .grants import (
    CAPABILITY_GRANTS,
    SCOPE_GLOBAL,
    SCOPE_ISSUES_ONLY,
    SCOPE_OWN_GROUPS,
    SCOPE_OWN_ITEMS,
    CapabilityGrant,
    narrowest_scope,
)
from .roles import ROLE_ADMIN, normalize_roles


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class OwnerContext:
    """
    Who is asking, and optionally which single record they are asking about.

    The target_* attributes are set when a decision concerns one record
    (playback of a media item, update of a row) so the scope predicate can be
    applied to it directly.
    """
    user_id: Optional[str] = None
    group_ids: Tuple[str, ...] = ()
    target_has_issues: Optional[bool] = None
    target_group_id: Optional[str] = None
    target_owner_id: Optional[str] = None

    @property
    def has_target(self) -> bool:
        return (
            self.target_has_issues is not None
            or self.target_group_id is not None
            or self.target_owner_id is not None
        )

    def for_target(self, record: Mapping[str, Any]) -> "OwnerContext":
        """Copy of this context pointed at one record."""
        return OwnerContext(
            user_id=self.user_id,
            group_ids=self.group_ids,
            target_has_issues=bool(record.get("has_issues", False)),
            target_group_id=record.get("group_id"),
            target_owner_id=record.get("editor_id"),
        )


@dataclass(frozen=True)
class PolicyDecision:
    """Outcome of a policy evaluation."""
    allowed: bool
    visible_fields: FrozenSet[str] = frozenset()
    filter_overrides: Mapping[str, Any] = field(default_factory=dict)
    scope: Optional[str] = None
    roles: Tuple[str, ...] = ()
    reason: str = ""

    def can_see(self, field_name: str) -> bool:
        return field_name in self.visible_fields

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "visible_fields": sorted(self.visible_fields),
            "filter_overrides": dict(self.filter_overrides),
            "scope": self.scope,
            "roles": list(self.roles),
            "reason": self.reason,
        }


def _deny(roles: Sequence[str], reason: str) -> PolicyDecision:
    return PolicyDecision(allowed=False, roles=tuple(roles), reason=reason)


# ============================================================================
# Scope Handling
# ============================================================================

def scope_overrides(scope: str, resource_type: str, owner: OwnerContext) -> Dict[str, Any]:
    """
    Filters a scope forces onto every query.

    A list value means "field is one of". Scopes whose field does not exist on
    the resource add nothing.

    Examples:
        >>> scope_overrides("issues_only", "media", OwnerContext())
        {'has_issues': True}
        >>> scope_overrides("own_groups", "media", OwnerContext(group_ids=("g1",)))
        {'group_id': ['g1']}
        >>> scope_overrides("global", "media", OwnerContext())
        {}
    """
    catalogue = RESOURCE_FIELDS.get(resource_type, frozenset())
    if scope == SCOPE_OWN_GROUPS and "group_id" in catalogue:
        return {"group_id": list(owner.group_ids)}
    if scope == SCOPE_ISSUES_ONLY and "has_issues" in catalogue:
        return {"has_issues": True}
    if scope == SCOPE_OWN_ITEMS and "editor_id" in catalogue:
        return {"editor_id": owner.user_id if owner.user_id is not None else []}
    return {}


def target_in_scope(scope: str, owner: OwnerContext) -> bool:
    """Apply a scope predicate to the single record described by `owner`."""
    if scope == SCOPE_GLOBAL:
        return True
    if scope == SCOPE_OWN_GROUPS:
        return owner.target_group_id is not None and owner.target_group_id in owner.group_ids
    if scope == SCOPE_ISSUES_ONLY:
        return bool(owner.target_has_issues)
    if scope == SCOPE_OWN_ITEMS:
        return owner.user_id is not None and owner.target_owner_id == owner.user_id
    return False


# ============================================================================
# Evaluation
# ============================================================================

def evaluate(
    roles: Iterable[str],
    resource_type: str,
    action: str,
    owner_context: Optional[OwnerContext] = None,
    grants: Optional[Mapping[str, CapabilityGrant]] = None,
) -> PolicyDecision:
    """
    Decide whether `roles` may perform `action` on `resource_type`.

    Composition across held roles:
    - allowed if any held role grants the action on the resource
    - visible fields are the union over the granting roles
    - scope is the narrowest among all held roles that have a grant, unless
      Admin is held, in which case scope is global and no filters are forced

    Args:
        roles: Caller's roles (any accepted spelling)
        resource_type: One of media, issue, event, backup
        action: Action constant
        owner_context: Caller identity and, optionally, a single target record
        grants: Grant table; defaults to CAPABILITY_GRANTS

    Returns:
        PolicyDecision (never raises for a denial)
    """
    grants = CAPABILITY_GRANTS if grants is None else grants
    owner = owner_context or OwnerContext()
    held: List[str] = normalize_roles(roles)

    if not held:
        return _deny(held, "no_roles")
    if not validate_resource(resource_type):
        return _deny(held, "unknown_resource")
    if not validate_action(action):
        return _deny(held, "unknown_action")

    granting = [
        grants[role]
        for role in held
        if role in grants and action in grants[role].actions and grants[role].covers(resource_type)
    ]
    if not granting:
        return _deny(held, "action_not_granted")

    visible = set()
    for grant in granting:
        visible |= grant.fields_for(resource_type)
    identity = IDENTITY_FIELDS.get(resource_type)
    if identity:
        visible.add(identity)

    # Scope restrictions apply across every held role, granting or not
    if ROLE_ADMIN in held:
        scope = SCOPE_GLOBAL
    else:
        scope = narrowest_scope(grants[role].scope for role in held if role in grants)

    if owner.has_target and not target_in_scope(scope, owner):
        return _deny(held, "out_of_scope")

    return PolicyDecision(
        allowed=True,
        visible_fields=frozenset(visible),
        filter_overrides=scope_overrides(scope, resource_type, owner),
        scope=scope,
        roles=tuple(held),
        reason="granted",
    )
