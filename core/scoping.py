"""
Scoped query interceptor.

Every resource request passes through authorize_and_scope() before it reaches
a repository. The interceptor:

1. evaluates the caller's roles against the capability grants
2. confines event-scoped resources to the currently active event
3. forces the policy's filter overrides over whatever the caller asked for
4. redacts every field the caller may not see from the fetched rows
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional

from core.errors import (
    Forbidden,
    InvalidFilterValue,
    NoActiveEvent,
    RecordNotFound,
)
from core.metrics import (
    ScopingMetrics,
    audit_rbac_denial,
    record_rbac_check,
    time_operation,
)
from core.presenters import redact_record, redact_records
from core.rbac.capabilities import (
    IDENTITY_FIELDS,
    SEARCH_DIMENSIONS,
    is_event_scoped,
    is_write_action,
)
from core.rbac.policy import OwnerContext, PolicyDecision, evaluate

logger = logging.getLogger(__name__)

# Free-text fields matched as case-insensitive substrings
TEXT_MATCH_FIELDS = frozenset({"full_name", "region", "condition", "file_name"})

BOOLEAN_FILTER_FIELDS = frozenset({"has_issues", "backup_verified", "backup_pending"})
INTEGER_FILTER_FIELDS = frozenset({"event_id"})

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


# ============================================================================
# Filter Helpers
# ============================================================================

def matches_filters(record: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
    """
    Check one record against an effective filter set.

    A list value means "one of"; text fields match by case-insensitive
    substring; everything else by equality. A key missing from the record
    never matches.

    Examples:
        >>> matches_filters({"group_id": "g1"}, {"group_id": ["g1", "g2"]})
        True
        >>> matches_filters({"full_name": "Ann Lee"}, {"full_name": "lee"})
        True
        >>> matches_filters({"has_issues": False}, {"has_issues": True})
        False
    """
    for key, expected in filters.items():
        if key not in record:
            return False
        actual = record[key]
        if isinstance(expected, (list, tuple, set, frozenset)):
            if actual not in expected:
                return False
        elif key in TEXT_MATCH_FIELDS and isinstance(expected, str):
            if actual is None or expected.lower() not in str(actual).lower():
                return False
        elif actual != expected:
            return False
    return True


def intersect_filter(requested: Any, forced: Any) -> Any:
    """
    Combine a caller filter with the value policy forces on the same field.

    The result never matches more than `forced`. Boolean flags are forced
    outright; otherwise an empty list (matches nothing) stands for an empty
    intersection.

    Examples:
        >>> intersect_filter("g1", ["g1", "g2"])
        ['g1']
        >>> intersect_filter(["g1", "g3"], ["g1", "g2"])
        ['g1']
        >>> intersect_filter("ed-2", "ed-1")
        []
        >>> intersect_filter(False, True)
        True
    """
    if isinstance(forced, bool):
        return forced

    wanted = list(requested) if isinstance(requested, (list, tuple, set, frozenset)) else [requested]
    if isinstance(forced, (list, tuple, set, frozenset)):
        return [v for v in wanted if v in forced]
    return forced if forced in wanted else []


def coerce_filters(raw: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Convert query-string values into typed filter values.

    Empty values are dropped. Comma-separated values become lists.

    Raises:
        InvalidFilterValue: a boolean or integer field got an unparseable value
    """
    filters: Dict[str, Any] = {}
    for key, value in raw.items():
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        if not isinstance(value, str):
            filters[key] = value
            continue

        text = value.strip()
        if key in BOOLEAN_FILTER_FIELDS:
            lowered = text.lower()
            if lowered in _TRUE_VALUES:
                filters[key] = True
            elif lowered in _FALSE_VALUES:
                filters[key] = False
            else:
                raise InvalidFilterValue(key, value)
        elif key in INTEGER_FILTER_FIELDS:
            try:
                filters[key] = int(text)
            except ValueError:
                raise InvalidFilterValue(key, value)
        elif "," in text and key not in TEXT_MATCH_FIELDS:
            filters[key] = [part.strip() for part in text.split(",") if part.strip()]
        else:
            filters[key] = text
    return filters


# ============================================================================
# Scoped Request
# ============================================================================

@dataclass(frozen=True)
class ScopedRequest:
    """
    An authorised, rewritten request.

    `filters` is the effective filter set to run against the store. When
    `empty` is set the request is a read with no active event and must
    return no rows without touching the store.
    """
    resource_type: str
    action: str
    filters: Mapping[str, Any] = field(default_factory=dict)
    visible_fields: FrozenSet[str] = frozenset()
    forced_fields: FrozenSet[str] = frozenset()
    event_id: Optional[int] = None
    empty: bool = False
    decision: Optional[PolicyDecision] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource_type": self.resource_type,
            "action": self.action,
            "filters": dict(self.filters),
            "visible_fields": sorted(self.visible_fields),
            "event_id": self.event_id,
            "empty": self.empty,
        }


# ============================================================================
# Interceptor
# ============================================================================

class ScopedQueryInterceptor:
    """
    Rewrites and redacts resource requests.

    Usage:
        >>> interceptor = ScopedQueryInterceptor(coordinator)
        >>> scoped = interceptor.authorize_and_scope(["qa"], "media", "search", {"has_issues": False})
        >>> scoped.filters["has_issues"]
        True
    """

    def __init__(self, coordinator, grants=None):
        self.coordinator = coordinator
        self.grants = grants

    def _evaluate(self, roles, resource_type, action, owner_context=None) -> PolicyDecision:
        return evaluate(roles, resource_type, action, owner_context, grants=self.grants)

    def _deny(self, roles, resource_type, action, reason, owner_context, message, field_name=None):
        audit_rbac_denial(
            action=action,
            user_id=owner_context.user_id if owner_context else None,
            roles=list(roles),
            resource_type=resource_type,
            reason=reason,
            metadata={"field": field_name} if field_name else None,
        )
        raise Forbidden(message, action=action, field=field_name)

    def authorize_and_scope(
        self,
        roles: Iterable[str],
        resource_type: str,
        action: str,
        requested_filters: Optional[Mapping[str, Any]] = None,
        owner_context: Optional[OwnerContext] = None,
    ) -> ScopedRequest:
        """
        Authorise a request and compute its effective filters.

        Args:
            roles: Caller's roles
            resource_type: Resource being queried or modified
            action: Action being performed
            requested_filters: Caller-supplied filters (already typed)
            owner_context: Caller identity used by scope predicates

        Returns:
            ScopedRequest; `empty` is set for reads with no active event

        Raises:
            Forbidden: the action, a filter field or a search dimension is denied
            NoActiveEvent: a write was attempted with no active event
        """
        roles = list(roles)
        requested = dict(requested_filters or {})
        owner = owner_context or OwnerContext()
        event_scoped = is_event_scoped(resource_type)

        decision = self._evaluate(roles, resource_type, action, owner)
        record_rbac_check(decision.allowed, action, roles, resource_type)
        if not decision.allowed:
            self._deny(
                roles, resource_type, action, decision.reason, owner,
                f"Action '{action}' on {resource_type} is not permitted",
            )

        overrides = dict(decision.filter_overrides)
        for key in requested:
            if key in overrides or (event_scoped and key == "event_id"):
                continue
            if not decision.can_see(key):
                self._deny(
                    roles, resource_type, action, "filter_field_not_visible", owner,
                    f"Filtering on '{key}' is not permitted", field_name=key,
                )
            dimension = SEARCH_DIMENSIONS.get(key)
            if dimension and not self._evaluate(roles, resource_type, dimension, owner).allowed:
                self._deny(
                    roles, resource_type, dimension, "search_dimension_denied", owner,
                    f"Searching by '{key}' is not permitted", field_name=key,
                )

        active_id: Optional[int] = None
        if event_scoped:
            active = self.coordinator.current_active()
            if active is None:
                if is_write_action(action):
                    raise NoActiveEvent(resource_type, action)
                return ScopedRequest(
                    resource_type=resource_type,
                    action=action,
                    visible_fields=decision.visible_fields,
                    forced_fields=frozenset(overrides),
                    empty=True,
                    decision=decision,
                )
            active_id = active.id

        effective = dict(requested)
        for key, value in overrides.items():
            if key in requested:
                narrowed = intersect_filter(requested[key], value)
                if narrowed != requested[key]:
                    logger.debug(
                        f"Policy override {key}={value!r} narrowed caller filter "
                        f"{requested[key]!r} to {narrowed!r}"
                    )
                effective[key] = narrowed
            else:
                effective[key] = value
            ScopingMetrics.record_scope_override(key)

        forced = set(overrides)
        if active_id is not None:
            if requested.get("event_id", active_id) != active_id:
                logger.info(
                    f"Replaced out-of-scope event_id={requested['event_id']!r} "
                    f"with active event {active_id}"
                )
            effective["event_id"] = active_id
            forced.add("event_id")

        return ScopedRequest(
            resource_type=resource_type,
            action=action,
            filters=effective,
            visible_fields=decision.visible_fields,
            forced_fields=frozenset(forced),
            event_id=active_id,
            empty=False,
            decision=decision,
        )

    def fetch(self, scoped: ScopedRequest, repository) -> List[Dict[str, Any]]:
        """Run a scoped read and redact the rows."""
        if scoped.empty:
            ScopingMetrics.record_empty_read(scoped.resource_type)
            return []

        with time_operation("scoping.fetch", {"resource": scoped.resource_type}):
            rows = repository.query(scoped.filters)
        redacted, removed = redact_records(rows, scoped.visible_fields)
        ScopingMetrics.record_redaction(scoped.resource_type, len(redacted), removed)
        return redacted

    def apply_write(
        self,
        scoped: ScopedRequest,
        repository,
        record_id: Any,
        changes: Mapping[str, Any],
    ) -> Dict[str, Any]:
        """
        Apply a scoped update to one record.

        The target must satisfy the effective filters and every changed key
        must be visible and not policy-forced.

        Returns:
            The updated record, redacted
        """
        if not is_write_action(scoped.action):
            raise Forbidden(f"Action '{scoped.action}' cannot modify records", action=scoped.action)

        identity = IDENTITY_FIELDS.get(scoped.resource_type)
        for key in changes:
            if key == identity or key in scoped.forced_fields or key not in scoped.visible_fields:
                raise Forbidden(f"Field '{key}' cannot be modified", action=scoped.action, field=key)

        record = repository.get(record_id)
        if record is None or not matches_filters(record, scoped.filters):
            # Out-of-scope rows are reported exactly like missing ones
            raise RecordNotFound(scoped.resource_type, record_id)

        updated = repository.update(record_id, dict(changes))
        logger.info(f"Updated {scoped.resource_type} {record_id}: {sorted(changes)}")
        return redact_record(updated, scoped.visible_fields)
