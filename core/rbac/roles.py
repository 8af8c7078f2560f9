"""
Role definitions.

Defines the fixed role enumeration and the accepted spellings of each role.
"""

import logging
import re
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


# ============================================================================
# Role Constants
# ============================================================================

ROLE_ADMIN = "admin"
"""Full system access: events, users, global search, audit review."""

ROLE_TEAM_LEAD = "team-lead"
"""Full event operations access without system administration."""

ROLE_GROUP_LEADER = "group-leader"
"""Monitors the groups they lead and coordinates their editors."""

ROLE_QA = "qa"
"""Reviews media with issues and confirms fixes."""

ROLE_QA_LEAD = "qa-lead"
"""Leads the QA team."""

ROLE_BACKUP = "backup"
"""Tracks backup coverage and verification."""

ROLE_BACKUP_LEAD = "backup-lead"
"""Leads the backup team."""

ROLE_EDITOR = "editor"
"""Copies SD cards, renames media and reports issues on their own items."""

# Complete set of all roles
ALL_ROLES = frozenset({
    ROLE_ADMIN,
    ROLE_TEAM_LEAD,
    ROLE_GROUP_LEADER,
    ROLE_QA,
    ROLE_QA_LEAD,
    ROLE_BACKUP,
    ROLE_BACKUP_LEAD,
    ROLE_EDITOR,
})


# ============================================================================
# Normalisation
# ============================================================================

# Display names such as "TeamLead" or "QALead" map onto the wire slugs
_DISPLAY_NAMES: Dict[str, str] = {
    "admin": ROLE_ADMIN,
    "administrator": ROLE_ADMIN,
    "teamlead": ROLE_TEAM_LEAD,
    "groupleader": ROLE_GROUP_LEADER,
    "qa": ROLE_QA,
    "qateam": ROLE_QA,
    "qalead": ROLE_QA_LEAD,
    "backup": ROLE_BACKUP,
    "backupteam": ROLE_BACKUP,
    "backuplead": ROLE_BACKUP_LEAD,
    "editor": ROLE_EDITOR,
}

_SEPARATORS = re.compile(r"[\s_\-]+")


def normalize_role(role: str) -> Optional[str]:
    """
    Map any accepted spelling of a role onto its slug.

    Examples:
        >>> normalize_role("TeamLead")
        'team-lead'
        >>> normalize_role("team_lead")
        'team-lead'
        >>> normalize_role("QA Lead")
        'qa-lead'
        >>> normalize_role("janitor") is None
        True
    """
    if not role or not isinstance(role, str):
        return None
    key = _SEPARATORS.sub("", role.strip().lower())
    return _DISPLAY_NAMES.get(key)


def normalize_roles(roles: Iterable[str]) -> List[str]:
    """Normalise a role list, dropping unknown names and duplicates."""
    normalized: List[str] = []
    for role in roles or []:
        slug = normalize_role(role)
        if slug is None:
            logger.warning(f"Ignoring unknown role: {role}")
            continue
        if slug not in normalized:
            normalized.append(slug)
    return normalized

