"""
Tests for the policy engine.

evaluate() composes grants across held roles: union of visible fields,
narrowest scope, Admin always global.
"""

import pytest

from core.rbac import (
    ACTION_DOWNLOAD,
    ACTION_PLAYBACK_ALL,
    ACTION_PLAYBACK_ISSUES_ONLY,
    ACTION_SEARCH,
    ACTION_UPDATE,
    ROLE_ADMIN,
    ROLE_BACKUP,
    ROLE_EDITOR,
    ROLE_GROUP_LEADER,
    ROLE_QA,
    ROLE_TEAM_LEAD,
    SCOPE_GLOBAL,
    SCOPE_ISSUES_ONLY,
    SCOPE_OWN_GROUPS,
    SCOPE_OWN_ITEMS,
    OwnerContext,
    evaluate,
)
from core.rbac.grants import narrowest_scope
from core.rbac.policy import scope_overrides, target_in_scope


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def leader_ctx():
    return OwnerContext(user_id="gl-1", group_ids=("g1", "g2"))


@pytest.fixture
def editor_ctx():
    return OwnerContext(user_id="ed-1")


# ============================================================================
# Allow / deny
# ============================================================================

class TestDecisions:

    def test_no_roles_denied(self):
        decision = evaluate([], "media", ACTION_SEARCH)
        assert decision.allowed is False
        assert decision.reason == "no_roles"

    def test_unknown_roles_treated_as_none(self):
        assert evaluate(["janitor"], "media", ACTION_SEARCH).reason == "no_roles"

    def test_unknown_resource(self):
        assert evaluate([ROLE_ADMIN], "users", ACTION_SEARCH).reason == "unknown_resource"

    def test_unknown_action(self):
        assert evaluate([ROLE_ADMIN], "media", "teleport").reason == "unknown_action"

    def test_action_not_granted(self):
        decision = evaluate([ROLE_QA], "media", ACTION_DOWNLOAD)
        assert decision.allowed is False
        assert decision.reason == "action_not_granted"

    def test_resource_not_covered(self):
        # Backup role has no grant on issues
        assert evaluate([ROLE_BACKUP], "issue", ACTION_SEARCH).allowed is False

    def test_deterministic(self, leader_ctx):
        first = evaluate([ROLE_GROUP_LEADER], "media", ACTION_SEARCH, leader_ctx)
        second = evaluate([ROLE_GROUP_LEADER], "media", ACTION_SEARCH, leader_ctx)
        assert first == second


# ============================================================================
# Composition across roles
# ============================================================================

class TestComposition:

    def test_union_of_visible_fields(self):
        qa = evaluate([ROLE_QA], "media", ACTION_SEARCH)
        backup = evaluate([ROLE_BACKUP], "media", ACTION_SEARCH)
        both = evaluate([ROLE_QA, ROLE_BACKUP], "media", ACTION_SEARCH)

        assert both.visible_fields == qa.visible_fields | backup.visible_fields

    def test_narrowest_scope_wins(self):
        decision = evaluate([ROLE_QA, ROLE_BACKUP], "media", ACTION_SEARCH)
        assert decision.scope == SCOPE_ISSUES_ONLY
        assert decision.filter_overrides == {"has_issues": True}

    def test_only_granting_roles_contribute(self):
        # Backup does not hold playback_issues_only, so only QA's view applies
        decision = evaluate([ROLE_QA, ROLE_BACKUP], "media", ACTION_PLAYBACK_ISSUES_ONLY)
        assert "backup_verified" not in decision.visible_fields

    def test_non_granting_role_still_narrows_scope(self):
        # GroupLeader cannot download, but its group restriction still applies
        owner = OwnerContext(user_id="gl-1", group_ids=("g1",))

        decision = evaluate([ROLE_TEAM_LEAD, ROLE_GROUP_LEADER], "media", ACTION_DOWNLOAD, owner)

        assert decision.allowed is True
        assert decision.scope == SCOPE_OWN_GROUPS
        assert decision.filter_overrides == {"group_id": ["g1"]}

    def test_non_granting_role_limits_target(self):
        owner = OwnerContext(user_id="gl-1", group_ids=("g1",)).for_target(
            {"group_id": "g2", "editor_id": "ed-2", "has_issues": False}
        )

        decision = evaluate([ROLE_TEAM_LEAD, ROLE_GROUP_LEADER], "media", ACTION_DOWNLOAD, owner)

        assert decision.allowed is False
        assert decision.reason == "out_of_scope"

    def test_admin_held_keeps_global_scope(self):
        decision = evaluate([ROLE_ADMIN, ROLE_EDITOR], "media", ACTION_DOWNLOAD, OwnerContext(user_id="u1"))
        assert decision.scope == SCOPE_GLOBAL
        assert decision.filter_overrides == {}

    def test_admin_overrides_narrow_scope(self):
        decision = evaluate([ROLE_QA, ROLE_ADMIN], "media", ACTION_SEARCH)
        assert decision.scope == SCOPE_GLOBAL
        assert decision.filter_overrides == {}

    def test_identity_field_always_visible(self):
        decision = evaluate([ROLE_BACKUP], "backup", ACTION_SEARCH)
        assert "backup_id" in decision.visible_fields

    @pytest.mark.parametrize("scopes,expected", [
        (["global"], "global"),
        (["global", "own_groups"], "own_groups"),
        (["own_groups", "issues_only"], "issues_only"),
        (["issues_only", "own_items"], "own_items"),
        ([], "global"),
    ])
    def test_narrowest_scope(self, scopes, expected):
        assert narrowest_scope(scopes) == expected


# ============================================================================
# Scope overrides
# ============================================================================

class TestScopeOverrides:

    def test_own_groups(self, leader_ctx):
        assert scope_overrides(SCOPE_OWN_GROUPS, "media", leader_ctx) == {"group_id": ["g1", "g2"]}

    def test_own_groups_without_groups_matches_nothing(self):
        assert scope_overrides(SCOPE_OWN_GROUPS, "media", OwnerContext(user_id="x")) == {"group_id": []}

    def test_own_items(self, editor_ctx):
        assert scope_overrides(SCOPE_OWN_ITEMS, "media", editor_ctx) == {"editor_id": "ed-1"}

    def test_own_items_anonymous(self):
        assert scope_overrides(SCOPE_OWN_ITEMS, "media", OwnerContext()) == {"editor_id": []}

    def test_field_missing_from_resource(self, leader_ctx):
        assert scope_overrides(SCOPE_OWN_GROUPS, "event", leader_ctx) == {}
        assert scope_overrides(SCOPE_ISSUES_ONLY, "backup", leader_ctx) == {}


# ============================================================================
# Single-target checks
# ============================================================================

class TestTargets:

    def test_qa_playback_of_issue_item(self):
        owner = OwnerContext(user_id="qa-1").for_target({"media_id": "m1", "has_issues": True})
        assert evaluate([ROLE_QA], "media", ACTION_PLAYBACK_ISSUES_ONLY, owner).allowed is True

    def test_qa_playback_of_clean_item(self):
        owner = OwnerContext(user_id="qa-1").for_target({"media_id": "m1", "has_issues": False})
        decision = evaluate([ROLE_QA], "media", ACTION_PLAYBACK_ISSUES_ONLY, owner)
        assert decision.allowed is False
        assert decision.reason == "out_of_scope"

    def test_leader_outside_group(self, leader_ctx):
        owner = leader_ctx.for_target({"group_id": "g9"})
        assert evaluate([ROLE_GROUP_LEADER], "media", ACTION_PLAYBACK_ALL, owner).allowed is False

    def test_leader_inside_group(self, leader_ctx):
        owner = leader_ctx.for_target({"group_id": "g2"})
        assert evaluate([ROLE_GROUP_LEADER], "media", ACTION_PLAYBACK_ALL, owner).allowed is True

    def test_editor_other_editors_item(self, editor_ctx):
        owner = editor_ctx.for_target({"editor_id": "ed-2"})
        assert evaluate([ROLE_EDITOR], "media", ACTION_UPDATE, owner).allowed is False

    @pytest.mark.parametrize("scope,owner,expected", [
        (SCOPE_GLOBAL, OwnerContext(target_group_id="x"), True),
        (SCOPE_OWN_GROUPS, OwnerContext(group_ids=("a",), target_group_id="a"), True),
        (SCOPE_OWN_GROUPS, OwnerContext(group_ids=("a",), target_group_id=None, target_has_issues=True), False),
        (SCOPE_ISSUES_ONLY, OwnerContext(target_has_issues=True), True),
        (SCOPE_ISSUES_ONLY, OwnerContext(target_has_issues=False), False),
        (SCOPE_OWN_ITEMS, OwnerContext(user_id="u", target_owner_id="u"), True),
        (SCOPE_OWN_ITEMS, OwnerContext(user_id=None, target_owner_id=None, target_has_issues=True), False),
    ])
    def test_target_in_scope(self, scope, owner, expected):
        assert target_in_scope(scope, owner) is expected


def test_decision_to_dict():
    data = evaluate([ROLE_QA], "media", ACTION_SEARCH).to_dict()
    assert data["allowed"] is True
    assert data["scope"] == SCOPE_ISSUES_ONLY
    assert "full_name" not in data["visible_fields"]
