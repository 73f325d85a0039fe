"""
Access control evaluator: tier checks, page reachability, visibility,
team scope and mutation decisions.  Pure functions, no store or app.
Tests 101-175.
"""
import itertools

import pytest

from clubhouse.access_control import (
    ALL,
    ANY,
    can_assign_roles,
    can_change_placement,
    can_create,
    can_mutate,
    can_reach_page,
    can_read,
    can_view,
    capabilities,
    effective_team_scope,
    guard_page,
    has_permission,
    in_team_scope,
    is_admin_tier,
    is_coach_tier,
    primary_role,
    readable_resources,
    readable_visibilities,
    visible_resources,
)
from clubhouse.rbac import ADMIN_TIER_ROLES, RESOURCE_POLICIES, Action, PermissionFlag, Role, Visibility

from conftest import make_principal, make_record

ALL_ROLE_SETS = [
    frozenset(combo)
    for n in range(1, 3)
    for combo in itertools.combinations(list(Role), n)
]


def _sample_records():
    records = []
    for vis in Visibility:
        for scope in ("all", "team-a", "team-b", "player-7"):
            records.append(make_record("announcements", vis, scope, owner_id="someone-else"))
    return records


class TestTiers:
    """Admin and coach tier laws."""

    @pytest.mark.parametrize("roles", ALL_ROLE_SETS)
    async def test_101_admin_tier_iff_admin_role(self, roles):
        p = make_principal(*roles)
        assert is_admin_tier(p) == bool(roles & ADMIN_TIER_ROLES)

    @pytest.mark.parametrize("roles", ALL_ROLE_SETS)
    async def test_102_admin_tier_monotonic(self, roles):
        p = make_principal(*roles)
        if is_admin_tier(p):
            for extra in Role:
                assert is_admin_tier(p.with_roles(*roles, extra))

    @pytest.mark.parametrize("roles", ALL_ROLE_SETS)
    async def test_103_admin_tier_implies_coach_tier(self, roles):
        p = make_principal(*roles)
        if is_admin_tier(p):
            assert is_coach_tier(p)

    async def test_104_coach_is_not_admin(self):
        p = make_principal(Role.COACH)
        assert is_coach_tier(p)
        assert not is_admin_tier(p)

    async def test_105_anonymous_has_no_tier(self):
        assert not is_admin_tier(None)
        assert not is_coach_tier(None)
        assert capabilities(None) == frozenset()

    async def test_106_primary_role_picks_highest(self):
        assert primary_role(make_principal(Role.PARENT, Role.COACH)) == Role.COACH
        assert primary_role(make_principal(Role.SPONSOR, Role.MASTER_ADMIN)) == Role.MASTER_ADMIN
        assert primary_role(None) == Role.VISITOR

    async def test_107_capabilities_union_roles_and_flags(self):
        p = make_principal(Role.PARENT, Role.SPONSOR, permissions=[PermissionFlag.CAN_UPLOAD_MEDIA])
        caps = capabilities(p)
        assert "club.messaging.use" in caps
        assert "finance.own_balance.view" not in caps
        assert "content.media.create" in caps
        assert "admin.users.manage" not in caps

    async def test_108_only_master_admin_manages_users(self):
        assert "admin.users.manage" in capabilities(make_principal(Role.MASTER_ADMIN))
        assert "admin.users.manage" not in capabilities(make_principal(Role.ADMIN))

    async def test_109_has_permission_reads_flags(self):
        p = make_principal(permissions=[PermissionFlag.CAN_EDIT_ROSTERS])
        assert has_permission(p, PermissionFlag.CAN_EDIT_ROSTERS)
        assert not has_permission(p, PermissionFlag.CAN_VIEW_FINANCIALS)
        assert not has_permission(None, PermissionFlag.CAN_EDIT_ROSTERS)


class TestPages:
    """Page reachability and route guard decisions."""

    @pytest.mark.parametrize("roles", ALL_ROLE_SETS)
    @pytest.mark.parametrize("required", [
        frozenset({Role.PARENT}),
        frozenset({Role.COACH, Role.ADMIN}),
        frozenset({Role.MASTER_ADMIN}),
        frozenset({Role.SPONSOR, Role.VISITOR}),
    ])
    async def test_111_reach_iff_roles_intersect(self, roles, required):
        p = make_principal(*roles)
        assert can_reach_page(p, required) == bool(roles & required)

    async def test_112_any_admits_everyone(self):
        assert can_reach_page(None, ANY)
        for role in Role:
            assert can_reach_page(make_principal(role), ANY)

    async def test_113_anonymous_public_page_allowed(self):
        """Scenario D: the 'any' page is open to a signed-out caller."""
        decision = guard_page(None, "/schedule")
        assert decision.allowed
        assert decision.redirect is None

    async def test_114_anonymous_parent_page_redirects_to_sign_in(self):
        """Scenario D: a {parent} page sends a signed-out caller to sign in."""
        assert not can_reach_page(None, frozenset({Role.PARENT}))
        decision = guard_page(None, "/messaging")
        assert not decision.allowed
        assert decision.redirect == "/login"

    async def test_115_unauthorized_redirects_to_landing(self):
        decision = guard_page(make_principal(Role.PARENT), "/finances/expenses")
        assert not decision.allowed
        assert decision.redirect == "/dashboard"

    async def test_116_unknown_path_redirects_home(self):
        decision = guard_page(make_principal(Role.ADMIN), "/no-such-page")
        assert decision.redirect == "/"

    async def test_117_detail_route_uses_parent_page(self):
        assert guard_page(make_principal(Role.VISITOR), "/teams/team-a").allowed
        assert not guard_page(make_principal(Role.VISITOR), "/finances/reports/2025").allowed

    async def test_118_user_management_master_admin_only(self):
        assert not guard_page(make_principal(Role.ADMIN), "/users").allowed
        assert guard_page(make_principal(Role.MASTER_ADMIN), "/users").allowed


class TestVisibility:
    """can_view / visible_resources."""

    async def test_121_anonymous_sees_exactly_public(self):
        records = _sample_records()
        visible = visible_resources(None, records)
        assert visible == [r for r in records if r.visibility == "public"]

    @pytest.mark.parametrize("roles", ALL_ROLE_SETS)
    async def test_122_visible_resources_idempotent(self, roles):
        p = make_principal(*roles, team_ids=["team-a"], linked=["player-7"])
        once = visible_resources(p, _sample_records())
        assert visible_resources(p, once) == once

    async def test_123_visible_resources_preserves_order(self):
        p = make_principal(Role.COACH)
        records = _sample_records()
        visible = visible_resources(p, records)
        positions = [records.index(r) for r in visible]
        assert positions == sorted(positions)

    async def test_124_scenario_a_relink_to_team(self):
        """Scenario A: a parent sees team-A records only once linked to team-A."""
        record = make_record(visibility=Visibility.TEAM, scope="team-A")
        p = make_principal(Role.PARENT, linked=["player-7"])
        assert not can_view(p, record)
        assert can_view(p.with_teams("team-A"), record)

    async def test_125_team_visibility_through_player_link(self):
        record = make_record(visibility=Visibility.TEAM, scope="player-7")
        assert can_view(make_principal(Role.PARENT, linked=["player-7"]), record)

    async def test_126_team_visibility_org_wide_scope(self):
        record = make_record(visibility=Visibility.TEAM, scope="all")
        assert can_view(make_principal(Role.VISITOR), record)
        assert not can_view(None, record)

    async def test_127_parent_visibility(self):
        record = make_record(visibility=Visibility.PARENT)
        assert can_view(make_principal(Role.PARENT), record)
        assert not can_view(make_principal(Role.COACH), record)
        assert can_view(make_principal(Role.ADMIN), record)

    async def test_128_coach_visibility(self):
        record = make_record(visibility=Visibility.COACH)
        assert can_view(make_principal(Role.COACH), record)
        assert can_view(make_principal(Role.MASTER_ADMIN), record)
        assert not can_view(make_principal(Role.PARENT), record)

    async def test_129_admin_visibility(self):
        record = make_record(visibility=Visibility.ADMIN)
        assert can_view(make_principal(Role.ADMIN), record)
        assert not can_view(make_principal(Role.COACH), record)

    @pytest.mark.parametrize("roles", ALL_ROLE_SETS)
    async def test_130_visibility_monotonic_in_roles(self, roles):
        records = _sample_records()
        base = make_principal(*roles, team_ids=["team-a"])
        seen = set(r.id for r in visible_resources(base, records))
        for extra in Role:
            more = set(r.id for r in visible_resources(base.with_roles(*roles, extra), records))
            assert seen <= more

    async def test_131_readable_visibilities(self):
        assert readable_visibilities(None) == {"public"}
        assert readable_visibilities(make_principal(Role.VISITOR)) == {"public", "team"}
        assert readable_visibilities(make_principal(Role.PARENT)) == {"public", "team", "parent"}
        assert readable_visibilities(make_principal(Role.COACH)) == {"public", "team", "coach"}
        assert readable_visibilities(make_principal(Role.ADMIN)) == {v.value for v in Visibility}


class TestTeamScope:
    """effective_team_scope / can_read."""

    async def test_141_anonymous_scope_is_org_wide_only(self):
        assert effective_team_scope(None) == {"all"}

    async def test_142_admin_scope_is_all(self):
        assert effective_team_scope(make_principal(Role.ADMIN, team_ids=["team-a"])) is ALL

    async def test_143_unassigned_coach_scope_is_all(self):
        assert effective_team_scope(make_principal(Role.COACH)) is ALL

    async def test_144_assigned_coach_scope_is_teams(self):
        scope = effective_team_scope(make_principal(Role.COACH, team_ids=["team-a"]))
        assert scope == {"team-a", "all"}

    async def test_145_parent_scope_includes_players(self):
        scope = effective_team_scope(make_principal(Role.PARENT, team_ids=["team-a"], linked=["player-7"]))
        assert scope == {"team-a", "player-7", "all"}

    async def test_146_coach_visible_but_out_of_scope(self):
        p = make_principal(Role.COACH, team_ids=["team-a"])
        record = make_record(visibility=Visibility.COACH, scope="team-b")
        assert can_view(p, record)
        assert not in_team_scope(p, record)
        assert not can_read(p, record)

    async def test_147_public_readable_outside_scope(self):
        p = make_principal(Role.COACH, team_ids=["team-a"])
        assert can_read(p, make_record(visibility=Visibility.PUBLIC, scope="team-b"))


class TestMutations:
    """can_create / can_mutate."""

    async def test_151_scenario_b_coach_cannot_edit_admin_record(self):
        p = make_principal(Role.COACH)
        record = make_record(visibility=Visibility.ADMIN, owner_id="admin-1")
        assert not can_view(p, record)
        assert not can_mutate(p, record, Action.EDIT)

    async def test_152_coach_edits_coach_record(self):
        p = make_principal(Role.COACH)
        record = make_record(visibility=Visibility.COACH, owner_id="coach-2")
        assert can_mutate(p, record, Action.EDIT)
        assert not can_mutate(p, record, Action.DELETE)

    @pytest.mark.parametrize("collection", sorted(RESOURCE_POLICIES))
    @pytest.mark.parametrize("visibility", list(Visibility))
    @pytest.mark.parametrize("action", list(Action))
    async def test_153_scenario_c_admin_unconditional(self, collection, visibility, action):
        p = make_principal(Role.ADMIN)
        record = make_record(collection, visibility, scope="team-z", owner_id="other")
        assert can_view(p, record)
        assert can_mutate(p, record, action)

    @pytest.mark.parametrize("roles", [r for r in ALL_ROLE_SETS if not r & ADMIN_TIER_ROLES])
    @pytest.mark.parametrize("collection", sorted(RESOURCE_POLICIES))
    async def test_154_non_owner_non_admin_never_deletes(self, roles, collection):
        p = make_principal(*roles, permissions=list(PermissionFlag), team_ids=["team-a"])
        for vis in Visibility:
            record = make_record(collection, vis, scope="team-a", owner_id="someone-else")
            assert not can_mutate(p, record, Action.DELETE)

    async def test_155_scenario_e_downgraded_owner_loses_delete(self):
        """Scenario E: capability follows the current roles, not those at upload time."""
        coach = make_principal(Role.COACH, principal_id="coach-1")
        media = make_record("media", Visibility.TEAM, owner_id="coach-1")
        assert can_mutate(coach, media, Action.DELETE)
        downgraded = coach.with_roles(Role.VISITOR)
        assert not can_mutate(downgraded, media, Action.DELETE)
        assert not can_mutate(downgraded, media, Action.EDIT)

    async def test_156_flag_grants_creation(self):
        p = make_principal(Role.VISITOR, permissions=[PermissionFlag.CAN_UPLOAD_MEDIA])
        assert can_create(p, "media")
        assert not can_create(p, "announcements")

    async def test_157_flag_holder_owns_uploaded_media(self):
        p = make_principal(Role.PARENT, permissions=[PermissionFlag.CAN_UPLOAD_MEDIA], principal_id="p-1")
        own = make_record("media", Visibility.PUBLIC, owner_id="p-1")
        assert can_mutate(p, own, Action.DELETE)
        assert not can_mutate(p, make_record("media", Visibility.PUBLIC, owner_id="p-2"), Action.EDIT)

    async def test_158_anonymous_cannot_mutate(self):
        record = make_record(visibility=Visibility.PUBLIC)
        for action in Action:
            assert not can_mutate(None, record, action)

    async def test_159_finance_records_admin_only(self):
        coach = make_principal(Role.COACH, permissions=list(PermissionFlag))
        assert not can_create(coach, "expenses")
        assert can_create(make_principal(Role.ADMIN), "income")

    async def test_160_master_admin_grant_rule(self):
        admin = make_principal(Role.ADMIN)
        master = make_principal(Role.MASTER_ADMIN)
        assert can_assign_roles(admin, ["parent"], ["parent", "coach"])
        assert not can_assign_roles(admin, ["admin"], ["master-admin"])
        assert not can_assign_roles(admin, ["master-admin"], ["admin"])
        assert can_assign_roles(master, ["admin"], ["master-admin"])
        assert not can_assign_roles(make_principal(Role.COACH), ["parent"], ["coach"])


class TestCollectionPolicies:
    """Read bars, club collections and record placement."""

    async def test_161_player_finances_need_the_financials_flag(self):
        record = make_record("player_finances", Visibility.PARENT, scope="player-7")
        linked = make_principal(Role.PARENT, linked=["player-7"])
        assert can_view(linked, record)
        assert not can_read(linked, record)
        flagged = make_principal(
            Role.PARENT, linked=["player-7"], permissions=[PermissionFlag.CAN_VIEW_FINANCIALS]
        )
        assert "finance.own_balance.view" in capabilities(flagged)
        assert can_read(flagged, record)

    async def test_162_player_finances_stay_with_the_linked_player(self):
        record = make_record("player_finances", Visibility.PARENT, scope="player-8")
        flagged = make_principal(
            Role.PARENT, linked=["player-7"], permissions=[PermissionFlag.CAN_VIEW_FINANCIALS]
        )
        assert not can_read(flagged, record)
        assert can_read(make_principal(Role.ADMIN), record)

    async def test_163_readable_resources_matches_can_read(self):
        p = make_principal(Role.PARENT, team_ids=["team-a"], linked=["player-7"])
        records = _sample_records() + [
            make_record("player_finances", Visibility.PARENT, scope="player-7"),
        ]
        assert readable_resources(p, records) == [r for r in records if can_read(p, r)]

    async def test_164_metrics_are_coach_managed(self):
        coach = make_principal(Role.COACH, team_ids=["team-a"])
        assert can_create(coach, "player_metrics")
        assert not can_create(make_principal(Role.PARENT), "player_metrics")
        metric = make_record("player_metrics", Visibility.COACH, scope="team-a", owner_id="coach-2")
        assert can_mutate(coach, metric, Action.EDIT)
        assert not can_mutate(coach, metric, Action.DELETE)

    @pytest.mark.parametrize("collection", ["equipment", "scholarships", "costs", "player_finances"])
    async def test_165_admin_only_creation(self, collection):
        coach = make_principal(Role.COACH, permissions=list(PermissionFlag))
        assert not can_create(coach, collection)
        assert can_create(make_principal(Role.ADMIN), collection)

    async def test_166_parents_post_messages_not_conversations(self):
        parent = make_principal(Role.PARENT, team_ids=["team-a"])
        assert can_create(parent, "messages")
        assert not can_create(parent, "conversations")
        assert can_create(make_principal(Role.COACH), "conversations")

    async def test_167_editor_cannot_move_foreign_record(self):
        coach = make_principal(Role.COACH, team_ids=["team-a"])
        record = make_record("announcements", Visibility.TEAM, scope="team-a", owner_id="coach-2")
        assert can_mutate(coach, record, Action.EDIT)
        assert not can_change_placement(coach, record)

    async def test_168_owner_and_admin_move_records(self):
        coach = make_principal(Role.COACH, team_ids=["team-a"], principal_id="coach-1")
        own = make_record("announcements", Visibility.TEAM, scope="team-a", owner_id="coach-1")
        assert can_change_placement(coach, own)
        assert not can_change_placement(coach.with_roles(Role.VISITOR), own)
        assert can_change_placement(make_principal(Role.ADMIN), own)
        assert not can_change_placement(None, own)
