"""Access control evaluator for Clubhouse.

Every page guard, list query and action button asks this module.  All
functions are pure and synchronous, and all of them accept ``None`` for a
principal that is not (or no longer) signed in, answering with the
least-privileged result instead of raising.

Denial is an ordinary ``False``; nothing in here raises for it.
"""
from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from typing import Protocol, TypeVar

from clubhouse.principal import Principal
from clubhouse.rbac import (
    ADMIN_TIER_ROLES,
    COACH_TIER_ROLES,
    DEFAULT_ROLE,
    PERMISSION_CAPABILITIES,
    ROLE_CAPABILITIES,
    ROLE_PRIORITY,
    SCOPE_ALL,
    Action,
    PermissionFlag,
    Role,
    Visibility,
    get_policy,
    parse_role,
)


class _AllSentinel:
    """Marker for "every record / every page" answers."""

    _instance: _AllSentinel | None = None

    def __new__(cls) -> _AllSentinel:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ALL"


ANY = _AllSentinel()
"""Page requirement that every caller satisfies, signed in or not."""

ALL = ANY
"""Team scope covering every team."""

PageRequirement = _AllSentinel | frozenset[Role]
TeamScope = _AllSentinel | frozenset[str]


class Resource(Protocol):
    collection: str
    scope: str
    visibility: str
    owner_id: str | None


R = TypeVar("R", bound=Resource)


# ---------------------------------------------------------------------------
# Tiers
# ---------------------------------------------------------------------------


def has_role(principal: Principal | None, role: Role) -> bool:
    return principal is not None and role in principal.roles


def is_admin_tier(principal: Principal | None) -> bool:
    """Holds ``admin`` or ``master-admin``."""
    return principal is not None and not principal.roles.isdisjoint(ADMIN_TIER_ROLES)


def is_coach_tier(principal: Principal | None) -> bool:
    """Holds ``coach`` or is admin-tier."""
    return principal is not None and not principal.roles.isdisjoint(COACH_TIER_ROLES)


def is_master_admin(principal: Principal | None) -> bool:
    return has_role(principal, Role.MASTER_ADMIN)


def has_permission(principal: Principal | None, flag: PermissionFlag) -> bool:
    return principal is not None and flag in principal.permissions


def primary_role(principal: Principal | None) -> Role:
    """Highest-privilege role held, for display."""
    if principal is None or not principal.roles:
        return DEFAULT_ROLE
    for role in ROLE_PRIORITY:
        if role in principal.roles:
            return role
    return DEFAULT_ROLE


def capabilities(principal: Principal | None) -> frozenset[str]:
    """Union of role-implied and flag-implied capabilities."""
    if principal is None:
        return frozenset()
    caps: set[str] = set()
    for role in principal.roles:
        caps |= ROLE_CAPABILITIES.get(role, frozenset())
    for flag in principal.permissions:
        caps |= PERMISSION_CAPABILITIES.get(flag, frozenset())
    return frozenset(caps)


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------


def can_reach_page(principal: Principal | None, requirement: PageRequirement) -> bool:
    if requirement is ANY:
        return True
    if principal is None:
        return False
    return not principal.roles.isdisjoint(requirement)


@dataclasses.dataclass(frozen=True)
class GuardDecision:
    allowed: bool
    redirect: str | None = None


SIGN_IN_PATH = "/login"
LANDING_PATH = "/dashboard"
HOME_PATH = "/"


def guard_page(principal: Principal | None, path: str) -> GuardDecision:
    """Route guard: allow, or name the page to redirect to."""
    from clubhouse.navigation import find_page

    page = find_page(path)
    if page is None:
        return GuardDecision(False, HOME_PATH)
    if can_reach_page(principal, page.requirement):
        return GuardDecision(True)
    if principal is None:
        return GuardDecision(False, SIGN_IN_PATH)
    return GuardDecision(False, LANDING_PATH)


# ---------------------------------------------------------------------------
# Visibility
# ---------------------------------------------------------------------------


def can_view(principal: Principal | None, resource: Resource) -> bool:
    """Visibility rule, monotonic in the principal's roles."""
    visibility = resource.visibility
    if visibility == Visibility.PUBLIC:
        return True
    if principal is None:
        return False
    if is_admin_tier(principal):
        return True
    if visibility == Visibility.PARENT:
        return has_role(principal, Role.PARENT)
    if visibility == Visibility.COACH:
        return is_coach_tier(principal)
    if visibility == Visibility.TEAM:
        return resource.scope == SCOPE_ALL or resource.scope in principal.memberships
    # admin, or anything outside the vocabulary
    return False


def visible_resources(principal: Principal | None, resources: Iterable[R]) -> list[R]:
    return [r for r in resources if can_view(principal, r)]


def readable_visibilities(principal: Principal | None) -> frozenset[str]:
    """Visibility levels some record could be readable at; safe to push into a query."""
    if principal is None:
        return frozenset({Visibility.PUBLIC.value})
    if is_admin_tier(principal):
        return frozenset(v.value for v in Visibility)
    levels = {Visibility.PUBLIC.value, Visibility.TEAM.value}
    if has_role(principal, Role.PARENT):
        levels.add(Visibility.PARENT.value)
    if is_coach_tier(principal):
        levels.add(Visibility.COACH.value)
    return frozenset(levels)


def effective_team_scope(principal: Principal | None) -> TeamScope:
    """Teams whose records the principal's queries cover.

    Organization-wide records (scope ``"all"``) are always included.
    """
    if principal is None:
        return frozenset({SCOPE_ALL})
    if is_admin_tier(principal):
        return ALL
    if is_coach_tier(principal) and not principal.team_ids:
        return ALL
    return principal.memberships | {SCOPE_ALL}


def in_team_scope(principal: Principal | None, resource: Resource) -> bool:
    scope = effective_team_scope(principal)
    return scope is ALL or resource.scope in scope


def meets_read_bar(principal: Principal | None, resource: Resource) -> bool:
    """Collection-level read capability, if the collection declares one."""
    policy = get_policy(resource.collection)
    if policy is None or policy.read_capability is None or is_admin_tier(principal):
        return True
    return policy.read_capability in capabilities(principal)


def readable_resources(principal: Principal | None, resources: Iterable[R]) -> list[R]:
    """The one read filter list, detail and feed queries share."""
    return [
        r for r in visible_resources(principal, resources)
        if (r.visibility == Visibility.PUBLIC or in_team_scope(principal, r))
        and meets_read_bar(principal, r)
    ]


def can_read(principal: Principal | None, resource: Resource) -> bool:
    return bool(readable_resources(principal, [resource]))


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def can_create(principal: Principal | None, collection: str) -> bool:
    policy = get_policy(collection)
    if principal is None or policy is None:
        return False
    if is_admin_tier(principal):
        return True
    if not principal.roles.isdisjoint(policy.create_roles):
        return True
    return any(has_permission(principal, flag) for flag in policy.create_flags)


def can_mutate(principal: Principal | None, resource: Resource, action: Action | str) -> bool:
    """Decide create/edit/delete on ``resource`` from the principal's current state."""
    action = Action(action)
    policy = get_policy(resource.collection)
    if principal is None or policy is None:
        return False
    if is_admin_tier(principal):
        return True
    if action == Action.CREATE:
        return can_create(principal, resource.collection)

    is_owner = resource.owner_id is not None and resource.owner_id == principal.id
    if is_owner and policy.self_service and can_create(principal, resource.collection):
        return True
    if action == Action.EDIT:
        return (
            not principal.roles.isdisjoint(policy.editor_roles)
            and can_read(principal, resource)
        )
    return False


def can_change_placement(principal: Principal | None, resource: Resource) -> bool:
    """Moving a record to another visibility or scope: admin-tier, or its editing owner."""
    if is_admin_tier(principal):
        return True
    is_owner = principal is not None and resource.owner_id == principal.id
    return is_owner and can_mutate(principal, resource, Action.EDIT)


def can_assign_roles(
    principal: Principal | None,
    current_roles: Iterable[Role | str],
    new_roles: Iterable[Role | str],
) -> bool:
    """Admin-tier may change roles; only master-admin may grant or revoke master-admin."""
    if not is_admin_tier(principal):
        return False
    before = Role.MASTER_ADMIN in {parse_role(r) for r in current_roles}
    after = Role.MASTER_ADMIN in {parse_role(r) for r in new_roles}
    return before == after or is_master_admin(principal)
