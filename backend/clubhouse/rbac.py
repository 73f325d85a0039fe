"""
RBAC Registry for Clubhouse

Defines the closed role vocabulary, the explicit permission flags, the
visibility levels a record may declare, and the static role-to-capability
and per-collection policy tables.  Nothing here is mutable at runtime; the
decision functions that read these tables live in ``access_control``.

Capability string format: {area}.{resource}.{action}
"""
from __future__ import annotations

import dataclasses
import enum


# ---------------------------------------------------------------------------
# Vocabularies
# ---------------------------------------------------------------------------


class Role(str, enum.Enum):
    VISITOR = "visitor"
    PARENT = "parent"
    COACH = "coach"
    ADMIN = "admin"
    MASTER_ADMIN = "master-admin"
    SPONSOR = "sponsor"


class PermissionFlag(str, enum.Enum):
    CAN_EDIT_ROSTERS = "can_edit_rosters"
    CAN_VIEW_FINANCIALS = "can_view_financials"
    CAN_MANAGE_SCHEDULES = "can_manage_schedules"
    CAN_UPLOAD_MEDIA = "can_upload_media"


class Visibility(str, enum.Enum):
    PUBLIC = "public"
    PARENT = "parent"
    TEAM = "team"
    COACH = "coach"
    ADMIN = "admin"


class Action(str, enum.Enum):
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"


ADMIN_TIER_ROLES: frozenset[Role] = frozenset({Role.ADMIN, Role.MASTER_ADMIN})
COACH_TIER_ROLES: frozenset[Role] = frozenset({Role.COACH}) | ADMIN_TIER_ROLES

DEFAULT_ROLE = Role.VISITOR

# Highest privilege first; used for display only.
ROLE_PRIORITY: list[Role] = [
    Role.MASTER_ADMIN,
    Role.ADMIN,
    Role.COACH,
    Role.PARENT,
    Role.SPONSOR,
    Role.VISITOR,
]

# Scope sentinel for organization-wide records.
SCOPE_ALL = "all"

VALID_ROLES: list[str] = sorted(r.value for r in Role)
VALID_PERMISSION_FLAGS: list[str] = sorted(f.value for f in PermissionFlag)


# ---------------------------------------------------------------------------
# Role → capabilities (source of truth for menus and the roles endpoint)
# ---------------------------------------------------------------------------

_BASE_CAPABILITIES: set[str] = {
    "club.dashboard.view",
    "club.teams.view",
    "club.players.view",
    "club.schedules.view",
    "club.announcements.view",
    "content.documents.view",
    "content.media.view",
    "operations.volunteers.view",
    "operations.tournaments.view",
}

_COACH_CAPABILITIES: set[str] = _BASE_CAPABILITIES | {
    "club.messaging.use",
    "club.announcements.create",
    "club.schedules.create",
    "content.documents.create",
    "content.media.create",
    "content.homepage.manage",
    "development.metrics.view",
    "development.metrics.create",
}

_ADMIN_CAPABILITIES: set[str] = _COACH_CAPABILITIES | {
    "club.teams.create",
    "club.players.create",
    "finance.billing.view",
    "finance.expenses.view",
    "finance.income.view",
    "finance.assumptions.view",
    "finance.reports.view",
    "finance.reconciliation.manage",
    "finance.invoices.manage",
    "operations.equipment.manage",
    "management.scholarships.manage",
    "management.sponsors.manage",
    "management.fundraisers.manage",
    "admin.users.provision",
    "admin.audit_log.view",
}

ROLE_CAPABILITIES: dict[Role, frozenset[str]] = {
    Role.VISITOR: frozenset(_BASE_CAPABILITIES),
    Role.PARENT: frozenset(_BASE_CAPABILITIES | {"club.messaging.use"}),
    Role.SPONSOR: frozenset(_BASE_CAPABILITIES),
    Role.COACH: frozenset(_COACH_CAPABILITIES),
    Role.ADMIN: frozenset(_ADMIN_CAPABILITIES),
    Role.MASTER_ADMIN: frozenset(_ADMIN_CAPABILITIES | {"admin.users.manage"}),
}

# Capabilities granted by an explicit flag on top of role-implied ones.
PERMISSION_CAPABILITIES: dict[PermissionFlag, frozenset[str]] = {
    PermissionFlag.CAN_EDIT_ROSTERS: frozenset({"club.players.create"}),
    PermissionFlag.CAN_VIEW_FINANCIALS: frozenset({"finance.own_balance.view"}),
    PermissionFlag.CAN_MANAGE_SCHEDULES: frozenset({"club.schedules.create"}),
    PermissionFlag.CAN_UPLOAD_MEDIA: frozenset({"content.media.create"}),
}


# ---------------------------------------------------------------------------
# Per-collection policy
# ---------------------------------------------------------------------------


@dataclasses.dataclass(frozen=True)
class ResourcePolicy:
    """Access policy of one collection.

    ``create_roles``/``create_flags`` form the creation bar: holding any
    listed role or any listed flag clears it.  Admin-tier always clears it.
    ``self_service`` lets the record's owner edit and delete it while the
    owner still clears the creation bar.  ``editor_roles`` may edit records
    they can read without owning them; they never delete.

    ``read_capability``, when set, must be held by non-admin readers on top
    of the visibility rule.  A concrete scope names a record in
    ``scope_collection``; ``None`` there means records are always
    organization-wide, and ``org_wide=False`` forbids the ``"all"`` scope.
    """

    collection: str
    create_roles: frozenset[Role] = frozenset()
    create_flags: frozenset[PermissionFlag] = frozenset()
    self_service: bool = False
    editor_roles: frozenset[Role] = frozenset()
    visibilities: frozenset[Visibility] = frozenset(Visibility)
    default_visibility: Visibility = Visibility.TEAM
    read_capability: str | None = None
    scope_collection: str | None = "teams"
    org_wide: bool = True


_ADMIN_ONLY = frozenset({Visibility.ADMIN})

RESOURCE_POLICIES: dict[str, ResourcePolicy] = {
    policy.collection: policy
    for policy in [
        ResourcePolicy(
            "announcements",
            create_roles=COACH_TIER_ROLES,
            self_service=True,
            editor_roles=COACH_TIER_ROLES,
            default_visibility=Visibility.TEAM,
        ),
        ResourcePolicy(
            "documents",
            create_roles=COACH_TIER_ROLES,
            self_service=True,
            default_visibility=Visibility.PARENT,
        ),
        ResourcePolicy(
            "media",
            create_roles=COACH_TIER_ROLES,
            create_flags=frozenset({PermissionFlag.CAN_UPLOAD_MEDIA}),
            self_service=True,
            visibilities=frozenset({Visibility.PUBLIC, Visibility.TEAM}),
            default_visibility=Visibility.TEAM,
        ),
        ResourcePolicy(
            "schedules",
            create_roles=COACH_TIER_ROLES,
            create_flags=frozenset({PermissionFlag.CAN_MANAGE_SCHEDULES}),
            self_service=True,
            editor_roles=COACH_TIER_ROLES,
            default_visibility=Visibility.PUBLIC,
        ),
        ResourcePolicy(
            "players",
            create_flags=frozenset({PermissionFlag.CAN_EDIT_ROSTERS}),
            visibilities=frozenset({Visibility.TEAM, Visibility.COACH, Visibility.ADMIN}),
            default_visibility=Visibility.TEAM,
        ),
        ResourcePolicy(
            "teams",
            visibilities=frozenset({Visibility.PUBLIC, Visibility.ADMIN}),
            default_visibility=Visibility.PUBLIC,
            scope_collection=None,
        ),
        ResourcePolicy(
            "player_metrics",
            create_roles=COACH_TIER_ROLES,
            self_service=True,
            editor_roles=COACH_TIER_ROLES,
            visibilities=frozenset({Visibility.TEAM, Visibility.COACH, Visibility.ADMIN}),
            default_visibility=Visibility.COACH,
        ),
        ResourcePolicy(
            "conversations",
            create_roles=COACH_TIER_ROLES,
            visibilities=frozenset({Visibility.TEAM, Visibility.COACH}),
            default_visibility=Visibility.TEAM,
        ),
        ResourcePolicy(
            "messages",
            create_roles=frozenset({Role.PARENT}) | COACH_TIER_ROLES,
            self_service=True,
            visibilities=frozenset({Visibility.TEAM, Visibility.COACH}),
            default_visibility=Visibility.TEAM,
        ),
        ResourcePolicy(
            "equipment",
            visibilities=frozenset({Visibility.TEAM, Visibility.COACH, Visibility.ADMIN}),
            default_visibility=Visibility.ADMIN,
        ),
        ResourcePolicy(
            "tournaments",
            default_visibility=Visibility.PUBLIC,
        ),
        ResourcePolicy(
            "volunteers",
            create_roles=COACH_TIER_ROLES,
            self_service=True,
            default_visibility=Visibility.TEAM,
        ),
        ResourcePolicy(
            "fundraisers",
            default_visibility=Visibility.PUBLIC,
        ),
        ResourcePolicy(
            "sponsors",
            visibilities=frozenset({Visibility.PUBLIC, Visibility.ADMIN}),
            default_visibility=Visibility.ADMIN,
        ),
        ResourcePolicy(
            "expenses",
            visibilities=_ADMIN_ONLY,
            default_visibility=Visibility.ADMIN,
        ),
        ResourcePolicy(
            "income",
            visibilities=_ADMIN_ONLY,
            default_visibility=Visibility.ADMIN,
        ),
        ResourcePolicy(
            "costs",
            visibilities=_ADMIN_ONLY,
            default_visibility=Visibility.ADMIN,
        ),
        ResourcePolicy(
            "scholarships",
            visibilities=_ADMIN_ONLY,
            default_visibility=Visibility.ADMIN,
            scope_collection="players",
        ),
        # One balance sheet per player; a linked parent reads it only with
        # the can_view_financials flag.
        ResourcePolicy(
            "player_finances",
            visibilities=frozenset({Visibility.PARENT, Visibility.ADMIN}),
            default_visibility=Visibility.PARENT,
            read_capability="finance.own_balance.view",
            scope_collection="players",
            org_wide=False,
        ),
    ]
}

FINANCE_COLLECTIONS: frozenset[str] = frozenset({"expenses", "income"})


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def get_policy(collection: str) -> ResourcePolicy | None:
    """Return the policy for a collection, or ``None`` if it is not exposed."""
    return RESOURCE_POLICIES.get(collection)


def parse_role(value: str) -> Role | None:
    """Return the ``Role`` for a tag, or ``None`` if it is outside the vocabulary."""
    try:
        return Role(value)
    except ValueError:
        return None


def parse_flag(value: str) -> PermissionFlag | None:
    try:
        return PermissionFlag(value)
    except ValueError:
        return None


def role_description(role: Role) -> str:
    """Return a human-readable description for a role tag."""
    _DESCRIPTIONS: dict[Role, str] = {
        Role.VISITOR: "Signed-in visitor; public content and the club dashboard",
        Role.PARENT: "Parent or guardian of a rostered player",
        Role.COACH: "Coach; manages schedules, announcements, documents and media",
        Role.ADMIN: "Club administrator; finances, rosters and provisioning",
        Role.MASTER_ADMIN: "Administrator who also manages user roles",
        Role.SPONSOR: "Sponsor with access to the sponsor area",
    }
    return _DESCRIPTIONS.get(role, role.value)
