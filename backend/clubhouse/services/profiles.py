"""Profile records and account provisioning.

Profiles live in the ``users`` collection keyed by the identity provider's
subject id.  Pending invites created from player contacts live in
``pending_users`` until someone signs up with the invited email.
"""
from __future__ import annotations

import logging
from typing import Any

from clubhouse.identity import CREDENTIALS, Session
from clubhouse.principal import Principal
from clubhouse.rbac import (
    DEFAULT_ROLE,
    VALID_PERMISSION_FLAGS,
    PermissionFlag,
    Role,
    Visibility,
    parse_role,
)
from clubhouse.services.audit_service import write_audit_log
from clubhouse.store import DocumentStore, Record

logger = logging.getLogger(__name__)

USERS = "users"
PENDING_USERS = "pending_users"


class ProfileValidationError(ValueError):
    pass


def default_permissions() -> dict[str, bool]:
    return {flag: False for flag in VALID_PERMISSION_FLAGS}


def profile_summary(record: Record) -> dict[str, Any]:
    data = record.data
    return {
        "id": record.id,
        "email": data.get("email"),
        "display_name": data.get("display_name"),
        "roles": data.get("roles", []),
        "team_ids": data.get("team_ids", []),
        "linked_player_ids": data.get("linked_player_ids", []),
        "permissions": data.get("permissions", default_permissions()),
        "is_active": data.get("is_active", True),
        "created_at": record.created_at.isoformat(),
    }


# ---------------------------------------------------------------------------
# Onboarding
# ---------------------------------------------------------------------------


async def provision_profile(
    store: DocumentStore, session: Session, display_name: str | None = None
) -> Record:
    """Create the profile on first authentication, adopting a pending invite."""
    profile: dict[str, Any] = {
        "email": session.email,
        "display_name": display_name or session.email,
        "roles": [DEFAULT_ROLE.value],
        "team_ids": [],
        "linked_player_ids": [],
        "permissions": default_permissions(),
        "is_active": True,
    }

    invites = await store.list(PENDING_USERS, {"email": session.email})
    if invites:
        invite = invites[0]
        for key in ("roles", "team_ids", "linked_player_ids", "permissions"):
            if invite.data.get(key):
                profile[key] = invite.data[key]
        if not display_name and invite.data.get("display_name"):
            profile["display_name"] = invite.data["display_name"]
        await store.delete(PENDING_USERS, invite.id)
        logger.info("Adopted pending invite %s for %s", invite.id, session.subject_id)

    record = await store.insert(
        USERS,
        profile,
        visibility=Visibility.ADMIN.value,
        owner_id=session.subject_id,
        record_id=session.subject_id,
    )
    logger.info("Provisioned profile %s with roles %s", record.id, profile["roles"])
    return record


async def load_principal(store: DocumentStore, session: Session) -> Principal:
    record = await store.get(USERS, session.subject_id)
    if record is None:
        record = await provision_profile(store, session)
    return Principal.from_profile(record.id, record.data)


# ---------------------------------------------------------------------------
# Self-service
# ---------------------------------------------------------------------------


async def update_display_name(
    store: DocumentStore, principal: Principal, display_name: str
) -> Record:
    display_name = display_name.strip()
    if not display_name:
        raise ProfileValidationError("Display name cannot be empty")
    record = await store.patch(USERS, principal.id, {"display_name": display_name})
    await write_audit_log(store, principal, "profile.update", "user", principal.id, {"display_name": display_name})
    return record


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


def validate_roles(tags: list[str]) -> list[str]:
    if not tags:
        raise ProfileValidationError("A user must hold at least one role")
    unknown = [t for t in tags if parse_role(t) is None]
    if unknown:
        raise ProfileValidationError(
            f"Invalid role(s) {', '.join(unknown)}. Valid roles: {', '.join(r.value for r in Role)}"
        )
    return sorted(set(tags))


def validate_permissions(flags: dict[str, bool]) -> dict[str, bool]:
    unknown = [f for f in flags if f not in VALID_PERMISSION_FLAGS]
    if unknown:
        raise ProfileValidationError(f"Unknown permission flag(s) {', '.join(unknown)}")
    merged = default_permissions()
    merged.update({k: bool(v) for k, v in flags.items()})
    return merged


async def update_access(
    store: DocumentStore,
    actor: Principal,
    target_id: str,
    *,
    roles: list[str] | None = None,
    permissions: dict[str, bool] | None = None,
    team_ids: list[str] | None = None,
    linked_player_ids: list[str] | None = None,
    is_active: bool | None = None,
) -> Record | None:
    """Apply an administrative access change.  Caller has authorised it."""
    changes: dict[str, Any] = {}
    if roles is not None:
        changes["roles"] = validate_roles(roles)
        # The canonical field replaces the legacy single-role field.
        changes["role"] = None
    if permissions is not None:
        changes["permissions"] = validate_permissions(permissions)
    if team_ids is not None:
        changes["team_ids"] = sorted(set(team_ids))
    if linked_player_ids is not None:
        changes["linked_player_ids"] = sorted(set(linked_player_ids))
    if is_active is not None:
        changes["is_active"] = is_active

    record = await store.patch(USERS, target_id, changes)
    if record is None:
        return None
    await write_audit_log(store, actor, "user.update", "user", target_id, changes)
    return record


async def disable_profile(store: DocumentStore, actor: Principal, target_id: str) -> Record | None:
    record = await store.patch(USERS, target_id, {"is_active": False})
    if record is not None:
        await write_audit_log(store, actor, "user.disable", "user", target_id)
    return record


async def delete_profile(store: DocumentStore, actor: Principal, target_id: str) -> bool:
    """Hard delete of the profile and its credentials.

    Earlier tokens stop verifying and the email can no longer sign in.
    Records naming this user as owner keep the id as a label.
    """
    deleted = await store.delete(USERS, target_id)
    await store.delete(CREDENTIALS, target_id)
    if deleted:
        await write_audit_log(store, actor, "user.delete", "user", target_id)
    return deleted


async def provision_from_contact(
    store: DocumentStore,
    actor: Principal,
    email: str,
    name: str,
    player_id: str,
    team_id: str | None = None,
) -> dict[str, str]:
    """Link a player's contact to an account, inviting them if they have none."""
    email = email.strip().lower()
    if not email:
        raise ProfileValidationError("Contact email is required")

    for collection, status in ((USERS, "linked"), (PENDING_USERS, "pending")):
        matches = await store.list(collection, {"email": email})
        if not matches:
            continue
        existing = matches[0]
        linked = set(existing.data.get("linked_player_ids") or [])
        teams = set(existing.data.get("team_ids") or [])
        if player_id not in linked or (team_id and team_id not in teams):
            linked.add(player_id)
            if team_id:
                teams.add(team_id)
            await store.patch(
                collection,
                existing.id,
                {"linked_player_ids": sorted(linked), "team_ids": sorted(teams)},
            )
        await write_audit_log(
            store, actor, "user.provision", collection, existing.id, {"player_id": player_id}
        )
        return {"status": status, "id": existing.id}

    permissions = default_permissions()
    permissions[PermissionFlag.CAN_VIEW_FINANCIALS.value] = True
    invite = await store.insert(
        PENDING_USERS,
        {
            "email": email,
            "display_name": name,
            "roles": [Role.PARENT.value],
            "team_ids": [team_id] if team_id else [],
            "linked_player_ids": [player_id],
            "permissions": permissions,
        },
        visibility=Visibility.ADMIN.value,
        owner_id=actor.id,
    )
    await write_audit_log(
        store, actor, "user.provision", PENDING_USERS, invite.id, {"player_id": player_id}
    )
    return {"status": "pending", "id": invite.id}
