"""Administration routes --- user management, provisioning, roles, audit log."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from clubhouse.access_control import can_assign_roles
from clubhouse.middleware.auth import require_capability, require_tier
from clubhouse.principal import Principal
from clubhouse.rbac import (
    ROLE_CAPABILITIES,
    ROLE_PRIORITY,
    VALID_PERMISSION_FLAGS,
    role_description,
)
from clubhouse.services.audit_service import AUDIT_LOG
from clubhouse.services.feeds import feed_hub
from clubhouse.services.profiles import (
    USERS,
    ProfileValidationError,
    delete_profile,
    disable_profile,
    profile_summary,
    provision_from_contact,
    update_access,
)
from clubhouse.services.resources import ResourceService
from clubhouse.store import DocumentStore, get_store

router = APIRouter(prefix="/api/admin", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class UserAccessUpdate(BaseModel):
    roles: list[str] | None = None
    permissions: dict[str, bool] | None = None
    team_ids: list[str] | None = None
    linked_player_ids: list[str] | None = None
    is_active: bool | None = None


class ProvisionRequest(BaseModel):
    email: str
    name: str
    player_id: str
    team_id: str | None = None


# ---------------------------------------------------------------------------
# USER MANAGEMENT
# ---------------------------------------------------------------------------


@router.get("/users")
async def list_users(
    store: DocumentStore = Depends(get_store),
    principal: Principal = Depends(require_tier("admin")),
):
    """List all user profiles."""
    records = await store.list(USERS, order_by="email", descending=False)
    items = [profile_summary(r) for r in records]
    return {"items": items, "total": len(items)}


@router.get("/users/{user_id}")
async def get_user(
    user_id: str,
    store: DocumentStore = Depends(get_store),
    principal: Principal = Depends(require_tier("admin")),
):
    record = await store.get(USERS, user_id)
    if record is None:
        raise HTTPException(status_code=404, detail="User not found")
    return profile_summary(record)


@router.put("/users/{user_id}")
async def update_user(
    user_id: str,
    body: UserAccessUpdate,
    store: DocumentStore = Depends(get_store),
    principal: Principal = Depends(require_tier("admin")),
):
    """Change a user's roles, flags, team/player links or active state."""
    target = await store.get(USERS, user_id)
    if target is None:
        raise HTTPException(status_code=404, detail="User not found")

    if body.roles is not None and not can_assign_roles(
        principal, target.data.get("roles") or [], body.roles
    ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only a master admin may grant or revoke the master-admin role.",
        )

    try:
        record = await update_access(
            store,
            principal,
            user_id,
            roles=body.roles,
            permissions=body.permissions,
            team_ids=body.team_ids,
            linked_player_ids=body.linked_player_ids,
            is_active=body.is_active,
        )
    except ProfileValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    if record is None:
        raise HTTPException(status_code=404, detail="User not found")

    if record.data.get("is_active") is False:
        feed_hub.close_all(user_id)
    else:
        # Open feeds filter with the changed access from the next snapshot on.
        feed_hub.update_principal(Principal.from_profile(record.id, record.data))
    return profile_summary(record)


@router.post("/users/{user_id}/disable")
async def disable_user(
    user_id: str,
    store: DocumentStore = Depends(get_store),
    principal: Principal = Depends(require_tier("admin")),
):
    if user_id == principal.id:
        raise HTTPException(status_code=422, detail="You cannot disable your own account")
    record = await disable_profile(store, principal, user_id)
    if record is None:
        raise HTTPException(status_code=404, detail="User not found")
    feed_hub.close_all(user_id)
    return {"status": "disabled", "id": user_id}


@router.delete("/users/{user_id}")
async def delete_user(
    user_id: str,
    confirm: str | None = Query(None),
    store: DocumentStore = Depends(get_store),
    principal: Principal = Depends(require_capability("admin.users.manage")),
):
    """Hard-delete a profile.  Master-admin only; ``confirm`` must echo the id."""
    if user_id == principal.id:
        raise HTTPException(status_code=422, detail="You cannot delete your own account")
    if await store.get(USERS, user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")
    if confirm != user_id:
        raise HTTPException(
            status_code=428,
            detail="Deletion must be confirmed by passing the user id as 'confirm'.",
        )
    await delete_profile(store, principal, user_id)
    feed_hub.close_all(user_id)
    return {"status": "deleted", "id": user_id}


# ---------------------------------------------------------------------------
# PROVISIONING
# ---------------------------------------------------------------------------


@router.post("/provision", status_code=201)
async def provision(
    body: ProvisionRequest,
    store: DocumentStore = Depends(get_store),
    principal: Principal = Depends(require_capability("admin.users.provision")),
):
    """Link a player's contact email to an account or a pending invite."""
    if await ResourceService(store, principal).get("players", body.player_id) is None:
        raise HTTPException(status_code=404, detail="Player not found")
    try:
        return await provision_from_contact(
            store, principal, body.email, body.name, body.player_id, body.team_id
        )
    except ProfileValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))


# ---------------------------------------------------------------------------
# ROLES
# ---------------------------------------------------------------------------


@router.get("/roles")
async def list_roles(
    principal: Principal = Depends(require_tier("admin")),
):
    """List all roles with their capabilities, highest privilege first."""
    roles = [
        {
            "code": role.value,
            "description": role_description(role),
            "capabilities": sorted(ROLE_CAPABILITIES[role]),
        }
        for role in ROLE_PRIORITY
    ]
    return {"roles": roles, "permission_flags": VALID_PERMISSION_FLAGS}


# ---------------------------------------------------------------------------
# AUDIT LOG
# ---------------------------------------------------------------------------


@router.get("/audit-log")
async def list_audit_log(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    action: str | None = Query(None),
    user_id: str | None = Query(None),
    resource_type: str | None = Query(None),
    store: DocumentStore = Depends(get_store),
    principal: Principal = Depends(require_capability("admin.audit_log.view")),
):
    """Paginated audit trail, newest first."""
    filter = {}
    if action:
        filter["action"] = action
    if user_id:
        filter["user_id"] = user_id
    if resource_type:
        filter["resource_type"] = resource_type

    entries = await store.list(AUDIT_LOG, filter)
    offset = (page - 1) * page_size
    items = [{"id": e.id, **e.data} for e in entries[offset:offset + page_size]]

    return {
        "items": items,
        "total": len(entries),
        "page": page,
        "page_size": page_size,
    }
