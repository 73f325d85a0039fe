"""Authentication routes."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel

from clubhouse.access_control import (
    ALL,
    capabilities,
    effective_team_scope,
    is_admin_tier,
    is_coach_tier,
    primary_role,
)
from clubhouse.identity import (
    AuthenticationError,
    IdentityProvider,
    Session,
    get_identity_provider,
)
from clubhouse.middleware.auth import get_current_principal
from clubhouse.principal import Principal
from clubhouse.services.audit_service import write_audit_log
from clubhouse.services.profiles import (
    ProfileValidationError,
    load_principal,
    provision_profile,
    update_display_name,
)
from clubhouse.store import DocumentStore, get_store

router = APIRouter(prefix="/api/auth", tags=["auth"])


class SignupRequest(BaseModel):
    email: str
    password: str
    display_name: str | None = None


class LoginRequest(BaseModel):
    email: str
    password: str


class ProfileUpdate(BaseModel):
    display_name: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: dict


def principal_out(principal: Principal) -> dict:
    scope = effective_team_scope(principal)
    return {
        "id": principal.id,
        "email": principal.email,
        "display_name": principal.display_name,
        "roles": sorted(r.value for r in principal.roles),
        "primary_role": primary_role(principal).value,
        "permissions": sorted(f.value for f in principal.permissions),
        "team_ids": sorted(principal.team_ids),
        "linked_player_ids": sorted(principal.linked_resource_ids),
        "is_admin_tier": is_admin_tier(principal),
        "is_coach_tier": is_coach_tier(principal),
        "team_scope": "all" if scope is ALL else sorted(scope),
        "capabilities": sorted(capabilities(principal)),
    }


async def _signed_in(
    session: Session, provider: IdentityProvider, store: DocumentStore
) -> TokenResponse:
    principal = await load_principal(store, session)
    if not principal.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )
    await write_audit_log(store, principal, "auth.login", resource_type="user", resource_id=principal.id)
    return TokenResponse(access_token=provider.issue_token(session), user=principal_out(principal))


@router.post("/signup", response_model=TokenResponse, status_code=201)
async def signup(
    body: SignupRequest,
    provider: IdentityProvider = Depends(get_identity_provider),
    store: DocumentStore = Depends(get_store),
):
    session = await provider.register(body.email, body.password)
    record = await provision_profile(store, session, body.display_name)
    principal = Principal.from_profile(record.id, record.data)
    await write_audit_log(store, principal, "auth.signup", resource_type="user", resource_id=principal.id)
    return TokenResponse(access_token=provider.issue_token(session), user=principal_out(principal))


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    provider: IdentityProvider = Depends(get_identity_provider),
    store: DocumentStore = Depends(get_store),
):
    try:
        session = await provider.authenticate(body.email, body.password)
    except AuthenticationError:
        await write_audit_log(store, None, "auth.failed", resource_type="auth", details={"email": body.email})
        raise
    return await _signed_in(session, provider, store)


@router.post("/login/form", response_model=TokenResponse)
async def login_form(
    form: OAuth2PasswordRequestForm = Depends(),
    provider: IdentityProvider = Depends(get_identity_provider),
    store: DocumentStore = Depends(get_store),
):
    """Form variant of ``/login`` for the OpenAPI "Authorize" button."""
    try:
        session = await provider.authenticate(form.username, form.password)
    except AuthenticationError:
        await write_audit_log(store, None, "auth.failed", resource_type="auth", details={"email": form.username})
        raise
    return await _signed_in(session, provider, store)


@router.get("/me")
async def get_me(principal: Principal = Depends(get_current_principal)):
    return principal_out(principal)


@router.patch("/me")
async def update_me(
    body: ProfileUpdate,
    principal: Principal = Depends(get_current_principal),
    store: DocumentStore = Depends(get_store),
):
    try:
        record = await update_display_name(store, principal, body.display_name)
    except ProfileValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return principal_out(Principal.from_profile(record.id, record.data))


@router.post("/refresh")
async def refresh_token(
    principal: Principal = Depends(get_current_principal),
    provider: IdentityProvider = Depends(get_identity_provider),
):
    token = provider.issue_token(Session(subject_id=principal.id, email=principal.email))
    return {"access_token": token, "token_type": "bearer"}


@router.post("/logout")
async def logout(
    principal: Principal = Depends(get_current_principal),
    provider: IdentityProvider = Depends(get_identity_provider),
    store: DocumentStore = Depends(get_store),
):
    await write_audit_log(store, principal, "auth.logout", resource_type="user", resource_id=principal.id)
    await provider.sign_out(principal.id)
    return {"status": "signed_out"}
