"""Authentication and authorization dependencies for Clubhouse.

Provides:
- ``get_current_principal()`` dependency (401 when signed out)
- ``get_optional_principal()`` for routes that also serve visitors
- ``require_tier()`` and ``require_capability()`` dependency factories
"""
from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from clubhouse.access_control import capabilities, is_admin_tier, is_coach_tier
from clubhouse.identity import AuthenticationError, IdentityProvider, get_identity_provider
from clubhouse.principal import Principal
from clubhouse.services.feeds import feed_hub
from clubhouse.services.profiles import load_principal
from clubhouse.store import DocumentStore, get_store

# ---------------------------------------------------------------------------
# OAuth2 scheme (tells Swagger UI where the login endpoint is)
# ---------------------------------------------------------------------------

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login/form")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login/form", auto_error=False)

FORBIDDEN_DETAIL = "Not permitted."


def credentials_exception(message: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=message,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def _resolve(
    request: Request,
    token: str,
    provider: IdentityProvider,
    store: DocumentStore,
) -> Principal:
    try:
        session = await provider.verify(token)
    except AuthenticationError as e:
        raise credentials_exception(e.message)

    principal = await load_principal(store, session)
    if not principal.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is deactivated",
        )

    # Live feeds re-evaluate against the freshest profile.
    feed_hub.update_principal(principal)
    request.state.principal = principal
    return principal


# ---------------------------------------------------------------------------
# Current-principal dependencies
# ---------------------------------------------------------------------------


async def get_current_principal(
    request: Request,
    token: str = Depends(oauth2_scheme),
    provider: IdentityProvider = Depends(get_identity_provider),
    store: DocumentStore = Depends(get_store),
) -> Principal:
    """Verify the bearer token and load the caller's principal.

    Raises ``HTTPException(401)`` when the token is missing, invalid or
    issued before a sign-out, and 403 when the account is disabled.
    """
    return await _resolve(request, token, provider, store)


async def get_optional_principal(
    request: Request,
    token: str | None = Depends(optional_oauth2_scheme),
    provider: IdentityProvider = Depends(get_identity_provider),
    store: DocumentStore = Depends(get_store),
) -> Principal | None:
    """Like ``get_current_principal`` but ``None`` for visitors without a token.

    A token that is present but invalid is still a 401.
    """
    if token is None:
        return None
    return await _resolve(request, token, provider, store)


# ---------------------------------------------------------------------------
# Tier / capability dependency factories
# ---------------------------------------------------------------------------

_TIERS: dict[str, Callable[[Principal | None], bool]] = {
    "admin": is_admin_tier,
    "coach": is_coach_tier,
}


def require_tier(tier: str):
    """Return a dependency admitting only principals of ``tier`` (admin or coach).

    Usage::

        @router.get("/summary")
        async def summary(principal: Principal = Depends(require_tier("admin"))):
            ...
    """
    check = _TIERS[tier]

    async def _check_tier(
        principal: Principal = Depends(get_current_principal),
    ) -> Principal:
        if not check(principal):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=FORBIDDEN_DETAIL)
        return principal

    return _check_tier


def require_capability(*required: str):
    """Return a dependency ensuring the principal holds ALL of ``required``."""
    wanted = set(required)

    async def _check_capability(
        principal: Principal = Depends(get_current_principal),
    ) -> Principal:
        if wanted - capabilities(principal):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=FORBIDDEN_DETAIL)
        return principal

    return _check_capability
