"""
Test fixtures for the Clubhouse API.

Tests run in-process against the FastAPI app through ``httpx.ASGITransport``
with a fresh in-memory document store per test, so no database is needed.
Principals for pure evaluator tests are built directly; API tests sign up
real accounts and then adjust their profile records in the store.
"""
import os
import uuid

os.environ.setdefault("STORE_BACKEND", "memory")

import httpx
import pytest
import pytest_asyncio

from clubhouse.main import app
from clubhouse.principal import Principal
from clubhouse.rbac import PermissionFlag, Role, Visibility
from clubhouse.services.profiles import USERS
from clubhouse.store import MemoryDocumentStore, Record, get_store, _now

BASE_URL = "http://testserver"
PASSWORD = "club-pass-2026"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_principal(
    *roles: Role,
    team_ids=(),
    linked=(),
    permissions=(),
    principal_id: str | None = None,
) -> Principal:
    """Build a principal without touching the store."""
    pid = principal_id or f"user-{uuid.uuid4().hex[:8]}"
    return Principal(
        id=pid,
        email=f"{pid}@example.org",
        display_name=pid,
        roles=frozenset(roles or {Role.VISITOR}),
        team_ids=frozenset(team_ids),
        linked_resource_ids=frozenset(linked),
        permissions=frozenset(permissions),
    )


def make_record(
    collection: str = "announcements",
    visibility: Visibility | str = Visibility.PUBLIC,
    scope: str = "all",
    owner_id: str | None = None,
    record_id: str | None = None,
    **data,
) -> Record:
    now = _now()
    return Record(
        id=record_id or uuid.uuid4().hex,
        collection=collection,
        scope=scope,
        visibility=Visibility(visibility).value,
        owner_id=owner_id,
        data=data,
        created_at=now,
        updated_at=now,
    )


def auth_headers(token: str) -> dict:
    """Return auth header dict for a given token."""
    return {"Authorization": f"Bearer {token}"}


async def signup(client: httpx.AsyncClient, email: str | None = None, display_name: str | None = None) -> dict:
    """Sign up and return the login response body."""
    email = email or f"{uuid.uuid4().hex[:10]}@example.org"
    r = await client.post(
        "/api/auth/signup",
        json={"email": email, "password": PASSWORD, "display_name": display_name},
    )
    assert r.status_code == 201, f"Signup failed: {r.text}"
    return r.json()


async def set_access(store: MemoryDocumentStore, user_id: str, **changes) -> None:
    """Rewrite a profile directly, bypassing the admin API."""
    if "roles" in changes:
        changes["roles"] = [Role(r).value for r in changes["roles"]]
    if "permissions" in changes:
        changes["permissions"] = {PermissionFlag(f).value: True for f in changes["permissions"]}
    record = await store.patch(USERS, user_id, changes)
    assert record is not None


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store():
    """Fresh in-memory store, wired into the app for the test's duration."""
    memory = MemoryDocumentStore()
    app.dependency_overrides[get_store] = lambda: memory
    yield memory
    app.dependency_overrides.pop(get_store, None)


@pytest_asyncio.fixture
async def client(store):
    """Async HTTP client bound to the app."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url=BASE_URL, timeout=30.0) as c:
        yield c


@pytest_asyncio.fixture
async def account(client, store):
    """Factory: sign up an account with the given access and return its headers and id."""

    async def _account(*roles: Role, team_ids=(), linked=(), permissions=(), display_name=None):
        body = await signup(client, display_name=display_name)
        user_id = body["user"]["id"]
        changes = {"team_ids": list(team_ids), "linked_player_ids": list(linked)}
        if roles:
            changes["roles"] = list(roles)
        if permissions:
            changes["permissions"] = list(permissions)
        await set_access(store, user_id, **changes)
        return {"id": user_id, "headers": auth_headers(body["access_token"]), "email": body["user"]["email"]}

    return _account


@pytest_asyncio.fixture
async def admin(account):
    return await account(Role.ADMIN, display_name="Club Admin")


@pytest_asyncio.fixture
async def master_admin(account):
    return await account(Role.MASTER_ADMIN, display_name="Master Admin")


@pytest_asyncio.fixture
async def coach(account):
    return await account(Role.COACH, team_ids=["team-a"], display_name="Coach Carter")


@pytest_asyncio.fixture
async def parent(account):
    return await account(Role.PARENT, team_ids=["team-a"], linked=["player-7"], display_name="Pat Parent")


@pytest_asyncio.fixture
async def visitor(account):
    return await account(display_name="Vic Visitor")
