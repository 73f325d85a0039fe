"""Identity & session provider.

The rest of the service only sees ``Session`` values and the
``IdentityProvider`` interface.  ``LocalIdentityProvider`` keeps credentials
in the document store's ``credentials`` collection and owns everything
password- and token-related:

- bcrypt hashing (passlib)
- signed access tokens (python-jose)
- sign-out, after which earlier tokens are refused
- session-change notifications
"""
from __future__ import annotations

import dataclasses
import logging
import time
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends
from jose import JWTError, jwt
from passlib.context import CryptContext

from clubhouse.config import settings
from clubhouse.rbac import Visibility
from clubhouse.store import DocumentStore, get_store

logger = logging.getLogger(__name__)

CREDENTIALS = "credentials"

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class AuthenticationError(Exception):
    """Credentials or token rejected.  The message is safe to show users."""

    def __init__(self, message: str = "Could not validate credentials") -> None:
        super().__init__(message)
        self.message = message


@dataclasses.dataclass(frozen=True)
class Session:
    subject_id: str
    email: str


SessionListener = Callable[[str, "Session | None"], None]


class SessionEvents:
    """Fan-out of session changes: ``(subject_id, session)``, ``None`` on sign-out."""

    def __init__(self) -> None:
        self._listeners: list[SessionListener] = []

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, subject_id: str, session: Session | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(subject_id, session)
            except Exception:
                logger.exception("Session listener failed for %s", subject_id)


session_events = SessionEvents()


def _normalize_email(email: str) -> str:
    return email.strip().lower()


class IdentityProvider:
    """Interface of the identity provider."""

    async def authenticate(self, email: str, password: str) -> Session:
        raise NotImplementedError

    async def register(self, email: str, password: str) -> Session:
        raise NotImplementedError

    def issue_token(self, session: Session) -> str:
        raise NotImplementedError

    async def verify(self, token: str) -> Session:
        raise NotImplementedError

    def on_session_change(self, listener: SessionListener) -> Callable[[], None]:
        raise NotImplementedError

    async def sign_out(self, subject_id: str) -> None:
        raise NotImplementedError


class LocalIdentityProvider(IdentityProvider):
    def __init__(self, store: DocumentStore, events: SessionEvents = session_events) -> None:
        self.store = store
        self.events = events

    async def _credential_for(self, email: str):
        matches = await self.store.list(CREDENTIALS, {"email": _normalize_email(email)})
        return matches[0] if matches else None

    async def register(self, email: str, password: str) -> Session:
        email = _normalize_email(email)
        if not email or not password:
            raise AuthenticationError("Email and password are required")
        if await self._credential_for(email) is not None:
            raise AuthenticationError("An account with this email already exists")

        subject_id = str(uuid.uuid4())
        await self.store.insert(
            CREDENTIALS,
            {
                "email": email,
                "password_hash": _pwd_context.hash(password),
                "signed_out_at": None,
            },
            visibility=Visibility.ADMIN.value,
            owner_id=subject_id,
            record_id=subject_id,
        )
        logger.info("Registered credentials for %s", subject_id)
        session = Session(subject_id=subject_id, email=email)
        self.events.emit(subject_id, session)
        return session

    async def authenticate(self, email: str, password: str) -> Session:
        credential = await self._credential_for(email)
        if credential is None or not _pwd_context.verify(
            password, credential.data["password_hash"]
        ):
            raise AuthenticationError("Invalid email or password")
        session = Session(subject_id=credential.id, email=credential.data["email"])
        self.events.emit(session.subject_id, session)
        return session

    def issue_token(self, session: Session) -> str:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.JWT_EXPIRY_MINUTES)
        payload: dict[str, Any] = {
            "sub": session.subject_id,
            "email": session.email,
            "auth_time": time.time(),
            "exp": expire,
        }
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

    async def verify(self, token: str) -> Session:
        try:
            payload = jwt.decode(
                token,
                settings.JWT_SECRET,
                algorithms=[settings.JWT_ALGORITHM],
            )
        except JWTError:
            raise AuthenticationError()

        subject_id: str | None = payload.get("sub")
        if subject_id is None:
            raise AuthenticationError()

        credential = await self.store.get(CREDENTIALS, subject_id)
        if credential is None:
            raise AuthenticationError()
        signed_out_at = credential.data.get("signed_out_at")
        if signed_out_at is not None and payload.get("auth_time", 0) <= signed_out_at:
            raise AuthenticationError("Session has ended; please sign in again")

        return Session(subject_id=subject_id, email=payload.get("email", credential.data["email"]))

    def on_session_change(self, listener: SessionListener) -> Callable[[], None]:
        return self.events.subscribe(listener)

    async def sign_out(self, subject_id: str) -> None:
        await self.store.patch(CREDENTIALS, subject_id, {"signed_out_at": time.time()})
        logger.info("Signed out %s", subject_id)
        self.events.emit(subject_id, None)


def get_identity_provider(store: DocumentStore = Depends(get_store)) -> IdentityProvider:
    return LocalIdentityProvider(store)
