"""FastAPI authentication dependencies."""

from __future__ import annotations

from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from erigga.auth.identity import IdentityProvider, SupabaseIdentityProvider
from erigga.auth.service import SessionContext, SessionManager
from erigga.auth.store import InMemorySessionStore, SessionStore, SqlSessionStore
from erigga.config import get_settings
from erigga.database import get_session
from erigga.db.models import User, UserSession
from erigga.errors import InvalidSessionError, PermissionDeniedError

_bearer = HTTPBearer(auto_error=False)

_memory_sessions: dict[str, UserSession] = {}
_identity_provider: IdentityProvider | None = None


def get_session_store(db: AsyncSession = Depends(get_session)) -> SessionStore:
    """Pick the session backend configured by ERIGGA_SESSION_STORE.

    The memory backend keeps sessions in this process but resolves profiles
    through the database, so user ids match the coin ledger.
    """
    profiles = SqlSessionStore(db)
    if get_settings().session_store == "memory":
        return InMemorySessionStore(profiles=profiles, sessions=_memory_sessions)
    return profiles


def get_identity_provider() -> IdentityProvider:
    global _identity_provider  # noqa: PLW0603
    if _identity_provider is None:
        _identity_provider = SupabaseIdentityProvider.from_settings(get_settings())
    return _identity_provider


def get_session_manager(
    store: SessionStore = Depends(get_session_store),
    identity_provider: IdentityProvider = Depends(get_identity_provider),
) -> SessionManager:
    return SessionManager(store, identity_provider, get_settings())


async def get_current_session(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
    manager: SessionManager = Depends(get_session_manager),
) -> SessionContext:
    """
    Verify the bearer access token and its backing session.

    Raises the token/session errors, which the global handler turns into 401s.
    """
    if credentials is None:
        raise InvalidSessionError("Authentication required")
    return await manager.authenticate(credentials.credentials)


async def get_current_user(context: SessionContext = Depends(get_current_session)) -> User:
    return context.user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != "admin":
        raise PermissionDeniedError
    return user
