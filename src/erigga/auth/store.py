"""Storage backends for users and sessions.

SessionManager talks to a SessionStore; which implementation it gets is a
configuration choice (ERIGGA_SESSION_STORE). Both return ORM model
instances so callers never branch on the backend.
"""

from __future__ import annotations

import itertools
from datetime import datetime
from typing import TYPE_CHECKING, Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from erigga.db.models import User, UserSession
from erigga.timeutils import ensure_utc

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


class SessionStore(Protocol):
    async def get_user(self, user_id: int) -> User | None: ...

    async def get_user_by_auth_id(self, auth_user_id: str) -> User | None: ...

    async def get_user_by_email(self, email: str) -> User | None: ...

    async def username_taken(self, username: str) -> bool: ...

    async def add_user(self, user: User) -> User:
        """Insert a profile. Returns the stored row (an existing one if a concurrent insert won)."""
        ...

    async def save_user(self, user: User) -> None: ...

    async def add_session(self, session: UserSession) -> UserSession: ...

    async def get_session(self, session_id: str) -> UserSession | None: ...

    async def get_session_by_token_hash(self, token_hash: str) -> UserSession | None: ...

    async def list_active_sessions(self, user_id: int, now: datetime) -> list[UserSession]:
        """Active, unexpired sessions, most recent activity first."""
        ...

    async def save_session(self, session: UserSession) -> None: ...

    async def deactivate_all_sessions(self, user_id: int, now: datetime) -> int: ...

    async def commit(self) -> None: ...

    async def rollback(self) -> None: ...


# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------


class SqlSessionStore:
    """SessionStore over an AsyncSession. Writes are flushed; commit() ends the unit of work."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_user(self, user_id: int) -> User | None:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_user_by_auth_id(self, auth_user_id: str) -> User | None:
        result = await self.db.execute(select(User).where(User.auth_user_id == auth_user_id))
        return result.scalar_one_or_none()

    async def get_user_by_email(self, email: str) -> User | None:
        result = await self.db.execute(select(User).where(func.lower(User.email) == email.lower()))
        return result.scalar_one_or_none()

    async def username_taken(self, username: str) -> bool:
        result = await self.db.execute(select(User.id).where(User.username == username))
        return result.first() is not None

    async def add_user(self, user: User) -> User:
        self.db.add(user)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            existing = await self.get_user_by_auth_id(user.auth_user_id)
            if existing is None:
                raise
            return existing
        return user

    async def save_user(self, user: User) -> None:
        await self.db.flush()

    async def add_session(self, session: UserSession) -> UserSession:
        self.db.add(session)
        await self.db.flush()
        return session

    async def get_session(self, session_id: str) -> UserSession | None:
        result = await self.db.execute(select(UserSession).where(UserSession.id == session_id))
        return result.scalar_one_or_none()

    async def get_session_by_token_hash(self, token_hash: str) -> UserSession | None:
        result = await self.db.execute(
            select(UserSession).where(UserSession.session_token_hash == token_hash)
        )
        return result.scalar_one_or_none()

    async def list_active_sessions(self, user_id: int, now: datetime) -> list[UserSession]:
        result = await self.db.execute(
            select(UserSession)
            .where(UserSession.user_id == user_id)
            .where(UserSession.is_active == True)  # noqa: E712
            .where(UserSession.expires_at > now)
            .order_by(UserSession.last_activity.desc(), UserSession.created_at.desc())
        )
        return list(result.scalars().all())

    async def save_session(self, session: UserSession) -> None:
        await self.db.flush()

    async def deactivate_all_sessions(self, user_id: int, now: datetime) -> int:
        result = await self.db.execute(
            select(UserSession)
            .where(UserSession.user_id == user_id)
            .where(UserSession.is_active == True)  # noqa: E712
        )
        sessions = result.scalars().all()
        for session in sessions:
            session.is_active = False
            session.deactivated_at = now
        await self.db.flush()
        return len(sessions)

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemorySessionStore:
    """Process-local SessionStore for tests and local experiments.

    Sessions always live in ``self.sessions``. When ``profiles`` is given,
    user reads and writes (and commit/rollback) go to that store, so profile
    ids are the same ones the coin ledger uses. Without it, profiles are kept
    in a local dict with their own id sequence, which is only safe where
    nothing touches the SQL ledger.
    """

    def __init__(
        self,
        profiles: SessionStore | None = None,
        sessions: dict[str, UserSession] | None = None,
    ) -> None:
        self.profiles = profiles
        self.users: dict[int, User] = {}
        self.sessions: dict[str, UserSession] = sessions if sessions is not None else {}
        self._user_ids = itertools.count(1)

    async def get_user(self, user_id: int) -> User | None:
        if self.profiles is not None:
            return await self.profiles.get_user(user_id)
        return self.users.get(user_id)

    async def get_user_by_auth_id(self, auth_user_id: str) -> User | None:
        if self.profiles is not None:
            return await self.profiles.get_user_by_auth_id(auth_user_id)
        return next((u for u in self.users.values() if u.auth_user_id == auth_user_id), None)

    async def get_user_by_email(self, email: str) -> User | None:
        if self.profiles is not None:
            return await self.profiles.get_user_by_email(email)
        email = email.lower()
        return next((u for u in self.users.values() if u.email.lower() == email), None)

    async def username_taken(self, username: str) -> bool:
        if self.profiles is not None:
            return await self.profiles.username_taken(username)
        return any(u.username == username for u in self.users.values())

    async def add_user(self, user: User) -> User:
        if self.profiles is not None:
            return await self.profiles.add_user(user)
        existing = await self.get_user_by_auth_id(user.auth_user_id)
        if existing is not None:
            return existing
        if user.id is None:
            user.id = next(self._user_ids)
        self.users[user.id] = user
        return user

    async def save_user(self, user: User) -> None:
        if self.profiles is not None:
            await self.profiles.save_user(user)
            return
        self.users[user.id] = user

    async def add_session(self, session: UserSession) -> UserSession:
        self.sessions[session.id] = session
        return session

    async def get_session(self, session_id: str) -> UserSession | None:
        return self.sessions.get(session_id)

    async def get_session_by_token_hash(self, token_hash: str) -> UserSession | None:
        return next(
            (s for s in self.sessions.values() if s.session_token_hash == token_hash),
            None,
        )

    async def list_active_sessions(self, user_id: int, now: datetime) -> list[UserSession]:
        active = [
            s
            for s in self.sessions.values()
            if s.user_id == user_id and s.is_active and ensure_utc(s.expires_at) > now
        ]
        active.sort(key=lambda s: (ensure_utc(s.last_activity), ensure_utc(s.created_at)), reverse=True)
        return active

    async def save_session(self, session: UserSession) -> None:
        self.sessions[session.id] = session

    async def deactivate_all_sessions(self, user_id: int, now: datetime) -> int:
        count = 0
        for session in self.sessions.values():
            if session.user_id == user_id and session.is_active:
                session.is_active = False
                session.deactivated_at = now
                count += 1
        return count

    async def commit(self) -> None:
        if self.profiles is not None:
            await self.profiles.commit()

    async def rollback(self) -> None:
        if self.profiles is not None:
            await self.profiles.rollback()
