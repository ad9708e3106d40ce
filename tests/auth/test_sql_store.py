"""SessionManager over the SQL store (SQLite in memory)."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from erigga.auth.service import SessionManager
from erigga.auth.store import SqlSessionStore
from erigga.config import get_settings
from erigga.db.models import User, UserSession
from erigga.errors import InvalidSessionError, SessionExpiredError
from erigga.timeutils import utcnow
from tests.conftest import FakeIdentityProvider

EMAIL = "fan@example.com"
PASSWORD = "Warri-2024!"


@pytest.fixture
def manager(db: AsyncSession) -> SessionManager:
    provider = FakeIdentityProvider()
    provider.register(EMAIL, PASSWORD, auth_user_id="auth-fan")
    provider.register("second@example.com", PASSWORD, auth_user_id="auth-second")
    return SessionManager(SqlSessionStore(db), provider, get_settings())


async def _active_count(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(UserSession)
        .where(UserSession.user_id == user_id, UserSession.is_active == True)  # noqa: E712
    )
    return result.scalar_one()


@pytest.mark.asyncio
async def test_login_persists_profile_and_session(db: AsyncSession, manager: SessionManager):
    result = await manager.login(EMAIL, PASSWORD)

    row = (await db.execute(select(User).where(User.auth_user_id == "auth-fan"))).scalar_one()
    assert row.coins == 500
    assert row.tier == "grassroot"
    assert row.login_count == 1
    assert await _active_count(db, result.user.id) == 1


@pytest.mark.asyncio
async def test_session_cap_persisted(db: AsyncSession, manager: SessionManager):
    results = [await manager.login(EMAIL, PASSWORD) for _ in range(4)]
    user_id = results[0].user.id

    assert await _active_count(db, user_id) == 3
    evicted = await db.get(UserSession, results[0].session.id)
    assert evicted is not None
    assert evicted.is_active is False


@pytest.mark.asyncio
async def test_usernames_stay_unique(manager: SessionManager):
    manager.identity_provider.register("fan@other.org", PASSWORD, auth_user_id="auth-fan-2")
    first = await manager.login(EMAIL, PASSWORD)
    second = await manager.login("fan@other.org", PASSWORD)
    assert first.user.username == "fan"
    assert second.user.username.startswith("fan_")


@pytest.mark.asyncio
async def test_validate_and_expire(db: AsyncSession, manager: SessionManager):
    result = await manager.login(EMAIL, PASSWORD)
    context = await manager.validate_session(result.session_token)
    assert context.user.email == EMAIL

    context.session.expires_at = utcnow() - timedelta(seconds=1)
    await db.commit()

    with pytest.raises(SessionExpiredError):
        await manager.validate_session(result.session_token)
    with pytest.raises(InvalidSessionError):
        await manager.validate_session(result.session_token)


@pytest.mark.asyncio
async def test_logout_all_devices_only_touches_one_user(db: AsyncSession, manager: SessionManager):
    mine = [await manager.login(EMAIL, PASSWORD) for _ in range(2)]
    theirs = await manager.login("second@example.com", PASSWORD)

    assert await manager.logout_all_devices(mine[0].user.id) == 2
    assert await _active_count(db, mine[0].user.id) == 0
    assert await _active_count(db, theirs.user.id) == 1


@pytest.mark.asyncio
async def test_refresh_rotation_persisted(db: AsyncSession, manager: SessionManager):
    result = await manager.login(EMAIL, PASSWORD)
    refreshed = await manager.refresh_token(result.refresh_token)

    with pytest.raises(InvalidSessionError):
        await manager.refresh_token(result.refresh_token)
    with pytest.raises(InvalidSessionError):
        await manager.refresh_token(refreshed.refresh_token)
    session = await db.get(UserSession, result.session.id)
    assert session is not None
    assert session.is_active is False
