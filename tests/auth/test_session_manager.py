"""SessionManager behaviour over the in-memory store."""

from __future__ import annotations

from datetime import timedelta

import httpx
import pytest

from erigga.auth.service import DeviceInfo, SessionManager, hash_token
from erigga.auth.store import InMemorySessionStore
from erigga.auth.tokens import verify_token
from erigga.config import get_settings
from erigga.errors import (
    AccountBannedError,
    AccountInactiveError,
    AccountLockedError,
    IdentityProviderError,
    InvalidCredentialsError,
    InvalidSessionError,
    SessionExpiredError,
    TokenInvalidError,
)
from erigga.timeutils import ensure_utc, utcnow
from tests.conftest import FakeIdentityProvider

EMAIL = "fan@example.com"
PASSWORD = "Warri-2024!"


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def provider() -> FakeIdentityProvider:
    fake = FakeIdentityProvider()
    fake.register(EMAIL, PASSWORD, auth_user_id="auth-fan")
    return fake


@pytest.fixture
def manager(store: InMemorySessionStore, provider: FakeIdentityProvider) -> SessionManager:
    return SessionManager(store, provider, get_settings())


def _manager_with(store, provider, **overrides) -> SessionManager:
    settings = get_settings().model_copy(update=overrides)
    return SessionManager(store, provider, settings)


class TestLogin:
    @pytest.mark.asyncio
    async def test_first_login_provisions_profile(self, manager, store):
        result = await manager.login(EMAIL, PASSWORD)
        user = result.user
        assert user.auth_user_id == "auth-fan"
        assert user.email == EMAIL
        assert user.username == "fan"
        assert user.tier == "grassroot"
        assert user.coins == 500
        assert user.login_count == 1
        assert user.last_login is not None
        assert list(store.users) == [user.id]

    @pytest.mark.asyncio
    async def test_second_login_reuses_profile(self, manager, store):
        first = await manager.login(EMAIL, PASSWORD)
        second = await manager.login(EMAIL, PASSWORD)
        assert first.user.id == second.user.id
        assert second.user.login_count == 2
        assert len(store.users) == 1

    @pytest.mark.asyncio
    async def test_tokens_bound_to_session(self, manager):
        result = await manager.login(EMAIL, PASSWORD)
        access = verify_token(result.access_token, expected_type="access")
        refresh = verify_token(result.refresh_token, expected_type="refresh")
        assert access["sid"] == refresh["sid"] == result.session.id
        assert access["sub"] == str(result.user.id)
        assert access["tier"] == "grassroot"

    @pytest.mark.asyncio
    async def test_only_token_hashes_are_stored(self, manager):
        result = await manager.login(EMAIL, PASSWORD)
        assert result.session.session_token_hash == hash_token(result.session_token)
        assert result.session.refresh_token_hash == hash_token(result.refresh_token)
        assert result.session_token.startswith("sess_")

    @pytest.mark.asyncio
    async def test_device_metadata_recorded(self, manager):
        device = DeviceInfo(
            user_agent="Mozilla/5.0 (iPhone; CPU iPhone OS 17_0) Mobile Safari/604.1",
            ip_address="102.89.1.1",
        )
        result = await manager.login(EMAIL, PASSWORD, device=device)
        info = result.session.device_info
        assert info["platform"] == "iOS"
        assert info["browser"] == "Safari"
        assert info["is_mobile"] is True
        assert result.session.ip_address == "102.89.1.1"

    @pytest.mark.asyncio
    async def test_session_lifetime_default_and_remember_me(self, manager):
        before = utcnow()
        short = await manager.login(EMAIL, PASSWORD)
        long = await manager.login(EMAIL, PASSWORD, remember_me=True)
        short_ttl = ensure_utc(short.session.expires_at) - before
        long_ttl = ensure_utc(long.session.expires_at) - before
        assert timedelta(hours=23, minutes=59) < short_ttl <= timedelta(hours=24, seconds=5)
        assert timedelta(days=29, hours=23) < long_ttl <= timedelta(days=30, seconds=5)
        assert long.session.remember_me is True

    @pytest.mark.asyncio
    async def test_wrong_password(self, manager):
        with pytest.raises(InvalidCredentialsError):
            await manager.login(EMAIL, "nope")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("email,password", [("", PASSWORD), ("not-an-email", PASSWORD), (EMAIL, "")])
    async def test_malformed_credentials_never_reach_provider(self, manager, provider, email, password):
        with pytest.raises(InvalidCredentialsError):
            await manager.login(email, password)
        assert provider.calls == 0

    @pytest.mark.asyncio
    async def test_provider_outage(self, manager, provider):
        provider.error = httpx.ConnectError("connection refused")
        with pytest.raises(IdentityProviderError):
            await manager.login(EMAIL, PASSWORD)

    @pytest.mark.asyncio
    async def test_banned_and_inactive_profiles(self, manager):
        user = (await manager.login(EMAIL, PASSWORD)).user
        user.is_banned = True
        with pytest.raises(AccountBannedError):
            await manager.login(EMAIL, PASSWORD)
        user.is_banned = False
        user.is_active = False
        with pytest.raises(AccountInactiveError):
            await manager.login(EMAIL, PASSWORD)


class TestLockout:
    @pytest.mark.asyncio
    async def test_locked_after_max_failed_attempts(self, manager, provider):
        user = (await manager.login(EMAIL, PASSWORD)).user
        for _ in range(5):
            with pytest.raises(InvalidCredentialsError):
                await manager.login(EMAIL, "wrong")
        assert user.failed_login_attempts == 5
        assert ensure_utc(user.locked_until) > utcnow() + timedelta(minutes=29)

        calls = provider.calls
        with pytest.raises(AccountLockedError):
            await manager.login(EMAIL, PASSWORD)
        assert provider.calls == calls

    @pytest.mark.asyncio
    async def test_successful_login_resets_counter(self, manager):
        user = (await manager.login(EMAIL, PASSWORD)).user
        for _ in range(3):
            with pytest.raises(InvalidCredentialsError):
                await manager.login(EMAIL, "wrong")
        await manager.login(EMAIL, PASSWORD)
        assert user.failed_login_attempts == 0
        assert user.locked_until is None

    @pytest.mark.asyncio
    async def test_expired_lock_allows_login(self, manager):
        user = (await manager.login(EMAIL, PASSWORD)).user
        user.locked_until = utcnow() - timedelta(minutes=1)
        result = await manager.login(EMAIL, PASSWORD)
        assert result.user.locked_until is None


class TestConcurrentSessionLimit:
    @pytest.mark.asyncio
    async def test_fourth_login_evicts_oldest(self, manager, store):
        results = [await manager.login(EMAIL, PASSWORD) for _ in range(4)]
        oldest, *rest = results

        assert results[-1].evicted_session_ids == [oldest.session.id]
        assert store.sessions[oldest.session.id].is_active is False
        assert store.sessions[oldest.session.id].deactivated_at is not None

        active = await manager.get_user_sessions(oldest.user.id)
        assert {s.id for s in active} == {r.session.id for r in rest}

        with pytest.raises(InvalidSessionError):
            await manager.validate_session(oldest.session_token)

    @pytest.mark.asyncio
    async def test_least_recently_active_is_evicted(self, manager):
        first = await manager.login(EMAIL, PASSWORD)
        second = await manager.login(EMAIL, PASSWORD)
        third = await manager.login(EMAIL, PASSWORD)
        await manager.validate_session(first.session_token)

        fourth = await manager.login(EMAIL, PASSWORD)
        assert fourth.evicted_session_ids == [second.session.id]
        active = {s.id for s in await manager.get_user_sessions(first.user.id)}
        assert active == {first.session.id, third.session.id, fourth.session.id}

    @pytest.mark.asyncio
    async def test_count_never_exceeds_limit(self, store, provider):
        manager = _manager_with(store, provider, max_concurrent_sessions=2)
        for _ in range(6):
            result = await manager.login(EMAIL, PASSWORD)
            assert len(await manager.get_user_sessions(result.user.id)) <= 2

    @pytest.mark.asyncio
    async def test_expired_sessions_do_not_count(self, manager, store):
        first = await manager.login(EMAIL, PASSWORD)
        store.sessions[first.session.id].expires_at = utcnow() - timedelta(seconds=1)
        results = [await manager.login(EMAIL, PASSWORD) for _ in range(3)]
        assert all(r.evicted_session_ids == [] for r in results)


class TestValidation:
    @pytest.mark.asyncio
    async def test_validate_returns_user_and_touches_activity(self, manager, store):
        result = await manager.login(EMAIL, PASSWORD)
        session = store.sessions[result.session.id]
        session.last_activity = utcnow() - timedelta(hours=1)

        context = await manager.validate_session(result.session_token)
        assert context.user.id == result.user.id
        assert ensure_utc(session.last_activity) > utcnow() - timedelta(minutes=1)

    @pytest.mark.asyncio
    async def test_unknown_token(self, manager):
        with pytest.raises(InvalidSessionError):
            await manager.validate_session("sess_unknown")

    @pytest.mark.asyncio
    async def test_expired_session_is_deactivated(self, manager, store):
        result = await manager.login(EMAIL, PASSWORD)
        session = store.sessions[result.session.id]
        session.expires_at = utcnow() - timedelta(seconds=1)

        with pytest.raises(SessionExpiredError):
            await manager.validate_session(result.session_token)
        assert session.is_active is False
        with pytest.raises(InvalidSessionError):
            await manager.validate_session(result.session_token)

    @pytest.mark.asyncio
    async def test_authenticate_with_access_token(self, manager):
        result = await manager.login(EMAIL, PASSWORD)
        context = await manager.authenticate(result.access_token)
        assert context.session.id == result.session.id

    @pytest.mark.asyncio
    async def test_access_token_dies_with_its_session(self, manager):
        result = await manager.login(EMAIL, PASSWORD)
        await manager.logout(result.session_token)
        with pytest.raises(InvalidSessionError):
            await manager.authenticate(result.access_token)

    @pytest.mark.asyncio
    async def test_refresh_token_is_not_an_access_token(self, manager):
        result = await manager.login(EMAIL, PASSWORD)
        with pytest.raises(TokenInvalidError):
            await manager.authenticate(result.refresh_token)

    @pytest.mark.asyncio
    async def test_banned_user_session_rejected(self, manager):
        result = await manager.login(EMAIL, PASSWORD)
        result.user.is_banned = True
        with pytest.raises(AccountBannedError):
            await manager.validate_session(result.session_token)


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_rotates_tokens(self, manager):
        result = await manager.login(EMAIL, PASSWORD)
        refreshed = await manager.refresh_token(result.refresh_token)
        assert refreshed.refresh_token != result.refresh_token
        assert verify_token(refreshed.access_token, expected_type="access")["sid"] == result.session.id
        assert refreshed.session.refresh_token_hash == hash_token(refreshed.refresh_token)

    @pytest.mark.asyncio
    async def test_reusing_a_superseded_refresh_token_revokes_session(self, manager, store):
        result = await manager.login(EMAIL, PASSWORD)
        rotated = await manager.refresh_token(result.refresh_token)

        with pytest.raises(InvalidSessionError, match="superseded"):
            await manager.refresh_token(result.refresh_token)
        assert store.sessions[result.session.id].is_active is False
        with pytest.raises(InvalidSessionError):
            await manager.refresh_token(rotated.refresh_token)

    @pytest.mark.asyncio
    async def test_without_rotation_the_refresh_token_is_reusable(self, store, provider):
        manager = _manager_with(store, provider, rotate_refresh_tokens=False)
        result = await manager.login(EMAIL, PASSWORD)
        first = await manager.refresh_token(result.refresh_token)
        second = await manager.refresh_token(result.refresh_token)
        assert first.refresh_token == second.refresh_token == result.refresh_token

    @pytest.mark.asyncio
    async def test_revoked_session_cannot_refresh(self, manager):
        result = await manager.login(EMAIL, PASSWORD)
        await manager.logout(result.session_token)
        with pytest.raises(InvalidSessionError):
            await manager.refresh_token(result.refresh_token)

    @pytest.mark.asyncio
    async def test_expired_session_cannot_refresh(self, manager, store):
        result = await manager.login(EMAIL, PASSWORD)
        store.sessions[result.session.id].expires_at = utcnow() - timedelta(seconds=1)
        with pytest.raises(SessionExpiredError):
            await manager.refresh_token(result.refresh_token)

    @pytest.mark.asyncio
    async def test_evicted_session_cannot_refresh(self, manager):
        results = [await manager.login(EMAIL, PASSWORD) for _ in range(4)]
        with pytest.raises(InvalidSessionError):
            await manager.refresh_token(results[0].refresh_token)

    @pytest.mark.asyncio
    async def test_access_token_rejected_as_refresh(self, manager):
        result = await manager.login(EMAIL, PASSWORD)
        with pytest.raises(TokenInvalidError):
            await manager.refresh_token(result.access_token)


class TestLogout:
    @pytest.mark.asyncio
    async def test_logout_is_idempotent(self, manager):
        result = await manager.login(EMAIL, PASSWORD)
        assert await manager.logout(result.session_token) is True
        assert await manager.logout(result.session_token) is False
        assert await manager.logout("sess_never_issued") is False

    @pytest.mark.asyncio
    async def test_logout_all_devices(self, manager, store, provider):
        provider.register("other@example.com", "pw-other-1", auth_user_id="auth-other")
        mine = [await manager.login(EMAIL, PASSWORD) for _ in range(3)]
        other = await manager.login("other@example.com", "pw-other-1")

        assert await manager.logout_all_devices(mine[0].user.id) == 3
        assert await manager.get_user_sessions(mine[0].user.id) == []
        assert await manager.logout_all_devices(mine[0].user.id) == 0
        assert store.sessions[other.session.id].is_active is True

