"""
Session management.

Issues, validates, refreshes and revokes login sessions, enforces the
per-user concurrent-session cap, and lazily provisions application profiles
for identity-provider accounts.
"""

from __future__ import annotations

import hashlib
import re
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

import httpx
import structlog

from erigga.auth.tokens import create_access_token, create_refresh_token, verify_token
from erigga.config import Settings, get_settings
from erigga.db.models import Tier, User, UserSession
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

if TYPE_CHECKING:
    from erigga.auth.identity import IdentityProvider
    from erigga.auth.store import SessionStore

logger = structlog.get_logger()

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def hash_token(token: str) -> str:
    """SHA-256 hex digest used to store and look up opaque tokens."""
    return hashlib.sha256(token.encode()).hexdigest()


def generate_session_token() -> str:
    return f"sess_{secrets.token_urlsafe(32)}"


# ---------------------------------------------------------------------------
# Device metadata
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DeviceInfo:
    """Where a login came from."""

    user_agent: str = ""
    ip_address: str | None = None

    @property
    def platform(self) -> str:
        ua = self.user_agent
        if re.search(r"Android", ua, re.I):
            return "Android"
        if re.search(r"iPhone|iPad", ua, re.I):
            return "iOS"
        if re.search(r"Windows", ua, re.I):
            return "Windows"
        if re.search(r"Mac", ua, re.I):
            return "macOS"
        if re.search(r"Linux", ua, re.I):
            return "Linux"
        return "Unknown"

    @property
    def browser(self) -> str:
        ua = self.user_agent
        # Edge and Chrome both advertise Safari; check the most specific first.
        if re.search(r"Edg/|Edge", ua, re.I):
            return "Edge"
        if re.search(r"Firefox", ua, re.I):
            return "Firefox"
        if re.search(r"Chrome", ua, re.I):
            return "Chrome"
        if re.search(r"Safari", ua, re.I):
            return "Safari"
        return "Unknown"

    @property
    def is_mobile(self) -> bool:
        return bool(re.search(r"Mobile|Android|iPhone|iPad", self.user_agent, re.I))

    def as_dict(self) -> dict[str, Any]:
        return {
            "user_agent": self.user_agent,
            "platform": self.platform,
            "browser": self.browser,
            "is_mobile": self.is_mobile,
        }


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class LoginResult:
    user: User
    session: UserSession
    session_token: str
    access_token: str
    refresh_token: str
    evicted_session_ids: list[str]


@dataclass
class SessionContext:
    """The caller's resolved identity, handed explicitly to core operations."""

    user: User
    session: UserSession


@dataclass
class RefreshResult:
    user: User
    session: UserSession
    access_token: str
    refresh_token: str


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class SessionManager:
    """Login sessions backed by a SessionStore and an external identity provider."""

    def __init__(
        self,
        store: SessionStore,
        identity_provider: IdentityProvider,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.identity_provider = identity_provider
        self.settings = settings or get_settings()

    # --- login -------------------------------------------------------------

    async def login(
        self,
        email: str,
        password: str,
        device: DeviceInfo | None = None,
        remember_me: bool = False,
    ) -> LoginResult:
        """
        Authenticate credentials and open a new session.

        Raises:
            InvalidCredentialsError: Malformed or rejected credentials.
            AccountLockedError: Too many recent failed attempts.
            AccountInactiveError / AccountBannedError: Profile flags.
            IdentityProviderError: Provider unreachable.
        """
        email = (email or "").strip().lower()
        if not password or not _EMAIL_RE.match(email):
            raise InvalidCredentialsError("A valid email and password are required")
        device = device or DeviceInfo()
        now = utcnow()

        known = await self.store.get_user_by_email(email)
        if known is not None and known.locked_until and ensure_utc(known.locked_until) > now:
            raise AccountLockedError

        try:
            identity = await self.identity_provider.sign_in(email, password)
        except httpx.HTTPError as e:
            logger.error("identity_provider_unavailable", error=str(e))
            raise IdentityProviderError from e

        if identity is None:
            await self._record_failed_attempt(known, now)
            raise InvalidCredentialsError

        user = await self._get_or_create_profile(identity.auth_user_id, identity.email, now)
        if not user.is_active:
            raise AccountInactiveError
        if user.is_banned:
            raise AccountBannedError

        session_token = generate_session_token()
        session = UserSession(
            id=str(uuid.uuid4()),
            user_id=user.id,
            session_token_hash=hash_token(session_token),
            device_info=device.as_dict(),
            ip_address=device.ip_address,
            user_agent=device.user_agent[:512] or None,
            is_active=True,
            remember_me=remember_me,
            expires_at=now + self._session_lifetime(remember_me),
            last_activity=now,
            created_at=now,
        )
        await self.store.add_session(session)

        access_token = create_access_token(user.id, user.tier, session.id)
        refresh_token = create_refresh_token(user.id, session.id)
        session.refresh_token_hash = hash_token(refresh_token)
        await self.store.save_session(session)

        evicted = await self._enforce_session_limit(user.id, keep=session, now=now)

        user.last_login = now
        user.login_count = (user.login_count or 0) + 1
        user.failed_login_attempts = 0
        user.locked_until = None
        await self.store.save_user(user)
        await self.store.commit()

        logger.info(
            "login_succeeded",
            user_id=user.id,
            session_id=session.id,
            remember_me=remember_me,
            evicted=len(evicted),
        )
        return LoginResult(
            user=user,
            session=session,
            session_token=session_token,
            access_token=access_token,
            refresh_token=refresh_token,
            evicted_session_ids=evicted,
        )

    def _session_lifetime(self, remember_me: bool) -> timedelta:
        if remember_me:
            return timedelta(days=self.settings.remember_me_duration_days)
        return timedelta(hours=self.settings.session_duration_hours)

    async def _record_failed_attempt(self, user: User | None, now: datetime) -> None:
        if user is None:
            return
        user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
        if user.failed_login_attempts >= self.settings.max_login_attempts:
            user.locked_until = now + timedelta(minutes=self.settings.account_lockout_minutes)
            logger.warning("account_locked", user_id=user.id, attempts=user.failed_login_attempts)
        await self.store.save_user(user)
        await self.store.commit()

    async def _get_or_create_profile(self, auth_user_id: str, email: str, now: datetime) -> User:
        """Profiles are created on first successful sign in."""
        user = await self.store.get_user_by_auth_id(auth_user_id)
        if user is not None:
            return user

        user = User(
            auth_user_id=auth_user_id,
            email=email,
            username=await self._unique_username(email),
            tier=Tier(self.settings.default_tier).value,
            role="user",
            coins=self.settings.starting_coins,
            is_active=True,
            is_banned=False,
            is_verified=False,
            failed_login_attempts=0,
            login_count=0,
            created_at=now,
        )
        user = await self.store.add_user(user)
        logger.info("profile_created", user_id=user.id, auth_user_id=auth_user_id)
        return user

    async def _unique_username(self, email: str) -> str:
        base = re.sub(r"[^a-z0-9_]", "", email.split("@", 1)[0].lower())[:48] or "member"
        candidate = base
        while await self.store.username_taken(candidate):
            candidate = f"{base}_{secrets.token_hex(3)}"
        return candidate

    async def _enforce_session_limit(self, user_id: int, keep: UserSession, now: datetime) -> list[str]:
        """Deactivate the oldest active sessions beyond the cap, never `keep`."""
        limit = self.settings.max_concurrent_sessions
        active = await self.store.list_active_sessions(user_id, now)
        if len(active) <= limit:
            return []

        others = [s for s in active if s.id != keep.id]
        evicted: list[str] = []
        for session in others[limit - 1 :]:
            session.is_active = False
            session.deactivated_at = now
            await self.store.save_session(session)
            evicted.append(session.id)
            logger.info("session_evicted", user_id=user_id, session_id=session.id)
        return evicted

    # --- validation --------------------------------------------------------

    async def validate_session(self, session_token: str) -> SessionContext:
        """Resolve a session token to its user, refreshing last activity."""
        if not session_token:
            raise InvalidSessionError
        session = await self.store.get_session_by_token_hash(hash_token(session_token))
        return await self._check_session(session)

    async def authenticate(self, access_token: str) -> SessionContext:
        """Resolve an access token; its session must still be active."""
        payload = verify_token(access_token, expected_type="access")
        session_id = payload.get("sid")
        if not session_id:
            raise TokenInvalidError("Access token is not bound to a session")
        session = await self.store.get_session(session_id)
        context = await self._check_session(session)
        if str(context.user.id) != payload.get("sub"):
            raise TokenInvalidError("Token subject does not match session")
        return context

    async def _check_session(self, session: UserSession | None) -> SessionContext:
        if session is None or not session.is_active:
            raise InvalidSessionError

        now = utcnow()
        if ensure_utc(session.expires_at) <= now:
            session.is_active = False
            session.deactivated_at = now
            await self.store.save_session(session)
            await self.store.commit()
            logger.info("session_expired", session_id=session.id, user_id=session.user_id)
            raise SessionExpiredError

        user = await self.store.get_user(session.user_id)
        if user is None:
            raise InvalidSessionError
        if user.is_banned:
            raise AccountBannedError
        if not user.is_active:
            raise AccountInactiveError

        session.last_activity = now
        await self.store.save_session(session)
        await self.store.commit()
        return SessionContext(user=user, session=session)

    # --- refresh -----------------------------------------------------------

    async def refresh_token(self, refresh_token: str) -> RefreshResult:
        """
        Issue a new access token for the refresh token's session.

        With rotation enabled a new refresh token replaces the old one, and
        presenting a superseded refresh token revokes the session.
        """
        payload = verify_token(refresh_token, expected_type="refresh")
        session_id = payload.get("sid")
        if not session_id:
            raise TokenInvalidError("Refresh token is not bound to a session")

        session = await self.store.get_session(session_id)
        if session is not None and session.is_active and session.refresh_token_hash != hash_token(refresh_token):
            session.is_active = False
            session.deactivated_at = utcnow()
            await self.store.save_session(session)
            await self.store.commit()
            logger.warning("refresh_token_reuse", session_id=session.id, user_id=session.user_id)
            raise InvalidSessionError("Refresh token has been superseded")

        context = await self._check_session(session)
        user = context.user

        access_token = create_access_token(user.id, user.tier, session_id)
        new_refresh = refresh_token
        if self.settings.rotate_refresh_tokens:
            new_refresh = create_refresh_token(user.id, session_id)
            context.session.refresh_token_hash = hash_token(new_refresh)
            await self.store.save_session(context.session)
            await self.store.commit()

        logger.info("token_refreshed", user_id=user.id, session_id=session_id)
        return RefreshResult(
            user=user,
            session=context.session,
            access_token=access_token,
            refresh_token=new_refresh,
        )

    # --- revocation --------------------------------------------------------

    async def logout(self, session_token: str) -> bool:
        """Deactivate one session. Returns False when it was already inactive or unknown."""
        if not session_token:
            return False
        session = await self.store.get_session_by_token_hash(hash_token(session_token))
        if session is None or not session.is_active:
            return False
        session.is_active = False
        session.deactivated_at = utcnow()
        await self.store.save_session(session)
        await self.store.commit()
        logger.info("logout", user_id=session.user_id, session_id=session.id)
        return True

    async def logout_all_devices(self, user_id: int) -> int:
        """Deactivate every active session for the user. Returns the count."""
        count = await self.store.deactivate_all_sessions(user_id, utcnow())
        await self.store.commit()
        logger.info("logout_all_devices", user_id=user_id, revoked=count)
        return count

    async def get_user_sessions(self, user_id: int) -> list[UserSession]:
        """Active, unexpired sessions for a "manage devices" view."""
        return await self.store.list_active_sessions(user_id, utcnow())
