"""Identity provider client.

Password verification lives entirely with the provider; this module only
relays credentials and maps the answer to an Identity.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import httpx
import structlog

from erigga.config import Settings

logger = structlog.get_logger()


@dataclass(frozen=True)
class Identity:
    """Opaque provider-side account."""

    auth_user_id: str
    email: str


class IdentityProvider(Protocol):
    async def sign_in(self, email: str, password: str) -> Identity | None:
        """Return the identity on success, None when the provider rejects the credentials."""
        ...


class SupabaseIdentityProvider:
    """GoTrue password-grant sign in."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> SupabaseIdentityProvider:
        return cls(
            settings.supabase_url,
            settings.supabase_anon_key,
            timeout=settings.identity_timeout_seconds,
        )

    async def sign_in(self, email: str, password: str) -> Identity | None:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            response = await client.post(
                "/auth/v1/token",
                params={"grant_type": "password"},
                headers={"apikey": self.api_key, "Content-Type": "application/json"},
                json={"email": email, "password": password},
            )

        if response.status_code in (400, 401, 422):
            logger.info("identity_sign_in_rejected", status=response.status_code)
            return None
        response.raise_for_status()

        user = response.json().get("user") or {}
        if not user.get("id"):
            logger.warning("identity_sign_in_missing_user")
            return None
        return Identity(auth_user_id=str(user["id"]), email=(user.get("email") or email).lower())
