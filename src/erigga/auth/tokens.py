"""
HS256 token codec.

Tokens are compact JWS strings (header.payload.signature, each segment
base64url-encoded). Verification is stateless; revocation is checked by the
session layer, not here.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from erigga.config import get_settings
from erigga.errors import TokenExpiredError, TokenInvalidError, TokenMalformedError


def create_token(payload: dict[str, Any], ttl: timedelta) -> str:
    """
    Sign a token carrying `payload` plus iat/exp/jti/iss claims.

    Args:
        payload: Application claims (sub, sid, type, ...).
        ttl: Lifetime from now.

    Returns:
        Encoded token string.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    claims: dict[str, Any] = {
        **payload,
        "iat": now,
        "exp": now + ttl,
        "jti": str(uuid.uuid4()),
        "iss": settings.jwt_issuer,
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str, expected_type: str | None = None) -> dict[str, Any]:
    """
    Verify and decode a token.

    Args:
        token: The encoded token string.
        expected_type: Required value of the `type` claim, if any.

    Returns:
        Decoded payload dictionary.

    Raises:
        TokenMalformedError: Wrong segment count or undecodable segments.
        TokenExpiredError: Past the exp claim.
        TokenInvalidError: Bad signature, wrong issuer or wrong token type.
    """
    if not token or token.count(".") != 2:
        raise TokenMalformedError
    settings = get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
            options={"require": ["exp", "iat", "jti"]},
        )
    except jwt.ExpiredSignatureError:
        raise TokenExpiredError from None
    except jwt.DecodeError as e:
        if isinstance(e, jwt.InvalidSignatureError):
            raise TokenInvalidError("Token signature verification failed") from None
        raise TokenMalformedError from None
    except jwt.InvalidTokenError as e:
        raise TokenInvalidError(str(e)) from None

    if expected_type is not None and payload.get("type") != expected_type:
        msg = f"Expected token type '{expected_type}', got '{payload.get('type')}'"
        raise TokenInvalidError(msg)

    return payload


def create_access_token(user_id: int, tier: str, session_id: str) -> str:
    """Create a short-lived access token bound to a session."""
    settings = get_settings()
    return create_token(
        {"sub": str(user_id), "tier": tier, "sid": session_id, "type": "access"},
        timedelta(minutes=settings.access_token_expire_minutes),
    )


def create_refresh_token(user_id: int, session_id: str) -> str:
    """Create a long-lived refresh token bound to a session."""
    settings = get_settings()
    return create_token(
        {"sub": str(user_id), "sid": session_id, "type": "refresh"},
        timedelta(days=settings.refresh_token_expire_days),
    )
