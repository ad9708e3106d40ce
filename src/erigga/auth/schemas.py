"""Request/response schemas for authentication endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, EmailStr, Field, field_validator


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Login with email + password."""

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=128)
    remember_me: bool = False

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Normalize email to lowercase."""
        return v.lower().strip()


class UserResponse(BaseModel):
    """Profile snapshot returned to the client."""

    id: int
    email: str
    username: str
    full_name: str | None = None
    avatar_url: str | None = None
    tier: str
    role: str = "user"
    coins: int
    is_active: bool = True
    is_verified: bool = False
    last_login: datetime | None = None
    login_count: int = 0

    model_config = {"from_attributes": True}


class TokenResponse(BaseModel):
    """Token bundle returned after login."""

    success: bool = True
    access_token: str
    refresh_token: str
    session_token: str
    token_type: str = "bearer"
    expires_in: int
    session_expires_at: datetime
    user: UserResponse


# ---------------------------------------------------------------------------
# Tokens and sessions
# ---------------------------------------------------------------------------


class RefreshRequest(BaseModel):
    refresh_token: str


class RefreshResponse(BaseModel):
    success: bool = True
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class SessionTokenRequest(BaseModel):
    """A raw session token (logout, validation)."""

    session_token: str


class SessionResponse(BaseModel):
    """One active session, for the manage-devices view."""

    id: str
    device_info: dict[str, Any]
    ip_address: str | None = None
    remember_me: bool
    created_at: datetime
    last_activity: datetime
    expires_at: datetime
    is_current: bool = False

    model_config = {"from_attributes": True}


class SessionListResponse(BaseModel):
    success: bool = True
    sessions: list[SessionResponse]


class SessionValidationResponse(BaseModel):
    success: bool = True
    session_id: str
    expires_at: datetime
    user: UserResponse


class LogoutResponse(BaseModel):
    success: bool = True
    revoked_count: int = 0
