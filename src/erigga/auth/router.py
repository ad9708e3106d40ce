"""Authentication endpoints under /api/v1/auth."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from erigga.auth.dependencies import get_current_session, get_session_manager
from erigga.auth.schemas import (
    LoginRequest,
    LogoutResponse,
    RefreshRequest,
    RefreshResponse,
    SessionListResponse,
    SessionResponse,
    SessionTokenRequest,
    SessionValidationResponse,
    TokenResponse,
    UserResponse,
)
from erigga.auth.service import DeviceInfo, SessionContext, SessionManager
from erigga.config import get_settings
from erigga.timeutils import ensure_utc

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


def _device_from_request(request: Request) -> DeviceInfo:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address: str | None = forwarded.split(",", 1)[0].strip()
    else:
        ip_address = request.client.host if request.client else None
    return DeviceInfo(user_agent=request.headers.get("user-agent", ""), ip_address=ip_address)


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    request: Request,
    manager: SessionManager = Depends(get_session_manager),
) -> TokenResponse:
    """Login with email + password and open a session."""
    result = await manager.login(
        body.email,
        body.password,
        device=_device_from_request(request),
        remember_me=body.remember_me,
    )
    settings = get_settings()
    return TokenResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        session_token=result.session_token,
        expires_in=settings.access_token_expire_minutes * 60,
        session_expires_at=ensure_utc(result.session.expires_at),
        user=UserResponse.model_validate(result.user),
    )


@router.post("/refresh", response_model=RefreshResponse)
async def refresh(
    body: RefreshRequest,
    manager: SessionManager = Depends(get_session_manager),
) -> RefreshResponse:
    """Exchange a refresh token for a new access token."""
    result = await manager.refresh_token(body.refresh_token)
    return RefreshResponse(
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        expires_in=get_settings().access_token_expire_minutes * 60,
    )


@router.post("/session/validate", response_model=SessionValidationResponse)
async def validate_session(
    body: SessionTokenRequest,
    manager: SessionManager = Depends(get_session_manager),
) -> SessionValidationResponse:
    """Resolve a session token to its user."""
    context = await manager.validate_session(body.session_token)
    return SessionValidationResponse(
        session_id=context.session.id,
        expires_at=ensure_utc(context.session.expires_at),
        user=UserResponse.model_validate(context.user),
    )


@router.post("/logout", response_model=LogoutResponse)
async def logout(
    body: SessionTokenRequest,
    manager: SessionManager = Depends(get_session_manager),
) -> LogoutResponse:
    """End one session. Logging out twice is not an error."""
    revoked = await manager.logout(body.session_token)
    return LogoutResponse(revoked_count=1 if revoked else 0)


@router.post("/logout-all", response_model=LogoutResponse)
async def logout_all(
    context: SessionContext = Depends(get_current_session),
    manager: SessionManager = Depends(get_session_manager),
) -> LogoutResponse:
    """End every session of the current user, this one included."""
    count = await manager.logout_all_devices(context.user.id)
    return LogoutResponse(revoked_count=count)


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions(
    context: SessionContext = Depends(get_current_session),
    manager: SessionManager = Depends(get_session_manager),
) -> SessionListResponse:
    """Active sessions with device metadata."""
    sessions = await manager.get_user_sessions(context.user.id)
    items = []
    for session in sessions:
        item = SessionResponse.model_validate(session)
        item.is_current = session.id == context.session.id
        items.append(item)
    return SessionListResponse(sessions=items)


@router.get("/me", response_model=UserResponse)
async def me(context: SessionContext = Depends(get_current_session)) -> UserResponse:
    return UserResponse.model_validate(context.user)
