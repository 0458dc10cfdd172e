"""Authentication endpoints: login, logout, identity and password change."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Request

from fieldops.api.deps import AUTH_DEP, SESSION_DEP
from fieldops.schemas.auth import LoginRequest, TokenResponse
from fieldops.schemas.common import OkResponse
from fieldops.schemas.users import PasswordChange, UserRead
from fieldops.services.sessions import close_login_session, open_login_session
from fieldops.services.users import authenticate_user, change_password

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from fieldops.core.auth import AuthContext

router = APIRouter(prefix="/auth", tags=["auth"])


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",", 1)[0].strip() or None
    return request.client.host if request.client else None


@router.post("/login", response_model=TokenResponse)
async def login(
    payload: LoginRequest,
    request: Request,
    session: AsyncSession = SESSION_DEP,
) -> TokenResponse:
    """Exchange email and password for an access token."""
    user = await authenticate_user(
        session,
        email=payload.email,
        password=payload.password,
        role=payload.role,
    )
    login_session, token = await open_login_session(
        session,
        user,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return TokenResponse(
        access_token=token,
        expires_at=login_session.expires_at,
        user=UserRead.model_validate(user, from_attributes=True),
    )


@router.post("/logout", response_model=OkResponse)
async def logout(
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = AUTH_DEP,
) -> OkResponse:
    """Close the login session behind the caller's token."""
    if auth.session_id is not None:
        await close_login_session(session, auth.session_id)
    return OkResponse()


@router.get("/me", response_model=UserRead)
async def me(auth: AuthContext = AUTH_DEP) -> UserRead:
    return UserRead.model_validate(auth.user, from_attributes=True)


@router.post("/change-password", response_model=OkResponse)
async def update_password(
    payload: PasswordChange,
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = AUTH_DEP,
) -> OkResponse:
    await change_password(
        session,
        auth.user,
        current_password=payload.current_password,
        new_password=payload.new_password,
    )
    return OkResponse()
