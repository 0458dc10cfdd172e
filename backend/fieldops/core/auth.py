"""Bearer-token authentication shared by HTTP routes and the WebSocket handshake."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from fieldops.core.config import settings
from fieldops.core.logging import get_logger
from fieldops.core.roles import UserRole, parse_role
from fieldops.core.security import InvalidTokenError, decode_access_token
from fieldops.core.time import utcnow
from fieldops.db.session import get_session
from fieldops.models.login_sessions import LoginSession
from fieldops.models.users import User

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)
security = HTTPBearer(auto_error=False)
SECURITY_DEP = Depends(security)
SESSION_DEP = Depends(get_session)


class AuthenticationError(Exception):
    """Raised when a credential does not identify an active user."""


@dataclass
class AuthContext:
    """Authenticated user context resolved from an access token."""

    user: User
    role: UserRole
    session_id: UUID | None = None

    @property
    def user_id(self) -> UUID:
        return self.user.id

    @property
    def is_superadmin(self) -> bool:
        return self.role == UserRole.SUPERADMIN


def extract_bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    value = authorization.strip()
    if not value.lower().startswith("bearer "):
        return None
    token = value.split(" ", maxsplit=1)[1].strip()
    return token or None


async def resolve_token_user(session: AsyncSession, token: str | None) -> AuthContext:
    """Authenticate `token` against stored users and login sessions.

    Raises `AuthenticationError` for a missing or malformed token, an unknown or
    deactivated user, a role that no longer matches the stored account, or a
    login session that was closed or has expired.
    """
    if not token:
        raise AuthenticationError("Missing token")
    try:
        claims = decode_access_token(token)
    except InvalidTokenError as exc:
        raise AuthenticationError(str(exc)) from exc

    user = await User.objects.by_id(claims.user_id).first(session)
    if user is None:
        raise AuthenticationError("Unknown user")
    if not user.is_active:
        raise AuthenticationError("User deactivated")
    if parse_role(user.role) != claims.role:
        raise AuthenticationError("Role changed since token was issued")

    if settings.enforce_login_sessions:
        login_session = await LoginSession.objects.by_id(claims.session_id).first(session)
        if (
            login_session is None
            or login_session.user_id != user.id
            or not login_session.is_active
            or login_session.expires_at <= utcnow()
        ):
            raise AuthenticationError("Login session inactive")

    return AuthContext(user=user, role=claims.role, session_id=claims.session_id)


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials | None = SECURITY_DEP,
    session: AsyncSession = SESSION_DEP,
) -> AuthContext:
    """Resolve the authenticated user for the request or fail with 401."""
    token = credentials.credentials if credentials is not None else None
    try:
        return await resolve_token_user(session, token)
    except AuthenticationError as exc:
        logger.info("auth.request.rejected reason=%s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


AUTH_DEP = Depends(get_auth_context)


def require_roles(*roles: UserRole) -> Callable[..., object]:
    """Build a dependency that admits only callers holding one of `roles`."""
    allowed = frozenset(roles)

    async def _require(auth: AuthContext = AUTH_DEP) -> AuthContext:
        if auth.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role",
            )
        return auth

    return _require
