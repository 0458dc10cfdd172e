"""Password hashing and signed access tokens."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from uuid import UUID

import bcrypt
import jwt

from fieldops.core.config import settings
from fieldops.core.roles import UserRole, parse_role

if TYPE_CHECKING:
    from fieldops.models.users import User

BCRYPT_ROUNDS = 12
REQUIRED_CLAIMS = ("sub", "role", "jti", "iat", "exp", "iss", "aud")


class InvalidTokenError(Exception):
    """Raised when an access token cannot be decoded into trusted claims."""


@dataclass(frozen=True)
class TokenClaims:
    user_id: UUID
    role: UserRole
    session_id: UUID
    issued_at: datetime
    expires_at: datetime


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False


def create_access_token(
    user: User,
    *,
    session_id: UUID,
    expires_delta: timedelta | None = None,
) -> tuple[str, datetime]:
    """Sign an access token for `user`; returns the token and its expiry (naive UTC)."""
    issued_at = datetime.now(UTC)
    expires_at = issued_at + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    payload = {
        "sub": str(user.id),
        "role": parse_role(user.role).value,
        "jti": str(session_id),
        "iat": issued_at,
        "exp": expires_at,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
    }
    token = jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)
    return token, expires_at.replace(tzinfo=None)


def decode_access_token(token: str) -> TokenClaims:
    """Verify `token` and return its claims, or raise `InvalidTokenError`."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require": list(REQUIRED_CLAIMS)},
        )
    except jwt.ExpiredSignatureError as exc:
        raise InvalidTokenError("Token expired") from exc
    except jwt.PyJWTError as exc:
        raise InvalidTokenError("Token invalid") from exc

    try:
        return TokenClaims(
            user_id=UUID(str(payload["sub"])),
            role=parse_role(payload["role"]),
            session_id=UUID(str(payload["jti"])),
            issued_at=datetime.fromtimestamp(int(payload["iat"]), UTC).replace(tzinfo=None),
            expires_at=datetime.fromtimestamp(int(payload["exp"]), UTC).replace(tzinfo=None),
        )
    except (TypeError, ValueError) as exc:
        raise InvalidTokenError("Token claims malformed") from exc
