"""Login and token payload schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import EmailStr
from sqlmodel import SQLModel

from fieldops.schemas.common import RoleValue
from fieldops.schemas.users import UserRead

RUNTIME_ANNOTATION_TYPES = (datetime,)


class LoginRequest(SQLModel):
    email: EmailStr
    password: str
    role: RoleValue | None = None


class TokenResponse(SQLModel):
    """Issued access token plus the authenticated account."""

    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: UserRead
