"""User payload schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import EmailStr, Field, field_validator
from sqlmodel import SQLModel

from fieldops.core.enums import UserStatus
from fieldops.core.roles import UserRole
from fieldops.schemas.common import OptionalText, RoleValue

RUNTIME_ANNOTATION_TYPES = (datetime, UUID, UserRole, UserStatus)
PASSWORD_MIN_LENGTH = 6


class UserCreate(SQLModel):
    """Superadmin payload for creating an account."""

    name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(min_length=PASSWORD_MIN_LENGTH)
    role: RoleValue = UserRole.TECHNICIAN
    department: str = "General"
    phone: OptionalText = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name must not be blank")
        return cleaned


class UserUpdate(SQLModel):
    """Superadmin payload for editing any account."""

    name: str | None = Field(default=None, min_length=1, max_length=100)
    email: EmailStr | None = None
    role: RoleValue | None = None
    department: str | None = None
    phone: OptionalText = None
    status: UserStatus | None = None


class UserSelfUpdate(SQLModel):
    """Fields a user may change on their own profile."""

    name: str | None = Field(default=None, min_length=1, max_length=100)
    department: str | None = None
    phone: OptionalText = None


class UserRead(SQLModel):
    """Account payload returned by read endpoints; never includes the hash."""

    id: UUID
    name: str
    email: str
    role: UserRole
    status: UserStatus
    department: str
    phone: str | None = None
    is_active: bool
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class PasswordChange(SQLModel):
    current_password: str
    new_password: str = Field(min_length=PASSWORD_MIN_LENGTH)
