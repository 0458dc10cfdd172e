"""User account model."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field

from fieldops.core.enums import UserStatus
from fieldops.core.roles import UserRole
from fieldops.core.time import utcnow
from fieldops.models.base import QueryModel, enum_column

RUNTIME_ANNOTATION_TYPES = (datetime,)


class User(QueryModel, table=True):
    """Platform account for superadmins, managers and technicians."""

    __tablename__ = "users"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(max_length=100)
    email: str = Field(max_length=320, unique=True, index=True)
    password_hash: str
    role: UserRole = Field(sa_column=enum_column(UserRole, index=True))
    status: UserStatus = Field(
        default=UserStatus.ACTIVE,
        sa_column=enum_column(UserStatus, index=True),
    )
    department: str = Field(default="General", index=True)
    phone: str | None = None

    failed_login_attempts: int = Field(default=0)
    locked_until: datetime | None = None
    last_login_at: datetime | None = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    @property
    def is_locked(self) -> bool:
        return self.locked_until is not None and self.locked_until > utcnow()
