"""Login session model backing token revocation."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field

from fieldops.core.time import utcnow
from fieldops.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class LoginSession(QueryModel, table=True):
    """One issued access token; `id` is the token's `jti` claim."""

    __tablename__ = "login_sessions"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    ip_address: str = Field(default="unknown")
    user_agent: str = Field(default="unknown")
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=utcnow)
    last_activity_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime = Field(index=True)
    logged_out_at: datetime | None = None
