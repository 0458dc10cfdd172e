"""Notification payload schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import Field, model_validator
from sqlmodel import SQLModel

from fieldops.core.enums import NotificationCategory, NotificationType, Priority
from fieldops.models.notifications import MESSAGE_MAX_LENGTH, TITLE_MAX_LENGTH
from fieldops.schemas.common import RoleValue

RUNTIME_ANNOTATION_TYPES = (datetime, UUID, NotificationCategory, NotificationType, Priority)


class NotificationPayload(SQLModel):
    """Content of one notification before it is addressed and persisted."""

    title: str = Field(min_length=1, max_length=TITLE_MAX_LENGTH)
    message: str = Field(min_length=1, max_length=MESSAGE_MAX_LENGTH)
    type: NotificationType = NotificationType.INFO
    priority: Priority = Priority.MEDIUM
    category: NotificationCategory = NotificationCategory.GENERAL
    expires_at: datetime | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class NotificationSend(NotificationPayload):
    """Manager/superadmin request to notify a user, a role, or everyone."""

    target: Literal["user", "role", "all"] = "user"
    user_id: UUID | None = None
    role: RoleValue | None = None

    @model_validator(mode="after")
    def _target_fields(self) -> NotificationSend:
        if self.target == "user" and self.user_id is None:
            raise ValueError("user_id is required when target is 'user'")
        if self.target == "role" and self.role is None:
            raise ValueError("role is required when target is 'role'")
        return self


class NotificationRead(SQLModel):
    id: UUID
    user_id: UUID
    title: str
    message: str
    type: NotificationType
    priority: Priority
    category: NotificationCategory
    is_read: bool
    read_at: datetime | None = None
    expires_at: datetime | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class NotificationDispatchResult(SQLModel):
    """Outcome of a fan-out: who got a stored notification and who did not."""

    delivered_user_ids: list[UUID] = Field(default_factory=list)
    failed_user_ids: list[UUID] = Field(default_factory=list)
    pushed_user_ids: list[UUID] = Field(default_factory=list)


class UnreadCount(SQLModel):
    unread: int


class MarkAllReadResult(SQLModel):
    updated: int


class NotificationStats(SQLModel):
    total: int = 0
    read: int = 0
    unread: int = 0
    by_type: dict[str, int] = Field(default_factory=dict)
    by_priority: dict[str, int] = Field(default_factory=dict)

