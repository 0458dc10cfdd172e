"""Persisted user notifications."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field

from fieldops.core.enums import NotificationCategory, NotificationType, Priority
from fieldops.core.time import utcnow
from fieldops.models.base import QueryModel, enum_column

RUNTIME_ANNOTATION_TYPES = (datetime,)
TITLE_MAX_LENGTH = 200
MESSAGE_MAX_LENGTH = 1000


class Notification(QueryModel, table=True):
    """Notification addressed to one user; only the read state ever changes."""

    __tablename__ = "notifications"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    title: str = Field(max_length=TITLE_MAX_LENGTH)
    message: str = Field(max_length=MESSAGE_MAX_LENGTH)
    type: NotificationType = Field(
        default=NotificationType.INFO,
        sa_column=enum_column(NotificationType, index=True),
    )
    priority: Priority = Field(
        default=Priority.MEDIUM,
        sa_column=enum_column(Priority, index=True),
    )
    category: NotificationCategory = Field(
        default=NotificationCategory.GENERAL,
        sa_column=enum_column(NotificationCategory),
    )
    is_read: bool = Field(default=False, index=True)
    read_at: datetime | None = None
    expires_at: datetime | None = Field(default=None, index=True)
    details: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)
