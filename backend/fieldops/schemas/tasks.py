"""Task payload schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import Field
from sqlmodel import SQLModel

from fieldops.core.enums import Priority, TaskStatus
from fieldops.schemas.common import OptionalText, TaskStatusValue

RUNTIME_ANNOTATION_TYPES = (datetime, UUID, Priority, TaskStatus)


class TaskCreate(SQLModel):
    """Manager payload for assigning a task to a technician."""

    title: str = Field(min_length=1, max_length=200)
    description: OptionalText = None
    project_id: UUID
    assigned_to_id: UUID
    priority: Priority = Priority.MEDIUM
    deadline: datetime | None = None
    estimated_hours: float = Field(default=0, ge=0)
    location: OptionalText = None
    location_link: OptionalText = None


class TaskUpdate(SQLModel):
    """Manager edits of non-derived task fields."""

    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: OptionalText = None
    assigned_to_id: UUID | None = None
    priority: Priority | None = None
    deadline: datetime | None = None
    estimated_hours: float | None = Field(default=None, ge=0)
    actual_hours: float | None = Field(default=None, ge=0)
    location: OptionalText = None
    location_link: OptionalText = None


class TaskStatusUpdate(SQLModel):
    status: TaskStatusValue
    comment: OptionalText = None
    delay_reason: OptionalText = None


class TaskProgressUpdate(SQLModel):
    progress: int = Field(ge=0, le=100)
    comment: OptionalText = None


class TaskRead(SQLModel):
    id: UUID
    title: str
    description: str | None = None
    project_id: UUID
    assigned_to_id: UUID
    assigned_by_id: UUID
    priority: Priority
    status: TaskStatus
    progress: int
    delay_reason: str | None = None
    deadline: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    estimated_hours: float
    actual_hours: float
    location: str | None = None
    location_link: str | None = None
    is_overdue: bool
    created_at: datetime
    updated_at: datetime


class TaskStatusLogRead(SQLModel):
    id: UUID
    task_id: UUID
    status: TaskStatus
    updated_by_id: UUID
    comment: str | None = None
    delay_reason: str | None = None
    created_at: datetime


class TaskStats(SQLModel):
    """Per-status task counts for the caller's visible tasks."""

    total: int = 0
    assigned: int = 0
    in_progress: int = 0
    completed: int = 0
    delayed: int = 0
    overdue: int = 0
