"""Project payload schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import Field, field_validator
from sqlmodel import SQLModel

from fieldops.core.enums import Priority, ProjectStatus
from fieldops.schemas.common import OptionalText, ProjectStatusValue

RUNTIME_ANNOTATION_TYPES = (datetime, UUID, Priority, ProjectStatus)

# "completed" is derived from the task set and never set by hand.
HUMAN_SETTABLE_PROJECT_STATUSES = frozenset(
    {
        ProjectStatus.PLANNING,
        ProjectStatus.IN_PROGRESS,
        ProjectStatus.DELAYED,
        ProjectStatus.ON_HOLD,
    },
)


def _human_settable(value: ProjectStatus | None) -> ProjectStatus | None:
    if value is not None and value not in HUMAN_SETTABLE_PROJECT_STATUSES:
        raise ValueError("status 'completed' is set automatically from tasks")
    return value


class ProjectCreate(SQLModel):
    """Superadmin payload for opening a project."""

    client_name: str = Field(min_length=1)
    site_name: str = Field(min_length=1)
    location: str = Field(min_length=1)
    map_link: OptionalText = None
    description: OptionalText = None
    notes: OptionalText = None
    priority: Priority = Priority.MEDIUM
    deadline: datetime | None = None
    assigned_manager_id: UUID


class ProjectUpdate(SQLModel):
    """Editable project fields. Derived progress fields are not accepted."""

    client_name: str | None = Field(default=None, min_length=1)
    site_name: str | None = Field(default=None, min_length=1)
    location: str | None = Field(default=None, min_length=1)
    map_link: OptionalText = None
    description: OptionalText = None
    notes: OptionalText = None
    priority: Priority | None = None
    status: ProjectStatusValue | None = None
    deadline: datetime | None = None
    assigned_manager_id: UUID | None = None

    @field_validator("status")
    @classmethod
    def _human_status(cls, value: ProjectStatus | None) -> ProjectStatus | None:
        return _human_settable(value)


class ProjectRead(SQLModel):
    id: UUID
    client_name: str
    site_name: str
    location: str
    map_link: str | None = None
    description: str | None = None
    notes: str | None = None
    priority: Priority
    status: ProjectStatus
    deadline: datetime | None = None
    assigned_manager_id: UUID
    tasks_count: int
    completed_tasks: int
    completion_percentage: int
    completed_at: datetime | None = None
    is_overdue: bool
    start_date: datetime
    created_at: datetime
    updated_at: datetime


class ProjectProgressSummary(SQLModel):
    """Result of one propagation-engine recompute."""

    project_id: UUID
    status: ProjectStatus
    previous_status: ProjectStatus
    tasks_count: int
    completed_tasks: int
    completion_percentage: int
    completed_at: datetime | None = None
    status_changed: bool


class ProjectBulkStatusUpdate(SQLModel):
    """Superadmin payload moving many projects to one human-set status."""

    project_ids: list[UUID] = Field(min_length=1, max_length=500)
    status: ProjectStatusValue

    @field_validator("status")
    @classmethod
    def _human_status(cls, value: ProjectStatus | None) -> ProjectStatus | None:
        return _human_settable(value)


class ProjectBulkStatusResult(SQLModel):
    matched_count: int
    modified_count: int
