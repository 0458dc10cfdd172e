"""Task model and its append-only status log."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field

from fieldops.core.enums import Priority, TaskStatus
from fieldops.core.time import utcnow
from fieldops.models.base import QueryModel, enum_column

RUNTIME_ANNOTATION_TYPES = (datetime,)


class Task(QueryModel, table=True):
    """Unit of site work assigned by a manager to a technician."""

    __tablename__ = "tasks"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    project_id: UUID = Field(foreign_key="projects.id", index=True)
    assigned_to_id: UUID = Field(foreign_key="users.id", index=True)
    assigned_by_id: UUID = Field(foreign_key="users.id", index=True)

    title: str
    description: str | None = None
    priority: Priority = Field(
        default=Priority.MEDIUM,
        sa_column=enum_column(Priority, index=True),
    )
    status: TaskStatus = Field(
        default=TaskStatus.ASSIGNED,
        sa_column=enum_column(TaskStatus, index=True),
    )
    progress: int = Field(default=0)
    delay_reason: str | None = None

    deadline: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    estimated_hours: float = Field(default=0)
    actual_hours: float = Field(default=0)
    location: str | None = None
    location_link: str | None = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_overdue(self) -> bool:
        return (
            self.deadline is not None
            and self.deadline < utcnow()
            and self.status != TaskStatus.COMPLETED
        )


class TaskStatusLog(QueryModel, table=True):
    """One status transition of a task, never updated after insert."""

    __tablename__ = "task_status_logs"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    task_id: UUID = Field(foreign_key="tasks.id", index=True)
    status: TaskStatus = Field(sa_column=enum_column(TaskStatus))
    updated_by_id: UUID = Field(foreign_key="users.id", index=True)
    comment: str | None = None
    delay_reason: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
