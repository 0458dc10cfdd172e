"""Project model with task-derived progress fields."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field

from fieldops.core.enums import Priority, ProjectStatus
from fieldops.core.time import utcnow
from fieldops.models.base import QueryModel, enum_column

RUNTIME_ANNOTATION_TYPES = (datetime,)


class Project(QueryModel, table=True):
    """Client site project owned by exactly one manager.

    `tasks_count`, `completed_tasks`, `completion_percentage` and `completed_at`
    are written only by the project status engine. The task list itself is not
    stored here; it is always queried through `Task.project_id`.
    """

    __tablename__ = "projects"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    client_name: str
    site_name: str = Field(index=True)
    location: str
    map_link: str | None = None
    description: str | None = None
    notes: str | None = None
    priority: Priority = Field(
        default=Priority.MEDIUM,
        sa_column=enum_column(Priority, index=True),
    )
    status: ProjectStatus = Field(
        default=ProjectStatus.PLANNING,
        sa_column=enum_column(ProjectStatus, index=True),
    )
    deadline: datetime | None = None
    assigned_manager_id: UUID = Field(foreign_key="users.id", index=True)

    tasks_count: int = Field(default=0)
    completed_tasks: int = Field(default=0)
    completion_percentage: int = Field(default=0)
    completed_at: datetime | None = None

    start_date: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def progress(self) -> int:
        """Legacy alias of `completion_percentage`."""
        return self.completion_percentage

    @property
    def is_overdue(self) -> bool:
        return (
            self.deadline is not None
            and self.deadline < utcnow()
            and self.status != ProjectStatus.COMPLETED
        )
