"""Technician work reports."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field

from fieldops.core.time import utcnow
from fieldops.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class Report(QueryModel, table=True):
    """Free-text report a technician files against one of their tasks."""

    __tablename__ = "reports"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    task_id: UUID = Field(foreign_key="tasks.id", index=True)
    technician_id: UUID = Field(foreign_key="users.id", index=True)
    manager_id: UUID = Field(foreign_key="users.id", index=True)
    content: str
    submitted_at: datetime = Field(default_factory=utcnow)
