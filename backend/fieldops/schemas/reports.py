"""Work report payload schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import Field
from sqlmodel import SQLModel

RUNTIME_ANNOTATION_TYPES = (datetime, UUID)


class ReportCreate(SQLModel):
    task_id: UUID
    content: str = Field(min_length=1, max_length=5000)


class ReportRead(SQLModel):
    id: UUID
    task_id: UUID
    technician_id: UUID
    manager_id: UUID
    content: str
    submitted_at: datetime
