"""Shared field validators and small payloads used across schemas."""

from __future__ import annotations

from typing import Annotated

from pydantic import BeforeValidator
from sqlmodel import SQLModel

from fieldops.core.enums import (
    ProjectStatus,
    TaskStatus,
    parse_project_status,
    parse_task_status,
)
from fieldops.core.roles import UserRole, parse_role


def _strip_optional(value: object) -> object:
    if isinstance(value, str):
        cleaned = value.strip()
        return cleaned or None
    return value


RoleValue = Annotated[UserRole, BeforeValidator(parse_role)]
TaskStatusValue = Annotated[TaskStatus, BeforeValidator(parse_task_status)]
ProjectStatusValue = Annotated[ProjectStatus, BeforeValidator(parse_project_status)]
OptionalText = Annotated[str | None, BeforeValidator(_strip_optional)]


class OkResponse(SQLModel):
    """Minimal acknowledgement payload."""

    ok: bool = True
