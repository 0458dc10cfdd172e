"""Canonical enumerations for task, project, user and notification fields."""

from __future__ import annotations

import re
from enum import Enum
from typing import TypeVar

_SEPARATORS = re.compile(r"[\s\-]+")

E = TypeVar("E", bound=Enum)


class TaskStatus(str, Enum):
    """Task lifecycle states. `ASSIGNED` is the initial (created) state."""

    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DELAYED = "delayed"


class ProjectStatus(str, Enum):
    """Project lifecycle states."""

    PLANNING = "planning"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DELAYED = "delayed"
    ON_HOLD = "on_hold"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class NotificationType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    SYSTEM = "system"


class NotificationCategory(str, Enum):
    GENERAL = "general"
    SECURITY = "security"
    SYSTEM = "system"
    TASK = "task"
    MAINTENANCE = "maintenance"


# Older clients send display labels instead of canonical values.
_TASK_STATUS_ALIASES = {
    "pending": TaskStatus.ASSIGNED,
    "created": TaskStatus.ASSIGNED,
}


def _canonical_label(value: str) -> str:
    return _SEPARATORS.sub("_", value.strip().lower())


def parse_enum(enum_type: type[E], value: object, aliases: dict[str, E] | None = None) -> E:
    """Parse `value` into `enum_type`, accepting display labels and aliases."""
    if isinstance(value, enum_type):
        return value
    if not isinstance(value, str):
        msg = f"{enum_type.__name__} must be a string, got {type(value).__name__}"
        raise ValueError(msg)
    label = _canonical_label(value)
    if aliases and label in aliases:
        return aliases[label]
    try:
        return enum_type(label)
    except ValueError:
        msg = f"Unknown {enum_type.__name__}: {value!r}"
        raise ValueError(msg) from None


def parse_task_status(value: object) -> TaskStatus:
    return parse_enum(TaskStatus, value, _TASK_STATUS_ALIASES)


def parse_project_status(value: object) -> ProjectStatus:
    return parse_enum(ProjectStatus, value)
