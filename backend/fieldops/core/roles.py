"""User role values and boundary parsing.

Roles arrive from request bodies, token claims, and stored rows. Every one of
those boundaries goes through `parse_role` so `"super-admin"`, `"SuperAdmin"`
and `"superadmin"` all resolve to the same member, and anything else is
rejected instead of silently failing a comparison later.
"""

from __future__ import annotations

import re
from enum import Enum

_SEPARATORS = re.compile(r"[\s_\-]+")


class UserRole(str, Enum):
    """Closed set of account roles."""

    SUPERADMIN = "superadmin"
    MANAGER = "manager"
    TECHNICIAN = "technician"


def _normalize_label(value: str) -> str:
    return _SEPARATORS.sub("", value.strip().lower())


def parse_role(value: object) -> UserRole:
    """Resolve `value` to a `UserRole` or raise `ValueError`."""
    if isinstance(value, UserRole):
        return value
    if not isinstance(value, str):
        msg = f"Role must be a string, got {type(value).__name__}"
        raise ValueError(msg)
    normalized = _normalize_label(value)
    for role in UserRole:
        if role.value == normalized:
            return role
    msg = f"Unknown role: {value!r}"
    raise ValueError(msg)
