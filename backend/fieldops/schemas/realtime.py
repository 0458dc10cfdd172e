"""Real-time transport frame and presence schemas."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from pydantic import Field
from sqlmodel import SQLModel

RUNTIME_ANNOTATION_TYPES = (UUID,)


class ClientFrame(SQLModel):
    """Client-to-server frame. Unknown events are ignored by the server."""

    event: str
    data: dict[str, Any] = Field(default_factory=dict)


class PresenceRead(SQLModel):
    connected_users: int
    connections: int
    user_ids: list[UUID]
