"""In-process registry of which users currently hold a real-time connection.

The registry is a routing shortcut, not a source of truth: it starts empty on
every process start and clients re-register when they reconnect.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Hashable
from typing import Generic, TypeVar
from uuid import UUID

HandleT = TypeVar("HandleT", bound=Hashable)


class PresenceRegistry(Generic[HandleT]):
    """Map of user id to the set of that user's open connection handles."""

    def __init__(self) -> None:
        self._handles: defaultdict[UUID, set[HandleT]] = defaultdict(set)

    def register(self, user_id: UUID, handle: HandleT) -> None:
        self._handles[user_id].add(handle)

    def unregister(self, user_id: UUID, handle: HandleT) -> None:
        """Drop `handle`; removing an unknown handle is a no-op."""
        handles = self._handles.get(user_id)
        if handles is None:
            return
        handles.discard(handle)
        if not handles:
            del self._handles[user_id]

    def is_present(self, user_id: UUID) -> bool:
        return bool(self._handles.get(user_id))

    def handles_for(self, user_id: UUID) -> set[HandleT]:
        # Copy so callers can iterate while connections come and go.
        return set(self._handles.get(user_id, ()))

    def present_user_ids(self) -> list[UUID]:
        return list(self._handles)

    def connection_count(self) -> int:
        return sum(len(handles) for handles in self._handles.values())

    def __len__(self) -> int:
        return len(self._handles)
