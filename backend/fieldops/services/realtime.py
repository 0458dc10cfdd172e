"""Room-based fan-out over authenticated WebSocket connections.

Every connection joins three rooms when it is accepted: its user room, its
role room and the global broadcast room. Publishers address rooms, never
individual sockets, so "this user" and "all managers" are each one call.
Delivery is best effort: a failing socket is logged and skipped.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import TYPE_CHECKING, Any, Protocol
from uuid import UUID, uuid4

from fastapi.encoders import jsonable_encoder

from fieldops.core.logging import get_logger
from fieldops.core.roles import UserRole
from fieldops.core.time import utcnow

if TYPE_CHECKING:
    from collections.abc import Iterable

    from starlette.websockets import WebSocket

    from fieldops.core.auth import AuthContext
    from fieldops.services.presence import PresenceRegistry

logger = get_logger(__name__)

BROADCAST_ROOM = "broadcast"


def user_room(user_id: UUID) -> str:
    return f"user:{user_id}"


def role_room(role: UserRole) -> str:
    return f"role:{UserRole(role).value}"


def actor_of(auth: AuthContext) -> dict[str, str]:
    """Who triggered an event, as carried inside event payloads."""
    return {"id": str(auth.user_id), "name": auth.user.name, "role": UserRole(auth.role).value}


def build_envelope(event: str, data: Any = None) -> dict[str, Any]:
    """Wire frame shared by every server-to-client message."""
    return {
        "event": event,
        "data": jsonable_encoder(data),
        "timestamp": utcnow().isoformat() + "Z",
    }


class RealtimeConnection(Protocol):
    id: str
    user_id: UUID
    role: UserRole

    async def send(self, event: str, data: Any = None) -> None: ...


class SocketConnection:
    """One accepted WebSocket bound to an authenticated user.

    Sends are serialised per connection so frames published concurrently by
    different request handlers never interleave on the wire.
    """

    def __init__(self, websocket: WebSocket, *, user_id: UUID, role: UserRole) -> None:
        self.id = uuid4().hex
        self.websocket = websocket
        self.user_id = user_id
        self.role = role
        self._send_lock = asyncio.Lock()

    async def send(self, event: str, data: Any = None) -> None:
        async with self._send_lock:
            await self.websocket.send_json(build_envelope(event, data))

    def __repr__(self) -> str:
        return f"SocketConnection(id={self.id!r}, user_id={self.user_id!s})"


class RealtimeHub:
    """Tracks room membership and publishes envelopes to rooms."""

    def __init__(self, presence: PresenceRegistry[RealtimeConnection]) -> None:
        self.presence = presence
        self._rooms: defaultdict[str, set[RealtimeConnection]] = defaultdict(set)
        self._memberships: defaultdict[str, set[str]] = defaultdict(set)
        self.failed_sends = 0

    def join(self, connection: RealtimeConnection, room: str) -> None:
        self._rooms[room].add(connection)
        self._memberships[connection.id].add(room)

    def rooms_of(self, connection: RealtimeConnection) -> set[str]:
        return set(self._memberships.get(connection.id, ()))

    def room_members(self, room: str) -> set[RealtimeConnection]:
        return set(self._rooms.get(room, ()))

    def connect(self, connection: RealtimeConnection) -> None:
        """Register an authenticated connection and subscribe it to its rooms."""
        self.presence.register(connection.user_id, connection)
        for room in (user_room(connection.user_id), role_room(connection.role), BROADCAST_ROOM):
            self.join(connection, room)
        logger.info(
            "realtime.connection.opened",
            extra={
                "connection_id": connection.id,
                "user_id": str(connection.user_id),
                "role": UserRole(connection.role).value,
            },
        )

    def disconnect(self, connection: RealtimeConnection) -> None:
        """Forget a connection; safe to call more than once."""
        self.presence.unregister(connection.user_id, connection)
        for room in self._memberships.pop(connection.id, set()):
            members = self._rooms.get(room)
            if members is None:
                continue
            members.discard(connection)
            if not members:
                del self._rooms[room]
        logger.info(
            "realtime.connection.closed",
            extra={"connection_id": connection.id, "user_id": str(connection.user_id)},
        )

    async def publish(self, rooms: str | Iterable[str], event: str, data: Any = None) -> int:
        """Send `event` to every connection in `rooms`; returns successful sends.

        A connection subscribed to several of the target rooms receives the
        frame once. Send failures are logged and counted, never raised.
        """
        room_names = [rooms] if isinstance(rooms, str) else list(rooms)
        targets: dict[str, RealtimeConnection] = {}
        for room in room_names:
            for connection in self._rooms.get(room, ()):
                targets.setdefault(connection.id, connection)
        if not targets:
            return 0

        connections = list(targets.values())
        results = await asyncio.gather(
            *(connection.send(event, data) for connection in connections),
            return_exceptions=True,
        )
        delivered = 0
        for connection, result in zip(connections, results, strict=True):
            if isinstance(result, BaseException):
                self.failed_sends += 1
                logger.warning(
                    "realtime.publish.send_failed event=%s connection_id=%s error=%s",
                    event,
                    connection.id,
                    result,
                )
                continue
            delivered += 1
        logger.debug(
            "realtime.publish event=%s rooms=%s delivered=%s",
            event,
            ",".join(room_names),
            delivered,
        )
        return delivered
