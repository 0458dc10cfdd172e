"""WebSocket transport endpoint and presence inspection."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from fieldops.api.deps import HUB_DEP, SUPERADMIN_DEP
from fieldops.core.auth import AuthenticationError, extract_bearer_token, resolve_token_user
from fieldops.core.logging import get_logger
from fieldops.schemas.realtime import ClientFrame, PresenceRead
from fieldops.services.notifications import get_for_user, mark_read
from fieldops.services.realtime import RealtimeHub, SocketConnection
from fieldops.services.sessions import touch_login_session

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import async_sessionmaker
    from sqlmodel.ext.asyncio.session import AsyncSession

    from fieldops.core.auth import AuthContext

logger = get_logger(__name__)
router = APIRouter(tags=["realtime"])

# Application-defined close code (4000-4999): credential rejected at handshake.
WS_CLOSE_UNAUTHORIZED = 4401


def _handshake_token(websocket: WebSocket) -> str | None:
    token = (websocket.query_params.get("token") or "").strip()
    if token:
        return token
    return extract_bearer_token(websocket.headers.get("authorization"))


async def _acknowledge(
    connection: SocketConnection,
    session_maker: async_sessionmaker[AsyncSession],
    raw_id: object,
) -> None:
    try:
        notification_id = UUID(str(raw_id))
    except ValueError:
        logger.debug("realtime.ack.invalid_id connection_id=%s", connection.id)
        return
    async with session_maker() as session:
        try:
            notification = await get_for_user(
                session,
                user_id=connection.user_id,
                notification_id=notification_id,
            )
            if notification is not None:
                await mark_read(session, notification)
        except SQLAlchemyError:
            logger.exception(
                "realtime.ack.persist_failed connection_id=%s notification_id=%s",
                connection.id,
                notification_id,
            )
            await session.rollback()


async def _handle_frame(
    connection: SocketConnection,
    raw: str,
    session_maker: async_sessionmaker[AsyncSession],
) -> None:
    try:
        frame = ClientFrame.model_validate_json(raw)
    except ValidationError:
        logger.debug("realtime.frame.malformed connection_id=%s", connection.id)
        return
    if frame.event == "ping":
        await connection.send("pong")
    elif frame.event == "notification:acknowledged":
        await _acknowledge(connection, session_maker, frame.data.get("id"))
    else:
        logger.info(
            "realtime.frame.unknown_event event=%s connection_id=%s",
            frame.event,
            connection.id,
        )


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket) -> None:
    """Authenticate once, join the caller's rooms, then serve client frames."""
    state = websocket.app.state
    session_maker: async_sessionmaker[AsyncSession] = state.session_maker
    hub: RealtimeHub = state.realtime_hub

    async with session_maker() as session:
        try:
            auth = await resolve_token_user(session, _handshake_token(websocket))
        except AuthenticationError as exc:
            logger.info("realtime.handshake.rejected reason=%s", exc)
            await websocket.close(code=WS_CLOSE_UNAUTHORIZED)
            return
        if auth.session_id is not None:
            await touch_login_session(session, auth.session_id)

    await websocket.accept()
    connection = SocketConnection(websocket, user_id=auth.user_id, role=auth.role)
    hub.connect(connection)
    try:
        await connection.send(
            "connected",
            {
                "user_id": str(auth.user_id),
                "role": auth.role.value,
                "rooms": sorted(hub.rooms_of(connection)),
            },
        )
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
            raw = message.get("text")
            if raw is None:
                logger.debug(
                    "realtime.frame.malformed connection_id=%s kind=binary",
                    connection.id,
                )
                continue
            await _handle_frame(connection, raw, session_maker)
    except WebSocketDisconnect as exc:
        logger.debug(
            "realtime.connection.client_closed connection_id=%s code=%s",
            connection.id,
            exc.code,
        )
    finally:
        hub.disconnect(connection)


@router.get("/realtime/presence", response_model=PresenceRead)
async def presence(
    hub: RealtimeHub = HUB_DEP,
    _auth: AuthContext = SUPERADMIN_DEP,
) -> PresenceRead:
    """Connected users in this process."""
    user_ids = hub.presence.present_user_ids()
    return PresenceRead(
        connected_users=len(user_ids),
        connections=hub.presence.connection_count(),
        user_ids=user_ids,
    )
