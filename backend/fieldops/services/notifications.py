"""Notification dispatch and per-user notification store operations.

`NotificationDispatcher` is the only writer of notification rows. Each target
is persisted in its own session before any push is attempted, so a failed or
missing socket never loses a notification and one target's failure never
rolls back another's.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import col, select

from fieldops.core.enums import NotificationCategory, NotificationType, Priority, UserStatus
from fieldops.core.logging import get_logger
from fieldops.core.roles import UserRole
from fieldops.core.time import utcnow
from fieldops.db import crud
from fieldops.models.notifications import Notification
from fieldops.models.users import User
from fieldops.schemas.notifications import NotificationRead, NotificationStats
from fieldops.services.realtime import BROADCAST_ROOM, role_room, user_room

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import async_sessionmaker
    from sqlmodel.ext.asyncio.session import AsyncSession
    from sqlmodel.sql.expression import SelectOfScalar

    from fieldops.schemas.notifications import NotificationPayload
    from fieldops.services.presence import PresenceRegistry
    from fieldops.services.realtime import RealtimeHub

logger = get_logger(__name__)


@dataclass
class DispatchReport:
    """Per-target outcome of a fan-out."""

    delivered: list[Notification] = field(default_factory=list)
    failed_user_ids: list[UUID] = field(default_factory=list)
    pushed_user_ids: list[UUID] = field(default_factory=list)

    @property
    def delivered_user_ids(self) -> list[UUID]:
        return [notification.user_id for notification in self.delivered]


def serialize_notification(notification: Notification) -> dict[str, Any]:
    return NotificationRead.model_validate(notification, from_attributes=True).model_dump(
        mode="json",
    )


class NotificationDispatcher:
    """Persist-then-push notification delivery to users, roles and everyone."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        hub: RealtimeHub,
    ) -> None:
        self._session_maker = session_maker
        self.hub = hub

    @property
    def presence(self) -> PresenceRegistry[Any]:
        return self.hub.presence

    async def _persist(self, user_id: UUID, payload: NotificationPayload) -> Notification:
        notification = Notification(
            user_id=user_id,
            title=payload.title,
            message=payload.message,
            type=payload.type,
            priority=payload.priority,
            category=payload.category,
            expires_at=payload.expires_at,
            details=dict(payload.details),
        )
        async with self._session_maker() as session:
            return await crud.save(session, notification)

    async def _push(self, notification: Notification) -> bool:
        if not self.presence.is_present(notification.user_id):
            logger.debug(
                "notification.push.skipped user_id=%s reason=absent",
                notification.user_id,
            )
            return False
        delivered = await self.hub.publish(
            user_room(notification.user_id),
            "notification:new",
            serialize_notification(notification),
        )
        return delivered > 0

    async def notify_user(self, user_id: UUID, payload: NotificationPayload) -> Notification:
        """Persist one notification, then push it if the user is connected.

        Persistence errors propagate to the caller; push failures do not.
        """
        notification = await self._persist(user_id, payload)
        await self._push(notification)
        return notification

    async def notify_users(
        self,
        user_ids: Iterable[UUID],
        payload: NotificationPayload,
    ) -> DispatchReport:
        """Notify each user independently, collecting per-user failures."""
        report = DispatchReport()
        for user_id in dict.fromkeys(user_ids):
            try:
                notification = await self._persist(user_id, payload)
            except SQLAlchemyError:
                logger.exception(
                    "notification.dispatch.persist_failed user_id=%s title=%s",
                    user_id,
                    payload.title,
                )
                report.failed_user_ids.append(user_id)
                continue
            report.delivered.append(notification)
            if await self._push(notification):
                report.pushed_user_ids.append(user_id)
        if report.failed_user_ids:
            logger.warning(
                "notification.dispatch.partial delivered=%s failed=%s",
                len(report.delivered),
                len(report.failed_user_ids),
            )
        return report

    async def _active_user_ids(self, role: UserRole | None = None) -> list[UUID]:
        statement = select(User.id).where(col(User.status) == UserStatus.ACTIVE)
        if role is not None:
            statement = statement.where(col(User.role) == UserRole(role))
        async with self._session_maker() as session:
            return list(await session.exec(statement))

    async def notify_role(
        self,
        role: UserRole,
        payload: NotificationPayload,
        *,
        exclude_user_ids: Iterable[UUID] = (),
    ) -> DispatchReport:
        """Notify every active user holding `role`, then broadcast to the role room."""
        excluded = set(exclude_user_ids)
        user_ids = [uid for uid in await self._active_user_ids(role) if uid not in excluded]
        report = await self.notify_users(user_ids, payload)
        await self.hub.publish(
            role_room(role),
            "notification:role",
            {"role": UserRole(role).value, **payload.model_dump(mode="json")},
        )
        return report

    async def notify_all(self, payload: NotificationPayload) -> DispatchReport:
        """Notify every active user, then broadcast once to all connections."""
        report = await self.notify_users(await self._active_user_ids(), payload)
        await self.hub.publish(
            BROADCAST_ROOM,
            "notification:all",
            payload.model_dump(mode="json"),
        )
        return report

    async def publish_event(
        self,
        rooms: str | Iterable[str],
        event: str,
        data: Any = None,
    ) -> int:
        """Push a non-notification event (no stored record) to `rooms`."""
        return await self.hub.publish(rooms, event, data)


def _visible_to(user_id: UUID, now: datetime) -> list[Any]:
    return [
        col(Notification.user_id) == user_id,
        or_(col(Notification.expires_at).is_(None), col(Notification.expires_at) > now),
    ]


def list_statement(
    user_id: UUID,
    *,
    notification_type: NotificationType | None = None,
    is_read: bool | None = None,
    priority: Priority | None = None,
    category: NotificationCategory | None = None,
) -> SelectOfScalar[Notification]:
    """Newest-first, unexpired notifications for `user_id` with optional filters."""
    statement = select(Notification).where(*_visible_to(user_id, utcnow()))
    if notification_type is not None:
        statement = statement.where(col(Notification.type) == notification_type)
    if is_read is not None:
        statement = statement.where(col(Notification.is_read) == is_read)
    if priority is not None:
        statement = statement.where(col(Notification.priority) == priority)
    if category is not None:
        statement = statement.where(col(Notification.category) == category)
    return statement.order_by(col(Notification.created_at).desc())


async def unread_count(session: AsyncSession, user_id: UUID) -> int:
    return await Notification.objects.filter(
        *_visible_to(user_id, utcnow()),
        col(Notification.is_read).is_(False),
    ).count(session)


async def get_for_user(
    session: AsyncSession,
    *,
    user_id: UUID,
    notification_id: UUID,
) -> Notification | None:
    return await Notification.objects.filter(
        col(Notification.id) == notification_id,
        col(Notification.user_id) == user_id,
    ).first(session)


async def get_for_user_or_404(
    session: AsyncSession,
    *,
    user_id: UUID,
    notification_id: UUID,
) -> Notification:
    notification = await get_for_user(session, user_id=user_id, notification_id=notification_id)
    if notification is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification not found",
        )
    return notification


async def mark_read(session: AsyncSession, notification: Notification) -> Notification:
    """Mark `notification` read; already-read rows keep their first `read_at`."""
    if notification.is_read:
        return notification
    now = utcnow()
    notification.is_read = True
    notification.read_at = now
    notification.updated_at = now
    return await crud.save(session, notification)


async def mark_all_read(session: AsyncSession, user_id: UUID) -> int:
    now = utcnow()
    return await crud.update_where(
        session,
        Notification,
        col(Notification.user_id) == user_id,
        col(Notification.is_read).is_(False),
        values={"is_read": True, "read_at": now, "updated_at": now},
    )


async def delete_for_user(
    session: AsyncSession,
    *,
    user_id: UUID,
    notification_id: UUID,
) -> None:
    notification = await get_for_user_or_404(
        session,
        user_id=user_id,
        notification_id=notification_id,
    )
    await session.delete(notification)
    await session.commit()


async def notification_stats(session: AsyncSession, user_id: UUID) -> NotificationStats:
    """Totals for the user's unexpired notifications, split by type and priority."""
    visible = _visible_to(user_id, utcnow())
    stats = NotificationStats()

    read_rows = await session.exec(
        select(col(Notification.is_read), func.count())
        .where(*visible)
        .group_by(col(Notification.is_read)),
    )
    for is_read, count in read_rows:
        stats.total += int(count)
        if is_read:
            stats.read += int(count)
        else:
            stats.unread += int(count)

    type_rows = await session.exec(
        select(col(Notification.type), func.count())
        .where(*visible)
        .group_by(col(Notification.type)),
    )
    stats.by_type = {NotificationType(kind).value: int(count) for kind, count in type_rows}

    priority_rows = await session.exec(
        select(col(Notification.priority), func.count())
        .where(*visible)
        .group_by(col(Notification.priority)),
    )
    stats.by_priority = {Priority(level).value: int(count) for level, count in priority_rows}
    return stats


async def purge_expired_notifications(
    session: AsyncSession,
    *,
    now: datetime | None = None,
) -> int:
    cutoff = now or utcnow()
    removed = await crud.delete_where(
        session,
        Notification,
        col(Notification.expires_at).is_not(None),
        col(Notification.expires_at) <= cutoff,
    )
    if removed:
        logger.info("notification.purge.expired removed=%s", removed)
    return removed
