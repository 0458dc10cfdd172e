"""Notification inbox endpoints and manager/superadmin broadcast."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from fieldops.api.deps import AUTH_DEP, DISPATCHER_DEP, MANAGER_DEP, SESSION_DEP
from fieldops.core.enums import NotificationCategory, NotificationType, Priority
from fieldops.core.roles import UserRole
from fieldops.db.pagination import paginate
from fieldops.models.users import User
from fieldops.schemas.common import OkResponse
from fieldops.schemas.notifications import (
    MarkAllReadResult,
    NotificationDispatchResult,
    NotificationPayload,
    NotificationRead,
    NotificationSend,
    NotificationStats,
    UnreadCount,
)
from fieldops.schemas.pagination import DefaultLimitOffsetPage
from fieldops.services import notifications as notification_service

if TYPE_CHECKING:
    from collections.abc import Sequence

    from fastapi_pagination.limit_offset import LimitOffsetPage
    from sqlmodel.ext.asyncio.session import AsyncSession

    from fieldops.core.auth import AuthContext
    from fieldops.services.notifications import DispatchReport, NotificationDispatcher

router = APIRouter(prefix="/notifications", tags=["notifications"])
TYPE_QUERY = Query(default=None, alias="type")
READ_QUERY = Query(default=None)
PRIORITY_QUERY = Query(default=None)
CATEGORY_QUERY = Query(default=None)


def _to_read(items: Sequence[Any]) -> Sequence[Any]:
    return [NotificationRead.model_validate(item, from_attributes=True) for item in items]


def _dispatch_result(report: DispatchReport) -> NotificationDispatchResult:
    return NotificationDispatchResult(
        delivered_user_ids=report.delivered_user_ids,
        failed_user_ids=report.failed_user_ids,
        pushed_user_ids=report.pushed_user_ids,
    )


@router.get("", response_model=DefaultLimitOffsetPage[NotificationRead])
async def list_notifications(
    notification_type: NotificationType | None = TYPE_QUERY,
    is_read: bool | None = READ_QUERY,
    priority: Priority | None = PRIORITY_QUERY,
    category: NotificationCategory | None = CATEGORY_QUERY,
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = AUTH_DEP,
) -> LimitOffsetPage[NotificationRead]:
    """List the caller's unexpired notifications, newest first."""
    statement = notification_service.list_statement(
        auth.user_id,
        notification_type=notification_type,
        is_read=is_read,
        priority=priority,
        category=category,
    )
    return await paginate(session, statement, transformer=_to_read)


@router.get("/stats", response_model=NotificationStats)
async def notification_stats(
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = AUTH_DEP,
) -> NotificationStats:
    return await notification_service.notification_stats(session, auth.user_id)


@router.get("/unread-count", response_model=UnreadCount)
async def unread_count(
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = AUTH_DEP,
) -> UnreadCount:
    return UnreadCount(unread=await notification_service.unread_count(session, auth.user_id))


@router.put("/read-all", response_model=MarkAllReadResult)
async def mark_all_read(
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = AUTH_DEP,
) -> MarkAllReadResult:
    updated = await notification_service.mark_all_read(session, auth.user_id)
    return MarkAllReadResult(updated=updated)


@router.put("/{notification_id}/read", response_model=NotificationRead)
async def mark_read(
    notification_id: UUID,
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = AUTH_DEP,
) -> NotificationRead:
    notification = await notification_service.get_for_user_or_404(
        session,
        user_id=auth.user_id,
        notification_id=notification_id,
    )
    notification = await notification_service.mark_read(session, notification)
    return NotificationRead.model_validate(notification, from_attributes=True)


@router.delete("/{notification_id}", response_model=OkResponse)
async def delete_notification(
    notification_id: UUID,
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = AUTH_DEP,
) -> OkResponse:
    await notification_service.delete_for_user(
        session,
        user_id=auth.user_id,
        notification_id=notification_id,
    )
    return OkResponse()


@router.post(
    "",
    response_model=NotificationDispatchResult,
    status_code=status.HTTP_201_CREATED,
)
async def send_notification(
    payload: NotificationSend,
    session: AsyncSession = SESSION_DEP,
    dispatcher: NotificationDispatcher = DISPATCHER_DEP,
    auth: AuthContext = MANAGER_DEP,
) -> NotificationDispatchResult:
    """Notify one user, everyone holding a role, or every active user.

    Managers may only address individual users or the technician role.
    """
    content = NotificationPayload.model_validate(
        payload.model_dump(include=set(NotificationPayload.model_fields)),
    )
    is_superadmin = auth.role == UserRole.SUPERADMIN
    if payload.target == "all":
        if not is_superadmin:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Superadmin only")
        return _dispatch_result(await dispatcher.notify_all(content))
    if payload.target == "role" and payload.role is not None:
        if not is_superadmin and payload.role != UserRole.TECHNICIAN:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Managers may only notify technicians",
            )
        return _dispatch_result(await dispatcher.notify_role(payload.role, content))

    target = (
        await User.objects.by_id(payload.user_id).first(session)
        if payload.user_id is not None
        else None
    )
    if target is None or not target.is_active:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return _dispatch_result(await dispatcher.notify_users([target.id], content))
