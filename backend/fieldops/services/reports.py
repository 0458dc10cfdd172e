"""Technician work reports."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import HTTPException, status
from sqlmodel import col, select

from fieldops.core.enums import NotificationCategory, NotificationType
from fieldops.core.logging import get_logger
from fieldops.core.roles import UserRole
from fieldops.db import crud
from fieldops.models.projects import Project
from fieldops.models.reports import Report
from fieldops.models.tasks import Task
from fieldops.schemas.notifications import NotificationPayload
from fieldops.schemas.reports import ReportRead
from fieldops.services.realtime import actor_of, role_room, user_room

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession
    from sqlmodel.sql.expression import SelectOfScalar

    from fieldops.core.auth import AuthContext
    from fieldops.schemas.reports import ReportCreate
    from fieldops.services.notifications import NotificationDispatcher

logger = get_logger(__name__)


async def submit_report(
    session: AsyncSession,
    *,
    auth: AuthContext,
    payload: ReportCreate,
    dispatcher: NotificationDispatcher,
) -> Report:
    """File a report on one of the technician's own tasks and tell the manager."""
    task = await Task.objects.by_id(payload.task_id).first(session)
    if task is None or task.assigned_to_id != auth.user_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Task not found or access denied",
        )
    report = await crud.save(
        session,
        Report(
            task_id=task.id,
            technician_id=auth.user_id,
            manager_id=task.assigned_by_id,
            content=payload.content,
        ),
    )
    logger.info("report.submitted report_id=%s task_id=%s", report.id, task.id)
    await dispatcher.notify_users(
        [task.assigned_by_id],
        NotificationPayload(
            title="New task report",
            message=f"{auth.user.name} submitted a report for '{task.title}'.",
            type=NotificationType.INFO,
            category=NotificationCategory.TASK,
            details={"report_id": str(report.id), "task_id": str(task.id)},
        ),
    )
    await dispatcher.publish_event(
        [user_room(task.assigned_by_id), role_room(UserRole.SUPERADMIN)],
        "report:submitted",
        {
            "report": ReportRead.model_validate(report, from_attributes=True).model_dump(
                mode="json",
            ),
            "task_id": str(task.id),
            "submitted_by": actor_of(auth),
        },
    )
    return report


def reports_statement_for(auth: AuthContext) -> SelectOfScalar[Report]:
    statement = select(Report)
    if auth.role == UserRole.TECHNICIAN:
        statement = statement.where(col(Report.technician_id) == auth.user_id)
    elif auth.role == UserRole.MANAGER:
        managed_tasks = select(Task.id).where(
            col(Task.project_id).in_(
                select(Project.id).where(col(Project.assigned_manager_id) == auth.user_id),
            ),
        )
        statement = statement.where(
            (col(Report.manager_id) == auth.user_id) | col(Report.task_id).in_(managed_tasks),
        )
    return statement.order_by(col(Report.submitted_at).desc())
