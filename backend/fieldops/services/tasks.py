"""Task assignment, status and progress changes, and task queries.

Every status or progress change goes through `_commit_task_change`, which
flushes the task and its status log entry and then lets the project status
engine commit them together with the recomputed project fields.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import HTTPException, status
from sqlalchemy import or_
from sqlmodel import col, select

from fieldops.core.enums import (
    NotificationCategory,
    NotificationType,
    Priority,
    TaskStatus,
)
from fieldops.core.logging import get_logger
from fieldops.core.roles import UserRole
from fieldops.core.time import utcnow
from fieldops.db import crud
from fieldops.models.projects import Project
from fieldops.models.tasks import Task, TaskStatusLog
from fieldops.schemas.notifications import NotificationPayload
from fieldops.schemas.tasks import TaskRead, TaskStats
from fieldops.services.realtime import actor_of, role_room, user_room
from fieldops.services.users import require_active_user_with_role

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from sqlmodel.ext.asyncio.session import AsyncSession
    from sqlmodel.sql.expression import SelectOfScalar

    from fieldops.core.auth import AuthContext
    from fieldops.schemas.projects import ProjectProgressSummary
    from fieldops.schemas.tasks import TaskCreate, TaskUpdate
    from fieldops.services.notifications import NotificationDispatcher
    from fieldops.services.project_status import ProjectStatusEngine

logger = get_logger(__name__)

DEFAULT_STARTED_PROGRESS = 25
DELAY_REASON_REQUIRED = "Delay reason is required when reporting delay."


def normalize_progress(task_status: TaskStatus, progress: int) -> int:
    """Keep `progress` consistent with `task_status`.

    assigned is always 0 and completed always 100; the working states sit
    strictly between, starting at 25 when no progress was recorded yet.
    """
    if task_status == TaskStatus.ASSIGNED:
        return 0
    if task_status == TaskStatus.COMPLETED:
        return 100
    if progress <= 0:
        return DEFAULT_STARTED_PROGRESS
    return min(progress, 99)


def status_for_progress(current: TaskStatus, progress: int) -> TaskStatus:
    """Status implied by a direct progress update."""
    if progress <= 0:
        return TaskStatus.ASSIGNED
    if progress >= 100:
        return TaskStatus.COMPLETED
    if current in {TaskStatus.ASSIGNED, TaskStatus.COMPLETED}:
        return TaskStatus.IN_PROGRESS
    return current


def apply_status(task: Task, new_status: TaskStatus, *, now: datetime) -> None:
    """Set `new_status` and the fields that depend on it."""
    task.status = new_status
    task.progress = normalize_progress(new_status, task.progress)
    if new_status in {TaskStatus.IN_PROGRESS, TaskStatus.DELAYED, TaskStatus.COMPLETED}:
        task.started_at = task.started_at or now
    if new_status == TaskStatus.COMPLETED:
        task.completed_at = now
    else:
        task.completed_at = None
    if new_status != TaskStatus.DELAYED:
        task.delay_reason = None
    task.updated_at = now


def can_modify_task(auth: AuthContext, task: Task, project: Project) -> bool:
    if auth.role == UserRole.SUPERADMIN:
        return True
    return auth.user_id in {task.assigned_to_id, task.assigned_by_id, project.assigned_manager_id}


def tasks_statement_for(
    auth: AuthContext,
    *,
    task_status: TaskStatus | None = None,
    project_id: UUID | None = None,
    priority: Priority | None = None,
) -> SelectOfScalar[Task]:
    """Tasks visible to the caller, newest first."""
    statement = select(Task)
    if auth.role == UserRole.TECHNICIAN:
        statement = statement.where(col(Task.assigned_to_id) == auth.user_id)
    elif auth.role == UserRole.MANAGER:
        managed_projects = select(Project.id).where(
            col(Project.assigned_manager_id) == auth.user_id,
        )
        statement = statement.where(
            or_(
                col(Task.assigned_by_id) == auth.user_id,
                col(Task.project_id).in_(managed_projects),
            ),
        )
    if task_status is not None:
        statement = statement.where(col(Task.status) == task_status)
    if project_id is not None:
        statement = statement.where(col(Task.project_id) == project_id)
    if priority is not None:
        statement = statement.where(col(Task.priority) == priority)
    return statement.order_by(col(Task.created_at).desc())


async def get_task_for(
    session: AsyncSession,
    auth: AuthContext,
    task_id: UUID,
) -> tuple[Task, Project]:
    """Load a task and its project, hiding tasks the caller may not see."""
    task = await Task.objects.by_id(task_id).first(session)
    project = (
        await Project.objects.by_id(task.project_id).first(session) if task is not None else None
    )
    if task is None or project is None or not can_modify_task(auth, task, project):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Task not found or access denied",
        )
    return task, project


def serialize_task(task: Task) -> dict[str, Any]:
    return TaskRead.model_validate(task, from_attributes=True).model_dump(mode="json")


async def create_task(
    session: AsyncSession,
    *,
    auth: AuthContext,
    payload: TaskCreate,
    engine: ProjectStatusEngine,
    dispatcher: NotificationDispatcher,
) -> Task:
    """Assign a new task on a project the caller manages."""
    project = await Project.objects.by_id(payload.project_id).first(session)
    if project is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    if auth.role != UserRole.SUPERADMIN and project.assigned_manager_id != auth.user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized for this project",
        )
    technician = await require_active_user_with_role(
        session,
        payload.assigned_to_id,
        UserRole.TECHNICIAN,
    )

    task = Task(
        **payload.model_dump(),
        assigned_by_id=auth.user_id,
        status=TaskStatus.ASSIGNED,
        progress=0,
    )
    session.add(task)
    await session.flush()
    session.add(
        TaskStatusLog(
            task_id=task.id,
            status=TaskStatus.ASSIGNED,
            updated_by_id=auth.user_id,
            comment="Task assigned",
        ),
    )
    await session.flush()
    await engine.recompute_project(session, project.id, actor_id=auth.user_id)
    logger.info(
        "task.created task_id=%s project_id=%s assigned_to=%s",
        task.id,
        project.id,
        technician.id,
    )

    await dispatcher.notify_users(
        [technician.id],
        NotificationPayload(
            title="New task assigned",
            message=f"You have been assigned '{task.title}' at {project.site_name}.",
            type=NotificationType.INFO,
            priority=task.priority,
            category=NotificationCategory.TASK,
            details={"task_id": str(task.id), "project_id": str(project.id)},
        ),
    )
    event = {
        "task": serialize_task(task),
        "assigned_to": {"id": str(technician.id), "name": technician.name},
        "assigned_by": {"id": str(auth.user_id), "name": auth.user.name},
    }
    await dispatcher.publish_event(
        [user_room(technician.id), role_room(UserRole.MANAGER), role_room(UserRole.SUPERADMIN)],
        "task:assigned",
        event,
    )
    return task


async def update_task(
    session: AsyncSession,
    *,
    auth: AuthContext,
    task: Task,
    project: Project,
    payload: TaskUpdate,
    dispatcher: NotificationDispatcher,
) -> Task:
    """Manager edits of non-derived fields; reassignment notifies the new assignee."""
    if auth.role == UserRole.TECHNICIAN or not can_modify_task(auth, task, project):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the task's manager may edit it",
        )
    updates = payload.model_dump(exclude_unset=True)
    reassigned_to: UUID | None = updates.get("assigned_to_id")
    if reassigned_to is not None and reassigned_to != task.assigned_to_id:
        await require_active_user_with_role(session, reassigned_to, UserRole.TECHNICIAN)
    else:
        reassigned_to = None

    crud.patch(task, {key: value for key, value in updates.items() if value is not None})
    task.touch()
    task = await crud.save(session, task)

    if reassigned_to is not None:
        await dispatcher.notify_users(
            [reassigned_to],
            NotificationPayload(
                title="New task assigned",
                message=f"You have been assigned '{task.title}' at {project.site_name}.",
                category=NotificationCategory.TASK,
                priority=task.priority,
                details={"task_id": str(task.id), "project_id": str(project.id)},
            ),
        )
        await dispatcher.publish_event(
            user_room(reassigned_to),
            "task:assigned",
            {"task": serialize_task(task)},
        )
    return task


async def _commit_task_change(
    session: AsyncSession,
    *,
    auth: AuthContext,
    task: Task,
    project: Project,
    previous_status: TaskStatus,
    comment: str | None,
    engine: ProjectStatusEngine,
    dispatcher: NotificationDispatcher,
    notify_on_status_update: bool,
    always_log: bool = False,
) -> ProjectProgressSummary:
    session.add(task)
    if always_log or task.status != previous_status:
        session.add(
            TaskStatusLog(
                task_id=task.id,
                status=task.status,
                updated_by_id=auth.user_id,
                comment=comment,
                delay_reason=task.delay_reason,
            ),
        )
    await session.flush()
    summary = await engine.propagate_task_change(session, task.id, actor_id=auth.user_id)
    logger.info(
        "task.status.changed task_id=%s from=%s to=%s progress=%s",
        task.id,
        previous_status.value,
        task.status.value,
        task.progress,
    )
    if task.status != previous_status:
        await _announce_status_change(
            auth=auth,
            task=task,
            project=project,
            previous_status=previous_status,
            summary=summary,
            dispatcher=dispatcher,
            notify=notify_on_status_update,
        )
    return summary


async def _announce_status_change(
    *,
    auth: AuthContext,
    task: Task,
    project: Project,
    previous_status: TaskStatus,
    summary: ProjectProgressSummary,
    dispatcher: NotificationDispatcher,
    notify: bool,
) -> None:
    managers = {task.assigned_by_id, project.assigned_manager_id}
    audience = [
        *(user_room(manager_id) for manager_id in managers),
        role_room(UserRole.SUPERADMIN),
    ]
    await dispatcher.publish_event(
        audience,
        "task:status_changed",
        {
            "task": serialize_task(task),
            "project": summary.model_dump(mode="json"),
            "previous_status": previous_status.value,
            "delay_reason": task.delay_reason,
            "updated_by": str(auth.user_id),
        },
    )
    if task.status == TaskStatus.COMPLETED:
        await dispatcher.publish_event(
            audience,
            "task:completed",
            {
                "task": serialize_task(task),
                "project": summary.model_dump(mode="json"),
                "completed_by": actor_of(auth),
            },
        )
    if not notify:
        return

    label = task.status.value.replace("_", " ")
    message = f"{auth.user.name} marked '{task.title}' as {label}."
    if task.status == TaskStatus.DELAYED and task.delay_reason:
        message = f"{message} Reason: {task.delay_reason}"
    payload = NotificationPayload(
        title="Task status updated",
        message=message[:1000],
        type={
            TaskStatus.DELAYED: NotificationType.WARNING,
            TaskStatus.COMPLETED: NotificationType.SUCCESS,
        }.get(task.status, NotificationType.INFO),
        priority=Priority.HIGH if task.status == TaskStatus.DELAYED else Priority.MEDIUM,
        category=NotificationCategory.TASK,
        details={
            "task_id": str(task.id),
            "project_id": str(project.id),
            "previous_status": previous_status.value,
            "status": task.status.value,
        },
    )
    recipients = managers - {auth.user_id}
    await dispatcher.notify_users(recipients, payload)
    await dispatcher.notify_role(
        UserRole.SUPERADMIN,
        payload,
        exclude_user_ids=recipients | {auth.user_id},
    )


async def change_task_status(
    session: AsyncSession,
    *,
    auth: AuthContext,
    task: Task,
    project: Project,
    new_status: TaskStatus,
    comment: str | None = None,
    delay_reason: str | None = None,
    engine: ProjectStatusEngine,
    dispatcher: NotificationDispatcher,
    notify_on_status_update: bool = True,
) -> tuple[Task, ProjectProgressSummary]:
    """Move a task to `new_status` and propagate to its project.

    A delayed status without a non-blank reason is rejected before anything
    is written or dispatched.
    """
    if not can_modify_task(auth, task, project):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
    reason = (delay_reason or "").strip()
    if new_status == TaskStatus.DELAYED and not reason:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=DELAY_REASON_REQUIRED)

    previous_status = TaskStatus(task.status)
    apply_status(task, new_status, now=utcnow())
    if new_status == TaskStatus.DELAYED:
        task.delay_reason = reason
    summary = await _commit_task_change(
        session,
        auth=auth,
        task=task,
        project=project,
        previous_status=previous_status,
        comment=comment,
        engine=engine,
        dispatcher=dispatcher,
        notify_on_status_update=notify_on_status_update,
        always_log=True,
    )
    return task, summary


async def update_task_progress(
    session: AsyncSession,
    *,
    auth: AuthContext,
    task: Task,
    project: Project,
    progress: int,
    comment: str | None = None,
    engine: ProjectStatusEngine,
    dispatcher: NotificationDispatcher,
    notify_on_status_update: bool = True,
) -> tuple[Task, ProjectProgressSummary]:
    """Set progress directly; the status follows (0 assigned, 100 completed)."""
    if not can_modify_task(auth, task, project):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
    clamped = max(0, min(100, progress))
    previous_status = TaskStatus(task.status)
    task.progress = clamped
    apply_status(task, status_for_progress(previous_status, clamped), now=utcnow())
    summary = await _commit_task_change(
        session,
        auth=auth,
        task=task,
        project=project,
        previous_status=previous_status,
        comment=comment,
        engine=engine,
        dispatcher=dispatcher,
        notify_on_status_update=notify_on_status_update,
    )
    return task, summary


async def status_log_for(session: AsyncSession, task_id: UUID) -> list[TaskStatusLog]:
    return await TaskStatusLog.objects.filter_by(task_id=task_id).order_by(
        col(TaskStatusLog.created_at).asc(),
    ).all(session)


async def task_stats_for(session: AsyncSession, auth: AuthContext) -> TaskStats:
    tasks = list(await session.exec(tasks_statement_for(auth)))
    stats = TaskStats(total=len(tasks))
    for task in tasks:
        key = TaskStatus(task.status).value
        setattr(stats, key, getattr(stats, key) + 1)
        if task.is_overdue:
            stats.overdue += 1
    return stats
