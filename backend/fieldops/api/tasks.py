"""Task endpoints: assignment, edits, status and progress updates."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status

from fieldops.api.deps import (
    AUTH_DEP,
    DISPATCHER_DEP,
    ENGINE_DEP,
    MANAGER_DEP,
    SESSION_DEP,
    TASK_DEP,
)
from fieldops.core.config import settings
from fieldops.core.enums import Priority, parse_task_status
from fieldops.db.pagination import paginate
from fieldops.models.projects import Project
from fieldops.models.tasks import Task
from fieldops.schemas.pagination import DefaultLimitOffsetPage
from fieldops.schemas.tasks import (
    TaskCreate,
    TaskProgressUpdate,
    TaskRead,
    TaskStats,
    TaskStatusLogRead,
    TaskStatusUpdate,
    TaskUpdate,
)
from fieldops.services import tasks as task_service

if TYPE_CHECKING:
    from collections.abc import Sequence

    from fastapi_pagination.limit_offset import LimitOffsetPage
    from sqlmodel.ext.asyncio.session import AsyncSession

    from fieldops.core.auth import AuthContext
    from fieldops.core.enums import TaskStatus
    from fieldops.services.notifications import NotificationDispatcher
    from fieldops.services.project_status import ProjectStatusEngine

router = APIRouter(prefix="/tasks", tags=["tasks"])
STATUS_QUERY = Query(default=None, alias="status")
PROJECT_QUERY = Query(default=None)
PRIORITY_QUERY = Query(default=None)


def _to_read(items: Sequence[Any]) -> Sequence[Any]:
    return [TaskRead.model_validate(item, from_attributes=True) for item in items]


def _status_filter(value: str | None) -> TaskStatus | None:
    if value is None or not value.strip():
        return None
    try:
        return parse_task_status(value)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc


@router.get("", response_model=DefaultLimitOffsetPage[TaskRead])
async def list_tasks(
    status_filter: str | None = STATUS_QUERY,
    project_id: UUID | None = PROJECT_QUERY,
    priority: Priority | None = PRIORITY_QUERY,
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = AUTH_DEP,
) -> LimitOffsetPage[TaskRead]:
    """List tasks scoped to the caller's role."""
    statement = task_service.tasks_statement_for(
        auth,
        task_status=_status_filter(status_filter),
        project_id=project_id,
        priority=priority,
    )
    return await paginate(session, statement, transformer=_to_read)


@router.get("/stats", response_model=TaskStats)
async def task_stats(
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = AUTH_DEP,
) -> TaskStats:
    return await task_service.task_stats_for(session, auth)


@router.post("", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
async def create_task(
    payload: TaskCreate,
    session: AsyncSession = SESSION_DEP,
    engine: ProjectStatusEngine = ENGINE_DEP,
    dispatcher: NotificationDispatcher = DISPATCHER_DEP,
    auth: AuthContext = MANAGER_DEP,
) -> TaskRead:
    """Assign a new task to a technician on a managed project."""
    task = await task_service.create_task(
        session,
        auth=auth,
        payload=payload,
        engine=engine,
        dispatcher=dispatcher,
    )
    return TaskRead.model_validate(task, from_attributes=True)


@router.get("/{task_id}", response_model=TaskRead)
async def get_task(found: tuple[Task, Project] = TASK_DEP) -> TaskRead:
    task, _project = found
    return TaskRead.model_validate(task, from_attributes=True)


@router.patch("/{task_id}", response_model=TaskRead)
async def update_task(
    payload: TaskUpdate,
    found: tuple[Task, Project] = TASK_DEP,
    session: AsyncSession = SESSION_DEP,
    dispatcher: NotificationDispatcher = DISPATCHER_DEP,
    auth: AuthContext = MANAGER_DEP,
) -> TaskRead:
    task, project = found
    task = await task_service.update_task(
        session,
        auth=auth,
        task=task,
        project=project,
        payload=payload,
        dispatcher=dispatcher,
    )
    return TaskRead.model_validate(task, from_attributes=True)


@router.put("/{task_id}/status", response_model=TaskRead)
async def update_task_status(
    payload: TaskStatusUpdate,
    found: tuple[Task, Project] = TASK_DEP,
    session: AsyncSession = SESSION_DEP,
    engine: ProjectStatusEngine = ENGINE_DEP,
    dispatcher: NotificationDispatcher = DISPATCHER_DEP,
    auth: AuthContext = AUTH_DEP,
) -> TaskRead:
    """Change a task's status; `delayed` requires `delay_reason`."""
    task, project = found
    task, _summary = await task_service.change_task_status(
        session,
        auth=auth,
        task=task,
        project=project,
        new_status=payload.status,
        comment=payload.comment,
        delay_reason=payload.delay_reason,
        engine=engine,
        dispatcher=dispatcher,
        notify_on_status_update=settings.notify_on_task_status_update,
    )
    return TaskRead.model_validate(task, from_attributes=True)


@router.put("/{task_id}/progress", response_model=TaskRead)
async def update_task_progress(
    payload: TaskProgressUpdate,
    found: tuple[Task, Project] = TASK_DEP,
    session: AsyncSession = SESSION_DEP,
    engine: ProjectStatusEngine = ENGINE_DEP,
    dispatcher: NotificationDispatcher = DISPATCHER_DEP,
    auth: AuthContext = AUTH_DEP,
) -> TaskRead:
    task, project = found
    task, _summary = await task_service.update_task_progress(
        session,
        auth=auth,
        task=task,
        project=project,
        progress=payload.progress,
        comment=payload.comment,
        engine=engine,
        dispatcher=dispatcher,
        notify_on_status_update=settings.notify_on_task_status_update,
    )
    return TaskRead.model_validate(task, from_attributes=True)


@router.get("/{task_id}/status-log", response_model=list[TaskStatusLogRead])
async def task_status_log(
    found: tuple[Task, Project] = TASK_DEP,
    session: AsyncSession = SESSION_DEP,
) -> list[TaskStatusLogRead]:
    task, _project = found
    entries = await task_service.status_log_for(session, task.id)
    return [TaskStatusLogRead.model_validate(entry, from_attributes=True) for entry in entries]
