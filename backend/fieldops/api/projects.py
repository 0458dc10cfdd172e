"""Project endpoints: CRUD, task listing and explicit progress recompute."""

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
    SUPERADMIN_DEP,
)
from fieldops.core.enums import Priority, parse_project_status
from fieldops.core.roles import UserRole
from fieldops.db.pagination import paginate
from fieldops.schemas.common import OkResponse
from fieldops.schemas.pagination import DefaultLimitOffsetPage
from fieldops.schemas.projects import (
    ProjectBulkStatusResult,
    ProjectBulkStatusUpdate,
    ProjectCreate,
    ProjectProgressSummary,
    ProjectRead,
    ProjectUpdate,
)
from fieldops.schemas.tasks import TaskRead
from fieldops.services import projects as project_service

if TYPE_CHECKING:
    from collections.abc import Sequence

    from fastapi_pagination.limit_offset import LimitOffsetPage
    from sqlmodel.ext.asyncio.session import AsyncSession

    from fieldops.core.auth import AuthContext
    from fieldops.core.enums import ProjectStatus
    from fieldops.services.notifications import NotificationDispatcher
    from fieldops.services.project_status import ProjectStatusEngine

router = APIRouter(prefix="/projects", tags=["projects"])
STATUS_QUERY = Query(default=None, alias="status")
PRIORITY_QUERY = Query(default=None)
SEARCH_QUERY = Query(default=None, max_length=100)


def _to_read(items: Sequence[Any]) -> Sequence[Any]:
    return [ProjectRead.model_validate(item, from_attributes=True) for item in items]


def _status_filter(value: str | None) -> ProjectStatus | None:
    if value is None or not value.strip():
        return None
    try:
        return parse_project_status(value)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc


@router.get("", response_model=DefaultLimitOffsetPage[ProjectRead])
async def list_projects(
    status_filter: str | None = STATUS_QUERY,
    priority: Priority | None = PRIORITY_QUERY,
    search: str | None = SEARCH_QUERY,
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = AUTH_DEP,
) -> LimitOffsetPage[ProjectRead]:
    """List projects visible to the caller."""
    statement = project_service.projects_statement_for(
        auth,
        project_status=_status_filter(status_filter),
        priority=priority,
        search=search,
    )
    return await paginate(session, statement, transformer=_to_read)


@router.post("", response_model=ProjectRead, status_code=status.HTTP_201_CREATED)
async def create_project(
    payload: ProjectCreate,
    session: AsyncSession = SESSION_DEP,
    dispatcher: NotificationDispatcher = DISPATCHER_DEP,
    auth: AuthContext = SUPERADMIN_DEP,
) -> ProjectRead:
    project = await project_service.create_project(
        session,
        auth=auth,
        payload=payload,
        dispatcher=dispatcher,
    )
    return ProjectRead.model_validate(project, from_attributes=True)


@router.patch("/bulk-status", response_model=ProjectBulkStatusResult)
async def bulk_update_project_status(
    payload: ProjectBulkStatusUpdate,
    session: AsyncSession = SESSION_DEP,
    dispatcher: NotificationDispatcher = DISPATCHER_DEP,
    auth: AuthContext = SUPERADMIN_DEP,
) -> ProjectBulkStatusResult:
    """Set one human status on many projects at once."""
    return await project_service.bulk_set_status(
        session,
        auth=auth,
        project_ids=payload.project_ids,
        new_status=payload.status,
        dispatcher=dispatcher,
    )


@router.get("/{project_id}", response_model=ProjectRead)
async def get_project(
    project_id: UUID,
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = AUTH_DEP,
) -> ProjectRead:
    project = await project_service.get_project_for(session, auth, project_id)
    return ProjectRead.model_validate(project, from_attributes=True)


@router.patch("/{project_id}", response_model=ProjectRead)
async def update_project(
    project_id: UUID,
    payload: ProjectUpdate,
    session: AsyncSession = SESSION_DEP,
    dispatcher: NotificationDispatcher = DISPATCHER_DEP,
    auth: AuthContext = MANAGER_DEP,
) -> ProjectRead:
    """Edit project details; progress fields are derived and not accepted."""
    project = await project_service.get_project_for(session, auth, project_id)
    project = await project_service.update_project(
        session,
        auth=auth,
        project=project,
        payload=payload,
        dispatcher=dispatcher,
    )
    return ProjectRead.model_validate(project, from_attributes=True)


@router.delete("/{project_id}", response_model=OkResponse)
async def delete_project(
    project_id: UUID,
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = SUPERADMIN_DEP,
) -> OkResponse:
    """Delete a project together with its tasks and their history."""
    project = await project_service.get_project_for(session, auth, project_id)
    await project_service.delete_project(session, project)
    return OkResponse()


@router.get("/{project_id}/tasks", response_model=list[TaskRead])
async def list_project_tasks(
    project_id: UUID,
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = AUTH_DEP,
) -> list[TaskRead]:
    project = await project_service.get_project_for(session, auth, project_id)
    tasks = await project_service.tasks_of(session, project.id)
    if auth.role == UserRole.TECHNICIAN:
        tasks = [task for task in tasks if task.assigned_to_id == auth.user_id]
    return [TaskRead.model_validate(task, from_attributes=True) for task in tasks]


@router.post("/{project_id}/recompute", response_model=ProjectProgressSummary)
async def recompute_project(
    project_id: UUID,
    session: AsyncSession = SESSION_DEP,
    engine: ProjectStatusEngine = ENGINE_DEP,
    auth: AuthContext = MANAGER_DEP,
) -> ProjectProgressSummary:
    """Rebuild the project's progress fields from its current tasks."""
    project = await project_service.get_project_for(session, auth, project_id)
    return await engine.recompute_project(session, project.id, actor_id=auth.user_id)
