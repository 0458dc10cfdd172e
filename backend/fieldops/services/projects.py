"""Project lifecycle operations and project visibility rules."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import HTTPException, status
from sqlalchemy import or_
from sqlmodel import col, select

from fieldops.core.enums import NotificationCategory, NotificationType, Priority, ProjectStatus
from fieldops.core.logging import get_logger
from fieldops.core.roles import UserRole
from fieldops.db import crud
from fieldops.models.projects import Project
from fieldops.models.reports import Report
from fieldops.models.tasks import Task, TaskStatusLog
from fieldops.schemas.notifications import NotificationPayload
from fieldops.schemas.projects import ProjectBulkStatusResult, ProjectRead
from fieldops.services.realtime import actor_of, role_room, user_room
from fieldops.services.users import require_active_user_with_role

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from sqlmodel.ext.asyncio.session import AsyncSession
    from sqlmodel.sql.expression import SelectOfScalar

    from fieldops.core.auth import AuthContext
    from fieldops.schemas.projects import ProjectCreate, ProjectUpdate
    from fieldops.services.notifications import NotificationDispatcher

logger = get_logger(__name__)


def projects_statement_for(
    auth: AuthContext,
    *,
    project_status: ProjectStatus | None = None,
    priority: Priority | None = None,
    search: str | None = None,
) -> SelectOfScalar[Project]:
    """Projects visible to the caller, newest first.

    Managers see the projects they run; technicians see projects where they
    hold at least one task.
    """
    statement = select(Project)
    if auth.role == UserRole.MANAGER:
        statement = statement.where(col(Project.assigned_manager_id) == auth.user_id)
    elif auth.role == UserRole.TECHNICIAN:
        assigned = select(Task.project_id).where(col(Task.assigned_to_id) == auth.user_id)
        statement = statement.where(col(Project.id).in_(assigned))
    if project_status is not None:
        statement = statement.where(col(Project.status) == project_status)
    if priority is not None:
        statement = statement.where(col(Project.priority) == priority)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        statement = statement.where(
            or_(
                col(Project.site_name).ilike(pattern),
                col(Project.client_name).ilike(pattern),
                col(Project.location).ilike(pattern),
            ),
        )
    return statement.order_by(col(Project.created_at).desc())


async def get_project_for(
    session: AsyncSession,
    auth: AuthContext,
    project_id: UUID,
) -> Project:
    project = await Project.objects.by_id(project_id).first(session)
    if project is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    if auth.role == UserRole.MANAGER and project.assigned_manager_id != auth.user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    if auth.role == UserRole.TECHNICIAN:
        has_task = await Task.objects.filter_by(
            project_id=project.id,
            assigned_to_id=auth.user_id,
        ).first(session)
        if has_task is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    return project


def apply_human_status(project: Project, value: ProjectStatus) -> None:
    """Set a status chosen by a person; only the engine stamps completion."""
    project.status = value
    if value != ProjectStatus.COMPLETED:
        project.completed_at = None


def _assignment_notice(project: Project) -> NotificationPayload:
    return NotificationPayload(
        title="New project assigned",
        message=f"You are now managing {project.site_name} for {project.client_name}.",
        type=NotificationType.INFO,
        priority=project.priority,
        category=NotificationCategory.GENERAL,
        details={"project_id": str(project.id)},
    )


async def create_project(
    session: AsyncSession,
    *,
    auth: AuthContext,
    payload: ProjectCreate,
    dispatcher: NotificationDispatcher,
) -> Project:
    await require_active_user_with_role(session, payload.assigned_manager_id, UserRole.MANAGER)
    project = await crud.save(session, Project(**payload.model_dump()))
    logger.info(
        "project.created project_id=%s manager_id=%s",
        project.id,
        project.assigned_manager_id,
    )
    await dispatcher.notify_users([project.assigned_manager_id], _assignment_notice(project))
    await dispatcher.publish_event(
        [user_room(project.assigned_manager_id), role_room(UserRole.SUPERADMIN)],
        "project:created",
        {
            "project": ProjectRead.model_validate(project, from_attributes=True).model_dump(
                mode="json",
            ),
            "created_by": actor_of(auth),
        },
    )
    return project


async def update_project(
    session: AsyncSession,
    *,
    auth: AuthContext,
    project: Project,
    payload: ProjectUpdate,
    dispatcher: NotificationDispatcher,
) -> Project:
    """Apply human edits; the derived progress fields are never touched here."""
    updates = {
        key: value
        for key, value in payload.model_dump(exclude_unset=True).items()
        if value is not None
    }
    new_manager_id: UUID | None = updates.get("assigned_manager_id")
    if new_manager_id is not None and new_manager_id != project.assigned_manager_id:
        if auth.role != UserRole.SUPERADMIN:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only a superadmin can reassign a project",
            )
        await require_active_user_with_role(session, new_manager_id, UserRole.MANAGER)
    else:
        new_manager_id = None

    previous_status = ProjectStatus(project.status)
    new_status: ProjectStatus | None = updates.pop("status", None)
    crud.patch(project, updates)
    if new_status is not None:
        apply_human_status(project, new_status)
    project.touch()
    project = await crud.save(session, project)

    data = ProjectRead.model_validate(project, from_attributes=True).model_dump(mode="json")
    audience = [user_room(project.assigned_manager_id), role_room(UserRole.SUPERADMIN)]
    await dispatcher.publish_event(audience, "project:updated", data)
    if project.status != previous_status:
        await _announce_status_set(
            dispatcher,
            auth=auth,
            project=project,
            previous_status=previous_status,
        )
        await dispatcher.notify_role(
            UserRole.SUPERADMIN,
            _status_notice(project, previous_status),
            exclude_user_ids={project.assigned_manager_id, auth.user_id},
        )
    if new_manager_id is not None:
        await dispatcher.notify_users([new_manager_id], _assignment_notice(project))
    return project


def _status_notice(project: Project, previous_status: ProjectStatus) -> NotificationPayload:
    return NotificationPayload(
        title="Project status updated",
        message=f"Project {project.site_name} is now {project.status.value.replace('_', ' ')}.",
        type=(
            NotificationType.WARNING
            if project.status in {ProjectStatus.DELAYED, ProjectStatus.ON_HOLD}
            else NotificationType.INFO
        ),
        category=NotificationCategory.SYSTEM,
        details={
            "project_id": str(project.id),
            "previous_status": previous_status.value,
            "status": project.status.value,
        },
    )


async def _announce_status_set(
    dispatcher: NotificationDispatcher,
    *,
    auth: AuthContext,
    project: Project,
    previous_status: ProjectStatus,
) -> None:
    """Push `project:status_changed` and tell the manager, unless they made the change."""
    logger.info(
        "project.status.set project_id=%s from=%s to=%s by=%s",
        project.id,
        previous_status.value,
        project.status.value,
        auth.user_id,
    )
    await dispatcher.publish_event(
        [user_room(project.assigned_manager_id), role_room(UserRole.SUPERADMIN)],
        "project:status_changed",
        {
            "project": ProjectRead.model_validate(project, from_attributes=True).model_dump(
                mode="json",
            ),
            "previous_status": previous_status.value,
            "changed_by": actor_of(auth),
        },
    )
    if project.assigned_manager_id != auth.user_id:
        await dispatcher.notify_users(
            [project.assigned_manager_id],
            _status_notice(project, previous_status),
        )


async def bulk_set_status(
    session: AsyncSession,
    *,
    auth: AuthContext,
    project_ids: Sequence[UUID],
    new_status: ProjectStatus,
    dispatcher: NotificationDispatcher,
) -> ProjectBulkStatusResult:
    """Move every listed project to `new_status` in one transaction.

    Unknown ids are skipped. Projects already in `new_status` count as matched
    but not modified, and nothing is announced for them.
    """
    projects = await Project.objects.filter(col(Project.id).in_(set(project_ids))).all(session)
    changed: list[tuple[Project, ProjectStatus]] = []
    for project in projects:
        previous_status = ProjectStatus(project.status)
        if previous_status == new_status:
            continue
        apply_human_status(project, new_status)
        project.touch()
        session.add(project)
        changed.append((project, previous_status))
    await session.commit()
    logger.info(
        "project.status.bulk_set status=%s matched=%s modified=%s by=%s",
        new_status.value,
        len(projects),
        len(changed),
        auth.user_id,
    )
    for project, previous_status in changed:
        await _announce_status_set(
            dispatcher,
            auth=auth,
            project=project,
            previous_status=previous_status,
        )
    return ProjectBulkStatusResult(matched_count=len(projects), modified_count=len(changed))


async def delete_project(session: AsyncSession, project: Project) -> None:
    """Delete a project with its tasks, their status logs and reports."""
    task_ids = select(Task.id).where(col(Task.project_id) == project.id)
    await crud.delete_where(session, Report, col(Report.task_id).in_(task_ids), commit=False)
    await crud.delete_where(
        session,
        TaskStatusLog,
        col(TaskStatusLog.task_id).in_(task_ids),
        commit=False,
    )
    await crud.delete_where(session, Task, col(Task.project_id) == project.id, commit=False)
    await session.delete(project)
    await session.commit()
    logger.info("project.deleted project_id=%s", project.id)


async def tasks_of(session: AsyncSession, project_id: UUID) -> list[Task]:
    return await Task.objects.filter_by(project_id=project_id).order_by(
        col(Task.created_at).asc(),
    ).all(session)
