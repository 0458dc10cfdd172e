"""Project status engine: keeps project progress fields in step with its tasks.

Every recompute reads the project's full task set rather than applying a delta,
so repeated runs converge on the same values and a missed trigger is repaired
by the next one.
"""

from __future__ import annotations

import asyncio
import contextlib
import weakref
from dataclasses import dataclass
from typing import TYPE_CHECKING

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import col, select

from fieldops.core.enums import (
    NotificationCategory,
    NotificationType,
    Priority,
    ProjectStatus,
    TaskStatus,
)
from fieldops.core.logging import get_logger
from fieldops.core.roles import UserRole
from fieldops.core.time import utcnow
from fieldops.models.projects import Project
from fieldops.models.tasks import Task
from fieldops.schemas.notifications import NotificationPayload
from fieldops.schemas.projects import ProjectProgressSummary
from fieldops.services.realtime import role_room, user_room

if TYPE_CHECKING:
    from collections.abc import Iterable
    from contextlib import AbstractAsyncContextManager
    from datetime import datetime
    from uuid import UUID

    from sqlmodel.ext.asyncio.session import AsyncSession

    from fieldops.services.notifications import NotificationDispatcher

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProjectProgress:
    tasks_count: int
    completed_tasks: int
    completion_percentage: int
    status: ProjectStatus
    completed_at: datetime | None


def completion_percentage(completed: int, total: int) -> int:
    """`round(100 * completed / total)` with halves rounded up; 0 when empty."""
    if total <= 0:
        return 0
    return (200 * completed + total) // (2 * total)


def compute_project_progress(
    statuses: Iterable[TaskStatus],
    *,
    current_status: ProjectStatus,
    completed_at: datetime | None,
    now: datetime,
) -> ProjectProgress:
    """Derive a project's progress fields from its task statuses.

    First match wins:
    1. every task completed (and at least one task): completed, stamping
       `completed_at` once;
    2. a completed project whose task set is no longer fully completed
       reverts to in_progress, or planning when it has no tasks left;
    3. some tasks completed: planning moves to in_progress, while delayed and
       on_hold are left for a person to clear;
    4. otherwise the status is unchanged.
    """
    status_list = [TaskStatus(value) for value in statuses]
    total = len(status_list)
    completed = sum(1 for value in status_list if value == TaskStatus.COMPLETED)

    if total > 0 and completed == total:
        return ProjectProgress(
            tasks_count=total,
            completed_tasks=completed,
            completion_percentage=100,
            status=ProjectStatus.COMPLETED,
            completed_at=completed_at or now,
        )

    next_status = current_status
    if current_status == ProjectStatus.COMPLETED:
        next_status = ProjectStatus.IN_PROGRESS if total > 0 else ProjectStatus.PLANNING
    elif completed > 0 and current_status == ProjectStatus.PLANNING:
        next_status = ProjectStatus.IN_PROGRESS

    return ProjectProgress(
        tasks_count=total,
        completed_tasks=completed,
        completion_percentage=completion_percentage(completed, total),
        status=next_status,
        completed_at=None,
    )


def _status_label(value: ProjectStatus) -> str:
    return value.value.replace("_", " ")


class ProjectStatusEngine:
    """Recomputes and persists a project's derived fields after task changes.

    With `serialize=True` recomputes for the same project run one at a time in
    this process, so two concurrent task updates cannot persist a stale count
    over a fresher one.
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        *,
        serialize: bool = True,
    ) -> None:
        self.dispatcher = dispatcher
        self.serialize = serialize
        self._locks: weakref.WeakValueDictionary[UUID, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, project_id: UUID) -> AbstractAsyncContextManager[object]:
        if not self.serialize:
            return contextlib.nullcontext()
        lock = self._locks.get(project_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[project_id] = lock
        return lock

    async def propagate_task_change(
        self,
        session: AsyncSession,
        task_id: UUID,
        *,
        actor_id: UUID | None = None,
    ) -> ProjectProgressSummary:
        """Recompute the project owning `task_id`.

        Any task change the caller has added to `session` is committed together
        with the project update, so readers see both or neither.
        """
        task = await Task.objects.by_id(task_id).first(session)
        if task is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
        return await self.recompute_project(session, task.project_id, actor_id=actor_id)

    async def recompute_project(
        self,
        session: AsyncSession,
        project_id: UUID,
        *,
        actor_id: UUID | None = None,
    ) -> ProjectProgressSummary:
        async with self._lock_for(project_id):
            # The session may hold a copy older than a commit made while we waited.
            project = await Project.objects.by_id(project_id).for_update().first(session)
            if project is None:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail="Project not found",
                )
            statuses = await session.exec(
                select(col(Task.status)).where(col(Task.project_id) == project_id),
            )
            previous_status = ProjectStatus(project.status)
            progress = compute_project_progress(
                statuses,
                current_status=previous_status,
                completed_at=project.completed_at,
                now=utcnow(),
            )

            project.tasks_count = progress.tasks_count
            project.completed_tasks = progress.completed_tasks
            project.completion_percentage = progress.completion_percentage
            project.status = progress.status
            project.completed_at = progress.completed_at
            project.touch()
            session.add(project)
            try:
                await session.commit()
            except SQLAlchemyError:
                logger.exception("project.propagation.persist_failed project_id=%s", project_id)
                await session.rollback()
                raise

        summary = ProjectProgressSummary(
            project_id=project.id,
            status=progress.status,
            previous_status=previous_status,
            tasks_count=progress.tasks_count,
            completed_tasks=progress.completed_tasks,
            completion_percentage=progress.completion_percentage,
            completed_at=progress.completed_at,
            status_changed=progress.status != previous_status,
        )
        logger.info(
            "project.propagation.recomputed",
            extra={
                "project_id": str(project.id),
                "status": progress.status.value,
                "previous_status": previous_status.value,
                "completion_percentage": progress.completion_percentage,
            },
        )

        audience = [user_room(project.assigned_manager_id), role_room(UserRole.SUPERADMIN)]
        await self.dispatcher.publish_event(
            audience,
            "project:updated",
            summary.model_dump(mode="json"),
        )
        if summary.status_changed:
            await self._announce_status_change(project, summary, actor_id=actor_id)
        return summary

    async def _announce_status_change(
        self,
        project: Project,
        summary: ProjectProgressSummary,
        *,
        actor_id: UUID | None,
    ) -> None:
        payload = NotificationPayload(
            title="Project status updated",
            message=(
                f"Project {project.site_name} ({project.client_name}) moved from "
                f"{_status_label(summary.previous_status)} to {_status_label(summary.status)}."
            ),
            type=(
                NotificationType.SUCCESS
                if summary.status == ProjectStatus.COMPLETED
                else NotificationType.INFO
            ),
            priority=Priority.MEDIUM,
            category=NotificationCategory.SYSTEM,
            details={
                "project_id": str(project.id),
                "previous_status": summary.previous_status.value,
                "status": summary.status.value,
                "completion_percentage": summary.completion_percentage,
                "updated_by": str(actor_id) if actor_id else None,
            },
        )
        await self.dispatcher.notify_users([project.assigned_manager_id], payload)
        await self.dispatcher.notify_role(
            UserRole.SUPERADMIN,
            payload,
            exclude_user_ids=[project.assigned_manager_id],
        )
        await self.dispatcher.publish_event(
            [user_room(project.assigned_manager_id), role_room(UserRole.SUPERADMIN)],
            "project:status_changed",
            summary.model_dump(mode="json"),
        )
