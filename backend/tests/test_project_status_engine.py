# ruff: noqa: INP001, S101
"""Project progress derivation and its propagation after task changes."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import UUID, uuid4

import pytest
from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from fieldops.core.enums import ProjectStatus, TaskStatus
from fieldops.core.roles import UserRole
from fieldops.db import crud
from fieldops.models.notifications import Notification
from fieldops.models.projects import Project
from fieldops.models.tasks import Task
from fieldops.models.users import User
from fieldops.services.notifications import NotificationDispatcher
from fieldops.services.presence import PresenceRegistry
from fieldops.services.project_status import (
    ProjectStatusEngine,
    completion_percentage,
    compute_project_progress,
)
from fieldops.services.realtime import RealtimeHub

NOW = datetime(2026, 3, 1, 12, 0, 0)
EARLIER = datetime(2026, 2, 1, 8, 0, 0)


class _FakeConnection:
    def __init__(self, user_id: UUID, role: UserRole) -> None:
        self.id = uuid4().hex
        self.user_id = user_id
        self.role = role
        self.sent: list[tuple[str, Any]] = []

    async def send(self, event: str, data: Any = None) -> None:
        self.sent.append((event, data))


@pytest.mark.parametrize(
    ("completed", "total", "expected"),
    [(0, 0, 0), (0, 4, 0), (1, 4, 25), (1, 3, 33), (2, 3, 67), (1, 8, 13), (4, 4, 100)],
)
def test_completion_percentage_rounds_half_up(completed: int, total: int, expected: int) -> None:
    assert completion_percentage(completed, total) == expected


def test_all_completed_marks_project_completed_and_stamps_once() -> None:
    statuses = [TaskStatus.COMPLETED, TaskStatus.COMPLETED]

    first = compute_project_progress(
        statuses,
        current_status=ProjectStatus.IN_PROGRESS,
        completed_at=None,
        now=NOW,
    )
    again = compute_project_progress(
        statuses,
        current_status=ProjectStatus.COMPLETED,
        completed_at=EARLIER,
        now=NOW,
    )

    assert first.status == ProjectStatus.COMPLETED
    assert first.completed_at == NOW
    assert first.completion_percentage == 100
    assert again.completed_at == EARLIER


def test_completed_project_reverts_when_a_task_reopens() -> None:
    progress = compute_project_progress(
        [TaskStatus.COMPLETED, TaskStatus.COMPLETED, TaskStatus.COMPLETED, TaskStatus.IN_PROGRESS],
        current_status=ProjectStatus.COMPLETED,
        completed_at=EARLIER,
        now=NOW,
    )

    assert progress.status == ProjectStatus.IN_PROGRESS
    assert progress.completion_percentage == 75
    assert progress.completed_at is None


def test_completed_project_without_tasks_falls_back_to_planning() -> None:
    progress = compute_project_progress(
        [],
        current_status=ProjectStatus.COMPLETED,
        completed_at=EARLIER,
        now=NOW,
    )

    assert progress.status == ProjectStatus.PLANNING
    assert progress.tasks_count == 0
    assert progress.completion_percentage == 0


def test_empty_project_is_never_completed() -> None:
    progress = compute_project_progress(
        [],
        current_status=ProjectStatus.PLANNING,
        completed_at=None,
        now=NOW,
    )

    assert progress.status == ProjectStatus.PLANNING


@pytest.mark.parametrize("held", [ProjectStatus.ON_HOLD, ProjectStatus.DELAYED])
def test_partial_completion_leaves_human_held_states(held: ProjectStatus) -> None:
    progress = compute_project_progress(
        [TaskStatus.COMPLETED, TaskStatus.ASSIGNED],
        current_status=held,
        completed_at=None,
        now=NOW,
    )

    assert progress.status == held
    assert progress.completion_percentage == 50


def test_first_completion_moves_planning_to_in_progress() -> None:
    progress = compute_project_progress(
        [TaskStatus.COMPLETED, TaskStatus.ASSIGNED, TaskStatus.DELAYED],
        current_status=ProjectStatus.PLANNING,
        completed_at=None,
        now=NOW,
    )

    assert progress.status == ProjectStatus.IN_PROGRESS
    assert progress.completion_percentage == 33


async def _make_engine() -> AsyncEngine:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)
    return engine


async def _seed_project(
    session: AsyncSession,
    *,
    task_count: int,
) -> tuple[User, User, Project, list[Task]]:
    manager = User(
        name="Morgan",
        email=f"{uuid4().hex}@example.com",
        password_hash="unused",
        role=UserRole.MANAGER,
    )
    admin = User(
        name="Avery",
        email=f"{uuid4().hex}@example.com",
        password_hash="unused",
        role=UserRole.SUPERADMIN,
    )
    technician = User(
        name="Tech",
        email=f"{uuid4().hex}@example.com",
        password_hash="unused",
        role=UserRole.TECHNICIAN,
    )
    session.add_all([manager, admin, technician])
    await session.flush()
    project = Project(
        client_name="Acme",
        site_name="North Tower",
        location="Pune",
        assigned_manager_id=manager.id,
    )
    session.add(project)
    await session.flush()
    tasks = [
        Task(
            project_id=project.id,
            assigned_to_id=technician.id,
            assigned_by_id=manager.id,
            title=f"Step {index}",
        )
        for index in range(task_count)
    ]
    session.add_all(tasks)
    await session.commit()
    return manager, admin, project, tasks


async def _set_status(session: AsyncSession, task: Task, value: TaskStatus) -> None:
    task.status = value
    await crud.save(session, task, commit=False)


async def _notification_count(session: AsyncSession, user_id: UUID) -> int:
    return await Notification.objects.filter_by(user_id=user_id).count(session)


@pytest.mark.asyncio
async def test_task_changes_drive_project_status_through_its_lifecycle() -> None:
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    hub = RealtimeHub(PresenceRegistry())
    status_engine = ProjectStatusEngine(NotificationDispatcher(session_maker, hub))
    try:
        async with session_maker() as session:
            manager, admin, project, tasks = await _seed_project(session, task_count=4)
            connection = _FakeConnection(manager.id, UserRole.MANAGER)
            hub.connect(connection)

            initial = await status_engine.recompute_project(session, project.id)
            assert initial.tasks_count == 4
            assert initial.completion_percentage == 0
            assert initial.status == ProjectStatus.PLANNING
            assert not initial.status_changed

            await _set_status(session, tasks[0], TaskStatus.COMPLETED)
            started = await status_engine.propagate_task_change(session, tasks[0].id)
            assert started.completion_percentage == 25
            assert started.previous_status == ProjectStatus.PLANNING
            assert started.status == ProjectStatus.IN_PROGRESS
            assert started.status_changed
            assert await _notification_count(session, manager.id) == 1
            assert await _notification_count(session, admin.id) == 1

            for task in tasks[1:]:
                await _set_status(session, task, TaskStatus.COMPLETED)
            done = await status_engine.propagate_task_change(session, tasks[3].id)
            assert done.status == ProjectStatus.COMPLETED
            assert done.completion_percentage == 100
            assert done.completed_at is not None

            await _set_status(session, tasks[2], TaskStatus.IN_PROGRESS)
            reopened = await status_engine.propagate_task_change(session, tasks[2].id)
            assert reopened.status == ProjectStatus.IN_PROGRESS
            assert reopened.completion_percentage == 75
            assert reopened.completed_at is None

            stored = await Project.objects.by_id(project.id).first(session)
            assert stored is not None
            assert stored.completed_tasks == 3
            assert stored.completion_percentage == 75
            assert stored.completed_at is None

            events = [event for event, _ in connection.sent]
            assert events.count("project:updated") == 4
            assert events.count("project:status_changed") == 3
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_recompute_without_changes_is_idempotent_and_silent() -> None:
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    status_engine = ProjectStatusEngine(
        NotificationDispatcher(session_maker, RealtimeHub(PresenceRegistry())),
    )
    try:
        async with session_maker() as session:
            manager, _admin, project, tasks = await _seed_project(session, task_count=2)
            await _set_status(session, tasks[0], TaskStatus.COMPLETED)
            await status_engine.propagate_task_change(session, tasks[0].id)
            notified = await _notification_count(session, manager.id)

            first = await status_engine.recompute_project(session, project.id)
            second = await status_engine.recompute_project(session, project.id)

            assert first.model_dump(exclude={"previous_status"}) == second.model_dump(
                exclude={"previous_status"},
            )
            assert not second.status_changed
            assert await _notification_count(session, manager.id) == notified
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_propagating_an_unknown_task_answers_404() -> None:
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    status_engine = ProjectStatusEngine(
        NotificationDispatcher(session_maker, RealtimeHub(PresenceRegistry())),
        serialize=False,
    )
    try:
        async with session_maker() as session:
            with pytest.raises(HTTPException) as exc_info:
                await status_engine.propagate_task_change(session, uuid4())
            assert exc_info.value.status_code == 404

            with pytest.raises(HTTPException) as exc_info:
                await status_engine.recompute_project(session, uuid4())
            assert exc_info.value.status_code == 404
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_recompute_keeps_status_committed_by_another_session(tmp_path: Path) -> None:
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'fieldops.db'}",
        poolclass=NullPool,
    )
    async with engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    status_engine = ProjectStatusEngine(
        NotificationDispatcher(session_maker, RealtimeHub(PresenceRegistry())),
    )
    try:
        async with session_maker() as session:
            manager, _admin, project, tasks = await _seed_project(session, task_count=2)
            assert project.status == ProjectStatus.PLANNING

            async with session_maker() as other:
                held = await Project.objects.by_id(project.id).first(other)
                assert held is not None
                held.status = ProjectStatus.ON_HOLD
                await crud.save(other, held)

            await _set_status(session, tasks[0], TaskStatus.COMPLETED)
            summary = await status_engine.propagate_task_change(session, tasks[0].id)

            assert summary.previous_status == ProjectStatus.ON_HOLD
            assert summary.status == ProjectStatus.ON_HOLD
            assert not summary.status_changed
            assert summary.completion_percentage == 50
            assert project.status == ProjectStatus.ON_HOLD
            assert await _notification_count(session, manager.id) == 0

        async with session_maker() as fresh:
            stored = await Project.objects.by_id(project.id).first(fresh)
            assert stored is not None
            assert stored.status == ProjectStatus.ON_HOLD
            assert stored.completed_tasks == 1
    finally:
        await engine.dispose()
