# ruff: noqa: INP001, S101
"""Task assignment, status and progress changes with project propagation."""

from __future__ import annotations

from uuid import UUID, uuid4

import pytest
from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from fieldops.core.auth import AuthContext
from fieldops.core.enums import ProjectStatus, TaskStatus, UserStatus
from fieldops.core.roles import UserRole
from fieldops.models.notifications import Notification
from fieldops.models.projects import Project
from fieldops.models.tasks import Task, TaskStatusLog
from fieldops.models.users import User
from fieldops.schemas.tasks import TaskCreate
from fieldops.services import tasks as task_service
from fieldops.services.notifications import NotificationDispatcher
from fieldops.services.presence import PresenceRegistry
from fieldops.services.project_status import ProjectStatusEngine
from fieldops.services.realtime import RealtimeHub
from fieldops.services.tasks import normalize_progress, status_for_progress


@pytest.mark.parametrize(
    ("task_status", "progress", "expected"),
    [
        (TaskStatus.ASSIGNED, 60, 0),
        (TaskStatus.COMPLETED, 10, 100),
        (TaskStatus.IN_PROGRESS, 0, 25),
        (TaskStatus.IN_PROGRESS, 40, 40),
        (TaskStatus.IN_PROGRESS, 100, 99),
        (TaskStatus.DELAYED, 0, 25),
    ],
)
def test_normalize_progress_keeps_progress_consistent_with_status(
    task_status: TaskStatus,
    progress: int,
    expected: int,
) -> None:
    assert normalize_progress(task_status, progress) == expected


@pytest.mark.parametrize(
    ("current", "progress", "expected"),
    [
        (TaskStatus.IN_PROGRESS, 0, TaskStatus.ASSIGNED),
        (TaskStatus.ASSIGNED, 100, TaskStatus.COMPLETED),
        (TaskStatus.ASSIGNED, 30, TaskStatus.IN_PROGRESS),
        (TaskStatus.COMPLETED, 80, TaskStatus.IN_PROGRESS),
        (TaskStatus.DELAYED, 60, TaskStatus.DELAYED),
    ],
)
def test_status_for_progress(current: TaskStatus, progress: int, expected: TaskStatus) -> None:
    assert status_for_progress(current, progress) == expected


async def _make_engine() -> AsyncEngine:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)
    return engine


def _user(role: UserRole, name: str) -> User:
    return User(
        name=name,
        email=f"{uuid4().hex}@example.com",
        password_hash="unused",
        role=role,
        status=UserStatus.ACTIVE,
    )


async def _seed(session: AsyncSession) -> dict[str, User | Project]:
    manager = _user(UserRole.MANAGER, "Morgan")
    admin = _user(UserRole.SUPERADMIN, "Avery")
    technician = _user(UserRole.TECHNICIAN, "Riley")
    outsider = _user(UserRole.TECHNICIAN, "Sam")
    session.add_all([manager, admin, technician, outsider])
    await session.flush()
    project = Project(
        client_name="Acme",
        site_name="North Tower",
        location="Pune",
        assigned_manager_id=manager.id,
    )
    session.add(project)
    await session.commit()
    return {
        "manager": manager,
        "admin": admin,
        "technician": technician,
        "outsider": outsider,
        "project": project,
    }


def _services(
    session_maker: async_sessionmaker[AsyncSession],
) -> tuple[ProjectStatusEngine, NotificationDispatcher]:
    dispatcher = NotificationDispatcher(session_maker, RealtimeHub(PresenceRegistry()))
    return ProjectStatusEngine(dispatcher), dispatcher


def _auth(user: User) -> AuthContext:
    return AuthContext(user=user, role=user.role)


async def _count(
    session: AsyncSession,
    model: type[Notification] | type[TaskStatusLog],
    **criteria: UUID,
) -> int:
    return await model.objects.filter_by(**criteria).count(session)


async def _assign(
    session: AsyncSession,
    seeded: dict[str, User | Project],
    status_engine: ProjectStatusEngine,
    dispatcher: NotificationDispatcher,
) -> tuple[Task, Project]:
    manager = seeded["manager"]
    technician = seeded["technician"]
    project = seeded["project"]
    assert isinstance(manager, User)
    assert isinstance(technician, User)
    assert isinstance(project, Project)
    task = await task_service.create_task(
        session,
        auth=_auth(manager),
        payload=TaskCreate(
            title="Install conduit",
            project_id=project.id,
            assigned_to_id=technician.id,
        ),
        engine=status_engine,
        dispatcher=dispatcher,
    )
    return task, project


@pytest.mark.asyncio
async def test_create_task_logs_assignment_and_notifies_technician() -> None:
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    status_engine, dispatcher = _services(session_maker)
    try:
        async with session_maker() as session:
            seeded = await _seed(session)
            task, project = await _assign(session, seeded, status_engine, dispatcher)

            assert task.status == TaskStatus.ASSIGNED
            assert task.progress == 0
            log = await task_service.status_log_for(session, task.id)
            assert [entry.status for entry in log] == [TaskStatus.ASSIGNED]
            assert await _count(session, Notification, user_id=task.assigned_to_id) == 1

            await session.refresh(project)
            assert project.tasks_count == 1
            assert project.completion_percentage == 0
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_create_task_requires_an_active_technician() -> None:
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    status_engine, dispatcher = _services(session_maker)
    try:
        async with session_maker() as session:
            seeded = await _seed(session)
            manager = seeded["manager"]
            project = seeded["project"]
            assert isinstance(manager, User)
            assert isinstance(project, Project)

            with pytest.raises(HTTPException) as exc_info:
                await task_service.create_task(
                    session,
                    auth=_auth(manager),
                    payload=TaskCreate(
                        title="Wrong assignee",
                        project_id=project.id,
                        assigned_to_id=manager.id,
                    ),
                    engine=status_engine,
                    dispatcher=dispatcher,
                )
            assert exc_info.value.status_code == 422
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_delayed_without_reason_is_rejected_before_any_write() -> None:
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    status_engine, dispatcher = _services(session_maker)
    try:
        async with session_maker() as session:
            seeded = await _seed(session)
            task, project = await _assign(session, seeded, status_engine, dispatcher)
            technician = seeded["technician"]
            assert isinstance(technician, User)
            manager_id = project.assigned_manager_id
            before = await _count(session, Notification, user_id=manager_id)

            with pytest.raises(HTTPException) as exc_info:
                await task_service.change_task_status(
                    session,
                    auth=_auth(technician),
                    task=task,
                    project=project,
                    new_status=TaskStatus.DELAYED,
                    delay_reason="   ",
                    engine=status_engine,
                    dispatcher=dispatcher,
                )

            assert exc_info.value.status_code == 400
            assert exc_info.value.detail == task_service.DELAY_REASON_REQUIRED
            stored = await Task.objects.by_id(task.id).first(session)
            assert stored is not None
            assert stored.status == TaskStatus.ASSIGNED
            assert await _count(session, TaskStatusLog, task_id=task.id) == 1
            assert await _count(session, Notification, user_id=manager_id) == before
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_status_changes_keep_progress_and_timestamps_consistent() -> None:
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    status_engine, dispatcher = _services(session_maker)
    try:
        async with session_maker() as session:
            seeded = await _seed(session)
            task, project = await _assign(session, seeded, status_engine, dispatcher)
            technician = seeded["technician"]
            admin = seeded["admin"]
            assert isinstance(technician, User)
            assert isinstance(admin, User)

            task, summary = await task_service.change_task_status(
                session,
                auth=_auth(technician),
                task=task,
                project=project,
                new_status=TaskStatus.IN_PROGRESS,
                engine=status_engine,
                dispatcher=dispatcher,
            )
            assert task.progress == 25
            assert task.started_at is not None
            assert summary.status == ProjectStatus.PLANNING
            started_at = task.started_at
            assert await _count(session, Notification, user_id=project.assigned_manager_id) == 1
            assert await _count(session, Notification, user_id=admin.id) == 1

            task, _ = await task_service.change_task_status(
                session,
                auth=_auth(technician),
                task=task,
                project=project,
                new_status=TaskStatus.DELAYED,
                delay_reason=" Waiting on permits ",
                engine=status_engine,
                dispatcher=dispatcher,
            )
            assert task.delay_reason == "Waiting on permits"
            assert task.progress == 25
            assert task.started_at == started_at

            task, summary = await task_service.change_task_status(
                session,
                auth=_auth(technician),
                task=task,
                project=project,
                new_status=TaskStatus.COMPLETED,
                comment="Done",
                engine=status_engine,
                dispatcher=dispatcher,
            )
            assert task.progress == 100
            assert task.completed_at is not None
            assert task.delay_reason is None
            assert summary.status == ProjectStatus.COMPLETED
            assert summary.completion_percentage == 100

            log = await task_service.status_log_for(session, task.id)
            assert [entry.status for entry in log] == [
                TaskStatus.ASSIGNED,
                TaskStatus.IN_PROGRESS,
                TaskStatus.DELAYED,
                TaskStatus.COMPLETED,
            ]
            assert log[2].delay_reason == "Waiting on permits"
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_progress_updates_move_status_both_ways() -> None:
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    status_engine, dispatcher = _services(session_maker)
    try:
        async with session_maker() as session:
            seeded = await _seed(session)
            task, project = await _assign(session, seeded, status_engine, dispatcher)
            technician = seeded["technician"]
            assert isinstance(technician, User)

            async def _progress(value: int) -> Task:
                updated, _ = await task_service.update_task_progress(
                    session,
                    auth=_auth(technician),
                    task=task,
                    project=project,
                    progress=value,
                    engine=status_engine,
                    dispatcher=dispatcher,
                )
                return updated

            assert (await _progress(50)).status == TaskStatus.IN_PROGRESS
            assert task.progress == 50
            assert (await _progress(100)).status == TaskStatus.COMPLETED
            assert task.completed_at is not None
            reset = await _progress(0)
            assert reset.status == TaskStatus.ASSIGNED
            assert reset.progress == 0
            assert reset.completed_at is None

            await session.refresh(project)
            assert project.status == ProjectStatus.IN_PROGRESS
            assert project.completion_percentage == 0
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_other_technicians_cannot_change_the_task() -> None:
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    status_engine, dispatcher = _services(session_maker)
    try:
        async with session_maker() as session:
            seeded = await _seed(session)
            task, project = await _assign(session, seeded, status_engine, dispatcher)
            outsider = seeded["outsider"]
            assert isinstance(outsider, User)

            with pytest.raises(HTTPException) as exc_info:
                await task_service.change_task_status(
                    session,
                    auth=_auth(outsider),
                    task=task,
                    project=project,
                    new_status=TaskStatus.IN_PROGRESS,
                    engine=status_engine,
                    dispatcher=dispatcher,
                )
            assert exc_info.value.status_code == 403

            with pytest.raises(HTTPException) as exc_info:
                await task_service.get_task_for(session, _auth(outsider), task.id)
            assert exc_info.value.status_code == 404
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_status_notifications_can_be_switched_off() -> None:
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    status_engine, dispatcher = _services(session_maker)
    try:
        async with session_maker() as session:
            seeded = await _seed(session)
            task, project = await _assign(session, seeded, status_engine, dispatcher)
            technician = seeded["technician"]
            assert isinstance(technician, User)

            await task_service.change_task_status(
                session,
                auth=_auth(technician),
                task=task,
                project=project,
                new_status=TaskStatus.IN_PROGRESS,
                engine=status_engine,
                dispatcher=dispatcher,
                notify_on_status_update=False,
            )

            assert await _count(session, Notification, user_id=project.assigned_manager_id) == 0
            assert await _count(session, TaskStatusLog, task_id=task.id) == 2
    finally:
        await engine.dispose()
