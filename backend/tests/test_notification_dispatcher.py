# ruff: noqa: INP001, S101
"""Persist-then-push notification delivery and the per-user store helpers."""

from __future__ import annotations

from datetime import timedelta
from typing import Any
from uuid import UUID, uuid4

import pytest
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel, col
from sqlmodel.ext.asyncio.session import AsyncSession

from fieldops.core.enums import NotificationType, Priority, UserStatus
from fieldops.core.roles import UserRole
from fieldops.core.time import utcnow
from fieldops.db import crud
from fieldops.models.notifications import Notification
from fieldops.models.users import User
from fieldops.schemas.notifications import NotificationPayload
from fieldops.services import notifications as notification_service
from fieldops.services.notifications import NotificationDispatcher
from fieldops.services.presence import PresenceRegistry
from fieldops.services.realtime import RealtimeHub


class _FakeConnection:
    def __init__(self, user_id: UUID, role: UserRole) -> None:
        self.id = uuid4().hex
        self.user_id = user_id
        self.role = role
        self.sent: list[tuple[str, Any]] = []

    async def send(self, event: str, data: Any = None) -> None:
        self.sent.append((event, data))


async def _make_engine() -> AsyncEngine:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)
    return engine


async def _make_user(
    session_maker: async_sessionmaker[AsyncSession],
    role: UserRole,
    *,
    user_status: UserStatus = UserStatus.ACTIVE,
) -> User:
    async with session_maker() as session:
        return await crud.save(
            session,
            User(
                name=f"{role.value}-{uuid4().hex[:6]}",
                email=f"{uuid4().hex}@example.com",
                password_hash="unused",
                role=role,
                status=user_status,
            ),
        )


async def _notifications_for(
    session_maker: async_sessionmaker[AsyncSession],
    user_id: UUID,
) -> list[Notification]:
    async with session_maker() as session:
        return await Notification.objects.filter_by(user_id=user_id).all(session)


def _payload(**overrides: Any) -> NotificationPayload:
    values: dict[str, Any] = {"title": "Heads up", "message": "Site visit moved to 9am."}
    values.update(overrides)
    return NotificationPayload(**values)


@pytest.mark.asyncio
async def test_notify_user_persists_and_pushes_to_connected_user() -> None:
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    hub = RealtimeHub(PresenceRegistry())
    dispatcher = NotificationDispatcher(session_maker, hub)
    try:
        technician = await _make_user(session_maker, UserRole.TECHNICIAN)
        connection = _FakeConnection(technician.id, UserRole.TECHNICIAN)
        hub.connect(connection)

        notification = await dispatcher.notify_user(technician.id, _payload())

        stored = await _notifications_for(session_maker, technician.id)
        assert [row.id for row in stored] == [notification.id]
        assert not stored[0].is_read
        assert connection.sent == [
            (
                "notification:new",
                notification_service.serialize_notification(notification),
            ),
        ]
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_notify_user_stores_without_push_when_user_is_absent() -> None:
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    hub = RealtimeHub(PresenceRegistry())
    dispatcher = NotificationDispatcher(session_maker, hub)
    try:
        technician = await _make_user(session_maker, UserRole.TECHNICIAN)

        report = await dispatcher.notify_users([technician.id], _payload())

        assert report.delivered_user_ids == [technician.id]
        assert report.pushed_user_ids == []
        assert len(await _notifications_for(session_maker, technician.id)) == 1
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_notify_users_isolates_a_failing_target(monkeypatch: pytest.MonkeyPatch) -> None:
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    hub = RealtimeHub(PresenceRegistry())
    dispatcher = NotificationDispatcher(session_maker, hub)
    try:
        first = await _make_user(session_maker, UserRole.TECHNICIAN)
        broken = await _make_user(session_maker, UserRole.TECHNICIAN)
        last = await _make_user(session_maker, UserRole.TECHNICIAN)
        original_persist = dispatcher._persist

        async def _flaky_persist(user_id: UUID, payload: NotificationPayload) -> Notification:
            if user_id == broken.id:
                raise SQLAlchemyError("disk full")
            return await original_persist(user_id, payload)

        monkeypatch.setattr(dispatcher, "_persist", _flaky_persist)

        report = await dispatcher.notify_users([first.id, broken.id, last.id], _payload())

        assert report.delivered_user_ids == [first.id, last.id]
        assert report.failed_user_ids == [broken.id]
        assert len(await _notifications_for(session_maker, first.id)) == 1
        assert await _notifications_for(session_maker, broken.id) == []
        assert len(await _notifications_for(session_maker, last.id)) == 1
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_notify_role_stores_for_every_active_holder_and_pushes_to_present_ones() -> None:
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    hub = RealtimeHub(PresenceRegistry())
    dispatcher = NotificationDispatcher(session_maker, hub)
    try:
        online = await _make_user(session_maker, UserRole.MANAGER)
        offline_a = await _make_user(session_maker, UserRole.MANAGER)
        offline_b = await _make_user(session_maker, UserRole.MANAGER)
        inactive = await _make_user(
            session_maker,
            UserRole.MANAGER,
            user_status=UserStatus.INACTIVE,
        )
        technician = await _make_user(session_maker, UserRole.TECHNICIAN)
        connection = _FakeConnection(online.id, UserRole.MANAGER)
        hub.connect(connection)

        report = await dispatcher.notify_role(UserRole.MANAGER, _payload())

        assert set(report.delivered_user_ids) == {online.id, offline_a.id, offline_b.id}
        assert report.pushed_user_ids == [online.id]
        assert await _notifications_for(session_maker, inactive.id) == []
        assert await _notifications_for(session_maker, technician.id) == []
        assert [event for event, _ in connection.sent] == [
            "notification:new",
            "notification:role",
        ]
        assert connection.sent[1][1]["role"] == "manager"
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_notify_role_honours_exclusions() -> None:
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    dispatcher = NotificationDispatcher(session_maker, RealtimeHub(PresenceRegistry()))
    try:
        kept = await _make_user(session_maker, UserRole.SUPERADMIN)
        skipped = await _make_user(session_maker, UserRole.SUPERADMIN)

        report = await dispatcher.notify_role(
            UserRole.SUPERADMIN,
            _payload(),
            exclude_user_ids=[skipped.id],
        )

        assert report.delivered_user_ids == [kept.id]
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_notify_all_reaches_active_users_and_broadcasts_once() -> None:
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    hub = RealtimeHub(PresenceRegistry())
    dispatcher = NotificationDispatcher(session_maker, hub)
    try:
        admin = await _make_user(session_maker, UserRole.SUPERADMIN)
        technician = await _make_user(session_maker, UserRole.TECHNICIAN)
        suspended = await _make_user(
            session_maker,
            UserRole.TECHNICIAN,
            user_status=UserStatus.SUSPENDED,
        )
        connection = _FakeConnection(technician.id, UserRole.TECHNICIAN)
        hub.connect(connection)

        report = await dispatcher.notify_all(_payload(type=NotificationType.SYSTEM))

        assert set(report.delivered_user_ids) == {admin.id, technician.id}
        assert await _notifications_for(session_maker, suspended.id) == []
        assert [event for event, _ in connection.sent].count("notification:all") == 1
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_mark_read_is_idempotent_and_keeps_first_read_at() -> None:
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    dispatcher = NotificationDispatcher(session_maker, RealtimeHub(PresenceRegistry()))
    try:
        technician = await _make_user(session_maker, UserRole.TECHNICIAN)
        notification = await dispatcher.notify_user(technician.id, _payload())

        async with session_maker() as session:
            row = await notification_service.get_for_user_or_404(
                session,
                user_id=technician.id,
                notification_id=notification.id,
            )
            first = await notification_service.mark_read(session, row)
            first_read_at = first.read_at
            second = await notification_service.mark_read(session, row)

            assert first.is_read
            assert first_read_at is not None
            assert second.read_at == first_read_at
            assert await notification_service.unread_count(session, technician.id) == 0
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_expired_notifications_are_hidden_and_purged() -> None:
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    dispatcher = NotificationDispatcher(session_maker, RealtimeHub(PresenceRegistry()))
    try:
        technician = await _make_user(session_maker, UserRole.TECHNICIAN)
        await dispatcher.notify_user(
            technician.id,
            _payload(expires_at=utcnow() - timedelta(minutes=1)),
        )
        fresh = await dispatcher.notify_user(technician.id, _payload(priority=Priority.HIGH))

        async with session_maker() as session:
            visible = list(await session.exec(notification_service.list_statement(technician.id)))
            assert [row.id for row in visible] == [fresh.id]
            assert await notification_service.unread_count(session, technician.id) == 1

            stats = await notification_service.notification_stats(session, technician.id)
            assert stats.total == 1
            assert stats.unread == 1
            assert stats.by_priority == {"high": 1}

            assert await notification_service.purge_expired_notifications(session) == 1
            remaining = await Notification.objects.filter(
                col(Notification.user_id) == technician.id,
            ).count(session)
            assert remaining == 1
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_mark_all_read_only_touches_the_callers_rows() -> None:
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    dispatcher = NotificationDispatcher(session_maker, RealtimeHub(PresenceRegistry()))
    try:
        owner = await _make_user(session_maker, UserRole.TECHNICIAN)
        other = await _make_user(session_maker, UserRole.TECHNICIAN)
        await dispatcher.notify_users([owner.id, other.id], _payload())
        await dispatcher.notify_user(owner.id, _payload(title="Second"))

        async with session_maker() as session:
            assert await notification_service.mark_all_read(session, owner.id) == 2
            assert await notification_service.unread_count(session, owner.id) == 0
            assert await notification_service.unread_count(session, other.id) == 1
    finally:
        await engine.dispose()
