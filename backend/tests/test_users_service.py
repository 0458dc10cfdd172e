# ruff: noqa: INP001, S101, S106
"""Account administration rules and session bookkeeping."""

from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

import pytest
from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from fieldops.core import security
from fieldops.core.roles import UserRole
from fieldops.core.security import hash_password, verify_password
from fieldops.core.time import utcnow
from fieldops.db import crud
from fieldops.db.session import normalize_database_url
from fieldops.models.login_sessions import LoginSession
from fieldops.models.projects import Project
from fieldops.models.users import User
from fieldops.services import sessions as session_service
from fieldops.services import users as user_service


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("postgresql://u:p@db/app", "postgresql+psycopg://u:p@db/app"),
        ("postgres://u:p@db/app", "postgresql+psycopg://u:p@db/app"),
        ("sqlite:///./local.db", "sqlite+aiosqlite:///./local.db"),
        ("postgresql+psycopg://u:p@db/app", "postgresql+psycopg://u:p@db/app"),
        ("not-a-url", "not-a-url"),
    ],
)
def test_normalize_database_url(raw: str, expected: str) -> None:
    assert normalize_database_url(raw) == expected


async def _make_engine() -> AsyncEngine:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)
    return engine


def _user(role: UserRole, password_hash: str = "unused") -> User:
    return User(
        name=f"{role.value} user",
        email=f"{uuid4().hex}@example.com",
        password_hash=password_hash,
        role=role,
    )


@pytest.mark.asyncio
async def test_delete_user_refuses_self_and_owners_of_work() -> None:
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with session_maker() as session:
            admin = await crud.save(session, _user(UserRole.SUPERADMIN))
            manager = await crud.save(session, _user(UserRole.MANAGER))
            idle = await crud.save(session, _user(UserRole.TECHNICIAN))
            await crud.save(
                session,
                Project(
                    client_name="Acme",
                    site_name="Yard",
                    location="Surat",
                    assigned_manager_id=manager.id,
                ),
            )
            await session_service.open_login_session(session, idle)

            with pytest.raises(HTTPException) as exc_info:
                await user_service.delete_user(session, admin, actor_id=admin.id)
            assert exc_info.value.status_code == 400

            with pytest.raises(HTTPException) as exc_info:
                await user_service.delete_user(session, manager, actor_id=admin.id)
            assert exc_info.value.status_code == 409

            await user_service.delete_user(session, idle, actor_id=admin.id)
            assert await User.objects.by_id(idle.id).first(session) is None
            assert await LoginSession.objects.filter_by(user_id=idle.id).count(session) == 0
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_change_password_requires_the_current_one(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(security, "BCRYPT_ROUNDS", 4)
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with session_maker() as session:
            user = await crud.save(
                session,
                _user(UserRole.TECHNICIAN, password_hash=hash_password("old-pass")),
            )

            with pytest.raises(HTTPException) as exc_info:
                await user_service.change_password(
                    session,
                    user,
                    current_password="guess",
                    new_password="new-pass",
                )
            assert exc_info.value.status_code == 400

            updated = await user_service.change_password(
                session,
                user,
                current_password="old-pass",
                new_password="new-pass",
            )
            assert verify_password("new-pass", updated.password_hash)
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_login_sessions_close_and_purge() -> None:
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with session_maker() as session:
            user = await crud.save(session, _user(UserRole.MANAGER))
            first, token = await session_service.open_login_session(
                session,
                user,
                ip_address="10.0.0.5",
            )
            second, _ = await session_service.open_login_session(session, user)

            assert token
            assert first.ip_address == "10.0.0.5"
            assert first.expires_at > utcnow()
            assert await session_service.close_login_session(session, first.id)
            assert not await session_service.close_login_session(session, first.id)
            assert await session_service.close_user_sessions(session, user.id) == 1

            later = utcnow() + timedelta(days=30)
            assert await session_service.purge_expired_sessions(session, now=later) == 2
            assert await LoginSession.objects.by_id(second.id).first(session) is None
    finally:
        await engine.dispose()
