"""Account creation, credential checks, and account status changes."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any

from fastapi import HTTPException, status
from sqlalchemy import or_
from sqlmodel import col

from fieldops.core.config import settings
from fieldops.core.enums import UserStatus
from fieldops.core.logging import get_logger
from fieldops.core.roles import UserRole, parse_role
from fieldops.core.security import hash_password, verify_password
from fieldops.core.time import utcnow
from fieldops.db import crud
from fieldops.models.login_sessions import LoginSession
from fieldops.models.notifications import Notification
from fieldops.models.projects import Project
from fieldops.models.reports import Report
from fieldops.models.tasks import Task
from fieldops.models.users import User

if TYPE_CHECKING:
    from uuid import UUID

    from sqlmodel.ext.asyncio.session import AsyncSession
    from sqlmodel.sql.expression import SelectOfScalar

    from fieldops.schemas.users import UserCreate, UserSelfUpdate, UserUpdate

logger = get_logger(__name__)
INVALID_CREDENTIALS = "Invalid email or password"


def normalize_email(email: str) -> str:
    return email.strip().lower()


async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    return await User.objects.filter_by(email=normalize_email(email)).first(session)


async def get_user_or_404(session: AsyncSession, user_id: UUID) -> User:
    user = await User.objects.by_id(user_id).first(session)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


async def require_active_user_with_role(
    session: AsyncSession,
    user_id: UUID,
    role: UserRole,
) -> User:
    """Load `user_id` and require it to be an active account holding `role`."""
    user = await User.objects.by_id(user_id).first(session)
    if user is None or not user.is_active or parse_role(user.role) != role:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"User must be an active {role.value}",
        )
    return user


async def create_user(session: AsyncSession, payload: UserCreate) -> User:
    email = normalize_email(payload.email)
    if await get_user_by_email(session, email) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="User already exists with this email",
        )
    user = User(
        name=payload.name,
        email=email,
        password_hash=hash_password(payload.password),
        role=parse_role(payload.role),
        department=payload.department,
        phone=payload.phone,
    )
    user = await crud.save(session, user)
    logger.info("user.created user_id=%s role=%s", user.id, user.role.value)
    return user


async def update_user(session: AsyncSession, user: User, payload: UserUpdate) -> User:
    updates = payload.model_dump(exclude_unset=True)
    if "email" in updates and updates["email"] is not None:
        email = normalize_email(updates["email"])
        existing = await get_user_by_email(session, email)
        if existing is not None and existing.id != user.id:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="User already exists with this email",
            )
        updates["email"] = email
    updates = {key: value for key, value in updates.items() if value is not None}
    crud.patch(user, updates)
    user.touch()
    return await crud.save(session, user)


async def update_profile(session: AsyncSession, user: User, payload: UserSelfUpdate) -> User:
    updates = {
        key: value
        for key, value in payload.model_dump(exclude_unset=True).items()
        if value is not None
    }
    crud.patch(user, updates)
    user.touch()
    return await crud.save(session, user)


async def _record_failed_attempt(session: AsyncSession, user: User) -> None:
    user.failed_login_attempts += 1
    if user.failed_login_attempts >= settings.max_login_attempts:
        user.locked_until = utcnow() + timedelta(minutes=settings.login_lock_minutes)
        user.failed_login_attempts = 0
        logger.warning("auth.login.locked user_id=%s", user.id)
    user.touch()
    await crud.save(session, user)


async def authenticate_user(
    session: AsyncSession,
    *,
    email: str,
    password: str,
    role: UserRole | None = None,
) -> User:
    """Check credentials and return the user, updating lockout bookkeeping.

    Unknown email, wrong password and role mismatch all answer with the same
    401 so callers cannot tell which accounts exist.
    """
    user = await get_user_by_email(session, email)
    if user is None:
        logger.info("auth.login.failed reason=unknown_email")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=INVALID_CREDENTIALS)
    if not user.is_active:
        logger.info("auth.login.failed reason=inactive user_id=%s", user.id)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is deactivated")
    if user.is_locked:
        logger.info("auth.login.failed reason=locked user_id=%s", user.id)
        raise HTTPException(
            status_code=status.HTTP_423_LOCKED,
            detail="Account temporarily locked due to too many failed login attempts",
        )

    role_matches = role is None or parse_role(user.role) == role
    if not role_matches or not verify_password(password, user.password_hash):
        await _record_failed_attempt(session, user)
        logger.info(
            "auth.login.failed reason=%s user_id=%s",
            "role_mismatch" if not role_matches else "bad_password",
            user.id,
        )
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=INVALID_CREDENTIALS)

    now = utcnow()
    user.failed_login_attempts = 0
    user.locked_until = None
    user.last_login_at = now
    user.updated_at = now
    return await crud.save(session, user)


async def change_password(
    session: AsyncSession,
    user: User,
    *,
    current_password: str,
    new_password: str,
) -> User:
    if not verify_password(current_password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current password is incorrect",
        )
    user.password_hash = hash_password(new_password)
    user.touch()
    user = await crud.save(session, user)
    logger.info("user.password.changed user_id=%s", user.id)
    return user


async def set_user_status(session: AsyncSession, user: User, value: UserStatus) -> User:
    user.status = value
    if value == UserStatus.ACTIVE:
        user.failed_login_attempts = 0
        user.locked_until = None
    user.touch()
    user = await crud.save(session, user)
    logger.info("user.status.changed user_id=%s status=%s", user.id, value.value)
    return user


def users_statement(
    *,
    role: UserRole | None = None,
    search: str | None = None,
) -> SelectOfScalar[User]:
    statement = User.objects.all()
    if role is not None:
        statement = statement.filter(col(User.role) == role)
    if search:
        pattern = f"%{search.strip().lower()}%"
        statement = statement.filter(
            col(User.name).ilike(pattern) | col(User.email).ilike(pattern),
        )
    return statement.order_by(col(User.created_at).desc()).statement


def active_clause() -> Any:
    return col(User.status) == UserStatus.ACTIVE


def parse_role_query(value: str | None) -> UserRole | None:
    """Parse a `?role=` filter, answering 422 for unknown roles."""
    if value is None or not value.strip():
        return None
    try:
        return parse_role(value)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc


async def delete_user(session: AsyncSession, user: User, *, actor_id: UUID) -> None:
    """Delete an account that owns no projects, tasks or reports."""
    if user.id == actor_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="You cannot delete your own account",
        )
    owns_work = (
        await Project.objects.filter_by(assigned_manager_id=user.id).first(session)
        or await Task.objects.filter(
            or_(col(Task.assigned_to_id) == user.id, col(Task.assigned_by_id) == user.id),
        ).first(session)
        or await Report.objects.filter(
            or_(col(Report.technician_id) == user.id, col(Report.manager_id) == user.id),
        ).first(session)
    )
    if owns_work is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="User still owns projects, tasks or reports; deactivate instead",
        )
    await crud.delete_where(
        session,
        Notification,
        col(Notification.user_id) == user.id,
        commit=False,
    )
    await crud.delete_where(
        session,
        LoginSession,
        col(LoginSession.user_id) == user.id,
        commit=False,
    )
    await session.delete(user)
    await session.commit()
    logger.info("user.deleted user_id=%s by=%s", user.id, actor_id)
