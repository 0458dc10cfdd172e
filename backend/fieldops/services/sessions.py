"""Login session bookkeeping for issued access tokens."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlmodel import col

from fieldops.core.logging import get_logger
from fieldops.core.security import create_access_token
from fieldops.core.time import utcnow
from fieldops.db import crud
from fieldops.models.login_sessions import LoginSession

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from sqlmodel.ext.asyncio.session import AsyncSession

    from fieldops.models.users import User

logger = get_logger(__name__)


async def open_login_session(
    session: AsyncSession,
    user: User,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> tuple[LoginSession, str]:
    """Record a new login and issue its access token (`jti` = session id)."""
    login_session = LoginSession(
        user_id=user.id,
        ip_address=ip_address or "unknown",
        user_agent=user_agent or "unknown",
        expires_at=utcnow(),
    )
    token, expires_at = create_access_token(user, session_id=login_session.id)
    login_session.expires_at = expires_at
    login_session = await crud.save(session, login_session)
    logger.info("auth.session.opened user_id=%s session_id=%s", user.id, login_session.id)
    return login_session, token


async def close_login_session(session: AsyncSession, session_id: UUID) -> bool:
    login_session = await LoginSession.objects.by_id(session_id).first(session)
    if login_session is None or not login_session.is_active:
        return False
    login_session.is_active = False
    login_session.logged_out_at = utcnow()
    await crud.save(session, login_session)
    logger.info("auth.session.closed session_id=%s", session_id)
    return True


async def close_user_sessions(session: AsyncSession, user_id: UUID) -> int:
    """Deactivate every open session of `user_id` (used on deactivation)."""
    return await crud.update_where(
        session,
        LoginSession,
        col(LoginSession.user_id) == user_id,
        col(LoginSession.is_active).is_(True),
        values={"is_active": False, "logged_out_at": utcnow()},
    )


async def touch_login_session(session: AsyncSession, session_id: UUID) -> None:
    login_session = await LoginSession.objects.by_id(session_id).first(session)
    if login_session is None or not login_session.is_active:
        return
    login_session.last_activity_at = utcnow()
    await crud.save(session, login_session, refresh=False)


async def purge_expired_sessions(session: AsyncSession, *, now: datetime | None = None) -> int:
    cutoff = now or utcnow()
    removed = await crud.delete_where(
        session,
        LoginSession,
        col(LoginSession.expires_at) <= cutoff,
    )
    if removed:
        logger.info("auth.session.purged removed=%s", removed)
    return removed
