"""Role dashboards and directory statistics."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter

from fieldops.api.deps import MANAGER_DEP, SESSION_DEP, SUPERADMIN_DEP
from fieldops.schemas.stats import AdminDashboardStats, ManagerDashboardStats, UserStats
from fieldops.services import stats as stats_service

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from fieldops.core.auth import AuthContext

router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("/admin", response_model=AdminDashboardStats)
async def admin_dashboard(
    session: AsyncSession = SESSION_DEP,
    _auth: AuthContext = SUPERADMIN_DEP,
) -> AdminDashboardStats:
    """Platform-wide project, task and staffing counters."""
    return await stats_service.admin_dashboard(session)


@router.get("/manager", response_model=ManagerDashboardStats)
async def manager_dashboard(
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = MANAGER_DEP,
) -> ManagerDashboardStats:
    return await stats_service.manager_dashboard(session, auth)


@router.get("/users", response_model=UserStats)
async def user_stats(
    session: AsyncSession = SESSION_DEP,
    _auth: AuthContext = SUPERADMIN_DEP,
) -> UserStats:
    return await stats_service.user_stats(session)
