"""Technician work reports and aggregate report endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, status

from fieldops.api.deps import (
    AUTH_DEP,
    DISPATCHER_DEP,
    SESSION_DEP,
    SUPERADMIN_DEP,
    TECHNICIAN_DEP,
)
from fieldops.db.pagination import paginate
from fieldops.schemas.pagination import DefaultLimitOffsetPage
from fieldops.schemas.reports import ReportCreate, ReportRead
from fieldops.schemas.stats import OverviewReport, PerformanceReport
from fieldops.services import stats as stats_service
from fieldops.services.reports import reports_statement_for, submit_report

if TYPE_CHECKING:
    from collections.abc import Sequence

    from fastapi_pagination.limit_offset import LimitOffsetPage
    from sqlmodel.ext.asyncio.session import AsyncSession

    from fieldops.core.auth import AuthContext
    from fieldops.services.notifications import NotificationDispatcher

router = APIRouter(prefix="/reports", tags=["reports"])


def _to_read(items: Sequence[Any]) -> Sequence[Any]:
    return [ReportRead.model_validate(item, from_attributes=True) for item in items]


@router.post("", response_model=ReportRead, status_code=status.HTTP_201_CREATED)
async def create_report(
    payload: ReportCreate,
    session: AsyncSession = SESSION_DEP,
    dispatcher: NotificationDispatcher = DISPATCHER_DEP,
    auth: AuthContext = TECHNICIAN_DEP,
) -> ReportRead:
    report = await submit_report(session, auth=auth, payload=payload, dispatcher=dispatcher)
    return ReportRead.model_validate(report, from_attributes=True)


@router.get("", response_model=DefaultLimitOffsetPage[ReportRead])
async def list_reports(
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = AUTH_DEP,
) -> LimitOffsetPage[ReportRead]:
    return await paginate(session, reports_statement_for(auth), transformer=_to_read)


@router.get("/overview", response_model=OverviewReport)
async def overview(
    session: AsyncSession = SESSION_DEP,
    _auth: AuthContext = AUTH_DEP,
) -> OverviewReport:
    """Project, task and staffing summary for any signed-in user."""
    return await stats_service.overview_report(session)


@router.get("/performance", response_model=PerformanceReport)
async def performance(
    session: AsyncSession = SESSION_DEP,
    _auth: AuthContext = SUPERADMIN_DEP,
) -> PerformanceReport:
    """Delivery metrics per active manager."""
    return await stats_service.performance_report(session)
