"""Public schema exports shared across API route modules."""

from fieldops.schemas.auth import LoginRequest, TokenResponse
from fieldops.schemas.notifications import (
    NotificationPayload,
    NotificationRead,
    NotificationSend,
    NotificationStats,
)
from fieldops.schemas.projects import ProjectCreate, ProjectRead, ProjectUpdate
from fieldops.schemas.reports import ReportCreate, ReportRead
from fieldops.schemas.stats import AdminDashboardStats, OverviewReport, PerformanceReport
from fieldops.schemas.tasks import TaskCreate, TaskRead, TaskStatusUpdate, TaskUpdate
from fieldops.schemas.users import UserCreate, UserRead, UserUpdate

__all__ = [
    "AdminDashboardStats",
    "LoginRequest",
    "NotificationPayload",
    "NotificationRead",
    "NotificationSend",
    "NotificationStats",
    "OverviewReport",
    "PerformanceReport",
    "ProjectCreate",
    "ProjectRead",
    "ProjectUpdate",
    "ReportCreate",
    "ReportRead",
    "TaskCreate",
    "TaskRead",
    "TaskStatusUpdate",
    "TaskUpdate",
    "TokenResponse",
    "UserCreate",
    "UserRead",
    "UserUpdate",
]
