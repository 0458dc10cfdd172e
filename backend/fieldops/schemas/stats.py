"""Dashboard statistics and aggregate report payloads.

Rates are percentages in the 0-100 range rounded to one decimal place.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlmodel import SQLModel

RUNTIME_ANNOTATION_TYPES = (datetime, UUID)


class RecentActivity(SQLModel):
    window_days: int
    projects: int
    tasks: int


class AdminDashboardStats(SQLModel):
    """Platform-wide counters for the superadmin dashboard."""

    managers_count: int
    technicians_count: int
    projects_count: int
    completed_projects: int
    in_progress_projects: int
    delayed_projects: int
    completed_tasks: int
    pending_tasks: int
    total_tasks: int
    recent_activity: RecentActivity
    completion_rate: float
    task_completion_rate: float


class ManagerDashboardStats(SQLModel):
    """Counters over the projects a manager runs, read from their derived fields."""

    assigned_projects_count: int
    technicians_count: int
    completed_tasks: int
    pending_tasks: int


class UserStats(SQLModel):
    total_users: int
    active_users: int
    inactive_users: int
    suspended_users: int
    managers: int
    technicians: int
    department_stats: dict[str, int]
    recent_registrations: int
    user_activity_rate: float


class OverviewReport(SQLModel):
    """Project, task and staffing summary visible to every signed-in user."""

    total_projects: int
    completed_projects: int
    in_progress_projects: int
    delayed_projects: int
    completion_rate: float
    average_duration_days: int
    total_managers: int
    total_technicians: int
    total_tasks: int
    completed_tasks: int
    pending_tasks: int
    projects_by_priority: dict[str, int]
    recent_activity: RecentActivity
    generated_at: datetime


class ManagerSummary(SQLModel):
    id: UUID
    name: str
    email: str
    department: str


class ManagerPerformanceMetrics(SQLModel):
    total_projects: int
    completed_projects: int
    on_time_projects: int
    total_tasks: int
    completed_tasks: int
    completion_rate: float
    on_time_rate: float
    average_completion_percentage: int


class ManagerPerformance(SQLModel):
    manager: ManagerSummary
    metrics: ManagerPerformanceMetrics


class PerformanceReport(SQLModel):
    performance: list[ManagerPerformance]
    generated_at: datetime
