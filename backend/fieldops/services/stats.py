"""Dashboard counters and aggregate reports computed from stored rows."""

from __future__ import annotations

import math
from collections import Counter
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import case, func
from sqlmodel import col, select

from fieldops.core.enums import Priority, ProjectStatus, TaskStatus, UserStatus
from fieldops.core.logging import get_logger
from fieldops.core.roles import UserRole
from fieldops.core.time import utcnow
from fieldops.models.projects import Project
from fieldops.models.tasks import Task
from fieldops.models.users import User
from fieldops.schemas.stats import (
    AdminDashboardStats,
    ManagerDashboardStats,
    ManagerPerformance,
    ManagerPerformanceMetrics,
    ManagerSummary,
    OverviewReport,
    PerformanceReport,
    RecentActivity,
    UserStats,
)

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from fieldops.core.auth import AuthContext

logger = get_logger(__name__)

DASHBOARD_ACTIVITY_DAYS = 7
REPORT_ACTIVITY_DAYS = 30
PENDING_TASK_STATUSES = (TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS)


def rate(part: int, whole: int) -> float:
    """Share of `whole` as a percentage rounded to one decimal; 0.0 when empty."""
    if whole <= 0:
        return 0.0
    return round(100 * part / whole, 1)


def rounded_mean(values: list[int]) -> int:
    """Average rounded half up; 0 for an empty list."""
    if not values:
        return 0
    return (2 * sum(values) + len(values)) // (2 * len(values))


async def _grouped(session: AsyncSession, column: Any, *criteria: Any) -> Counter[Any]:
    statement = select(column, func.count()).where(*criteria).group_by(column)
    return Counter({key: int(count) for key, count in await session.exec(statement)})


async def _recent_activity(session: AsyncSession, days: int) -> RecentActivity:
    since = utcnow() - timedelta(days=days)
    return RecentActivity(
        window_days=days,
        projects=await Project.objects.filter(col(Project.created_at) >= since).count(session),
        tasks=await Task.objects.filter(col(Task.created_at) >= since).count(session),
    )


async def _active_staff(session: AsyncSession) -> Counter[Any]:
    return await _grouped(session, col(User.role), col(User.status) == UserStatus.ACTIVE)


async def admin_dashboard(session: AsyncSession) -> AdminDashboardStats:
    projects = await _grouped(session, col(Project.status))
    tasks = await _grouped(session, col(Task.status))
    staff = await _active_staff(session)
    projects_count = sum(projects.values())
    total_tasks = sum(tasks.values())
    return AdminDashboardStats(
        managers_count=staff[UserRole.MANAGER],
        technicians_count=staff[UserRole.TECHNICIAN],
        projects_count=projects_count,
        completed_projects=projects[ProjectStatus.COMPLETED],
        in_progress_projects=projects[ProjectStatus.IN_PROGRESS],
        delayed_projects=projects[ProjectStatus.DELAYED],
        completed_tasks=tasks[TaskStatus.COMPLETED],
        pending_tasks=sum(tasks[value] for value in PENDING_TASK_STATUSES),
        total_tasks=total_tasks,
        recent_activity=await _recent_activity(session, DASHBOARD_ACTIVITY_DAYS),
        completion_rate=rate(projects[ProjectStatus.COMPLETED], projects_count),
        task_completion_rate=rate(tasks[TaskStatus.COMPLETED], total_tasks),
    )


async def manager_dashboard(session: AsyncSession, auth: AuthContext) -> ManagerDashboardStats:
    """Counters for the caller's projects; a superadmin sees every project."""
    query = Project.objects.all()
    if auth.role != UserRole.SUPERADMIN:
        query = query.filter(col(Project.assigned_manager_id) == auth.user_id)
    projects = await query.all(session)
    staff = await _active_staff(session)
    completed = sum(project.completed_tasks for project in projects)
    return ManagerDashboardStats(
        assigned_projects_count=len(projects),
        technicians_count=staff[UserRole.TECHNICIAN],
        completed_tasks=completed,
        pending_tasks=sum(project.tasks_count for project in projects) - completed,
    )


async def user_stats(session: AsyncSession) -> UserStats:
    by_status = await _grouped(session, col(User.status))
    staff = await _active_staff(session)
    departments = await _grouped(
        session,
        col(User.department),
        col(User.status) == UserStatus.ACTIVE,
    )
    since = utcnow() - timedelta(days=REPORT_ACTIVITY_DAYS)
    total = sum(by_status.values())
    return UserStats(
        total_users=total,
        active_users=by_status[UserStatus.ACTIVE],
        inactive_users=by_status[UserStatus.INACTIVE],
        suspended_users=by_status[UserStatus.SUSPENDED],
        managers=staff[UserRole.MANAGER],
        technicians=staff[UserRole.TECHNICIAN],
        department_stats={
            (name or "Unassigned"): count for name, count in departments.most_common()
        },
        recent_registrations=await User.objects.filter(
            col(User.created_at) >= since,
        ).count(session),
        user_activity_rate=rate(by_status[UserStatus.ACTIVE], total),
    )


def duration_days(project: Project) -> int:
    """Whole days from start to completion, any started day counting as one."""
    if project.completed_at is None:
        return 0
    seconds = (project.completed_at - project.start_date).total_seconds()
    return max(0, math.ceil(seconds / 86400))


async def overview_report(session: AsyncSession) -> OverviewReport:
    projects = await _grouped(session, col(Project.status))
    tasks = await _grouped(session, col(Task.status))
    priorities = await _grouped(session, col(Project.priority))
    staff = await _active_staff(session)
    finished = await Project.objects.filter(
        col(Project.status) == ProjectStatus.COMPLETED,
        col(Project.completed_at).is_not(None),
    ).all(session)
    durations = [duration_days(project) for project in finished]
    total_projects = sum(projects.values())
    return OverviewReport(
        total_projects=total_projects,
        completed_projects=projects[ProjectStatus.COMPLETED],
        in_progress_projects=projects[ProjectStatus.IN_PROGRESS],
        delayed_projects=projects[ProjectStatus.DELAYED],
        completion_rate=rate(projects[ProjectStatus.COMPLETED], total_projects),
        average_duration_days=rounded_mean(durations),
        total_managers=staff[UserRole.MANAGER],
        total_technicians=staff[UserRole.TECHNICIAN],
        total_tasks=sum(tasks.values()),
        completed_tasks=tasks[TaskStatus.COMPLETED],
        pending_tasks=sum(tasks[value] for value in PENDING_TASK_STATUSES),
        projects_by_priority={
            priority.value: priorities[priority] for priority in Priority if priorities[priority]
        },
        recent_activity=await _recent_activity(session, REPORT_ACTIVITY_DAYS),
        generated_at=utcnow(),
    )


def _finished_on_time(project: Project) -> bool:
    return (
        project.status == ProjectStatus.COMPLETED
        and project.deadline is not None
        and project.completed_at is not None
        and project.completed_at <= project.deadline
    )


async def performance_report(session: AsyncSession) -> PerformanceReport:
    """Per-manager delivery metrics for every active manager, ordered by name."""
    managers = await User.objects.filter(
        col(User.role) == UserRole.MANAGER,
        col(User.status) == UserStatus.ACTIVE,
    ).order_by(col(User.name).asc()).all(session)
    manager_ids = [manager.id for manager in managers]
    projects = await Project.objects.filter(
        col(Project.assigned_manager_id).in_(manager_ids),
    ).all(session)
    task_rows = await session.exec(
        select(
            col(Project.assigned_manager_id),
            func.count(col(Task.id)),
            func.sum(case((col(Task.status) == TaskStatus.COMPLETED, 1), else_=0)),
        )
        .join(Project, col(Project.id) == col(Task.project_id))
        .where(col(Project.assigned_manager_id).in_(manager_ids))
        .group_by(col(Project.assigned_manager_id)),
    )
    task_counts = {
        manager_id: (int(total), int(done or 0)) for manager_id, total, done in task_rows
    }

    performance: list[ManagerPerformance] = []
    for manager in managers:
        owned = [project for project in projects if project.assigned_manager_id == manager.id]
        completed = sum(1 for project in owned if project.status == ProjectStatus.COMPLETED)
        on_time = sum(1 for project in owned if _finished_on_time(project))
        total_tasks, completed_tasks = task_counts.get(manager.id, (0, 0))
        performance.append(
            ManagerPerformance(
                manager=ManagerSummary.model_validate(manager, from_attributes=True),
                metrics=ManagerPerformanceMetrics(
                    total_projects=len(owned),
                    completed_projects=completed,
                    on_time_projects=on_time,
                    total_tasks=total_tasks,
                    completed_tasks=completed_tasks,
                    completion_rate=rate(completed, len(owned)),
                    on_time_rate=rate(on_time, len(owned)),
                    average_completion_percentage=rounded_mean(
                        [project.completion_percentage for project in owned],
                    ),
                ),
            ),
        )
    logger.info("stats.performance.generated managers=%s", len(managers))
    return PerformanceReport(performance=performance, generated_at=utcnow())
