"""Reusable FastAPI dependencies for auth, role policy and app-scoped services.

The presence registry, realtime hub, notification dispatcher and project
status engine are built once by the application lifespan and stored on
`app.state`; routes reach them only through the getters below, so tests can
swap in their own instances.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from fastapi import Depends, Request

from fieldops.core.auth import AuthContext, get_auth_context, require_roles
from fieldops.core.roles import UserRole
from fieldops.db.session import get_session
from fieldops.services.tasks import get_task_for

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from fieldops.models.projects import Project
    from fieldops.models.tasks import Task
    from fieldops.services.notifications import NotificationDispatcher
    from fieldops.services.project_status import ProjectStatusEngine
    from fieldops.services.realtime import RealtimeHub

AUTH_DEP = Depends(get_auth_context)
SESSION_DEP = Depends(get_session)
SUPERADMIN_DEP = Depends(require_roles(UserRole.SUPERADMIN))
MANAGER_DEP = Depends(require_roles(UserRole.MANAGER, UserRole.SUPERADMIN))
TECHNICIAN_DEP = Depends(require_roles(UserRole.TECHNICIAN))


def get_hub(request: Request) -> RealtimeHub:
    return request.app.state.realtime_hub


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.notification_dispatcher


def get_status_engine(request: Request) -> ProjectStatusEngine:
    return request.app.state.project_status_engine


HUB_DEP = Depends(get_hub)
DISPATCHER_DEP = Depends(get_dispatcher)
ENGINE_DEP = Depends(get_status_engine)


async def get_task_or_404(
    task_id: UUID,
    session: AsyncSession = SESSION_DEP,
    auth: AuthContext = AUTH_DEP,
) -> tuple[Task, Project]:
    """Load a task visible to the caller together with its project."""
    return await get_task_for(session, auth, task_id)


TASK_DEP = Depends(get_task_or_404)
