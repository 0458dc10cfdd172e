"""Model exports for SQLAlchemy/SQLModel metadata discovery."""

from fieldops.models.login_sessions import LoginSession
from fieldops.models.notifications import Notification
from fieldops.models.projects import Project
from fieldops.models.reports import Report
from fieldops.models.tasks import Task, TaskStatusLog
from fieldops.models.users import User

__all__ = [
    "LoginSession",
    "Notification",
    "Project",
    "Report",
    "Task",
    "TaskStatusLog",
    "User",
]
