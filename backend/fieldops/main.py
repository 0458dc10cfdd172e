"""FastAPI application entrypoint and router wiring for the backend."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import APIRouter, FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi_pagination import add_pagination
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from fieldops.api.auth import router as auth_router
from fieldops.api.notifications import router as notifications_router
from fieldops.api.projects import router as projects_router
from fieldops.api.realtime import router as realtime_router
from fieldops.api.reports import router as reports_router
from fieldops.api.stats import router as stats_router
from fieldops.api.tasks import router as tasks_router
from fieldops.api.users import router as users_router
from fieldops.core.config import settings
from fieldops.core.error_handling import install_error_handling
from fieldops.core.logging import configure_logging, get_logger
from fieldops.db.session import async_engine, async_session_maker, init_db
from fieldops.schemas.health import HealthStatusResponse, ReadinessResponse
from fieldops.services.notifications import NotificationDispatcher, purge_expired_notifications
from fieldops.services.presence import PresenceRegistry
from fieldops.services.project_status import ProjectStatusEngine
from fieldops.services.realtime import RealtimeHub
from fieldops.services.sessions import purge_expired_sessions

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import async_sessionmaker
    from sqlmodel.ext.asyncio.session import AsyncSession

configure_logging()
logger = get_logger(__name__)
OPENAPI_TAGS = [
    {"name": "auth", "description": "Login, logout and current-identity endpoints."},
    {"name": "health", "description": "Service liveness/readiness checks."},
    {"name": "users", "description": "Profiles and superadmin account administration."},
    {"name": "projects", "description": "Client site projects and their derived progress."},
    {"name": "tasks", "description": "Task assignment, status and progress updates."},
    {"name": "notifications", "description": "Per-user notification inbox and broadcasts."},
    {"name": "reports", "description": "Technician work reports and aggregate reports."},
    {"name": "stats", "description": "Role dashboards and directory statistics."},
    {"name": "realtime", "description": "WebSocket transport and presence inspection."},
]


def install_realtime(
    fastapi_app: FastAPI,
    session_maker: async_sessionmaker[AsyncSession],
) -> None:
    """Build the process-wide realtime and propagation services on `app.state`."""
    presence = PresenceRegistry()
    hub = RealtimeHub(presence)
    dispatcher = NotificationDispatcher(session_maker, hub)
    fastapi_app.state.session_maker = session_maker
    fastapi_app.state.presence = presence
    fastapi_app.state.realtime_hub = hub
    fastapi_app.state.notification_dispatcher = dispatcher
    fastapi_app.state.project_status_engine = ProjectStatusEngine(
        dispatcher,
        serialize=settings.serialize_project_propagation,
    )


async def purge_expired_records(session_maker: async_sessionmaker[AsyncSession]) -> None:
    """Drop expired login sessions and notifications left from earlier runs."""
    async with session_maker() as session:
        sessions_removed = await purge_expired_sessions(session)
        notifications_removed = await purge_expired_notifications(session)
    logger.info(
        "app.maintenance.purged sessions=%s notifications=%s",
        sessions_removed,
        notifications_removed,
    )


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI) -> AsyncIterator[None]:
    """Initialize application resources before serving requests."""
    logger.info(
        "app.lifecycle.starting environment=%s db_auto_migrate=%s",
        settings.environment,
        settings.db_auto_migrate,
    )
    await init_db()
    await purge_expired_records(async_session_maker)
    install_realtime(fastapi_app, async_session_maker)
    logger.info("app.lifecycle.started")
    try:
        yield
    finally:
        logger.info("app.lifecycle.stopped")


app = FastAPI(
    title="FieldOps API",
    version="0.1.0",
    lifespan=lifespan,
    openapi_tags=OPENAPI_TAGS,
)

origins = [o.strip() for o in settings.cors_origins.split(",") if o.strip()]
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id"],
    )
    logger.info("app.cors.enabled origins_count=%s", len(origins))
else:
    logger.info("app.cors.disabled")

install_error_handling(app)


@app.get(
    "/health",
    tags=["health"],
    response_model=HealthStatusResponse,
    summary="Health Check",
    responses={
        status.HTTP_200_OK: {
            "description": "Service is alive.",
            "content": {"application/json": {"example": {"ok": True}}},
        }
    },
)
def health() -> HealthStatusResponse:
    """Lightweight liveness check endpoint."""
    return HealthStatusResponse(ok=True)


@app.get("/healthz", tags=["health"], response_model=HealthStatusResponse)
def healthz() -> HealthStatusResponse:
    """Alias liveness check endpoint for platform compatibility."""
    return HealthStatusResponse(ok=True)


@app.get("/readyz", tags=["health"], response_model=ReadinessResponse)
async def readyz(response: Response) -> ReadinessResponse:
    """Report ready only when the database answers."""
    try:
        async with async_engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        database_ok = True
    except SQLAlchemyError:
        logger.warning("app.readiness.database_unavailable", exc_info=True)
        database_ok = False
    if not database_ok:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return ReadinessResponse(
        ok=database_ok,
        database=database_ok,
        environment=settings.environment,
    )


api_v1 = APIRouter(prefix="/api/v1")
api_v1.include_router(auth_router)
api_v1.include_router(users_router)
api_v1.include_router(projects_router)
api_v1.include_router(tasks_router)
api_v1.include_router(notifications_router)
api_v1.include_router(reports_router)
api_v1.include_router(stats_router)
api_v1.include_router(realtime_router)
app.include_router(api_v1)

add_pagination(app)
logger.debug("app.routes.registered count=%s", len(app.routes))
