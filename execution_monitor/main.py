import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from execution_monitor.api import dry_run, events, health, sessions
from execution_monitor.config import get_settings
from execution_monitor.logging_config import configure_json_logging
from execution_monitor.middleware.request_id import RequestIDMiddleware
from execution_monitor.services.container import build_container, init_container, reset_container
from execution_monitor.version import get_version

settings = get_settings()

# Configure structured JSON logging
configure_json_logging(log_level=settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application startup and shutdown."""
    logger.info("Starting execution monitor", extra={"version": get_version()})

    container = build_container(settings)
    init_container(container)
    await container.session_manager.start()

    logger.info(
        "Execution monitor ready",
        extra={"backend_base_url": settings.backend_base_url, "environment": settings.environment},
    )

    yield

    logger.info("Execution monitor shutting down")
    await container.session_manager.stop()
    await container.task_tracker.drain()
    reset_container()


app = FastAPI(
    title="Execution Monitor",
    description="Agent execution history, live progress and dry-run estimates",
    version=get_version(),
    lifespan=lifespan,
)

# Add request ID middleware (must be after FastAPI creation, before CORS middleware)
app.add_middleware(RequestIDMiddleware)

if settings.cors_enabled:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        expose_headers=["Content-Disposition", "X-Request-ID"],
        max_age=3600,  # Cache preflight for 1 hour
    )
    logger.info("CORS configured", extra={"origins": settings.cors_allowed_origins})
else:
    logger.warning("CORS is disabled - cross-origin requests will be blocked")

app.include_router(health.router)
app.include_router(sessions.router)
app.include_router(events.router)
app.include_router(dry_run.router)
