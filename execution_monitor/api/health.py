"""Health check endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Depends

from execution_monitor.dependencies import get_session_manager, get_task_tracker, verify_token
from execution_monitor.version import get_version

if TYPE_CHECKING:
    from execution_monitor.services.background_tasks import BackgroundTaskTracker
    from execution_monitor.services.session_manager import SessionManager

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict[str, str]:
    """
    Simple health check for liveness checks.

    Returns 200 if service is running. No authentication required.
    """
    return {"status": "ok"}


@router.get("/health/detailed", dependencies=[Depends(verify_token)])
async def health_detailed(
    manager: SessionManager = Depends(get_session_manager),
    tracker: BackgroundTaskTracker = Depends(get_task_tracker),
) -> dict[str, Any]:
    """Mounted views and background task outcomes (requires authentication)."""
    return {
        "status": "ok",
        "version": get_version(),
        "mounted_views": len(manager),
        "background_tasks": tracker.get_status(),
    }
