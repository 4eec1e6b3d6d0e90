from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from execution_monitor.config import get_settings
from execution_monitor.exceptions import SessionNotFoundError
from execution_monitor.services.container import get_container
from execution_monitor.utils.error_handling import format_exception_for_response

if TYPE_CHECKING:
    from execution_monitor.services.background_tasks import BackgroundTaskTracker
    from execution_monitor.services.estimate_history import EstimateHistory
    from execution_monitor.services.session import ExecutionViewSession
    from execution_monitor.services.session_manager import SessionManager

security = HTTPBearer()


async def verify_token(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> None:
    """Verify the bearer token matches the configured auth token."""
    if credentials.credentials != get_settings().auth_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
        )


async def get_session_manager() -> SessionManager:
    """Get session manager via dependency injection."""
    container = get_container()
    return container.session_manager


async def get_estimate_history() -> EstimateHistory:
    container = get_container()
    return container.estimate_history


async def get_task_tracker() -> BackgroundTaskTracker:
    container = get_container()
    return container.task_tracker


async def get_view_session(
    workspace_id: str,
    agent_id: str,
    manager: SessionManager = Depends(get_session_manager),
) -> ExecutionViewSession:
    """Resolve the mounted session for the path scope, or 404."""
    try:
        return manager.get(workspace_id, agent_id)
    except SessionNotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=format_exception_for_response(e),
        ) from e
