"""
Service dependency container.

Centralizes service creation and access for the API layer. Services are
built once in the FastAPI lifespan and handed to routes via Depends().
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from execution_monitor.config import Settings
    from execution_monitor.services.backend_client import AgentBackendClient
    from execution_monitor.services.background_tasks import BackgroundTaskTracker
    from execution_monitor.services.estimate_history import EstimateHistory
    from execution_monitor.services.event_hub import EventHub
    from execution_monitor.services.session_manager import SessionManager


class ServiceContainer:
    """Container for all application services."""

    def __init__(
        self,
        settings: Settings,
        backend_client: AgentBackendClient,
        event_hub: EventHub,
        estimate_history: EstimateHistory,
        session_manager: SessionManager,
        task_tracker: BackgroundTaskTracker,
    ) -> None:
        self.settings = settings
        self.backend_client = backend_client
        self.event_hub = event_hub
        self.estimate_history = estimate_history
        self.session_manager = session_manager
        self.task_tracker = task_tracker


_container: ServiceContainer | None = None


def build_container(settings: Settings) -> ServiceContainer:
    """Wire every service from settings."""
    from execution_monitor.services.backend_client import AgentBackendClient
    from execution_monitor.services.background_tasks import get_task_tracker
    from execution_monitor.services.estimate_history import EstimateHistory
    from execution_monitor.services.event_hub import EventHub
    from execution_monitor.services.session_manager import SessionManager

    tracker = get_task_tracker()
    client = AgentBackendClient(
        settings.backend_base_url,
        api_token=settings.backend_api_token,
        timeout_seconds=settings.backend_timeout_seconds,
    )
    hub = EventHub(tracker)
    history = EstimateHistory()
    return ServiceContainer(
        settings=settings,
        backend_client=client,
        event_hub=hub,
        estimate_history=history,
        session_manager=SessionManager(client, hub, history, settings),
        task_tracker=tracker,
    )


def init_container(container: ServiceContainer) -> None:
    """Install the container (called once in FastAPI lifespan)."""
    global _container
    _container = container


def reset_container() -> None:
    global _container
    _container = None


def get_container() -> ServiceContainer:
    """Get service container (use via FastAPI Depends).

    Raises:
        RuntimeError: If container not initialized (lifespan not running)
    """
    if _container is None:
        msg = "Service container not initialized - application lifespan may not be running"
        raise RuntimeError(msg)
    return _container
