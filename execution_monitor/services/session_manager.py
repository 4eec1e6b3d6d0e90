"""Registry of mounted execution view sessions."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from execution_monitor.exceptions import SessionNotFoundError
from execution_monitor.services.session import ExecutionViewSession

if TYPE_CHECKING:
    from execution_monitor.config import Settings
    from execution_monitor.models.events import ExecutionEvent
    from execution_monitor.services.backend_client import AgentBackendClient
    from execution_monitor.services.estimate_history import EstimateHistory
    from execution_monitor.services.event_hub import EventHub

logger = logging.getLogger(__name__)

Scope = tuple[str, str]


class SessionManager:
    """
    Opens, looks up and closes sessions keyed by (workspace_id, agent_id).

    A background loop refreshes every mounted list periodically, since the
    push channel can drop events, and closes sessions idle longer than the
    configured timeout.
    """

    def __init__(
        self,
        client: AgentBackendClient,
        hub: EventHub,
        history: EstimateHistory,
        settings: Settings,
        *,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._hub = hub
        self._history = history
        self._settings = settings
        self._monotonic = monotonic
        self._sessions: dict[Scope, ExecutionViewSession] = {}
        self._loop_task: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._sessions)

    def _create(self, workspace_id: str, agent_id: str) -> ExecutionViewSession:
        settings = self._settings
        return ExecutionViewSession(
            workspace_id,
            agent_id,
            client=self._client,
            hub=self._hub,
            history=self._history,
            page_size=settings.page_size,
            debounce_seconds=settings.search_debounce_seconds,
            orphan_grace_seconds=settings.orphan_grace_seconds,
            cost_table=settings.cost_table,
            monotonic=self._monotonic,
        )

    async def open(self, workspace_id: str, agent_id: str) -> tuple[ExecutionViewSession, bool]:
        """Return the session for the scope, mounting a new one if needed.

        Returns (session, created).
        """
        scope = (workspace_id, agent_id)
        session = self._sessions.get(scope)
        if session is not None:
            session.touch()
            return session, False

        session = self._create(workspace_id, agent_id)
        self._sessions[scope] = session
        await session.mount()
        return session, True

    def get(self, workspace_id: str, agent_id: str) -> ExecutionViewSession:
        session = self._sessions.get((workspace_id, agent_id))
        if session is None:
            raise SessionNotFoundError(
                "No execution view is mounted for this agent",
                context={"workspace_id": workspace_id, "agent_id": agent_id},
            )
        session.touch()
        return session

    def close(self, workspace_id: str, agent_id: str) -> bool:
        session = self._sessions.pop((workspace_id, agent_id), None)
        if session is None:
            return False
        session.close()
        return True

    def close_all(self) -> None:
        for scope in list(self._sessions):
            self.close(*scope)

    def dispatch(self, event: ExecutionEvent) -> int:
        """Hand a push event to the hub; returns the number of handlers scheduled."""
        return len(self._hub.publish(event))

    def expire_idle(self) -> list[Scope]:
        timeout = self._settings.session_idle_minutes * 60
        now = self._monotonic()
        expired = [
            scope
            for scope, session in self._sessions.items()
            if now - session.last_activity > timeout
        ]
        for scope in expired:
            self.close(*scope)
            logger.info(
                "Closed idle execution view",
                extra={"workspace_id": scope[0], "agent_id": scope[1]},
            )
        return expired

    async def refresh_all(self) -> None:
        sessions = list(self._sessions.values())
        if not sessions:
            return
        await asyncio.gather(*(session.query.refresh() for session in sessions))

    async def start(self) -> None:
        """Start the periodic refresh loop."""
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self._run_loop())
            logger.info(
                "Session refresh loop started",
                extra={"interval_seconds": self._settings.refresh_interval_seconds},
            )

    async def stop(self) -> None:
        """Stop the loop and close every session."""
        if self._loop_task and not self._loop_task.done():
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            logger.info("Session refresh loop stopped")
        self._loop_task = None
        self.close_all()

    async def _run_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._settings.refresh_interval_seconds)
                self.expire_idle()
                await self.refresh_all()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(
                    "Session refresh loop error",
                    extra={"error": str(e), "error_type": type(e).__name__},
                )
