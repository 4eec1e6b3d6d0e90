"""Background task utilities with error tracking.

Push events and periodic refreshes run as fire-and-forget tasks. These
wrappers make sure their failures are logged and counted instead of
disappearing with the task.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)


class BackgroundTaskError:
    """Record of a failed background task."""

    def __init__(
        self,
        task_name: str,
        error: Exception,
        timestamp: datetime | None = None,
    ):
        self.task_name = task_name
        self.error = error
        self.timestamp = timestamp or datetime.now(UTC)
        self.error_type = type(error).__name__
        self.error_message = str(error)


class BackgroundTaskTracker:
    """Counts background task outcomes and keeps recent failures."""

    def __init__(self, max_history: int = 100):
        self.max_history = max_history
        self.succeeded = 0
        self.failed_tasks: list[BackgroundTaskError] = []
        self._pending: set[asyncio.Task[None]] = set()

    def record_success(self, task_name: str) -> None:
        self.succeeded += 1

    def record_failure(self, task_name: str, error: Exception) -> None:
        self.failed_tasks.append(BackgroundTaskError(task_name, error))
        if len(self.failed_tasks) > self.max_history:
            self.failed_tasks = self.failed_tasks[-self.max_history :]

    def track(self, task: asyncio.Task[None]) -> None:
        """Hold a strong reference until the task finishes."""
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for every tracked task (shutdown and tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def get_status(self) -> dict[str, Any]:
        return {
            "successful_tasks": self.succeeded,
            "failed_tasks": len(self.failed_tasks),
            "pending_tasks": len(self._pending),
            "recent_failures": [
                {
                    "task": f.task_name,
                    "error": f.error_message,
                    "type": f.error_type,
                    "timestamp": f.timestamp.isoformat(),
                }
                for f in self.failed_tasks[-5:]  # Last 5 failures
            ],
        }


_task_tracker: BackgroundTaskTracker | None = None


def get_task_tracker() -> BackgroundTaskTracker:
    """Get or create the global task tracker."""
    global _task_tracker
    if _task_tracker is None:
        _task_tracker = BackgroundTaskTracker()
    return _task_tracker


def reset_task_tracker() -> None:
    global _task_tracker
    _task_tracker = None


async def safe_background_task(
    task_name: str,
    coro: Callable[[], Awaitable[Any]],
    tracker: BackgroundTaskTracker | None = None,
) -> None:
    """
    Run a background coroutine, logging and recording any error.

    Args:
        task_name: Name of the task for logging/tracking
        coro: Zero-argument async callable
        tracker: Tracker to record into (defaults to the global one)
    """
    tracker = tracker or get_task_tracker()

    try:
        logger.debug("Starting background task", extra={"task_name": task_name})
        await coro()
        tracker.record_success(task_name)
    except asyncio.CancelledError:
        logger.debug("Background task cancelled", extra={"task_name": task_name})
        raise
    except Exception as e:
        logger.error(
            "Background task failed",
            exc_info=True,
            extra={
                "task_name": task_name,
                "error": str(e),
                "error_type": type(e).__name__,
            },
        )
        tracker.record_failure(task_name, e)


def spawn_background_task(
    task_name: str,
    coro: Callable[[], Awaitable[Any]],
    tracker: BackgroundTaskTracker | None = None,
) -> asyncio.Task[None]:
    """Schedule ``safe_background_task`` on the running loop and track it."""
    tracker = tracker or get_task_tracker()
    task = asyncio.create_task(safe_background_task(task_name, coro, tracker), name=task_name)
    tracker.track(task)
    return task
