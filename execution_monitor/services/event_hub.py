"""In-process fan-out of execution push events, keyed by workspace/agent."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from execution_monitor.services.background_tasks import spawn_background_task

if TYPE_CHECKING:
    import asyncio

    from execution_monitor.models.events import ExecutionEvent
    from execution_monitor.services.background_tasks import BackgroundTaskTracker

logger = logging.getLogger(__name__)

Scope = tuple[str, str]
EventHandler = Callable[["ExecutionEvent"], Awaitable[None]]


class Subscription:
    """Handle returned by EventHub.subscribe."""

    def __init__(self, hub: EventHub, scope: Scope, handler: EventHandler) -> None:
        self._hub = hub
        self.scope = scope
        self.handler = handler
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._hub._remove(self)
            self.active = False


class EventHub:
    """Routes each event to the handlers subscribed to its scope."""

    def __init__(self, tracker: BackgroundTaskTracker | None = None) -> None:
        self._subscriptions: dict[Scope, list[Subscription]] = {}
        self._tracker = tracker

    def subscribe(self, scope: Scope, handler: EventHandler) -> Subscription:
        subscription = Subscription(self, scope, handler)
        self._subscriptions.setdefault(scope, []).append(subscription)
        logger.debug(
            "Event subscription added",
            extra={"workspace_id": scope[0], "agent_id": scope[1]},
        )
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        subscriptions = self._subscriptions.get(subscription.scope, [])
        if subscription in subscriptions:
            subscriptions.remove(subscription)
        if not subscriptions:
            self._subscriptions.pop(subscription.scope, None)

    def subscriber_count(self, scope: Scope) -> int:
        return len(self._subscriptions.get(scope, []))

    def publish(self, event: ExecutionEvent) -> list[asyncio.Task[None]]:
        """
        Dispatch ``event`` to its scope's handlers as tracked background tasks.

        Returns the spawned tasks; an event nobody listens to is dropped.
        """
        subscriptions = list(self._subscriptions.get(event.scope, []))
        if not subscriptions:
            logger.debug(
                "No subscribers for event",
                extra={"event_type": event.type, "execution_id": event.execution_id},
            )
            return []

        tasks = []
        for subscription in subscriptions:
            handler = subscription.handler
            tasks.append(
                spawn_background_task(
                    f"execution_event:{event.type}:{event.execution_id}",
                    lambda handler=handler: handler(event),
                    self._tracker,
                )
            )
        return tasks
