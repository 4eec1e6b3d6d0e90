"""
Live event reconciler.

Push events are treated as cache-invalidation signals: they trigger
authoritative pulls (list and detail refreshes) and drive a cosmetic
live-progress overlay. The overlay is subordinate to record status and is
never persisted.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from execution_monitor.models.events import (
    ExecutionCompletedEvent,
    ExecutionEvent,
    ExecutionFailedEvent,
    ExecutionProgressEvent,
    ExecutionStartedEvent,
)
from execution_monitor.models.execution import LiveProgressEntry
from execution_monitor.services.record_store import ChangeKind, StoreChange

if TYPE_CHECKING:
    from execution_monitor.services.record_store import ExecutionRecordStore

logger = logging.getLogger(__name__)


class LiveEventReconciler:
    """
    Applies started/progress/completed/failed events for one workspace/agent.

    Idempotent rather than ordered: replaying a progress event overwrites
    the entry with the same value, and a terminal event for an execution
    that is already finished and has no entry does nothing.

    A progress event for an execution that has neither a record nor an
    entry yet (it can beat the list refresh triggered by ``started``) is
    buffered and applied once the record reaches the store. Buffered events
    older than the grace period are dropped.
    """

    def __init__(
        self,
        workspace_id: str,
        agent_id: str,
        store: ExecutionRecordStore,
        *,
        refresh_list: Callable[[], Awaitable[object]],
        refresh_detail: Callable[[str], Awaitable[object]],
        is_detail_open: Callable[[str], bool],
        orphan_grace_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.workspace_id = workspace_id
        self.agent_id = agent_id
        self._store = store
        self._refresh_list = refresh_list
        self._refresh_detail = refresh_detail
        self._is_detail_open = is_detail_open
        self._grace = orphan_grace_seconds
        self._clock = clock

        self._progress: dict[str, LiveProgressEntry] = {}
        self._orphans: dict[str, tuple[float, ExecutionProgressEvent]] = {}
        self._finished: set[str] = set()
        self._unsubscribe = store.subscribe(self._on_store_change)

    @property
    def progress(self) -> dict[str, LiveProgressEntry]:
        """Snapshot of the live-progress overlay."""
        return dict(self._progress)

    def get_progress(self, execution_id: str) -> LiveProgressEntry | None:
        return self._progress.get(execution_id)

    @property
    def pending_orphans(self) -> list[str]:
        self._expire_orphans()
        return sorted(self._orphans)

    async def handle(self, event: ExecutionEvent) -> None:
        """Apply one push event."""
        if event.scope != (self.workspace_id, self.agent_id):
            logger.debug(
                "Ignored out-of-scope event",
                extra={
                    "event_type": event.type,
                    "execution_id": event.execution_id,
                    "event_workspace_id": event.workspace_id,
                    "event_agent_id": event.agent_id,
                },
            )
            return

        self._expire_orphans()

        if isinstance(event, ExecutionStartedEvent):
            await self._on_started(event)
        elif isinstance(event, ExecutionProgressEvent):
            await self._on_progress(event)
        elif isinstance(event, (ExecutionCompletedEvent, ExecutionFailedEvent)):
            await self._on_finished(event)

    async def _on_started(self, event: ExecutionStartedEvent) -> None:
        execution_id = event.execution_id
        record = self._store.get(execution_id)
        if execution_id not in self._finished and not (record and record.status.is_terminal):
            if execution_id not in self._progress:
                self._set_entry(LiveProgressEntry(execution_id=execution_id))

        logger.info("Execution started", extra={"execution_id": execution_id})
        await self._refresh_list()

    async def _on_progress(self, event: ExecutionProgressEvent) -> None:
        execution_id = event.execution_id
        if execution_id in self._finished:
            return

        record = self._store.get(execution_id)
        if record is not None and record.status.is_terminal:
            return

        if record is None and execution_id not in self._progress:
            self._orphans[execution_id] = (self._clock(), event)
            logger.debug(
                "Buffered progress for unknown execution",
                extra={"execution_id": execution_id, "step": event.step},
            )
            return

        self._orphans.pop(execution_id, None)
        self._set_entry(_entry_from(event))
        if self._is_detail_open(execution_id):
            await self._refresh_detail(execution_id)
        else:
            self._store.invalidate(execution_id)

    async def _on_finished(self, event: ExecutionCompletedEvent | ExecutionFailedEvent) -> None:
        execution_id = event.execution_id
        self._orphans.pop(execution_id, None)
        had_entry = self._drop_entry(execution_id)
        if not self._is_detail_open(execution_id):
            self._invalidate_running_detail(execution_id)

        record = self._store.get(execution_id)
        already_terminal = record is not None and record.status.is_terminal
        if not already_terminal:
            self._finished.add(execution_id)
        if not had_entry and already_terminal:
            return

        extra: dict[str, object] = {"execution_id": execution_id, "event_type": event.type}
        if isinstance(event, ExecutionFailedEvent):
            extra["error"] = event.error
            extra["failed_at_step"] = event.failed_at_step
        logger.info("Execution finished", extra=extra)

        await self._refresh_list()
        if self._is_detail_open(execution_id):
            await self._refresh_detail(execution_id)

    def _on_store_change(self, change: StoreChange) -> None:
        if change.kind is not ChangeKind.UPSERT:
            return

        record = self._store.get(change.execution_id)
        if record is None:
            return

        if record.status.is_terminal:
            self._orphans.pop(record.execution_id, None)
            self._drop_entry(record.execution_id)
            # The terminal record now guards against late progress on its own.
            self._finished.discard(record.execution_id)
            self._invalidate_running_detail(record.execution_id)
            return

        buffered = self._orphans.pop(record.execution_id, None)
        if buffered is None or record.execution_id in self._finished:
            return
        received_at, event = buffered
        if self._clock() - received_at > self._grace:
            return
        self._set_entry(_entry_from(event))
        logger.debug(
            "Applied buffered progress",
            extra={"execution_id": record.execution_id, "step": event.step},
        )

    def _set_entry(self, entry: LiveProgressEntry) -> None:
        self._progress[entry.execution_id] = entry
        self._store.pin(entry.execution_id)

    def _drop_entry(self, execution_id: str) -> bool:
        entry = self._progress.pop(execution_id, None)
        self._store.unpin(execution_id)
        return entry is not None

    def _invalidate_running_detail(self, execution_id: str) -> None:
        """Drop a cached detail captured before the execution finished."""
        detail = self._store.get_detail(execution_id)
        if detail is not None and not detail.status.is_terminal:
            self._store.invalidate(execution_id)

    def _expire_orphans(self) -> None:
        now = self._clock()
        expired = [
            execution_id
            for execution_id, (received_at, _) in self._orphans.items()
            if now - received_at > self._grace
        ]
        for execution_id in expired:
            del self._orphans[execution_id]
            logger.debug("Dropped expired orphan progress", extra={"execution_id": execution_id})

    def close(self) -> None:
        """Detach from the store and forget the overlay."""
        self._unsubscribe()
        for execution_id in list(self._progress):
            self._drop_entry(execution_id)
        self._orphans.clear()


def _entry_from(event: ExecutionProgressEvent) -> LiveProgressEntry:
    return LiveProgressEntry(
        execution_id=event.execution_id,
        current_step=event.step,
        total_steps=event.total,
        action=event.action,
        percent=event.progress,
    )
