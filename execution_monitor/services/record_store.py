"""
Normalized in-memory cache of execution records and details.

One store exists per mounted view session. All mutation happens on the
event loop thread (network completions and push events), so no lock is
taken. Every mutation emits a StoreChange so the rendering layer can
update incrementally.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from execution_monitor.models.execution import ExecutionDetail, ExecutionRecord

logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    UPSERT = "upsert"
    DETAIL = "detail"
    INVALIDATE = "invalidate"
    REMOVE = "remove"


@dataclass(frozen=True)
class StoreChange:
    """Notification emitted once per store mutation."""

    kind: ChangeKind
    execution_id: str


StoreListener = Callable[[StoreChange], None]


def _keep_existing(existing: ExecutionRecord, incoming: ExecutionRecord) -> bool:
    """Last-write-wins on completed_at: a terminal record is never replaced by an older view."""
    if existing.completed_at is None:
        return False
    if incoming.completed_at is None:
        return True
    return incoming.completed_at < existing.completed_at


class ExecutionRecordStore:
    """Records and lazily fetched details keyed by execution id."""

    def __init__(self) -> None:
        self._records: dict[str, ExecutionRecord] = {}
        self._details: dict[str, ExecutionDetail] = {}
        self._pinned: set[str] = set()
        self._listeners: list[StoreListener] = []

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, execution_id: object) -> bool:
        return execution_id in self._records

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register a change listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def upsert(self, record: ExecutionRecord) -> bool:
        """Merge a record by id. Returns False when the stored record was kept."""
        existing = self._records.get(record.execution_id)
        if existing is not None and _keep_existing(existing, record):
            logger.debug(
                "Kept newer stored record",
                extra={
                    "execution_id": record.execution_id,
                    "stored_status": existing.status.value,
                    "incoming_status": record.status.value,
                },
            )
            return False

        self._records[record.execution_id] = record
        self._emit(ChangeKind.UPSERT, record.execution_id)
        return True

    def upsert_many(self, records: Iterable[ExecutionRecord]) -> int:
        return sum(1 for record in records if self.upsert(record))

    def get(self, execution_id: str) -> ExecutionRecord | None:
        return self._records.get(execution_id)

    def list(self, execution_ids: Iterable[str]) -> list[ExecutionRecord]:
        """Records for the given ids in order, skipping unknown ids."""
        return [self._records[i] for i in execution_ids if i in self._records]

    def attach_detail(self, execution_id: str, detail: ExecutionDetail) -> None:
        """Fill in the steps for a record; the record part is merged too."""
        if detail.execution_id != execution_id:
            msg = f"Detail for {detail.execution_id} attached to {execution_id}"
            raise ValueError(msg)

        self.upsert(detail.to_record())
        self._details[execution_id] = detail
        self._emit(ChangeKind.DETAIL, execution_id)

    def get_detail(self, execution_id: str) -> ExecutionDetail | None:
        return self._details.get(execution_id)

    def has_detail(self, execution_id: str) -> bool:
        return execution_id in self._details

    def invalidate(self, execution_id: str) -> None:
        """Drop the cached detail so the next request re-fetches it."""
        if self._details.pop(execution_id, None) is not None:
            self._emit(ChangeKind.INVALIDATE, execution_id)

    def pin(self, execution_id: str) -> None:
        """Protect an id from removal while live progress is shown for it."""
        self._pinned.add(execution_id)

    def unpin(self, execution_id: str) -> None:
        self._pinned.discard(execution_id)

    def is_pinned(self, execution_id: str) -> bool:
        return execution_id in self._pinned

    def remove(self, execution_id: str) -> bool:
        """Remove a record and its detail unless it is pinned by live progress."""
        if execution_id in self._pinned:
            logger.debug("Refused to remove pinned execution", extra={"execution_id": execution_id})
            return False
        if self._records.pop(execution_id, None) is None:
            return False
        self._details.pop(execution_id, None)
        self._emit(ChangeKind.REMOVE, execution_id)
        return True

    def clear(self) -> None:
        """Forget everything (session teardown)."""
        self._records.clear()
        self._details.clear()
        self._pinned.clear()
        self._listeners.clear()

    def _emit(self, kind: ChangeKind, execution_id: str) -> None:
        change = StoreChange(kind=kind, execution_id=execution_id)
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception(
                    "Store listener failed",
                    extra={"execution_id": execution_id, "change": kind.value},
                )
