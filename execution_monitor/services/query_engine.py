"""
Query/filter engine for the execution history list.

Owns the FilterState for one view session. Every settled change builds a
ListExecutionsQuery and pulls a page from the backend into the record store.
Search input is debounced: the draft updates immediately, the settled value
only after a quiet period. List failures are fail-soft: the current page
stays visible and a dismissible notice is set.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from execution_monitor.exceptions import BackendError
from execution_monitor.models.filters import (
    DateRangeFilter,
    ExportFilters,
    FilterSnapshot,
    FilterState,
    ListExecutionsQuery,
    StatusFilter,
)

if TYPE_CHECKING:
    from execution_monitor.models.execution import ExecutionRecord
    from execution_monitor.services.backend_client import AgentBackendClient
    from execution_monitor.services.record_store import ExecutionRecordStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class ExecutionQueryEngine:
    """Filter state machine plus paginated pulls for one workspace/agent."""

    def __init__(
        self,
        client: AgentBackendClient,
        store: ExecutionRecordStore,
        workspace_id: str,
        agent_id: str,
        *,
        page_size: int = 20,
        debounce_seconds: float = 0.3,
        clock: Clock = utc_now,
    ) -> None:
        if page_size <= 0:
            msg = "page_size must be positive"
            raise ValueError(msg)

        self._client = client
        self._store = store
        self.workspace_id = workspace_id
        self.agent_id = agent_id
        self.page_size = page_size
        self._debounce_seconds = debounce_seconds
        self._clock = clock

        self.filters = FilterState()
        self._page_ids: list[str] = []
        self._total = 0
        self._last_page_len = 0
        self._request_seq = 0
        self._loading = False
        self._notice: str | None = None
        self._debounce_task: asyncio.Task[None] | None = None
        self._closed = False

    # Read-only state

    @property
    def page_ids(self) -> list[str]:
        return list(self._page_ids)

    def page(self) -> list[ExecutionRecord]:
        """Records of the current page, read through the store."""
        return self._store.list(self._page_ids)

    @property
    def total(self) -> int:
        return self._total

    @property
    def has_next(self) -> bool:
        return self._last_page_len >= self.page_size

    @property
    def has_previous(self) -> bool:
        return self.filters.offset > 0

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def notice(self) -> str | None:
        return self._notice

    @property
    def closed(self) -> bool:
        return self._closed

    def snapshot(self) -> FilterSnapshot:
        return FilterSnapshot(
            status=self.filters.status,
            date_range=self.filters.date_range,
            search=self.filters.search,
            search_draft=self.filters.search_draft,
            offset=self.filters.offset,
            page_size=self.page_size,
        )

    # Filter changes

    async def set_status(self, status: StatusFilter) -> bool:
        """Change the status filter. Returns False when nothing changed."""
        if status == self.filters.status:
            return False
        self.filters.status = status
        self.filters.offset = 0
        return await self.refresh()

    async def set_date_range(self, date_range: DateRangeFilter) -> bool:
        if date_range == self.filters.date_range:
            return False
        self.filters.date_range = date_range
        self.filters.offset = 0
        return await self.refresh()

    def type_search(self, text: str) -> None:
        """Record a keystroke; the value settles after the debounce delay."""
        if self._closed:
            return
        self.filters.search_draft = text
        self._cancel_debounce()
        self._debounce_task = asyncio.create_task(self._settle_later())

    async def _settle_later(self) -> None:
        await asyncio.sleep(self._debounce_seconds)
        # Detach first so flush_search does not cancel the running task.
        self._debounce_task = None
        await self.flush_search()

    async def flush_search(self) -> bool:
        """Settle the draft immediately. Returns False when the value is unchanged."""
        self._cancel_debounce()
        if self._closed:
            return False

        settled = self.filters.search_draft.strip()
        if settled == self.filters.search:
            return False

        self.filters.search = settled
        self.filters.offset = 0
        logger.debug(
            "Search settled",
            extra={"workspace_id": self.workspace_id, "agent_id": self.agent_id, "search": settled},
        )
        return await self.refresh()

    def _cancel_debounce(self) -> None:
        task = self._debounce_task
        self._debounce_task = None
        if task is not None and not task.done():
            task.cancel()

    # Pagination

    async def next_page(self) -> bool:
        if not self.has_next:
            return False
        return await self._move_to(self.filters.offset + self.page_size)

    async def previous_page(self) -> bool:
        if not self.has_previous:
            return False
        return await self._move_to(max(0, self.filters.offset - self.page_size))

    async def _move_to(self, offset: int) -> bool:
        """Load the page at ``offset``; a failed load restores the displayed page's offset."""
        previous = self.filters.offset
        self.filters.offset = offset
        seq = self._request_seq + 1
        applied = await self.refresh()
        if not applied and self._is_current(seq):
            self.filters.offset = previous
        return applied

    # Requests

    def _date_bounds(self) -> tuple[datetime | None, datetime | None]:
        return self.filters.date_range.resolve(self._clock())

    def _status_param(self) -> str | None:
        status = self.filters.status
        return None if status is StatusFilter.ALL else status.value

    def build_request(self) -> ListExecutionsQuery:
        """Build the list request for the current settled filter state."""
        start, end = self._date_bounds()
        return ListExecutionsQuery(
            status=self._status_param(),
            start_date=start,
            end_date=end,
            search=self.filters.search or None,
            limit=self.page_size,
            skip=self.filters.offset,
        )

    def build_export_filters(self) -> ExportFilters:
        """Same filters as the list request, without search or pagination."""
        start, end = self._date_bounds()
        return ExportFilters(status=self._status_param(), start_date=start, end_date=end)

    async def refresh(self) -> bool:
        """
        Pull the page for the current filters.

        Only the most recent request may apply its response; earlier ones
        and anything arriving after close are discarded. Returns True when
        the response was applied.
        """
        if self._closed:
            return False

        self._request_seq += 1
        seq = self._request_seq
        query = self.build_request()
        self._loading = True

        try:
            page = await self._client.list_executions(self.workspace_id, self.agent_id, query)
        except BackendError as e:
            if self._is_current(seq):
                self._loading = False
                self._notice = e.message
                logger.warning(
                    "List refresh failed, keeping current page",
                    extra={
                        "workspace_id": self.workspace_id,
                        "agent_id": self.agent_id,
                        "error": e.message,
                        "offset": query.skip,
                    },
                )
            return False

        if not self._is_current(seq):
            logger.debug(
                "Discarded stale list response",
                extra={"workspace_id": self.workspace_id, "agent_id": self.agent_id, "seq": seq},
            )
            return False

        self._loading = False
        self._notice = None
        self._store.upsert_many(page.executions)
        self._page_ids = [record.execution_id for record in page.executions]
        self._last_page_len = len(page.executions)
        self._total = page.count
        return True

    def _is_current(self, seq: int) -> bool:
        return not self._closed and seq == self._request_seq

    def dismiss_notice(self) -> None:
        self._notice = None

    def close(self) -> None:
        """Stop applying responses and cancel the pending search settle."""
        self._closed = True
        self._loading = False
        self._cancel_debounce()
