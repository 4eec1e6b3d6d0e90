"""
Execution view session.

A session is the lifetime of one mounted execution history view for a
workspace/agent pair. It owns the record store and wires the query
engine, reconciler, retry orchestrator and export pipeline around it.
Closing the session unsubscribes from push events and makes every
in-flight response be discarded.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import TYPE_CHECKING

from execution_monitor.exceptions import BackendError, ComparisonUnavailableError
from execution_monitor.models.cost_table import CostTable
from execution_monitor.models.session import ExecutionViewSnapshot, ExportState, RetryState
from execution_monitor.services.comparison import compare_test_to_live
from execution_monitor.services.export import ExportPipeline
from execution_monitor.services.query_engine import ExecutionQueryEngine, utc_now
from execution_monitor.services.reconciler import LiveEventReconciler
from execution_monitor.services.record_store import ExecutionRecordStore
from execution_monitor.services.retry import RetryOrchestrator
from execution_monitor.services.simulator import simulate_plan

if TYPE_CHECKING:
    from execution_monitor.models.execution import ExecutionDetail
    from execution_monitor.models.plan import AgentPlan
    from execution_monitor.models.test_run import (
        EstimateComparison,
        TestLiveComparison,
        TestRunResult,
    )
    from execution_monitor.services.backend_client import AgentBackendClient
    from execution_monitor.services.estimate_history import EstimateHistory
    from execution_monitor.services.event_hub import EventHub

logger = logging.getLogger(__name__)


class ExecutionViewSession:
    def __init__(
        self,
        workspace_id: str,
        agent_id: str,
        *,
        client: AgentBackendClient,
        hub: EventHub,
        history: EstimateHistory,
        page_size: int = 20,
        debounce_seconds: float = 0.3,
        orphan_grace_seconds: float = 5.0,
        cost_table: CostTable | None = None,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.workspace_id = workspace_id
        self.agent_id = agent_id
        self._client = client
        self._history = history
        self._cost_table = cost_table or CostTable()
        self._monotonic = monotonic
        self._clock = clock

        self.store = ExecutionRecordStore()
        self.query = ExecutionQueryEngine(
            client,
            self.store,
            workspace_id,
            agent_id,
            page_size=page_size,
            debounce_seconds=debounce_seconds,
            clock=clock,
        )
        self.reconciler = LiveEventReconciler(
            workspace_id,
            agent_id,
            self.store,
            refresh_list=self.query.refresh,
            refresh_detail=self.refresh_detail,
            is_detail_open=self.is_detail_open,
            orphan_grace_seconds=orphan_grace_seconds,
            clock=monotonic,
        )
        self.retries = RetryOrchestrator(
            client, self.store, workspace_id, agent_id, refresh_list=self.query.refresh
        )
        self.exports = ExportPipeline(
            client, workspace_id, agent_id, filters=self.query.build_export_filters, clock=clock
        )

        self._open_details: set[str] = set()
        self._detail_errors: dict[str, str] = {}
        self._last_test: TestRunResult | None = None
        self._last_test_at: datetime | None = None
        self._last_comparison: EstimateComparison | None = None
        self._closed = False
        self.last_activity = monotonic()

        self._subscription = hub.subscribe((workspace_id, agent_id), self.reconciler.handle)

    @property
    def scope(self) -> tuple[str, str]:
        return self.workspace_id, self.agent_id

    @property
    def closed(self) -> bool:
        return self._closed

    def touch(self) -> None:
        self.last_activity = self._monotonic()

    async def mount(self) -> bool:
        """Load the first page."""
        logger.info(
            "Execution view mounted",
            extra={"workspace_id": self.workspace_id, "agent_id": self.agent_id},
        )
        return await self.query.refresh()

    # Detail panel

    def is_detail_open(self, execution_id: str) -> bool:
        return execution_id in self._open_details

    async def open_detail(self, execution_id: str) -> ExecutionDetail | None:
        """Open the detail panel; fetches only when the detail is not cached."""
        self._open_details.add(execution_id)
        if not self.store.has_detail(execution_id):
            await self.refresh_detail(execution_id)
        return self.store.get_detail(execution_id)

    def close_detail(self, execution_id: str) -> None:
        self._open_details.discard(execution_id)
        self._detail_errors.pop(execution_id, None)

    async def refresh_detail(self, execution_id: str) -> bool:
        """Re-fetch a detail; on failure the cached one stays and an error is noted."""
        if self._closed:
            return False
        try:
            detail = await self._client.get_execution(
                self.workspace_id, self.agent_id, execution_id
            )
        except BackendError as e:
            if not self._closed:
                self._detail_errors[execution_id] = e.message
            logger.warning(
                "Detail refresh failed",
                extra={"execution_id": execution_id, "error": e.message},
            )
            return False

        if self._closed:
            return False
        self.store.attach_detail(execution_id, detail)
        self._detail_errors.pop(execution_id, None)
        return True

    # Dry runs

    async def run_agent_test(self) -> TestRunResult:
        """Ask the backend to dry-run this agent and keep the result."""
        result = await self._client.test_agent(self.workspace_id, self.agent_id)
        if self._closed:
            logger.debug(
                "Discarded test result after close",
                extra={"workspace_id": self.workspace_id, "agent_id": self.agent_id},
            )
            return result
        self._keep_test_result(result)
        return result

    def simulate(
        self,
        plan: AgentPlan,
        *,
        entity_count: int = 1,
        variables: Mapping[str, str | int | float] | None = None,
    ) -> TestRunResult:
        """Dry-run a plan locally with the configured cost table."""
        result = simulate_plan(
            plan, entity_count=entity_count, cost_table=self._cost_table, variables=variables
        )
        self._keep_test_result(result)
        return result

    def _keep_test_result(self, result: TestRunResult) -> None:
        self._last_test = result
        self._last_test_at = self._clock()
        self._last_comparison = self._history.record(self.workspace_id, self.agent_id, result)

    async def compare_with_execution(self, execution_id: str) -> TestLiveComparison:
        """Compare the last dry run with what ``execution_id`` actually did."""
        if self._last_test is None:
            msg = "Run a dry run before comparing it with an execution"
            raise ComparisonUnavailableError(msg, context={"execution_id": execution_id})

        if not self.store.has_detail(execution_id):
            await self.refresh_detail(execution_id)
        detail = self.store.get_detail(execution_id)
        if detail is None:
            error = self._detail_errors.get(execution_id)
            if not self.is_detail_open(execution_id):
                self._detail_errors.pop(execution_id, None)
            raise BackendError(
                error or "Execution detail is not available",
                context={"execution_id": execution_id},
            )

        return compare_test_to_live(self._last_test, detail, tested_at=self._last_test_at)

    @property
    def last_test_result(self) -> TestRunResult | None:
        return self._last_test

    @property
    def last_comparison(self) -> EstimateComparison | None:
        return self._last_comparison

    def snapshot(self) -> ExecutionViewSnapshot:
        return ExecutionViewSnapshot(
            workspace_id=self.workspace_id,
            agent_id=self.agent_id,
            filters=self.query.snapshot(),
            executions=self.query.page(),
            total=self.query.total,
            has_next=self.query.has_next,
            has_previous=self.query.has_previous,
            is_loading=self.query.is_loading,
            notice=self.query.notice,
            live_progress=sorted(self.reconciler.progress.values(), key=lambda e: e.execution_id),
            open_details=sorted(self._open_details),
            detail_errors=dict(self._detail_errors),
            retry=RetryState(
                in_flight=sorted(self.retries.in_flight),
                errors=self.retries.errors,
            ),
            export=ExportState(
                dialog_open=self.exports.dialog_open,
                is_exporting=self.exports.is_exporting,
                last_error=self.exports.last_error,
            ),
            last_test_result=self._last_test,
            last_comparison=self._last_comparison,
        )

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._subscription.unsubscribe()
        self.query.close()
        self.reconciler.close()
        self.store.clear()
        self._open_details.clear()
        logger.info(
            "Execution view closed",
            extra={"workspace_id": self.workspace_id, "agent_id": self.agent_id},
        )
