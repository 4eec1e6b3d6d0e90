"""Previous-vs-current dry-run estimate comparison."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from execution_monitor.models.test_run import EstimateComparison

if TYPE_CHECKING:
    from execution_monitor.models.test_run import TestRunResult

logger = logging.getLogger(__name__)

Scope = tuple[str | None, str]


class EstimateHistory:
    """
    Keeps the last successful dry-run result per workspace/agent.

    Stateless dry runs that name no workspace share the ``None`` workspace.
    """

    def __init__(self) -> None:
        self._last: dict[Scope, TestRunResult] = {}

    def last(self, workspace_id: str | None, agent_id: str) -> TestRunResult | None:
        return self._last.get((workspace_id, agent_id))

    def record(
        self, workspace_id: str | None, agent_id: str, result: TestRunResult
    ) -> EstimateComparison | None:
        """
        Store ``result`` and compare it with the previous one.

        Failed runs are not stored (their totals are partial) and yield no
        comparison. Returns None when there is nothing to compare against.
        """
        if not result.success:
            return None

        scope = (workspace_id, agent_id)
        previous = self._last.get(scope)
        self._last[scope] = result
        if previous is None:
            return None

        comparison = compare_estimates(previous, result)
        if comparison.credits_delta:
            logger.info(
                "Dry-run estimate changed",
                extra={
                    "workspace_id": workspace_id,
                    "agent_id": agent_id,
                    "credits_delta": comparison.credits_delta,
                    "percent_change": comparison.percent_change,
                },
            )
        return comparison

    def forget(self, workspace_id: str | None, agent_id: str) -> None:
        self._last.pop((workspace_id, agent_id), None)


def compare_estimates(previous: TestRunResult, current: TestRunResult) -> EstimateComparison:
    """Deltas are taken on the max end of each range."""
    prev_credits = previous.total_estimated_credits
    cur_credits = current.total_estimated_credits
    prev_seconds = previous.estimated_duration.active_seconds
    cur_seconds = current.estimated_duration.active_seconds

    percent: float | None = None
    if prev_credits.max:
        percent = round((cur_credits.max - prev_credits.max) / prev_credits.max * 100, 2)

    return EstimateComparison(
        previous_credits=prev_credits,
        current_credits=cur_credits,
        credits_delta=cur_credits.max - prev_credits.max,
        previous_active_seconds=prev_seconds,
        current_active_seconds=cur_seconds,
        active_seconds_delta=cur_seconds.max - prev_seconds.max,
        percent_change=percent,
    )
