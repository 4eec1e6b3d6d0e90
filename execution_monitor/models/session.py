"""Read-only snapshots handed to the rendering layer."""

from __future__ import annotations

from pydantic import BaseModel, Field

from execution_monitor.models.execution import ExecutionRecord, LiveProgressEntry
from execution_monitor.models.filters import FilterSnapshot
from execution_monitor.models.test_run import EstimateComparison, TestRunResult


class ExportState(BaseModel):
    dialog_open: bool = False
    is_exporting: bool = False
    last_error: str | None = None


class RetryState(BaseModel):
    in_flight: list[str] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)


class ExecutionViewSnapshot(BaseModel):
    """Everything the history view renders for one workspace/agent."""

    workspace_id: str
    agent_id: str
    filters: FilterSnapshot
    executions: list[ExecutionRecord]
    total: int
    has_next: bool
    has_previous: bool
    is_loading: bool
    notice: str | None = None
    live_progress: list[LiveProgressEntry] = Field(default_factory=list)
    open_details: list[str] = Field(default_factory=list)
    detail_errors: dict[str, str] = Field(default_factory=dict)
    retry: RetryState = Field(default_factory=RetryState)
    export: ExportState = Field(default_factory=ExportState)
    last_test_result: TestRunResult | None = None
    last_comparison: EstimateComparison | None = None
