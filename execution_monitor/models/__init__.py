"""Models for the execution monitor."""

from execution_monitor.models.cost_table import CostTable
from execution_monitor.models.events import (
    ExecutionCompletedEvent,
    ExecutionEvent,
    ExecutionFailedEvent,
    ExecutionProgressEvent,
    ExecutionStartedEvent,
    parse_event,
)
from execution_monitor.models.execution import (
    ExecutionDetail,
    ExecutionPage,
    ExecutionRecord,
    ExecutionStatus,
    ExecutionStep,
    ExecutionSummary,
    LiveProgressEntry,
    StepResult,
    TriggerType,
)
from execution_monitor.models.filters import (
    DateRangeFilter,
    ExportFilters,
    ExportFormat,
    FilterState,
    ListExecutionsQuery,
    StatusFilter,
)
from execution_monitor.models.plan import (
    ActionKind,
    ActionStep,
    AgentPlan,
    BulkStep,
    ConditionalStep,
    PlanStep,
    ScheduleTrigger,
    WaitStep,
)
from execution_monitor.models.test_run import (
    BulkActionEstimate,
    CostDriver,
    EstimateComparison,
    StepStatus,
    TestRunResult,
    TestStepResult,
    TestWarning,
    ValueRange,
)

__all__ = [
    "ActionKind",
    "ActionStep",
    "AgentPlan",
    "BulkActionEstimate",
    "BulkStep",
    "ConditionalStep",
    "CostDriver",
    "CostTable",
    "DateRangeFilter",
    "EstimateComparison",
    "ExecutionCompletedEvent",
    "ExecutionDetail",
    "ExecutionEvent",
    "ExecutionFailedEvent",
    "ExecutionPage",
    "ExecutionProgressEvent",
    "ExecutionRecord",
    "ExecutionStartedEvent",
    "ExecutionStatus",
    "ExecutionStep",
    "ExecutionSummary",
    "ExportFilters",
    "ExportFormat",
    "FilterState",
    "ListExecutionsQuery",
    "LiveProgressEntry",
    "PlanStep",
    "ScheduleTrigger",
    "StatusFilter",
    "StepResult",
    "StepStatus",
    "TestRunResult",
    "TestStepResult",
    "TestWarning",
    "TriggerType",
    "ValueRange",
    "WaitStep",
    "parse_event",
]
