"""Request and response bodies of the HTTP API."""

from __future__ import annotations

from typing import ClassVar, Literal

from pydantic import BaseModel, Field

from execution_monitor.models.filters import DateRangeFilter, StatusFilter
from execution_monitor.models.plan import AgentPlan
from execution_monitor.models.session import ExecutionViewSnapshot
from execution_monitor.models.test_run import EstimateComparison, TestRunResult


class MountResponse(BaseModel):
    created: bool = Field(..., description="False when the view was already mounted")
    snapshot: ExecutionViewSnapshot


class UnmountResponse(BaseModel):
    closed: bool


class FiltersUpdate(BaseModel):
    """Either filter may be omitted to leave it unchanged."""

    status: StatusFilter | None = None
    date_range: DateRangeFilter | None = None


class SearchUpdate(BaseModel):
    text: str = Field("", max_length=500)
    settle: bool = Field(False, description="Settle immediately instead of after the debounce delay")


PageDirection = Literal["next", "previous"]


class RetryResponse(BaseModel):
    source_execution_id: str
    new_execution_id: str
    message: str


class SimulateRequest(BaseModel):
    plan: AgentPlan
    workspace_id: str | None = Field(
        None, description="Scopes the previous-estimate comparison of stateless dry runs"
    )
    entity_count: int = Field(1, ge=0, description="Default match count for bulk steps")
    variables: dict[str, str | int | float] = Field(
        default_factory=dict, description="Values for @contact.* / @deal.* references"
    )


class TestResultResponse(BaseModel):
    __test__: ClassVar[bool] = False

    result: TestRunResult | None = None
    comparison: EstimateComparison | None = None


class EventAccepted(BaseModel):
    accepted: bool = True
    dispatched: int = Field(0, description="Mounted views the event was routed to")
