"""Models for agent execution records, details and the live-progress overlay."""

from __future__ import annotations

from datetime import datetime  # noqa: TC003
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class BackendModel(BaseModel):
    """Base for payloads exchanged with the agent backend (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExecutionStatus(str, Enum):
    """Lifecycle status of an agent execution."""

    PENDING = "pending"
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED}
)


class TriggerType(str, Enum):
    """How an execution was started."""

    MANUAL = "manual"
    SCHEDULED = "scheduled"
    EVENT = "event"


class ExecutionSummary(BackendModel):
    """Aggregate outcome of an execution."""

    total_steps: int = Field(0, ge=0, description="Number of steps in the plan")
    successful_steps: int = Field(0, ge=0, description="Steps that succeeded")
    failed_steps: int = Field(0, ge=0, description="Steps that failed")
    credits_used: float = Field(
        0.0, ge=0, alias="totalCreditsUsed", description="Credits consumed so far"
    )
    description: str | None = Field(None, description="Human-readable summary")


class ExecutionRecord(BackendModel):
    """Summary view of one execution as shown in the history list."""

    execution_id: str = Field(..., min_length=1, description="Opaque execution identifier")
    status: ExecutionStatus = Field(..., description="Current execution status")
    started_at: datetime = Field(..., description="When the execution started")
    completed_at: datetime | None = Field(None, description="When the execution finished")
    duration_ms: int | None = Field(
        None, alias="duration", description="Derived from completed_at - started_at"
    )
    triggered_by: str | None = Field(
        None, description="User who triggered the run; absent means automatic trigger"
    )
    trigger_type: TriggerType | None = Field(None, description="Trigger kind")
    summary: ExecutionSummary = Field(default_factory=ExecutionSummary)

    @model_validator(mode="after")
    def normalize_completion(self) -> ExecutionRecord:
        if not self.status.is_terminal:
            self.completed_at = None
            self.duration_ms = None
            return self

        if self.completed_at is None:
            msg = f"Execution {self.execution_id} is {self.status.value} but has no completed_at"
            raise ValueError(msg)

        if self.duration_ms is None:
            elapsed = self.completed_at - self.started_at
            self.duration_ms = max(0, int(elapsed.total_seconds() * 1000))
        return self

    @property
    def is_automatic(self) -> bool:
        return self.triggered_by is None


class StepResult(BackendModel):
    """Outcome of a single executed step."""

    success: bool
    description: str = ""
    error: str | None = None


class ExecutionStep(BackendModel):
    """One executed step of an execution."""

    step_number: int = Field(..., ge=1)
    action: str
    result: StepResult
    duration_ms: int = Field(0, ge=0)
    credits_used: float = Field(0.0, ge=0)


class ExecutionDetail(ExecutionRecord):
    """Execution record plus its ordered steps (fetched on demand)."""

    steps: list[ExecutionStep] = Field(default_factory=list)

    @field_validator("steps")
    @classmethod
    def validate_step_numbers(cls, steps: list[ExecutionStep]) -> list[ExecutionStep]:
        for expected, step in enumerate(steps, start=1):
            if step.step_number != expected:
                msg = f"Step numbers must be contiguous from 1; got {step.step_number} at position {expected}"
                raise ValueError(msg)
        return steps

    def to_record(self) -> ExecutionRecord:
        """Return the summary part of this detail."""
        return ExecutionRecord.model_validate(self.model_dump(exclude={"steps"}))


class LiveProgressEntry(BaseModel):
    """Ephemeral overlay describing an in-progress execution."""

    model_config = ConfigDict(frozen=True)

    execution_id: str
    current_step: int = Field(0, ge=0)
    total_steps: int = Field(0, ge=0)
    action: str | None = None
    percent: float | None = Field(None, ge=0, le=100)


class ExecutionPage(BaseModel):
    """One page returned by the backend list endpoint."""

    executions: list[ExecutionRecord] = Field(default_factory=list)
    count: int = Field(0, ge=0, description="Total executions matching the filters")
