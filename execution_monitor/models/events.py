"""Push events delivered by the execution engine."""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import Field, TypeAdapter

from execution_monitor.models.execution import BackendModel


class _ScopedEvent(BackendModel):
    workspace_id: str = Field(..., min_length=1)
    agent_id: str = Field(..., min_length=1)
    execution_id: str = Field(..., min_length=1)

    @property
    def scope(self) -> tuple[str, str]:
        return self.workspace_id, self.agent_id


class ExecutionStartedEvent(_ScopedEvent):
    """A new execution exists server-side."""

    type: Literal["started"] = "started"


class ExecutionProgressEvent(_ScopedEvent):
    """An execution advanced to a new step."""

    type: Literal["progress"] = "progress"
    step: int = Field(..., ge=0)
    total: int = Field(..., ge=0)
    action: str | None = None
    progress: float | None = Field(None, ge=0, le=100)


class ExecutionCompletedEvent(_ScopedEvent):
    """An execution finished successfully."""

    type: Literal["completed"] = "completed"


class ExecutionFailedEvent(_ScopedEvent):
    """An execution finished with an error."""

    type: Literal["failed"] = "failed"
    error: str | None = None
    failed_at_step: int | None = None


ExecutionEvent = Annotated[
    ExecutionStartedEvent | ExecutionProgressEvent | ExecutionCompletedEvent | ExecutionFailedEvent,
    Field(discriminator="type"),
]

execution_event_adapter: TypeAdapter[ExecutionEvent] = TypeAdapter(ExecutionEvent)


def parse_event(payload: dict[str, object]) -> ExecutionEvent:
    """Validate a raw push payload into a typed event."""
    return execution_event_adapter.validate_python(payload)
