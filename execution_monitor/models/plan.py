"""Parsed agent step plans consumed by the dry-run simulator.

A plan is an immutable tuple of tagged step variants. The ``kind`` field is
the discriminator, so every payload maps onto exactly one variant and the
simulator can dispatch over a closed set of step types.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal

from croniter import croniter
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ParamValue = str | int | float | bool | list[str] | None


class ActionKind(str, Enum):
    """Side-effecting actions an agent can perform."""

    SEND_EMAIL = "send_email"
    LINKEDIN_INVITE = "linkedin_invite"
    WEB_SEARCH = "web_search"
    CREATE_TASK = "create_task"
    ADD_TAG = "add_tag"
    REMOVE_TAG = "remove_tag"
    UPDATE_FIELD = "update_field"
    UPDATE_DEAL_VALUE = "update_deal_value"
    ENRICH_CONTACT = "enrich_contact"


class _PlanNode(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class ActionStep(_PlanNode):
    """A single linear action."""

    kind: Literal["action"] = "action"
    action: ActionKind
    params: dict[str, ParamValue] = Field(default_factory=dict)
    integration: str | None = Field(None, description="Integration the action runs through")
    template_id: str | None = Field(None, description="Email/message template reference")


class WaitStep(_PlanNode):
    """Idle delay before the next step."""

    kind: Literal["wait"] = "wait"
    duration_seconds: float = Field(..., ge=0)
    label: str | None = None


class BulkStep(_PlanNode):
    """Fan-out: run ``per_item`` once for every matching entity."""

    kind: Literal["bulk"] = "bulk"
    label: str = Field(..., min_length=1, description="e.g. 'email matching contacts'")
    per_item: tuple[ActionStep, ...] = Field(..., min_length=1)
    match_count: int | None = Field(
        None, ge=0, description="Matching entities; defaults to the simulated entity count"
    )


class ConditionalStep(_PlanNode):
    """Branch on a condition evaluated at run time."""

    kind: Literal["conditional"] = "conditional"
    condition: str = Field(..., min_length=1)
    then_steps: tuple[PlanStep, ...] = ()
    else_steps: tuple[PlanStep, ...] = ()


PlanStep = Annotated[
    ActionStep | WaitStep | BulkStep | ConditionalStep,
    Field(discriminator="kind"),
]

ConditionalStep.model_rebuild()


class ScheduleTrigger(_PlanNode):
    """Recurring trigger; exactly one of cron or runs_per_month."""

    cron: str | None = None
    runs_per_month: int | None = Field(None, ge=0)

    @field_validator("cron")
    @classmethod
    def validate_cron(cls, value: str | None) -> str | None:
        if value is None:
            return value
        if not croniter.is_valid(value):
            msg = f"Invalid cron expression: {value}"
            raise ValueError(msg)
        return value

    @model_validator(mode="after")
    def validate_one_source(self) -> ScheduleTrigger:
        if (self.cron is None) == (self.runs_per_month is None):
            msg = "schedule requires exactly one of cron or runs_per_month"
            raise ValueError(msg)
        return self


class AgentPlan(_PlanNode):
    """Everything the simulator needs to know about one agent."""

    agent_id: str = Field(..., min_length=1)
    steps: tuple[PlanStep, ...] = ()
    allowed_integrations: frozenset[str] = frozenset()
    known_template_ids: frozenset[str] = frozenset()
    schedule: ScheduleTrigger | None = None
    has_instructions: bool = Field(
        True, description="False when the agent has no instructions at all"
    )
