"""Static per-action cost table used by the dry-run estimator."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from execution_monitor.models.plan import ActionKind

DEFAULT_CREDIT_COSTS: dict[ActionKind, float] = {
    ActionKind.SEND_EMAIL: 2,
    ActionKind.LINKEDIN_INVITE: 2,
    ActionKind.WEB_SEARCH: 1,
    ActionKind.CREATE_TASK: 0,
    ActionKind.ADD_TAG: 0,
    ActionKind.REMOVE_TAG: 0,
    ActionKind.UPDATE_FIELD: 0,
    ActionKind.UPDATE_DEAL_VALUE: 0,
    ActionKind.ENRICH_CONTACT: 3,
}

DEFAULT_ACTIVE_SECONDS: dict[ActionKind, float] = {
    ActionKind.SEND_EMAIL: 2.0,
    ActionKind.LINKEDIN_INVITE: 3.0,
    ActionKind.WEB_SEARCH: 4.0,
    ActionKind.CREATE_TASK: 0.5,
    ActionKind.ADD_TAG: 0.2,
    ActionKind.REMOVE_TAG: 0.2,
    ActionKind.UPDATE_FIELD: 0.3,
    ActionKind.UPDATE_DEAL_VALUE: 0.3,
    ActionKind.ENRICH_CONTACT: 3.0,
}


def _complete(values: dict[ActionKind, float], defaults: dict[ActionKind, float], name: str) -> dict[ActionKind, float]:
    merged = dict(defaults)
    for kind, value in values.items():
        if value < 0:
            msg = f"{name} for {kind.value} must be non-negative"
            raise ValueError(msg)
        merged[kind] = value
    return merged


class CostTable(BaseModel):
    """Credits and active time per action kind.

    Kinds missing from configuration fall back to the defaults, so every
    ActionKind always has an entry.
    """

    model_config = ConfigDict(frozen=True)

    credits: dict[ActionKind, float] = Field(default_factory=lambda: dict(DEFAULT_CREDIT_COSTS))
    active_seconds: dict[ActionKind, float] = Field(
        default_factory=lambda: dict(DEFAULT_ACTIVE_SECONDS)
    )
    high_usage_threshold_credits: float = Field(
        1000.0, gt=0, description="Monthly credits above which a projection is flagged"
    )

    @field_validator("credits")
    @classmethod
    def fill_credits(cls, value: dict[ActionKind, float]) -> dict[ActionKind, float]:
        return _complete(value, DEFAULT_CREDIT_COSTS, "credits")

    @field_validator("active_seconds")
    @classmethod
    def fill_seconds(cls, value: dict[ActionKind, float]) -> dict[ActionKind, float]:
        return _complete(value, DEFAULT_ACTIVE_SECONDS, "active_seconds")

    def credits_for(self, kind: ActionKind) -> float:
        return self.credits[kind]

    def seconds_for(self, kind: ActionKind) -> float:
        return self.active_seconds[kind]
