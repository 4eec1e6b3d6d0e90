"""
Dry-run simulator and cost estimator.

``simulate_plan`` walks an agent's step plan against a synthetic world
state and produces previews plus credit and time estimates without
performing any side effect. It is a pure function of its arguments:
identical inputs give an identical TestRunResult, which is what makes the
previous-vs-current estimate comparison meaningful.

Costs are tracked along two paths through the plan. Wherever a
conditional appears, the low path takes the cheaper arm and the high path
the more expensive one, so totals come out as ranges.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, assert_never

from croniter import croniter

from execution_monitor.models.cost_table import CostTable
from execution_monitor.models.plan import (
    ActionKind,
    ActionStep,
    AgentPlan,
    BulkStep,
    ConditionalStep,
    ParamValue,
    PlanStep,
    ScheduleTrigger,
    WaitStep,
)
from execution_monitor.models.test_run import (
    BulkActionEstimate,
    CostDriver,
    CreditBreakdown,
    DurationEstimate,
    MonthlyProjection,
    Severity,
    StepPreview,
    StepStatus,
    TestRunResult,
    TestStepResult,
    TestWarning,
    ValueRange,
)
from execution_monitor.services.suggestions import suggest_fix

logger = logging.getLogger(__name__)

Variables = Mapping[str, str | int | float]

# Cron schedules are counted over a fixed window so projections do not
# depend on when the simulation runs.
PROJECTION_ANCHOR = datetime(2024, 1, 1, tzinfo=UTC)
PROJECTION_WINDOW = timedelta(days=30)
MAX_CRON_RUNS = 50_000

EMPTY_PLAN_MESSAGE = (
    "Agent has instructions but no parsed actions. Instructions may need to be re-saved."
)

ACTION_LABELS: dict[str, str] = {
    ActionKind.SEND_EMAIL.value: "Email",
    ActionKind.LINKEDIN_INVITE.value: "LinkedIn invitation",
    ActionKind.WEB_SEARCH.value: "Web search",
    ActionKind.CREATE_TASK.value: "Task creation",
    ActionKind.ADD_TAG.value: "Tag addition",
    ActionKind.REMOVE_TAG.value: "Tag removal",
    ActionKind.UPDATE_FIELD.value: "Field update",
    ActionKind.UPDATE_DEAL_VALUE.value: "Deal value update",
    ActionKind.ENRICH_CONTACT.value: "Contact enrichment",
    "wait": "Wait action",
    "conditional": "Conditional branch",
    "bulk": "Bulk action",
}

_VARIABLE_PATTERN = re.compile(r"@(contact|deal)\.(\w+)")


# Synthetic world state


@dataclass
class _World:
    """What the plan would have changed so far. Never touches real data."""

    tags: set[str] = field(default_factory=set)
    fields: dict[str, str] = field(default_factory=dict)
    deal_value: str | None = None
    tasks: list[str] = field(default_factory=list)
    emails: list[str] = field(default_factory=list)
    invites: list[str] = field(default_factory=list)
    enriched: bool = False

    def copy(self) -> _World:
        return _World(
            tags=set(self.tags),
            fields=dict(self.fields),
            deal_value=self.deal_value,
            tasks=list(self.tasks),
            emails=list(self.emails),
            invites=list(self.invites),
            enriched=self.enriched,
        )


def resolve_variables(value: ParamValue, variables: Variables) -> ParamValue:
    """Replace ``@contact.x`` / ``@deal.x`` references; unknown ones are left as-is."""
    if isinstance(value, str):
        return _VARIABLE_PATTERN.sub(
            lambda m: str(variables.get(f"{m.group(1)}.{m.group(2)}", m.group(0))), value
        )
    if isinstance(value, list):
        return [str(resolve_variables(item, variables)) for item in value]
    return value


def _param(params: Mapping[str, ParamValue], *names: str, default: str) -> str:
    for name in names:
        value = params.get(name)
        if value not in (None, "", []):
            return ", ".join(value) if isinstance(value, list) else str(value)
    return default


# Per-action previews. Each returns (description, details) and may update
# the world so later previews reflect earlier steps.

Preview = Callable[[ActionStep, Mapping[str, ParamValue], _World], tuple[str, dict[str, Any]]]


def _preview_send_email(
    step: ActionStep, params: Mapping[str, ParamValue], world: _World
) -> tuple[str, dict[str, Any]]:
    to = _param(params, "to", "recipient", default="[contact]")
    details: dict[str, Any] = {
        "to": _param(params, "to", "recipient", default="[contact email]"),
        "subject": _param(params, "subject", default="[email subject]"),
        "body": _param(params, "body", "content", default="[email body]"),
    }
    if step.template_id:
        details["template"] = step.template_id
    if to in world.emails:
        details["alreadyEmailedThisRun"] = True
    world.emails.append(to)
    return f"Would send email to {to}", details


def _preview_linkedin_invite(
    step: ActionStep, params: Mapping[str, ParamValue], world: _World
) -> tuple[str, dict[str, Any]]:
    recipient = _param(params, "recipient", default="[contact]")
    world.invites.append(recipient)
    return f"Would send LinkedIn invitation to {recipient}", {
        "recipient": _param(params, "recipient", default="[contact name]"),
        "message": _param(params, "message", default="[invitation message]"),
    }


def _preview_web_search(
    step: ActionStep, params: Mapping[str, ParamValue], world: _World
) -> tuple[str, dict[str, Any]]:
    query = _param(params, "query", default="[search query]")
    return f'Would search web for "{query}"', {
        "query": query,
        "note": "Web search is read-only and safe to execute",
    }


def _preview_create_task(
    step: ActionStep, params: Mapping[str, ParamValue], world: _World
) -> tuple[str, dict[str, Any]]:
    title = _param(params, "title", "name", default="[task title]")
    world.tasks.append(title)
    return f'Would create task: "{title}"', {
        "title": title,
        "assignee": _param(params, "assignee", default="[assignee]"),
        "dueDate": _param(params, "dueDate", "due_date", default="[due date]"),
    }


def _preview_add_tag(
    step: ActionStep, params: Mapping[str, ParamValue], world: _World
) -> tuple[str, dict[str, Any]]:
    tag = _param(params, "tag", "tagName", default="[tag]")
    details: dict[str, Any] = {"tag": tag, "target": _param(params, "target", default="contact")}
    if tag in world.tags:
        details["alreadyPresent"] = True
    world.tags.add(tag)
    return f'Would add tag "{tag}" to contact', details


def _preview_remove_tag(
    step: ActionStep, params: Mapping[str, ParamValue], world: _World
) -> tuple[str, dict[str, Any]]:
    tag = _param(params, "tag", "tagName", default="[tag]")
    details: dict[str, Any] = {"tag": tag, "target": _param(params, "target", default="contact")}
    if tag in world.tags:
        details["addedEarlierThisRun"] = True
        world.tags.discard(tag)
    return f'Would remove tag "{tag}" from contact', details


def _preview_update_field(
    step: ActionStep, params: Mapping[str, ParamValue], world: _World
) -> tuple[str, dict[str, Any]]:
    name = _param(params, "field", default="[field]")
    value = _param(params, "value", default="[value]")
    previous = world.fields.get(name) or _param(params, "previousValue", default="[current value]")
    world.fields[name] = value
    return f'Would update {name} to "{value}"', {
        "field": name,
        "newValue": value,
        "previousValue": previous,
    }


def _preview_update_deal_value(
    step: ActionStep, params: Mapping[str, ParamValue], world: _World
) -> tuple[str, dict[str, Any]]:
    amount = _param(params, "value", "amount", default="[amount]")
    previous = world.deal_value or _param(params, "previousValue", default="[current value]")
    world.deal_value = amount
    return f"Would update deal value to ${amount}", {"newValue": amount, "previousValue": previous}


def _preview_enrich_contact(
    step: ActionStep, params: Mapping[str, ParamValue], world: _World
) -> tuple[str, dict[str, Any]]:
    fields = params.get("fields")
    details: dict[str, Any] = {
        "provider": _param(params, "provider", default="Apollo"),
        "fields": list(fields) if isinstance(fields, list) else ["company", "title", "email", "phone"],
        "note": "Sample enrichment data would be returned",
    }
    if world.enriched:
        details["alreadyEnrichedThisRun"] = True
    world.enriched = True
    return "Would enrich contact with external data", details


PREVIEWS: dict[ActionKind, Preview] = {
    ActionKind.SEND_EMAIL: _preview_send_email,
    ActionKind.LINKEDIN_INVITE: _preview_linkedin_invite,
    ActionKind.WEB_SEARCH: _preview_web_search,
    ActionKind.CREATE_TASK: _preview_create_task,
    ActionKind.ADD_TAG: _preview_add_tag,
    ActionKind.REMOVE_TAG: _preview_remove_tag,
    ActionKind.UPDATE_FIELD: _preview_update_field,
    ActionKind.UPDATE_DEAL_VALUE: _preview_update_deal_value,
    ActionKind.ENRICH_CONTACT: _preview_enrich_contact,
}


# Cost tallies


@dataclass
class _Driver:
    occurrences: int = 0
    credits: float = 0.0
    seconds: float = 0.0


@dataclass
class _Tally:
    """Costs along one path through the plan."""

    linear_credits: float = 0.0
    bulk_credits: float = 0.0
    active_seconds: float = 0.0
    wait_seconds: float = 0.0
    drivers: dict[ActionKind, _Driver] = field(default_factory=dict)

    @property
    def credits(self) -> float:
        return self.linear_credits + self.bulk_credits

    def add_action(self, kind: ActionKind, costs: CostTable, times: int = 1, *, bulk: bool = False) -> None:
        credits = costs.credits_for(kind) * times
        seconds = costs.seconds_for(kind) * times
        if bulk:
            self.bulk_credits += credits
        else:
            self.linear_credits += credits
        self.active_seconds += seconds
        driver = self.drivers.setdefault(kind, _Driver())
        driver.occurrences += times
        driver.credits += credits
        driver.seconds += seconds

    def absorb(self, other: _Tally) -> None:
        self.linear_credits += other.linear_credits
        self.bulk_credits += other.bulk_credits
        self.active_seconds += other.active_seconds
        self.wait_seconds += other.wait_seconds
        for kind, driver in other.drivers.items():
            mine = self.drivers.setdefault(kind, _Driver())
            mine.occurrences += driver.occurrences
            mine.credits += driver.credits
            mine.seconds += driver.seconds


@dataclass
class _Cost:
    """Low and high path tallies for a step or a sequence of steps."""

    low: _Tally = field(default_factory=_Tally)
    high: _Tally = field(default_factory=_Tally)

    def absorb(self, other: _Cost) -> None:
        self.low.absorb(other.low)
        self.high.absorb(other.high)


def _span(a: float, b: float) -> ValueRange:
    return ValueRange(min=min(a, b), max=max(a, b))


def _path_key(tally: _Tally) -> tuple[float, float, float]:
    return (tally.credits, tally.active_seconds, tally.wait_seconds)


# Preconditions


def _precondition_error(step: PlanStep, plan: AgentPlan) -> str | None:
    """First violated precondition in a step, including nested arms and bulk bodies."""
    if isinstance(step, ActionStep):
        if step.integration is not None and step.integration not in plan.allowed_integrations:
            return f"Integration '{step.integration}' is not enabled for this agent"
        if step.template_id is not None and step.template_id not in plan.known_template_ids:
            return f"Template '{step.template_id}' does not exist"
        return None
    if isinstance(step, WaitStep):
        return None
    if isinstance(step, BulkStep):
        return _first_error(step.per_item, plan)
    if isinstance(step, ConditionalStep):
        return _first_error(step.then_steps, plan) or _first_error(step.else_steps, plan)
    assert_never(step)


def _first_error(steps: Sequence[PlanStep], plan: AgentPlan) -> str | None:
    for step in steps:
        error = _precondition_error(step, plan)
        if error is not None:
            return error
    return None


# Walk


class _Walker:
    """Carries the per-call inputs through the recursive walk."""

    def __init__(
        self,
        entity_count: int,
        cost_table: CostTable,
        variables: Variables,
    ) -> None:
        self.entity_count = entity_count
        self.costs = cost_table
        self.variables = variables
        self.bulk_actions: list[BulkActionEstimate] = []

    def step(
        self, step: PlanStep, world: _World, step_number: int
    ) -> tuple[str, StepPreview, _Cost]:
        """Simulate one step; returns (action label, preview, cost)."""
        if isinstance(step, ActionStep):
            return self._action(step, world)
        if isinstance(step, WaitStep):
            return self._wait(step)
        if isinstance(step, BulkStep):
            return self._bulk(step, world, step_number)
        if isinstance(step, ConditionalStep):
            return self._conditional(step, world, step_number)
        assert_never(step)

    def _action(self, step: ActionStep, world: _World) -> tuple[str, StepPreview, _Cost]:
        params = {key: resolve_variables(value, self.variables) for key, value in step.params.items()}
        description, details = PREVIEWS[step.action](step, params, world)
        if step.integration:
            details["integration"] = step.integration

        cost = _Cost()
        cost.low.add_action(step.action, self.costs)
        cost.high.add_action(step.action, self.costs)
        return step.action.value, StepPreview(description=description, details=details), cost

    def _wait(self, step: WaitStep) -> tuple[str, StepPreview, _Cost]:
        cost = _Cost()
        cost.low.wait_seconds = step.duration_seconds
        cost.high.wait_seconds = step.duration_seconds
        details: dict[str, Any] = {"durationSeconds": step.duration_seconds}
        if step.label:
            details["label"] = step.label
        preview = StepPreview(
            description=f"Would wait for {format_duration(step.duration_seconds)}",
            details=details,
        )
        return "wait", preview, cost

    def _bulk(
        self, step: BulkStep, world: _World, step_number: int
    ) -> tuple[str, StepPreview, _Cost]:
        match_count = step.match_count if step.match_count is not None else self.entity_count

        # Per-item previews run against a scratch world: each item is a
        # different entity from the one the linear steps act on.
        scratch = world.copy()
        item_previews = [self._action(item, scratch)[1].description for item in step.per_item]

        per_item_credits = sum(self.costs.credits_for(item.action) for item in step.per_item)
        per_item_seconds = sum(self.costs.seconds_for(item.action) for item in step.per_item)

        cost = _Cost()
        for item in step.per_item:
            cost.low.add_action(item.action, self.costs, match_count, bulk=True)
            cost.high.add_action(item.action, self.costs, match_count, bulk=True)

        self.bulk_actions.append(
            BulkActionEstimate(
                step_number=step_number,
                label=step.label,
                match_count=match_count,
                per_item_credits=per_item_credits,
                per_item_seconds=per_item_seconds,
                total_credits=per_item_credits * match_count,
                total_seconds=per_item_seconds * match_count,
            )
        )
        preview = StepPreview(
            description=f"Would {step.label} ({match_count} matching)",
            details={
                "label": step.label,
                "matchCount": match_count,
                "perItem": item_previews,
                "perItemCredits": per_item_credits,
            },
        )
        return "bulk", preview, cost

    def _conditional(
        self, step: ConditionalStep, world: _World, step_number: int
    ) -> tuple[str, StepPreview, _Cost]:
        # Either arm may run, so arm effects stay on copies of the world.
        then_previews, then_cost = self.sequence(step.then_steps, world.copy(), step_number)
        else_previews, else_cost = self.sequence(step.else_steps, world.copy(), step_number)

        cost = _Cost(
            low=min(then_cost.low, else_cost.low, key=_path_key),
            high=max(then_cost.high, else_cost.high, key=_path_key),
        )
        preview = StepPreview(
            description=f"Would evaluate condition: {step.condition}",
            details={
                "condition": step.condition,
                "then": then_previews,
                "else": else_previews,
                "thenCredits": _span(then_cost.low.credits, then_cost.high.credits).model_dump(),
                "elseCredits": _span(else_cost.low.credits, else_cost.high.credits).model_dump(),
            },
        )
        return "conditional", preview, cost

    def sequence(
        self, steps: Sequence[PlanStep], world: _World, step_number: int
    ) -> tuple[list[str], _Cost]:
        previews: list[str] = []
        total = _Cost()
        for step in steps:
            _, preview, cost = self.step(step, world, step_number)
            previews.append(preview.description)
            total.absorb(cost)
        return previews, total


def format_duration(seconds: float) -> str:
    """Compact human duration: ``90`` -> ``1m 30s``, ``86400`` -> ``1d``."""
    remaining = int(round(seconds))
    if remaining == 0:
        return "0s"
    parts = []
    for unit, size in (("d", 86400), ("h", 3600), ("m", 60), ("s", 1)):
        amount, remaining = divmod(remaining, size)
        if amount:
            parts.append(f"{amount}{unit}")
    return " ".join(parts)


def _dry_run_note(action: str) -> str:
    return f"DRY RUN - {ACTION_LABELS.get(action, action)} not performed"


def count_cron_runs(
    expression: str,
    *,
    start: datetime = PROJECTION_ANCHOR,
    window: timedelta = PROJECTION_WINDOW,
) -> int:
    """Number of cron firings in ``[start, start + window)``, capped at MAX_CRON_RUNS."""
    end = start + window
    iterator = croniter(expression, start - timedelta(seconds=1))
    runs = 0
    while runs < MAX_CRON_RUNS:
        fire_at: datetime = iterator.get_next(datetime)
        if fire_at >= end:
            break
        runs += 1
    return runs


def runs_per_month(schedule: ScheduleTrigger) -> int:
    if schedule.runs_per_month is not None:
        return schedule.runs_per_month
    if schedule.cron is None:
        return 0
    return count_cron_runs(schedule.cron)


def simulate_plan(
    plan: AgentPlan,
    *,
    entity_count: int,
    cost_table: CostTable,
    variables: Variables | None = None,
) -> TestRunResult:
    """
    Simulate ``plan`` and estimate its cost.

    Precondition failures (an integration not allowed for the agent, an
    unknown template id) never raise: the offending step gets status
    ``error``, every later step is ``skipped`` and the partial result is
    returned with ``success=False``.

    Args:
        plan: Parsed step plan for one agent
        entity_count: Target entities; the default match count for bulk steps
        cost_table: Credits and active seconds per action kind
        variables: ``contact.*`` / ``deal.*`` values for ``@`` references

    Returns:
        TestRunResult with per-step previews, warnings and estimates
    """
    if entity_count < 0:
        msg = "entity_count must be non-negative"
        raise ValueError(msg)

    walker = _Walker(entity_count, cost_table, variables or {})
    world = _World()
    steps: list[TestStepResult] = []
    warnings: list[TestWarning] = []
    total = _Cost()
    error: str | None = None
    failed_at: int | None = None

    if not plan.steps and plan.has_instructions:
        warnings.append(
            TestWarning(
                step=0,
                severity=Severity.WARNING,
                message=EMPTY_PLAN_MESSAGE,
                suggestion=suggest_fix(EMPTY_PLAN_MESSAGE),
            )
        )

    for step_number, step in enumerate(plan.steps, start=1):
        if failed_at is not None:
            action = step.action.value if isinstance(step, ActionStep) else step.kind
            steps.append(
                TestStepResult(
                    step_number=step_number,
                    action=action,
                    status=StepStatus.SKIPPED,
                    preview=StepPreview(description=f"Skipped because step {failed_at} failed"),
                )
            )
            continue

        problem = _precondition_error(step, plan)
        if problem is not None:
            error, failed_at = problem, step_number
            action = step.action.value if isinstance(step, ActionStep) else step.kind
            steps.append(
                TestStepResult(
                    step_number=step_number,
                    action=action,
                    status=StepStatus.ERROR,
                    preview=StepPreview(
                        description=f"Error simulating {action}", details={"error": problem}
                    ),
                )
            )
            warnings.append(
                TestWarning(
                    step=step_number,
                    severity=Severity.ERROR,
                    message=problem,
                    suggestion=suggest_fix(problem),
                )
            )
            continue

        action, preview, cost = walker.step(step, world, step_number)
        total.absorb(cost)
        steps.append(
            TestStepResult(
                step_number=step_number,
                action=action,
                status=StepStatus.SIMULATED,
                preview=preview,
                estimated_credits=_span(cost.low.credits, cost.high.credits),
                estimated_seconds=_span(cost.low.active_seconds, cost.high.active_seconds),
                note=_dry_run_note(action),
            )
        )

    credits = _span(total.low.credits, total.high.credits)
    wait = _span(total.low.wait_seconds, total.high.wait_seconds)
    active = _span(total.low.active_seconds, total.high.active_seconds)

    projection: MonthlyProjection | None = None
    if plan.schedule is not None and failed_at is None:
        runs = runs_per_month(plan.schedule)
        monthly_credits = credits.scale(runs)
        threshold = cost_table.high_usage_threshold_credits
        projection = MonthlyProjection(
            runs_per_month=runs,
            credits=monthly_credits,
            active_seconds=active.scale(runs),
            high_usage_threshold=threshold,
            exceeds_threshold=monthly_credits.max > threshold,
        )
        if projection.exceeds_threshold:
            message = (
                f"Projected monthly usage of up to {monthly_credits.max:g} credits "
                f"exceeds the {threshold:g} credit threshold"
            )
            warnings.append(
                TestWarning(
                    step=0,
                    severity=Severity.WARNING,
                    message=message,
                    suggestion=suggest_fix(message),
                )
            )

    result = TestRunResult(
        success=failed_at is None,
        steps=steps,
        warnings=warnings,
        bulk_actions=walker.bulk_actions,
        breakdown=_breakdown(total),
        credits=CreditBreakdown(
            linear=_span(total.low.linear_credits, total.high.linear_credits),
            bulk=_span(total.low.bulk_credits, total.high.bulk_credits),
        ),
        total_estimated_credits=credits,
        estimated_duration=DurationEstimate(
            active_seconds=active,
            wait_seconds=wait if wait.max > 0 else None,
        ),
        monthly_projection=projection,
        error=error,
        failed_at_step=failed_at,
    )

    logger.debug(
        "Simulated plan",
        extra={
            "agent_id": plan.agent_id,
            "steps": len(steps),
            "success": result.success,
            "credits_min": credits.min,
            "credits_max": credits.max,
        },
    )
    return result


def _breakdown(total: _Cost) -> list[CostDriver]:
    drivers = []
    for kind in ActionKind:
        low = total.low.drivers.get(kind, _Driver())
        high = total.high.drivers.get(kind, _Driver())
        if not (low.occurrences or high.occurrences):
            continue
        drivers.append(
            CostDriver(
                action=kind.value,
                occurrences=_span(low.occurrences, high.occurrences),
                credits=_span(low.credits, high.credits),
                seconds=_span(low.seconds, high.seconds),
            )
        )
    return drivers
