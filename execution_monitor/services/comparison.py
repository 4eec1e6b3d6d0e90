"""
Test-vs-live comparison.

Lines up the steps of a dry run with the steps an execution actually ran
and reports where the prediction was off. Pure: the caller supplies both
sides (the view's last test result and a fetched execution detail).
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from execution_monitor.models.test_run import StepComparison, StepStatus, TestLiveComparison

if TYPE_CHECKING:
    from datetime import datetime

    from execution_monitor.models.execution import ExecutionDetail, ExecutionStep
    from execution_monitor.models.test_run import TestRunResult, TestStepResult, ValueRange

logger = logging.getLogger(__name__)

STALE_AFTER = timedelta(hours=1)
CREDIT_TOLERANCE = 1e-9

STALE_DATA_REASON = "Data may have changed between test and live run"
IN_PROGRESS_REASON = "Execution is still in progress"
CREDITS_REASON = "Actual credits fall outside the estimated range"


def _format_credits(value: ValueRange) -> str:
    if value.is_point:
        return f"{value.max:g}"
    return f"{value.min:g}-{value.max:g}"


def _within(value: float, expected: ValueRange) -> bool:
    return expected.min - CREDIT_TOLERANCE <= value <= expected.max + CREDIT_TOLERANCE


def _mismatch(
    predicted: TestStepResult | None, actual: ExecutionStep | None, *, finished: bool
) -> str | None:
    if predicted is None:
        return f"Unexpected step: {actual.action} ran but was not predicted"
    if actual is None:
        if finished:
            return f"Predicted {predicted.action} did not run"
        return "Step has not run yet"
    if predicted.status is not StepStatus.SIMULATED:
        return f"Dry run did not simulate this step ({predicted.status.value})"
    if predicted.action != actual.action:
        return f"Action mismatch: predicted {predicted.action}, got {actual.action}"
    if not actual.result.success:
        return f"Step failed: {actual.result.error or 'unknown error'}"
    if not _within(actual.credits_used, predicted.estimated_credits):
        return (
            f"Credit mismatch: predicted {_format_credits(predicted.estimated_credits)}, "
            f"got {actual.credits_used:g}"
        )
    return None


def compare_test_to_live(
    result: TestRunResult,
    detail: ExecutionDetail,
    *,
    tested_at: datetime | None = None,
) -> TestLiveComparison:
    """
    Compare a dry run with a real execution, step by step.

    Steps are paired by step number. A step matches when the action is the
    same, the live step succeeded and its credits fall inside the predicted
    range. ``tested_at`` enables the stale-data warning when the dry run
    and the execution are more than an hour apart.
    """
    finished = detail.status.is_terminal
    predicted_steps = {step.step_number: step for step in result.steps}
    actual_steps = {step.step_number: step for step in detail.steps}

    comparisons: list[StepComparison] = []
    for number in range(1, max(len(result.steps), len(detail.steps)) + 1):
        predicted = predicted_steps.get(number)
        actual = actual_steps.get(number)
        reason = _mismatch(predicted, actual, finished=finished)
        comparisons.append(
            StepComparison(
                step_number=number,
                predicted_action=predicted.action if predicted else None,
                actual_action=actual.action if actual else None,
                predicted_credits=predicted.estimated_credits if predicted else None,
                actual_credits=actual.credits_used if actual else None,
                match=reason is None,
                mismatch_reason=reason,
            )
        )

    matched = sum(1 for comparison in comparisons if comparison.match)
    percentage = round(matched / len(comparisons) * 100, 2) if comparisons else 100.0

    if detail.steps:
        actual_credits = sum(step.credits_used for step in detail.steps)
    else:
        actual_credits = detail.summary.credits_used

    reasons: list[str] = []
    stale = False
    gap: float | None = None
    if tested_at is not None:
        gap = abs((detail.started_at - tested_at).total_seconds())
        stale = gap > STALE_AFTER.total_seconds()
        if stale:
            reasons.append(STALE_DATA_REASON)
    if not finished:
        reasons.append(IN_PROGRESS_REASON)
    if not result.success:
        if result.failed_at_step is not None:
            reasons.append(f"Dry run stopped at step {result.failed_at_step}")
        else:
            reasons.append("Dry run did not succeed")
    if not _within(actual_credits, result.total_estimated_credits):
        reasons.append(CREDITS_REASON)

    comparison = TestLiveComparison(
        execution_id=detail.execution_id,
        overall_match=matched == len(comparisons),
        match_percentage=percentage,
        predicted_credits=result.total_estimated_credits,
        actual_credits=actual_credits,
        step_comparisons=comparisons,
        possible_reasons=reasons,
        stale_data_warning=stale,
        seconds_between_test_and_live=gap,
    )
    logger.info(
        "Compared dry run with execution",
        extra={
            "execution_id": detail.execution_id,
            "match_percentage": percentage,
            "overall_match": comparison.overall_match,
            "stale_data_warning": stale,
        },
    )
    return comparison
