"""Dry-run (test mode) endpoints."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, status

from execution_monitor.config import get_settings
from execution_monitor.dependencies import get_estimate_history, get_view_session, verify_token
from execution_monitor.exceptions import BackendError
from execution_monitor.models.api import SimulateRequest, TestResultResponse
from execution_monitor.services.simulator import simulate_plan
from execution_monitor.utils.error_handling import format_exception_for_response

if TYPE_CHECKING:
    from execution_monitor.services.estimate_history import EstimateHistory
    from execution_monitor.services.session import ExecutionViewSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["dry-run"], dependencies=[Depends(verify_token)])


@router.post("/dry-run", response_model=TestResultResponse, response_model_by_alias=False)
async def simulate(
    request: SimulateRequest,
    history: EstimateHistory = Depends(get_estimate_history),
) -> TestResultResponse:
    """Simulate a plan without a mounted view. Nothing is executed."""
    result = simulate_plan(
        request.plan,
        entity_count=request.entity_count,
        cost_table=get_settings().cost_table,
        variables=request.variables,
    )
    comparison = history.record(request.workspace_id, request.plan.agent_id, result)
    logger.info(
        "Dry run simulated",
        extra={
            "workspace_id": request.workspace_id,
            "agent_id": request.plan.agent_id,
            "success": result.success,
            "failed_at_step": result.failed_at_step,
        },
    )
    return TestResultResponse(result=result, comparison=comparison)


@router.post(
    "/workspaces/{workspace_id}/agents/{agent_id}/test",
    response_model=TestResultResponse,
    response_model_by_alias=False,
)
async def test_agent(
    session: ExecutionViewSession = Depends(get_view_session),
) -> TestResultResponse:
    """Run the backend's dry run for the mounted agent."""
    try:
        result = await session.run_agent_test()
    except BackendError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=format_exception_for_response(e)
        ) from e
    return TestResultResponse(result=result, comparison=session.last_comparison)


@router.post(
    "/workspaces/{workspace_id}/agents/{agent_id}/test/simulate",
    response_model=TestResultResponse,
    response_model_by_alias=False,
)
async def simulate_for_view(
    request: SimulateRequest,
    session: ExecutionViewSession = Depends(get_view_session),
) -> TestResultResponse:
    """Simulate a plan locally and keep it as the view's last test result."""
    if request.plan.agent_id != session.agent_id:
        raise HTTPException(
            status_code=422,
            detail="Plan belongs to a different agent",
        )
    result = session.simulate(
        request.plan, entity_count=request.entity_count, variables=request.variables
    )
    return TestResultResponse(result=result, comparison=session.last_comparison)


@router.get(
    "/workspaces/{workspace_id}/agents/{agent_id}/test/last",
    response_model=TestResultResponse,
    response_model_by_alias=False,
)
async def last_test_result(
    session: ExecutionViewSession = Depends(get_view_session),
) -> TestResultResponse:
    return TestResultResponse(
        result=session.last_test_result, comparison=session.last_comparison
    )
