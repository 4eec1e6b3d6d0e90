"""Execution history view endpoints, scoped to a workspace and agent."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response, status

from execution_monitor.dependencies import get_session_manager, get_view_session, verify_token
from execution_monitor.exceptions import (
    BackendError,
    ComparisonUnavailableError,
    ExportError,
    RetryInFlightError,
    RetryNotAllowedError,
    RetrySubmissionError,
)
from execution_monitor.models.api import (
    FiltersUpdate,
    MountResponse,
    PageDirection,
    RetryResponse,
    SearchUpdate,
    UnmountResponse,
)
from execution_monitor.models.execution import ExecutionDetail
from execution_monitor.models.filters import ExportFormat
from execution_monitor.models.session import ExecutionViewSnapshot
from execution_monitor.models.test_run import TestLiveComparison
from execution_monitor.utils.error_handling import format_exception_for_response

if TYPE_CHECKING:
    from execution_monitor.services.session import ExecutionViewSession
    from execution_monitor.services.session_manager import SessionManager

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/workspaces/{workspace_id}/agents/{agent_id}",
    tags=["executions"],
    dependencies=[Depends(verify_token)],
)

ExecutionId = Annotated[str, Path(description="Execution id", min_length=1)]


@router.post("/view", response_model=MountResponse, response_model_by_alias=False)
async def mount_view(
    workspace_id: str,
    agent_id: str,
    manager: SessionManager = Depends(get_session_manager),
) -> MountResponse:
    """Mount the execution history view and load its first page."""
    session, created = await manager.open(workspace_id, agent_id)
    return MountResponse(created=created, snapshot=session.snapshot())


@router.delete("/view", response_model=UnmountResponse)
async def unmount_view(
    workspace_id: str,
    agent_id: str,
    manager: SessionManager = Depends(get_session_manager),
) -> UnmountResponse:
    """Unmount the view; in-flight responses are discarded."""
    return UnmountResponse(closed=manager.close(workspace_id, agent_id))


@router.get("/view", response_model=ExecutionViewSnapshot, response_model_by_alias=False)
async def get_view(
    session: ExecutionViewSession = Depends(get_view_session),
) -> ExecutionViewSnapshot:
    return session.snapshot()


@router.put("/view/filters", response_model=ExecutionViewSnapshot, response_model_by_alias=False)
async def update_filters(
    update: FiltersUpdate,
    session: ExecutionViewSession = Depends(get_view_session),
) -> ExecutionViewSnapshot:
    """Change status and/or date range; either change resets to the first page."""
    if update.status is not None:
        await session.query.set_status(update.status)
    if update.date_range is not None:
        await session.query.set_date_range(update.date_range)
    return session.snapshot()


@router.put("/view/search", response_model=ExecutionViewSnapshot, response_model_by_alias=False)
async def update_search(
    update: SearchUpdate,
    session: ExecutionViewSession = Depends(get_view_session),
) -> ExecutionViewSnapshot:
    """Record search input. The value is applied after the debounce delay unless settled."""
    session.query.type_search(update.text)
    if update.settle:
        await session.query.flush_search()
    return session.snapshot()


@router.post(
    "/view/page/{direction}",
    response_model=ExecutionViewSnapshot,
    response_model_by_alias=False,
)
async def change_page(
    direction: PageDirection,
    session: ExecutionViewSession = Depends(get_view_session),
) -> ExecutionViewSnapshot:
    if direction == "next":
        await session.query.next_page()
    else:
        await session.query.previous_page()
    return session.snapshot()


@router.post("/view/refresh", response_model=ExecutionViewSnapshot, response_model_by_alias=False)
async def refresh_view(
    session: ExecutionViewSession = Depends(get_view_session),
) -> ExecutionViewSnapshot:
    await session.query.refresh()
    return session.snapshot()


@router.delete("/view/notice", response_model=ExecutionViewSnapshot, response_model_by_alias=False)
async def dismiss_notice(
    session: ExecutionViewSession = Depends(get_view_session),
) -> ExecutionViewSnapshot:
    session.query.dismiss_notice()
    return session.snapshot()


@router.get(
    "/executions/{execution_id}",
    response_model=ExecutionDetail,
    response_model_by_alias=False,
)
async def open_detail(
    execution_id: ExecutionId,
    session: ExecutionViewSession = Depends(get_view_session),
) -> ExecutionDetail:
    """Open the detail panel for an execution (fetched once, then cached)."""
    detail = await session.open_detail(execution_id)
    if detail is None:
        error = session.snapshot().detail_errors.get(execution_id)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={
                "error": "BackendError",
                "message": error or "Execution detail is not available",
                "context": {"execution_id": execution_id},
            },
        )
    return detail


@router.delete("/executions/{execution_id}/detail", status_code=status.HTTP_204_NO_CONTENT)
async def close_detail(
    execution_id: ExecutionId,
    session: ExecutionViewSession = Depends(get_view_session),
) -> Response:
    session.close_detail(execution_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/executions/{execution_id}/comparison",
    response_model=TestLiveComparison,
    response_model_by_alias=False,
)
async def compare_with_test(
    execution_id: ExecutionId,
    session: ExecutionViewSession = Depends(get_view_session),
) -> TestLiveComparison:
    """Compare the view's last dry run with what the execution actually did."""
    try:
        return await session.compare_with_execution(execution_id)
    except ComparisonUnavailableError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=format_exception_for_response(e)
        ) from e
    except BackendError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=format_exception_for_response(e)
        ) from e


@router.post(
    "/executions/{execution_id}/retry",
    response_model=RetryResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def retry_execution(
    execution_id: ExecutionId,
    session: ExecutionViewSession = Depends(get_view_session),
) -> RetryResponse:
    """Retry a failed execution; the new run shows up after the list refresh."""
    try:
        outcome = await session.retries.retry(execution_id)
    except RetryNotAllowedError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=format_exception_for_response(e)
        ) from e
    except RetryInFlightError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=format_exception_for_response(e)
        ) from e
    except RetrySubmissionError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=format_exception_for_response(e)
        ) from e

    return RetryResponse(
        source_execution_id=outcome.source_execution_id,
        new_execution_id=outcome.new_execution_id,
        message=outcome.message,
    )


@router.post("/export/dialog", response_model=ExecutionViewSnapshot, response_model_by_alias=False)
async def open_export_dialog(
    session: ExecutionViewSession = Depends(get_view_session),
) -> ExecutionViewSnapshot:
    session.exports.open_dialog()
    return session.snapshot()


@router.delete(
    "/export/dialog", response_model=ExecutionViewSnapshot, response_model_by_alias=False
)
async def close_export_dialog(
    session: ExecutionViewSession = Depends(get_view_session),
) -> ExecutionViewSnapshot:
    session.exports.close_dialog()
    return session.snapshot()


@router.get("/export")
async def export_executions(
    export_format: Annotated[ExportFormat, Query(alias="format")] = ExportFormat.STRUCTURED,
    session: ExecutionViewSession = Depends(get_view_session),
) -> Response:
    """Download every execution matching the current filters."""
    if session.exports.is_exporting:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "ExportError", "message": "An export is already in progress"},
        )
    try:
        artifact = await session.exports.export(export_format)
    except ExportError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=format_exception_for_response(e)
        ) from e

    return Response(
        content=artifact.content,
        media_type=artifact.media_type,
        headers={"Content-Disposition": f'attachment; filename="{artifact.filename}"'},
    )
