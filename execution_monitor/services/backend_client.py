"""Client for the agent backend's execution endpoints."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError

from execution_monitor.exceptions import BackendError
from execution_monitor.models.execution import ExecutionDetail, ExecutionPage, ExecutionRecord
from execution_monitor.models.test_run import TestRunResult

if TYPE_CHECKING:
    from execution_monitor.models.filters import ExportFilters, ExportFormat, ListExecutionsQuery

logger = logging.getLogger(__name__)


class RetrySubmission:
    """Backend acknowledgement of a retry request."""

    def __init__(self, execution_id: str, message: str) -> None:
        self.execution_id = execution_id
        self.message = message


class AgentBackendClient:
    """
    Thin async wrapper over the backend REST API.

    Every failure (transport error, non-2xx status, malformed payload) is
    raised as BackendError with the operation and scope in its context.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_token: str | None = None,
        timeout_seconds: float = 15.0,
    ) -> None:
        """
        Initialize backend client.

        Args:
            base_url: Backend API root, e.g. https://api.example.com/api
            api_token: Optional bearer token for service-to-service calls
            timeout_seconds: Timeout for HTTP requests in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout_seconds
        self._headers = {"Authorization": f"Bearer {api_token}"} if api_token else {}

    def _agent_url(self, workspace_id: str, agent_id: str) -> str:
        return f"{self.base_url}/workspaces/{workspace_id}/agents/{agent_id}"

    async def _request(
        self,
        method: str,
        url: str,
        *,
        operation: str,
        context: dict[str, object],
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, headers=self._headers) as client:
                response = await client.request(method, url, params=params)
                response.raise_for_status()
                return response
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            raise BackendError(
                _error_message(e.response, f"{operation} failed with status {status_code}"),
                context={"operation": operation, "status_code": status_code, **context},
            ) from e
        except httpx.HTTPError as e:
            raise BackendError(
                f"{operation} failed: {e}",
                context={"operation": operation, "error_type": type(e).__name__, **context},
            ) from e

    async def list_executions(
        self, workspace_id: str, agent_id: str, query: ListExecutionsQuery
    ) -> ExecutionPage:
        """
        Fetch one page of execution summaries.

        Malformed records are skipped individually so one bad row does not
        blank the whole page.
        """
        context: dict[str, object] = {"workspace_id": workspace_id, "agent_id": agent_id}
        response = await self._request(
            "GET",
            f"{self._agent_url(workspace_id, agent_id)}/executions",
            operation="list_executions",
            context=context,
            params=query.to_params(),
        )
        body = _json_object(response, "list_executions", context)

        raw_items = body.get("executions") or []
        records: list[ExecutionRecord] = []
        for raw in raw_items:
            try:
                records.append(ExecutionRecord.model_validate(raw))
            except ValidationError as e:
                logger.warning(
                    "Skipping malformed execution record",
                    extra={
                        **context,
                        "execution_id": raw.get("executionId") if isinstance(raw, dict) else None,
                        "error": str(e),
                    },
                )

        count = body.get("count")
        page = ExecutionPage(
            executions=records,
            count=count if isinstance(count, int) and count >= 0 else len(records),
        )

        logger.debug(
            "Listed executions",
            extra={**context, "returned": len(records), "count": page.count, "skip": query.skip},
        )
        return page

    async def get_execution(
        self, workspace_id: str, agent_id: str, execution_id: str
    ) -> ExecutionDetail:
        """Fetch one execution with its steps."""
        context: dict[str, object] = {
            "workspace_id": workspace_id,
            "agent_id": agent_id,
            "execution_id": execution_id,
        }
        response = await self._request(
            "GET",
            f"{self._agent_url(workspace_id, agent_id)}/executions/{execution_id}",
            operation="get_execution",
            context=context,
        )
        body = _json_object(response, "get_execution", context)
        try:
            return ExecutionDetail.model_validate(body.get("execution", body))
        except ValidationError as e:
            raise BackendError(
                "Execution detail payload is invalid",
                context={"operation": "get_execution", "error": str(e), **context},
            ) from e

    async def retry_execution(
        self, workspace_id: str, agent_id: str, execution_id: str
    ) -> RetrySubmission:
        """Ask the backend to start a new execution with the same trigger context."""
        context: dict[str, object] = {
            "workspace_id": workspace_id,
            "agent_id": agent_id,
            "execution_id": execution_id,
        }
        response = await self._request(
            "POST",
            f"{self._agent_url(workspace_id, agent_id)}/executions/{execution_id}/retry",
            operation="retry_execution",
            context=context,
        )
        body = _json_object(response, "retry_execution", context)
        new_id = body.get("executionId")
        if not isinstance(new_id, str) or not new_id:
            raise BackendError(
                "Retry response did not include a new execution id",
                context={"operation": "retry_execution", **context},
            )

        logger.info(
            "Retry submitted",
            extra={**context, "new_execution_id": new_id},
        )
        return RetrySubmission(execution_id=new_id, message=str(body.get("message") or ""))

    async def export_executions(
        self,
        workspace_id: str,
        agent_id: str,
        filters: ExportFilters,
        export_format: ExportFormat,
    ) -> bytes:
        """Download the full filtered execution set; the body is fully buffered."""
        context: dict[str, object] = {
            "workspace_id": workspace_id,
            "agent_id": agent_id,
            "format": export_format.value,
        }
        response = await self._request(
            "GET",
            f"{self._agent_url(workspace_id, agent_id)}/executions/export",
            operation="export_executions",
            context=context,
            params=filters.to_params(export_format),
        )
        return response.content

    async def test_agent(self, workspace_id: str, agent_id: str) -> TestRunResult:
        """Run the backend's dry run for an agent."""
        context: dict[str, object] = {"workspace_id": workspace_id, "agent_id": agent_id}
        response = await self._request(
            "POST",
            f"{self._agent_url(workspace_id, agent_id)}/test",
            operation="test_agent",
            context=context,
        )
        body = _json_object(response, "test_agent", context)
        try:
            return TestRunResult.model_validate(body.get("result", body))
        except ValidationError as e:
            raise BackendError(
                "Test run payload is invalid",
                context={"operation": "test_agent", "error": str(e), **context},
            ) from e


def _json_object(
    response: httpx.Response, operation: str, context: dict[str, object]
) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError as e:
        raise BackendError(
            f"{operation} returned a non-JSON body",
            context={"operation": operation, **context},
        ) from e
    if not isinstance(body, dict):
        raise BackendError(
            f"{operation} returned an unexpected payload",
            context={"operation": operation, **context},
        )
    if body.get("success") is False:
        raise BackendError(
            str(body.get("error") or f"{operation} was rejected"),
            context={"operation": operation, **context},
        )
    return body


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return default
