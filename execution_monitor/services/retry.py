"""Retry orchestration for failed executions."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from execution_monitor.exceptions import (
    BackendError,
    RetryInFlightError,
    RetryNotAllowedError,
    RetrySubmissionError,
)
from execution_monitor.models.execution import ExecutionStatus
from execution_monitor.utils.error_handling import log_errors

if TYPE_CHECKING:
    from execution_monitor.services.backend_client import AgentBackendClient
    from execution_monitor.services.record_store import ExecutionRecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryOutcome:
    """Result of a successful retry submission."""

    source_execution_id: str
    new_execution_id: str
    message: str


class RetryOrchestrator:
    """
    Submits retries for failed executions.

    At most one submission per source execution is in flight. A failed
    submission is remembered per execution until cleared and never touches
    the record store; a successful one refreshes the list so the new run
    shows up.
    """

    def __init__(
        self,
        client: AgentBackendClient,
        store: ExecutionRecordStore,
        workspace_id: str,
        agent_id: str,
        *,
        refresh_list: Callable[[], Awaitable[object]],
    ) -> None:
        self._client = client
        self._store = store
        self.workspace_id = workspace_id
        self.agent_id = agent_id
        self._refresh_list = refresh_list
        self._in_flight: set[str] = set()
        self._errors: dict[str, str] = {}

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    @property
    def errors(self) -> dict[str, str]:
        return dict(self._errors)

    def can_retry(self, execution_id: str) -> bool:
        record = self._store.get(execution_id)
        return (
            record is not None
            and record.status is ExecutionStatus.FAILED
            and execution_id not in self._in_flight
        )

    def clear_error(self, execution_id: str) -> None:
        self._errors.pop(execution_id, None)

    @log_errors("retry_execution")
    async def retry(self, execution_id: str) -> RetryOutcome:
        record = self._store.get(execution_id)
        if record is None or record.status is not ExecutionStatus.FAILED:
            raise RetryNotAllowedError(
                "Only failed executions can be retried",
                context={
                    "execution_id": execution_id,
                    "status": record.status.value if record else None,
                },
            )
        if execution_id in self._in_flight:
            raise RetryInFlightError(
                "A retry for this execution is already in progress",
                context={"execution_id": execution_id},
            )

        self._in_flight.add(execution_id)
        self._errors.pop(execution_id, None)
        try:
            submission = await self._client.retry_execution(
                self.workspace_id, self.agent_id, execution_id
            )
        except BackendError as e:
            self._errors[execution_id] = e.message
            raise RetrySubmissionError(
                f"Retry failed: {e.message}",
                context={"execution_id": execution_id, **e.context},
            ) from e
        finally:
            self._in_flight.discard(execution_id)

        outcome = RetryOutcome(
            source_execution_id=execution_id,
            new_execution_id=submission.execution_id,
            message=submission.message,
        )
        logger.info(
            "Execution retried",
            extra={
                "workspace_id": self.workspace_id,
                "agent_id": self.agent_id,
                "execution_id": execution_id,
                "new_execution_id": outcome.new_execution_id,
            },
        )
        await self._refresh_list()
        return outcome
