"""Tests for custom exceptions and error handling utilities."""

from __future__ import annotations

import logging

import pytest

from execution_monitor.exceptions import (
    BackendError,
    ComparisonUnavailableError,
    ExportError,
    MonitorError,
    RetryInFlightError,
    RetryNotAllowedError,
    RetrySubmissionError,
    SessionNotFoundError,
)
from execution_monitor.utils.error_handling import format_exception_for_response, log_errors


class TestExceptions:
    def test_context_defaults_to_empty(self) -> None:
        error = MonitorError("boom")

        assert error.message == "boom"
        assert error.context == {}
        assert str(error) == "boom"

    @pytest.mark.parametrize(
        "exc_class",
        [
            BackendError,
            ComparisonUnavailableError,
            ExportError,
            RetryInFlightError,
            RetryNotAllowedError,
            RetrySubmissionError,
            SessionNotFoundError,
        ],
    )
    def test_subclasses_carry_context(self, exc_class: type[MonitorError]) -> None:
        error = exc_class("failed", context={"execution_id": "exec-1"})

        assert isinstance(error, MonitorError)
        assert error.context["execution_id"] == "exec-1"


class TestLogErrors:
    def test_sync_function_reraises(self, caplog: pytest.LogCaptureFixture) -> None:
        @log_errors("parse_payload")
        def parse() -> None:
            raise ValueError("bad json")

        with caplog.at_level(logging.ERROR), pytest.raises(ValueError, match="bad json"):
            parse()

        record = caplog.records[-1]
        assert record.operation == "parse_payload"
        assert record.error_type == "ValueError"
        assert record.exc_info is not None

    @pytest.mark.asyncio
    async def test_monitor_error_logged_as_warning_with_context(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        @log_errors("retry_execution")
        async def retry() -> None:
            raise RetryInFlightError("already running", context={"execution_id": "exec-1"})

        with caplog.at_level(logging.WARNING), pytest.raises(RetryInFlightError):
            await retry()

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.ctx_execution_id == "exec-1"
        assert record.function == "retry"
        assert record.exc_info is None

    @pytest.mark.asyncio
    async def test_success_passes_through(self) -> None:
        @log_errors("noop")
        async def ok() -> int:
            return 7

        assert await ok() == 7
        assert ok.__name__ == "ok"


class TestFormatExceptionForResponse:
    def test_plain_exception(self) -> None:
        assert format_exception_for_response(RuntimeError("oops")) == {
            "error": "RuntimeError",
            "message": "oops",
        }

    def test_monitor_error_with_context(self) -> None:
        error = BackendError("Export timed out", context={"status_code": 504, "path": object()})

        payload = format_exception_for_response(error)

        assert payload["error"] == "BackendError"
        assert payload["message"] == "Export timed out"
        assert payload["context"]["status_code"] == 504
        assert isinstance(payload["context"]["path"], str)

    def test_empty_context_omitted(self) -> None:
        payload = format_exception_for_response(SessionNotFoundError("No view mounted"))

        assert "context" not in payload
