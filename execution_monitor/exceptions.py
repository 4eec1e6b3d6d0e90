"""
Custom exception classes with context for the execution monitor.

All exceptions inherit from MonitorError and support attaching
contextual information for structured logging and API responses.
"""

from __future__ import annotations


class MonitorError(Exception):
    """
    Base exception for the execution monitor.

    Attributes:
        message: Human-readable error message
        context: Optional dictionary with additional context for logging/debugging
    """

    def __init__(self, message: str, context: dict[str, object] | None = None):
        """
        Initialize exception with message and optional context.

        Args:
            message: Human-readable error message
            context: Optional dictionary with contextual information
                    (operation name, execution id, status code, etc.)
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}


class BackendError(MonitorError):
    """
    A call to the agent backend failed.

    Covers list, detail, retry, export and test calls. Transient by
    nature: callers keep their last known good state and surface a notice.

    Example:
        raise BackendError(
            "Failed to list executions",
            context={
                "operation": "list_executions",
                "status_code": 503,
            }
        )
    """


class RetryNotAllowedError(MonitorError):
    """
    Retry requested for an execution that is unknown or not failed.

    Example:
        raise RetryNotAllowedError(
            "Only failed executions can be retried",
            context={"execution_id": "exec-1", "status": "completed"}
        )
    """


class RetryInFlightError(MonitorError):
    """A retry for the same source execution is already being submitted."""


class RetrySubmissionError(MonitorError):
    """The backend rejected or failed a retry submission."""


class ExportError(MonitorError):
    """
    Export of the filtered execution set failed.

    Raised when the backend call fails or the buffered payload is not a
    well-formed document in the requested format.
    """


class ConfigurationError(MonitorError):
    """
    Configuration error.

    Raised when configuration loading, validation, or parsing fails.

    Example:
        raise ConfigurationError(
            "Missing required configuration key",
            context={
                "key": "backend.base_url",
                "config_file": "/app/config.yaml"
            }
        )
    """


class SessionNotFoundError(MonitorError):
    """No execution view session is mounted for the workspace/agent scope."""


class ComparisonUnavailableError(MonitorError):
    """A test-vs-live comparison was requested before any dry run was kept."""
