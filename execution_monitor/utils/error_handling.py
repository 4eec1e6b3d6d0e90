"""
Error handling utilities for the execution monitor.

Provides a logging decorator for service operations and a formatter that
turns MonitorError instances into API error payloads.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

from execution_monitor.exceptions import MonitorError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def log_errors(operation_name: str) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator to log errors with context.

    MonitorError subclasses are logged as warnings with their context (they
    are expected, recoverable outcomes); anything else is logged with a
    traceback. The exception is always re-raised.

    Args:
        operation_name: Name of the operation for logging context

    Example:
        @log_errors("retry_execution")
        async def retry(self, execution_id: str) -> RetryOutcome:
            ...
    """

    def _log(func: Callable[..., Any], e: Exception) -> None:
        extra: dict[str, object] = {
            "operation": operation_name,
            "error_type": type(e).__name__,
            "function": func.__name__,
        }
        if isinstance(e, MonitorError):
            extra.update({f"ctx_{key}": value for key, value in e.context.items()})
            logger.warning(f"{operation_name} failed: {e}", extra=extra)
        else:
            logger.exception(f"Error in {operation_name}", extra=extra)

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                _log(func, e)
                raise

        @wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                _log(func, e)
                raise

        if inspect.iscoroutinefunction(func):
            return async_wrapper  # type: ignore[return-value]
        return sync_wrapper

    return decorator


def format_exception_for_response(e: Exception) -> dict[str, object]:
    """
    Format exception for API error response.

    Example:
        try:
            await retries.retry(execution_id)
        except RetryInFlightError as e:
            raise HTTPException(status_code=409, detail=format_exception_for_response(e))
    """
    error_dict: dict[str, object] = {
        "error": type(e).__name__,
        "message": str(e),
    }

    if isinstance(e, MonitorError) and e.context:
        error_dict["context"] = {key: _json_safe(value) for key, value in e.context.items()}

    return error_dict


def _json_safe(value: object) -> object:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)
