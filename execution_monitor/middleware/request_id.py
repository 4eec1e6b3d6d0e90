"""
Middleware to add request ID and execution scope to all requests.

Generates and propagates request IDs across async boundaries for log correlation.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from starlette.middleware.base import BaseHTTPMiddleware

from execution_monitor.utils.request_context import (
    clear_request_context,
    generate_request_id,
    scope_from_path,
    set_request_id,
    set_scope,
)

if TYPE_CHECKING:
    from fastapi import Request

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware to track request IDs and workspace/agent scope."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        """Process request and set request ID in context."""
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        set_request_id(request_id)

        scope = scope_from_path(request.url.path)
        set_scope(scope)

        should_log = not request.url.path.startswith("/health")
        if should_log:
            logger.info(
                "Request started",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "workspace_id": scope[0] if scope else None,
                    "agent_id": scope[1] if scope else None,
                },
            )

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id

            if should_log:
                logger.info(
                    "Request completed",
                    extra={
                        "request_id": request_id,
                        "status_code": response.status_code,
                    },
                )

            return response
        finally:
            clear_request_context()
