"""
Request context management using ContextVars.

Carries the request ID and the workspace/agent scope across async
boundaries so log lines from services can be correlated with the
view session that caused them.
"""

from __future__ import annotations

import contextvars
import re
import uuid

request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id",
    default=None,
)
scope_var: contextvars.ContextVar[tuple[str, str] | None] = contextvars.ContextVar(
    "execution_scope",
    default=None,
)

_SCOPE_PATH = re.compile(r"/workspaces/(?P<workspace>[^/]+)/agents/(?P<agent>[^/]+)")


def get_request_id() -> str | None:
    """Get current request ID from context."""
    return request_id_var.get()


def set_request_id(request_id: str) -> None:
    """Set request ID in context."""
    request_id_var.set(request_id)


def generate_request_id() -> str:
    """Generate a new unique request ID."""
    return str(uuid.uuid4())


def get_scope() -> tuple[str, str] | None:
    """Get the (workspace_id, agent_id) scope bound to the current request."""
    return scope_var.get()


def scope_from_path(path: str) -> tuple[str, str] | None:
    """Extract the workspace/agent scope from an API path, if present."""
    match = _SCOPE_PATH.search(path)
    if match is None:
        return None
    return match.group("workspace"), match.group("agent")


def set_scope(scope: tuple[str, str] | None) -> None:
    """Bind a workspace/agent scope to the current context."""
    scope_var.set(scope)


def clear_request_context() -> None:
    """Clear request ID and scope from context."""
    request_id_var.set(None)
    scope_var.set(None)
