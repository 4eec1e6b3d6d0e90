import os
import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

# Set up minimal test environment BEFORE any imports from execution_monitor
# This must happen before pytest collects tests
_tmp_dir = tempfile.TemporaryDirectory(prefix="pytest_config_")
_config_file = Path(_tmp_dir.name) / "config.yaml"
_config_file.write_text(
    """
auth:
  token: test-token-123

backend:
  base_url: http://backend.test/api
  timeout_seconds: 5

executions:
  page_size: 20
  search_debounce_ms: 20
"""
)
os.environ["CONFIG_PATH"] = str(_config_file)

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=UTC)


def _make_record(
    execution_id: str,
    status: str = "completed",
    *,
    started_at: datetime | None = None,
    description: str | None = None,
    triggered_by: str | None = None,
    credits: float = 0.0,
):
    from execution_monitor.models.execution import ExecutionRecord, ExecutionStatus

    started = started_at or NOW - timedelta(hours=1)
    terminal = ExecutionStatus(status).is_terminal
    return ExecutionRecord(
        execution_id=execution_id,
        status=status,
        started_at=started,
        completed_at=started + timedelta(minutes=1) if terminal else None,
        triggered_by=triggered_by,
        summary={"description": description, "credits_used": credits},
    )


class FakeBackend:
    """In-memory stand-in for AgentBackendClient."""

    def __init__(self) -> None:
        from execution_monitor.models.test_run import TestRunResult

        self.records = {}
        self.details = {}
        self.list_calls = []
        self.detail_calls = []
        self.retry_calls = []
        self.export_calls = []
        self.fail_list = False
        self.fail_detail = False
        self.fail_retry = False
        self.fail_export = False
        self.export_payload = b'[{"executionId": "exec-1"}]'
        self.next_retry_id = "exec-2"
        self.test_result = TestRunResult(success=True)

    def add(self, *records):
        for record in records:
            self.records[record.execution_id] = record

    async def list_executions(self, workspace_id, agent_id, query):
        from execution_monitor.exceptions import BackendError
        from execution_monitor.models.execution import ExecutionPage

        self.list_calls.append(query)
        if self.fail_list:
            raise BackendError("Backend unavailable", context={"status_code": 503})

        items = list(self.records.values())
        if query.status is not None:
            items = [r for r in items if r.status.value == query.status]
        if query.start_date is not None:
            items = [r for r in items if r.started_at >= query.start_date]
        if query.end_date is not None:
            items = [r for r in items if r.started_at <= query.end_date]
        if query.search:
            needle = query.search.lower()
            items = [
                r
                for r in items
                if needle in r.execution_id.lower()
                or needle in (r.summary.description or "").lower()
            ]
        items.sort(key=lambda r: r.started_at, reverse=True)
        return ExecutionPage(
            executions=items[query.skip : query.skip + query.limit], count=len(items)
        )

    async def get_execution(self, workspace_id, agent_id, execution_id):
        from execution_monitor.exceptions import BackendError

        self.detail_calls.append(execution_id)
        if self.fail_detail or execution_id not in self.details:
            raise BackendError("Execution not found", context={"status_code": 404})
        return self.details[execution_id]

    async def retry_execution(self, workspace_id, agent_id, execution_id):
        from execution_monitor.exceptions import BackendError
        from execution_monitor.services.backend_client import RetrySubmission

        self.retry_calls.append(execution_id)
        if self.fail_retry:
            raise BackendError("Retry rejected", context={"status_code": 500})
        new_id = self.next_retry_id
        self.add(_make_record(new_id, "running", started_at=NOW))
        return RetrySubmission(execution_id=new_id, message="Retry started")

    async def export_executions(self, workspace_id, agent_id, filters, export_format):
        from execution_monitor.exceptions import BackendError

        self.export_calls.append((filters, export_format))
        if self.fail_export:
            raise BackendError("Export timed out", context={"status_code": 504})
        return self.export_payload

    async def test_agent(self, workspace_id, agent_id):
        return self.test_result


@pytest.fixture
def make_record():
    """Factory for ExecutionRecord fixtures."""
    return _make_record


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def test_settings():
    from execution_monitor.config import build_settings

    return build_settings(
        {
            "auth": {"token": "test-token-123"},
            "backend": {"base_url": "http://backend.test/api"},
            "executions": {"page_size": 20, "search_debounce_ms": 20},
        }
    )


@pytest.fixture
def test_app():
    """Create a test FastAPI app without the lifespan refresh loop."""
    from execution_monitor.api import dry_run, events, health, sessions

    app = FastAPI(title="Execution Monitor Test")
    app.include_router(health.router)
    app.include_router(sessions.router)
    app.include_router(events.router)
    app.include_router(dry_run.router)
    return app


@pytest.fixture
def container(fake_backend, test_settings):
    from execution_monitor.services.background_tasks import BackgroundTaskTracker
    from execution_monitor.services.container import (
        ServiceContainer,
        init_container,
        reset_container,
    )
    from execution_monitor.services.estimate_history import EstimateHistory
    from execution_monitor.services.event_hub import EventHub
    from execution_monitor.services.session_manager import SessionManager

    tracker = BackgroundTaskTracker()
    hub = EventHub(tracker)
    history = EstimateHistory()
    services = ServiceContainer(
        settings=test_settings,
        backend_client=fake_backend,
        event_hub=hub,
        estimate_history=history,
        session_manager=SessionManager(fake_backend, hub, history, test_settings),
        task_tracker=tracker,
    )
    init_container(services)
    yield services
    services.session_manager.close_all()
    reset_container()


@pytest.fixture
def client(container, test_app):
    """Test client with the fake backend wired in."""
    with TestClient(test_app) as c:
        yield c


@pytest.fixture
def auth_headers():
    """Valid authorization headers."""
    return {"Authorization": "Bearer test-token-123"}
