"""Tests for the HTTP API."""

from __future__ import annotations

import pytest

VIEW = "/api/v1/workspaces/ws-1/agents/agent-1"


@pytest.fixture
def mounted(client, auth_headers, fake_backend, make_record):
    fake_backend.add(
        make_record("exec-1", "failed", description="Follow up"),
        make_record("exec-2", "completed", description="Daily sync"),
    )
    response = client.post(f"{VIEW}/view", headers=auth_headers)
    assert response.status_code == 200
    return response.json()


class TestAuth:
    def test_health_is_public(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_missing_token(self, client):
        response = client.post(f"{VIEW}/view")

        assert response.status_code in (401, 403)

    def test_wrong_token(self, client):
        response = client.post(f"{VIEW}/view", headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_detailed_health(self, client, auth_headers, mounted):
        response = client.get("/health/detailed", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["mounted_views"] == 1
        assert data["background_tasks"]["failed_tasks"] == 0
        assert data["version"]


class TestView:
    def test_mount(self, mounted):
        assert mounted["created"] is True
        snapshot = mounted["snapshot"]
        assert snapshot["total"] == 2
        assert {r["execution_id"] for r in snapshot["executions"]} == {"exec-1", "exec-2"}
        assert snapshot["filters"]["status"] == "all"

    def test_mount_twice_reuses_view(self, client, auth_headers, mounted, fake_backend):
        response = client.post(f"{VIEW}/view", headers=auth_headers)

        assert response.json()["created"] is False
        assert len(fake_backend.list_calls) == 1

    def test_unmounted_view_is_404(self, client, auth_headers):
        response = client.get(f"{VIEW}/view", headers=auth_headers)

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "SessionNotFoundError"

    def test_unmount(self, client, auth_headers, mounted):
        assert client.delete(f"{VIEW}/view", headers=auth_headers).json() == {"closed": True}
        assert client.get(f"{VIEW}/view", headers=auth_headers).status_code == 404

    def test_status_filter(self, client, auth_headers, mounted, fake_backend):
        response = client.put(
            f"{VIEW}/view/filters", json={"status": "failed"}, headers=auth_headers
        )

        snapshot = response.json()
        assert [r["execution_id"] for r in snapshot["executions"]] == ["exec-1"]
        assert snapshot["filters"]["offset"] == 0
        assert fake_backend.list_calls[-1].status == "failed"

    def test_invalid_filter_value(self, client, auth_headers, mounted):
        response = client.put(
            f"{VIEW}/view/filters", json={"status": "exploded"}, headers=auth_headers
        )

        assert response.status_code == 422

    def test_settled_search(self, client, auth_headers, mounted, fake_backend):
        response = client.put(
            f"{VIEW}/view/search", json={"text": " sync ", "settle": True}, headers=auth_headers
        )

        snapshot = response.json()
        assert snapshot["filters"]["search"] == "sync"
        assert [r["execution_id"] for r in snapshot["executions"]] == ["exec-2"]
        assert fake_backend.list_calls[-1].search == "sync"

    def test_unsettled_search_only_updates_draft(self, client, auth_headers, mounted):
        response = client.put(f"{VIEW}/view/search", json={"text": "fol"}, headers=auth_headers)

        filters = response.json()["filters"]
        assert filters["search_draft"] == "fol"
        assert filters["search"] == ""

    def test_pagination_disabled_on_single_page(self, client, auth_headers, mounted, fake_backend):
        response = client.post(f"{VIEW}/view/page/next", headers=auth_headers)

        assert response.json()["filters"]["offset"] == 0
        assert len(fake_backend.list_calls) == 1

    def test_unknown_page_direction(self, client, auth_headers, mounted):
        assert client.post(f"{VIEW}/view/page/sideways", headers=auth_headers).status_code == 422

    def test_failed_refresh_sets_dismissible_notice(
        self, client, auth_headers, mounted, fake_backend
    ):
        fake_backend.fail_list = True

        snapshot = client.post(f"{VIEW}/view/refresh", headers=auth_headers).json()

        assert snapshot["notice"] == "Backend unavailable"
        assert len(snapshot["executions"]) == 2

        snapshot = client.delete(f"{VIEW}/view/notice", headers=auth_headers).json()
        assert snapshot["notice"] is None


class TestDetail:
    def test_open_detail(self, client, auth_headers, mounted, fake_backend, make_record):
        from execution_monitor.models.execution import ExecutionDetail

        record = make_record("exec-1", "failed")
        fake_backend.details["exec-1"] = ExecutionDetail.model_validate(
            {
                **record.model_dump(),
                "steps": [
                    {
                        "step_number": 1,
                        "action": "send_email",
                        "result": {"success": False, "error": "Mailbox full"},
                    }
                ],
            }
        )

        response = client.get(f"{VIEW}/executions/exec-1", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["steps"][0]["result"]["error"] == "Mailbox full"
        view = client.get(f"{VIEW}/view", headers=auth_headers).json()
        assert view["open_details"] == ["exec-1"]

        assert (
            client.delete(f"{VIEW}/executions/exec-1/detail", headers=auth_headers).status_code
            == 204
        )

    def test_detail_unavailable(self, client, auth_headers, mounted):
        response = client.get(f"{VIEW}/executions/missing", headers=auth_headers)

        assert response.status_code == 502
        assert response.json()["detail"]["message"] == "Execution not found"


class TestComparison:
    def test_requires_dry_run(self, client, auth_headers, mounted):
        response = client.get(f"{VIEW}/executions/exec-2/comparison", headers=auth_headers)

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "ComparisonUnavailableError"

    def test_compare_dry_run_with_execution(
        self, client, auth_headers, mounted, fake_backend, make_record
    ):
        from execution_monitor.models.execution import ExecutionDetail

        plan = {"agent_id": "agent-1", "steps": [{"kind": "action", "action": "send_email"}]}
        client.post(f"{VIEW}/test/simulate", json={"plan": plan}, headers=auth_headers)
        fake_backend.details["exec-2"] = ExecutionDetail.model_validate(
            {
                **make_record("exec-2", "completed").model_dump(),
                "steps": [
                    {
                        "step_number": 1,
                        "action": "web_search",
                        "credits_used": 1,
                        "result": {"success": True},
                    }
                ],
            }
        )

        response = client.get(f"{VIEW}/executions/exec-2/comparison", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["overall_match"] is False
        assert data["match_percentage"] == 0
        assert data["step_comparisons"][0]["mismatch_reason"] == (
            "Action mismatch: predicted send_email, got web_search"
        )

    def test_detail_unavailable(self, client, auth_headers, mounted):
        client.post(
            f"{VIEW}/test/simulate",
            json={"plan": {"agent_id": "agent-1", "steps": []}},
            headers=auth_headers,
        )

        response = client.get(f"{VIEW}/executions/exec-1/comparison", headers=auth_headers)

        assert response.status_code == 502
        assert response.json()["detail"]["message"] == "Execution not found"


class TestRetry:
    def test_retry_lists_new_run(self, client, auth_headers, mounted, fake_backend):
        fake_backend.next_retry_id = "exec-3"

        response = client.post(f"{VIEW}/executions/exec-1/retry", headers=auth_headers)

        assert response.json() == {
            "source_execution_id": "exec-1",
            "new_execution_id": "exec-3",
            "message": "Retry started",
        }
        view = client.get(f"{VIEW}/view", headers=auth_headers).json()
        statuses = {r["execution_id"]: r["status"] for r in view["executions"]}
        assert statuses["exec-1"] == "failed"
        assert statuses["exec-3"] == "running"

    def test_retry_completed_execution_conflicts(self, client, auth_headers, mounted):
        response = client.post(f"{VIEW}/executions/exec-2/retry", headers=auth_headers)

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "RetryNotAllowedError"

    def test_retry_submission_failure(self, client, auth_headers, mounted, fake_backend):
        fake_backend.fail_retry = True

        response = client.post(f"{VIEW}/executions/exec-1/retry", headers=auth_headers)

        assert response.status_code == 502
        view = client.get(f"{VIEW}/view", headers=auth_headers).json()
        assert view["retry"]["errors"] == {"exec-1": "Retry rejected"}


class TestExport:
    def test_tabular_download(self, client, auth_headers, mounted, fake_backend):
        fake_backend.export_payload = b"execution_id,status\nexec-1,failed\n"

        response = client.get(f"{VIEW}/export", params={"format": "tabular"}, headers=auth_headers)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        disposition = response.headers["content-disposition"]
        assert disposition.startswith('attachment; filename="agent-agent-1-executions-')
        assert disposition.endswith('.csv"')
        assert response.content == fake_backend.export_payload

    def test_export_failure_keeps_dialog_open(self, client, auth_headers, mounted, fake_backend):
        client.post(f"{VIEW}/export/dialog", headers=auth_headers)
        fake_backend.fail_export = True

        response = client.get(f"{VIEW}/export", headers=auth_headers)

        assert response.status_code == 502
        export = client.get(f"{VIEW}/view", headers=auth_headers).json()["export"]
        assert export == {
            "dialog_open": True,
            "is_exporting": False,
            "last_error": "Export timed out",
        }

        closed = client.delete(f"{VIEW}/export/dialog", headers=auth_headers).json()
        assert closed["export"]["dialog_open"] is False

    def test_invalid_format(self, client, auth_headers, mounted):
        response = client.get(f"{VIEW}/export", params={"format": "xml"}, headers=auth_headers)

        assert response.status_code == 422


PLAN = {
    "agent_id": "agent-1",
    "steps": [
        {"kind": "action", "action": "send_email", "params": {"to": "@contact.email"}},
        {"kind": "wait", "duration_seconds": 3600},
        {
            "kind": "bulk",
            "label": "research matching contacts",
            "per_item": [{"kind": "action", "action": "web_search"}],
        },
    ],
}


class TestDryRun:
    def test_stateless_dry_run(self, client, auth_headers, container):
        response = client.post(
            "/api/v1/dry-run",
            json={"plan": PLAN, "entity_count": 10, "variables": {"contact.email": "a@b.co"}},
            headers=auth_headers,
        )

        assert response.status_code == 200
        result = response.json()["result"]
        assert result["success"] is True
        assert result["total_estimated_credits"] == {"min": 12.0, "max": 12.0}
        assert result["estimated_duration"]["wait_seconds"]["max"] == 3600
        assert result["steps"][0]["preview"]["description"] == "Would send email to a@b.co"
        assert response.json()["comparison"] is None

    def test_repeat_dry_run_is_compared(self, client, auth_headers, container):
        client.post("/api/v1/dry-run", json={"plan": PLAN}, headers=auth_headers)

        response = client.post(
            "/api/v1/dry-run", json={"plan": PLAN, "entity_count": 5}, headers=auth_headers
        )

        comparison = response.json()["comparison"]
        assert comparison["credits_delta"] == 4
        assert comparison["percent_change"] == 133.33

    def test_other_workspace_is_not_compared(self, client, auth_headers, container):
        client.post(
            "/api/v1/dry-run", json={"plan": PLAN, "workspace_id": "ws-1"}, headers=auth_headers
        )

        response = client.post(
            "/api/v1/dry-run", json={"plan": PLAN, "workspace_id": "ws-2"}, headers=auth_headers
        )

        assert response.json()["comparison"] is None

    def test_invalid_plan(self, client, auth_headers, container):
        plan = {"agent_id": "agent-1", "steps": [{"kind": "teleport"}]}

        response = client.post("/api/v1/dry-run", json={"plan": plan}, headers=auth_headers)

        assert response.status_code == 422

    def test_simulate_for_view(self, client, auth_headers, mounted):
        response = client.post(f"{VIEW}/test/simulate", json={"plan": PLAN}, headers=auth_headers)

        assert response.status_code == 200
        last = client.get(f"{VIEW}/test/last", headers=auth_headers).json()
        assert last["result"]["success"] is True

    def test_simulate_other_agents_plan(self, client, auth_headers, mounted):
        plan = {**PLAN, "agent_id": "agent-2"}

        response = client.post(f"{VIEW}/test/simulate", json={"plan": plan}, headers=auth_headers)

        assert response.status_code == 422

    def test_backend_test_run(self, client, auth_headers, mounted):
        response = client.post(f"{VIEW}/test", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["result"]["success"] is True


class TestEvents:
    def test_event_dispatched_to_mounted_view(self, client, auth_headers, mounted):
        response = client.post(
            "/api/v1/events",
            json={
                "type": "progress",
                "workspaceId": "ws-1",
                "agentId": "agent-1",
                "executionId": "exec-9",
                "step": 1,
                "total": 3,
            },
            headers=auth_headers,
        )

        assert response.status_code == 202
        assert response.json() == {"accepted": True, "dispatched": 1}

    def test_event_for_unmounted_view(self, client, auth_headers, container):
        response = client.post(
            "/api/v1/events",
            json={"type": "started", "workspaceId": "ws-2", "agentId": "a", "executionId": "e"},
            headers=auth_headers,
        )

        assert response.json()["dispatched"] == 0

    def test_malformed_event(self, client, auth_headers, container):
        response = client.post(
            "/api/v1/events",
            json={"type": "exploded", "executionId": "e"},
            headers=auth_headers,
        )

        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "InvalidEvent"
