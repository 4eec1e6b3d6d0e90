"""Tests for the live event reconciler."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from execution_monitor.models.events import (
    ExecutionCompletedEvent,
    ExecutionFailedEvent,
    ExecutionProgressEvent,
    ExecutionStartedEvent,
    parse_event,
)
from execution_monitor.models.execution import ExecutionDetail
from execution_monitor.services.reconciler import LiveEventReconciler
from execution_monitor.services.record_store import ExecutionRecordStore

SCOPE = {"workspace_id": "ws-1", "agent_id": "agent-1"}


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def store():
    return ExecutionRecordStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def open_details():
    return set()


@pytest.fixture
def reconciler(store, clock, open_details):
    return LiveEventReconciler(
        "ws-1",
        "agent-1",
        store,
        refresh_list=AsyncMock(),
        refresh_detail=AsyncMock(),
        is_detail_open=open_details.__contains__,
        orphan_grace_seconds=5.0,
        clock=clock,
    )


def progress(execution_id="exec-1", step=2, total=5, action="send_email", pct=40.0, **scope):
    return ExecutionProgressEvent(
        **{**SCOPE, **scope},
        execution_id=execution_id,
        step=step,
        total=total,
        action=action,
        progress=pct,
    )


class TestStarted:
    @pytest.mark.asyncio
    async def test_started_creates_entry_and_refreshes_list(self, reconciler, store):
        await reconciler.handle(ExecutionStartedEvent(**SCOPE, execution_id="exec-1"))

        entry = reconciler.get_progress("exec-1")
        assert entry is not None
        assert entry.current_step == 0
        assert store.is_pinned("exec-1")
        reconciler._refresh_list.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_started_for_terminal_record_creates_no_entry(
        self, reconciler, store, make_record
    ):
        store.upsert(make_record("exec-1", "completed"))

        await reconciler.handle(ExecutionStartedEvent(**SCOPE, execution_id="exec-1"))

        assert reconciler.get_progress("exec-1") is None


class TestProgress:
    @pytest.mark.asyncio
    async def test_progress_overwrites_entry(self, reconciler, store, make_record):
        store.upsert(make_record("exec-1", "running"))

        await reconciler.handle(progress(step=1))
        await reconciler.handle(progress(step=3, pct=60.0))

        entry = reconciler.get_progress("exec-1")
        assert entry.current_step == 3
        assert entry.total_steps == 5
        assert entry.percent == 60.0

    @pytest.mark.asyncio
    async def test_progress_is_idempotent(self, reconciler, store, make_record):
        store.upsert(make_record("exec-1", "running"))
        event = progress(step=2)

        await reconciler.handle(event)
        once = reconciler.progress
        await reconciler.handle(event)

        assert reconciler.progress == once

    @pytest.mark.asyncio
    async def test_progress_refreshes_open_detail(
        self, reconciler, store, make_record, open_details
    ):
        store.upsert(make_record("exec-1", "running"))
        open_details.add("exec-1")

        await reconciler.handle(progress())

        reconciler._refresh_detail.assert_awaited_once_with("exec-1")

    @pytest.mark.asyncio
    async def test_progress_without_open_detail_does_not_fetch(
        self, reconciler, store, make_record
    ):
        store.upsert(make_record("exec-1", "running"))

        await reconciler.handle(progress())

        reconciler._refresh_detail.assert_not_awaited()
        reconciler._refresh_list.assert_not_awaited()


class TestFinished:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "finished",
        [
            ExecutionCompletedEvent(**SCOPE, execution_id="exec-1"),
            ExecutionFailedEvent(**SCOPE, execution_id="exec-1", error="Bounced", failed_at_step=2),
        ],
    )
    async def test_terminal_event_removes_entry(self, reconciler, store, make_record, finished):
        store.upsert(make_record("exec-1", "running"))
        await reconciler.handle(progress())

        await reconciler.handle(finished)

        assert reconciler.get_progress("exec-1") is None
        assert not store.is_pinned("exec-1")
        reconciler._refresh_list.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_terminal_event_refreshes_open_detail(
        self, reconciler, store, make_record, open_details
    ):
        store.upsert(make_record("exec-1", "running"))
        open_details.add("exec-1")

        await reconciler.handle(ExecutionCompletedEvent(**SCOPE, execution_id="exec-1"))

        reconciler._refresh_detail.assert_awaited_once_with("exec-1")

    @pytest.mark.asyncio
    async def test_replayed_terminal_event_is_noop(self, reconciler, store, make_record):
        store.upsert(make_record("exec-1", "completed"))

        await reconciler.handle(ExecutionCompletedEvent(**SCOPE, execution_id="exec-1"))

        reconciler._refresh_list.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_entry_after_progress_replayed_past_completion(
        self, reconciler, store, make_record
    ):
        store.upsert(make_record("exec-1", "running"))
        await reconciler.handle(progress(step=4))
        await reconciler.handle(ExecutionCompletedEvent(**SCOPE, execution_id="exec-1"))

        await reconciler.handle(progress(step=4))

        assert reconciler.get_progress("exec-1") is None

    @pytest.mark.asyncio
    async def test_terminal_event_drops_running_detail_of_closed_panel(
        self, reconciler, store, make_record
    ):
        running = make_record("exec-1", "running")
        store.attach_detail("exec-1", ExecutionDetail.model_validate(running.model_dump()))

        await reconciler.handle(ExecutionCompletedEvent(**SCOPE, execution_id="exec-1"))

        assert store.has_detail("exec-1") is False
        reconciler._refresh_detail.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_terminal_detail_stays_cached(self, reconciler, store, make_record):
        done = make_record("exec-1", "completed")
        store.attach_detail("exec-1", ExecutionDetail.model_validate(done.model_dump()))

        await reconciler.handle(ExecutionCompletedEvent(**SCOPE, execution_id="exec-1"))

        assert store.has_detail("exec-1") is True

    @pytest.mark.asyncio
    async def test_finished_ids_pruned_once_record_is_terminal(
        self, reconciler, store, make_record, now
    ):
        store.upsert(make_record("exec-1", "running", started_at=now))
        await reconciler.handle(ExecutionCompletedEvent(**SCOPE, execution_id="exec-1"))
        assert reconciler._finished == {"exec-1"}

        store.upsert(make_record("exec-1", "completed", started_at=now))
        await reconciler.handle(progress(step=4))

        assert reconciler._finished == set()
        assert reconciler.get_progress("exec-1") is None

    @pytest.mark.asyncio
    async def test_replayed_terminal_event_is_not_remembered(self, reconciler, store, make_record):
        store.upsert(make_record("exec-1", "completed"))

        await reconciler.handle(ExecutionFailedEvent(**SCOPE, execution_id="exec-1"))

        assert reconciler._finished == set()

    @pytest.mark.asyncio
    async def test_terminal_upsert_drops_entry(self, reconciler, store, make_record, now):
        store.upsert(make_record("exec-1", "running", started_at=now))
        await reconciler.handle(progress())

        store.upsert(make_record("exec-1", "failed", started_at=now))

        assert reconciler.get_progress("exec-1") is None
        assert not store.is_pinned("exec-1")


class TestScope:
    @pytest.mark.asyncio
    async def test_other_agent_events_are_ignored(self, reconciler, store, make_record):
        store.upsert(make_record("exec-1", "running"))

        await reconciler.handle(progress(agent_id="agent-2"))
        await reconciler.handle(
            ExecutionStartedEvent(workspace_id="ws-2", agent_id="agent-1", execution_id="exec-9")
        )

        assert reconciler.progress == {}
        reconciler._refresh_list.assert_not_awaited()


class TestOrphanProgress:
    @pytest.mark.asyncio
    async def test_orphan_applied_when_record_arrives(self, reconciler, store, make_record):
        await reconciler.handle(progress(step=2))
        assert reconciler.get_progress("exec-1") is None
        assert reconciler.pending_orphans == ["exec-1"]

        store.upsert(make_record("exec-1", "running"))

        assert reconciler.get_progress("exec-1").current_step == 2
        assert reconciler.pending_orphans == []

    @pytest.mark.asyncio
    async def test_orphan_expires_after_grace(self, reconciler, store, make_record, clock):
        await reconciler.handle(progress(step=2))

        clock.now += 6.0
        store.upsert(make_record("exec-1", "running"))

        assert reconciler.get_progress("exec-1") is None

    @pytest.mark.asyncio
    async def test_direct_progress_supersedes_buffered_one(self, reconciler, store, make_record):
        await reconciler.handle(progress(step=2))
        await reconciler.handle(ExecutionStartedEvent(**SCOPE, execution_id="exec-1"))
        await reconciler.handle(progress(step=3))
        assert reconciler.pending_orphans == []

        store.upsert(make_record("exec-1", "running"))

        assert reconciler.get_progress("exec-1").current_step == 3

    @pytest.mark.asyncio
    async def test_orphan_discarded_when_record_is_terminal(self, reconciler, store, make_record):
        await reconciler.handle(progress(step=2))

        store.upsert(make_record("exec-1", "completed"))

        assert reconciler.get_progress("exec-1") is None
        assert reconciler.pending_orphans == []


class TestClose:
    @pytest.mark.asyncio
    async def test_close_unpins_and_detaches(self, reconciler, store, make_record):
        store.upsert(make_record("exec-1", "running"))
        await reconciler.handle(progress())

        reconciler.close()

        assert reconciler.progress == {}
        assert not store.is_pinned("exec-1")


def test_parse_event_accepts_camel_case_payload():
    event = parse_event(
        {
            "type": "progress",
            "workspaceId": "ws-1",
            "agentId": "agent-1",
            "executionId": "exec-1",
            "step": 2,
            "total": 4,
            "action": "web_search",
        }
    )

    assert isinstance(event, ExecutionProgressEvent)
    assert event.scope == ("ws-1", "agent-1")
    assert event.progress is None
