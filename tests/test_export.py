"""Tests for the export pipeline."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta, timezone

import pytest

from execution_monitor.exceptions import ExportError
from execution_monitor.models.filters import ExportFilters, ExportFormat
from execution_monitor.services.export import ExportPipeline, export_filename, validate_payload


@pytest.fixture
def filters():
    return ExportFilters(status="failed")


@pytest.fixture
def pipeline(fake_backend, filters, now):
    return ExportPipeline(
        fake_backend, "ws-1", "agent-1", filters=lambda: filters, clock=lambda: now
    )


class TestFilename:
    def test_structured(self, now):
        assert (
            export_filename("agent-1", ExportFormat.STRUCTURED, now)
            == "agent-agent-1-executions-20250615T120000Z.json"
        )

    def test_tabular_normalized_to_utc(self):
        at = datetime(2025, 6, 15, 14, 30, 5, tzinfo=timezone(timedelta(hours=2)))

        assert (
            export_filename("a9", ExportFormat.TABULAR, at)
            == "agent-a9-executions-20250615T123005Z.csv"
        )


class TestValidation:
    def test_valid_json(self):
        validate_payload(b'{"executions": []}', ExportFormat.STRUCTURED)

    def test_truncated_json(self):
        with pytest.raises(ExportError, match="not a valid JSON"):
            validate_payload(b'[{"executionId": "exec-1"', ExportFormat.STRUCTURED)

    def test_valid_csv_with_bom(self):
        validate_payload(
            "\ufeffexecution_id,status\nexec-1,failed\n".encode(), ExportFormat.TABULAR
        )

    def test_csv_with_unterminated_quote(self):
        with pytest.raises(ExportError, match="not a valid CSV"):
            validate_payload(b'execution_id,status\n"exec-1,failed\n', ExportFormat.TABULAR)

    def test_empty_csv(self):
        with pytest.raises(ExportError, match="no header row"):
            validate_payload(b"", ExportFormat.TABULAR)

    def test_invalid_utf8(self):
        with pytest.raises(ExportError, match="UTF-8"):
            validate_payload(b"\xff\xfe\xfa", ExportFormat.STRUCTURED)


class TestPipeline:
    @pytest.mark.asyncio
    async def test_successful_export_closes_dialog(self, pipeline, fake_backend, filters):
        pipeline.open_dialog()

        artifact = await pipeline.export(ExportFormat.STRUCTURED)

        assert artifact.filename == "agent-agent-1-executions-20250615T120000Z.json"
        assert artifact.media_type == "application/json"
        assert artifact.content == fake_backend.export_payload
        assert fake_backend.export_calls == [(filters, ExportFormat.STRUCTURED)]
        assert pipeline.dialog_open is False
        assert pipeline.is_exporting is False

    @pytest.mark.asyncio
    async def test_backend_failure_keeps_dialog_open(self, pipeline, fake_backend):
        pipeline.open_dialog()
        fake_backend.fail_export = True

        with pytest.raises(ExportError, match="Export failed: Export timed out"):
            await pipeline.export(ExportFormat.TABULAR)

        assert pipeline.dialog_open is True
        assert pipeline.last_error == "Export timed out"
        assert pipeline.is_exporting is False

    @pytest.mark.asyncio
    async def test_corrupt_payload_is_not_delivered(self, pipeline, fake_backend):
        fake_backend.export_payload = b'{"executions": ['

        with pytest.raises(ExportError):
            await pipeline.export(ExportFormat.STRUCTURED)

        assert pipeline.dialog_open is True
        assert pipeline.last_error == "Export is not a valid JSON document"

    @pytest.mark.asyncio
    async def test_second_export_rejected_while_running(self, filters, now):
        gate = asyncio.Event()

        class SlowBackend:
            async def export_executions(self, workspace_id, agent_id, filters, export_format):
                await gate.wait()
                return b"[]"

        pipeline = ExportPipeline(
            SlowBackend(), "ws-1", "agent-1", filters=lambda: filters, clock=lambda: now
        )
        first = asyncio.create_task(pipeline.export(ExportFormat.STRUCTURED))
        await asyncio.sleep(0)

        with pytest.raises(ExportError, match="already in progress"):
            await pipeline.export(ExportFormat.STRUCTURED)

        gate.set()
        artifact = await first
        assert artifact.content == b"[]"

    def test_close_dialog_clears_error(self, pipeline):
        pipeline.open_dialog()
        pipeline.last_error = "boom"

        pipeline.close_dialog()

        assert pipeline.dialog_open is False
        assert pipeline.last_error is None


def test_clock_default_is_utc(fake_backend, filters):
    pipeline = ExportPipeline(fake_backend, "ws-1", "agent-1", filters=lambda: filters)

    assert pipeline._clock().tzinfo is UTC
