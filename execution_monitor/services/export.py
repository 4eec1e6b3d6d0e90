"""
Export pipeline for the filtered execution set.

The backend response is buffered in full and checked before it is handed
out as a download, so a truncated or corrupt body never reaches the user.
"""

from __future__ import annotations

import csv
import io
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from execution_monitor.exceptions import BackendError, ExportError
from execution_monitor.utils.error_handling import log_errors

if TYPE_CHECKING:
    from execution_monitor.models.filters import ExportFilters, ExportFormat
    from execution_monitor.services.backend_client import AgentBackendClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExportArtifact:
    """A validated, fully buffered export ready for download."""

    filename: str
    media_type: str
    content: bytes


def export_filename(agent_id: str, export_format: ExportFormat, at: datetime) -> str:
    """``agent-<agent_id>-executions-<YYYYMMDDTHHMMSSZ>.<json|csv>``"""
    stamp = at.astimezone(UTC).strftime("%Y%m%dT%H%M%SZ")
    return f"agent-{agent_id}-executions-{stamp}.{export_format.wire_value}"


def validate_payload(content: bytes, export_format: ExportFormat) -> None:
    """Raise ExportError unless ``content`` is a complete document of the format."""
    wire = export_format.wire_value
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ExportError("Export is not valid UTF-8", context={"format": wire}) from e

    if wire == "json":
        try:
            json.loads(text)
        except ValueError as e:
            raise ExportError(
                "Export is not a valid JSON document", context={"format": wire, "error": str(e)}
            ) from e
        return

    try:
        rows = csv.reader(io.StringIO(text, newline=""), strict=True)
        header = next(rows, None)
        for _ in rows:
            pass
    except csv.Error as e:
        raise ExportError(
            "Export is not a valid CSV document", context={"format": wire, "error": str(e)}
        ) from e
    if not header or not any(cell.strip() for cell in header):
        raise ExportError("Export CSV has no header row", context={"format": wire})


class ExportPipeline:
    """Export dialog state plus the buffered download for one view session."""

    def __init__(
        self,
        client: AgentBackendClient,
        workspace_id: str,
        agent_id: str,
        *,
        filters: Callable[[], ExportFilters],
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._client = client
        self.workspace_id = workspace_id
        self.agent_id = agent_id
        self._filters = filters
        self._clock = clock

        self.dialog_open = False
        self.last_error: str | None = None
        self._exporting = False

    @property
    def is_exporting(self) -> bool:
        return self._exporting

    def open_dialog(self) -> None:
        self.dialog_open = True
        self.last_error = None

    def close_dialog(self) -> None:
        self.dialog_open = False
        self.last_error = None

    @log_errors("export_executions")
    async def export(self, export_format: ExportFormat) -> ExportArtifact:
        """
        Download and validate the full filtered set.

        On failure the dialog stays open with ``last_error`` set and
        ExportError is raised; on success the dialog closes.
        """
        context: dict[str, object] = {
            "workspace_id": self.workspace_id,
            "agent_id": self.agent_id,
            "format": export_format.wire_value,
        }
        if self._exporting:
            raise ExportError("An export is already in progress", context=context)

        self.dialog_open = True
        self.last_error = None
        self._exporting = True
        filters = self._filters()
        try:
            content = await self._client.export_executions(
                self.workspace_id, self.agent_id, filters, export_format
            )
            validate_payload(content, export_format)
        except BackendError as e:
            self.last_error = e.message
            raise ExportError(f"Export failed: {e.message}", context={**context, **e.context}) from e
        except ExportError as e:
            self.last_error = e.message
            raise
        finally:
            self._exporting = False

        artifact = ExportArtifact(
            filename=export_filename(self.agent_id, export_format, self._clock()),
            media_type=export_format.media_type,
            content=content,
        )
        self.dialog_open = False
        logger.info(
            "Export ready",
            extra={**context, "export_filename": artifact.filename, "size_bytes": len(content)},
        )
        return artifact
