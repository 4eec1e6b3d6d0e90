"""Filter state and list/export request models for the execution history view."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, Field


class StatusFilter(str, Enum):
    """Status filter options offered in the history view."""

    ALL = "all"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    RUNNING = "running"
    WAITING = "waiting"


class DateRangeFilter(str, Enum):
    """Relative date windows, resolved to absolute bounds at query time."""

    ALL_TIME = "all"
    LAST_24H = "24h"
    LAST_7D = "7d"
    LAST_30D = "30d"

    @property
    def window(self) -> timedelta | None:
        return _WINDOWS.get(self)

    def resolve(self, now: datetime) -> tuple[datetime | None, datetime | None]:
        """Return (start, end) for this window relative to ``now``."""
        window = self.window
        if window is None:
            return None, None
        return now - window, now


_WINDOWS = {
    DateRangeFilter.LAST_24H: timedelta(hours=24),
    DateRangeFilter.LAST_7D: timedelta(days=7),
    DateRangeFilter.LAST_30D: timedelta(days=30),
}


class ExportFormat(str, Enum):
    """Serialization used by the export pipeline."""

    STRUCTURED = "structured"
    TABULAR = "tabular"

    @property
    def wire_value(self) -> str:
        return "json" if self is ExportFormat.STRUCTURED else "csv"

    @property
    def media_type(self) -> str:
        return "application/json" if self is ExportFormat.STRUCTURED else "text/csv"


@dataclass
class FilterState:
    """Mutable filter state owned by the query engine."""

    status: StatusFilter = StatusFilter.ALL
    date_range: DateRangeFilter = DateRangeFilter.ALL_TIME
    search: str = ""
    search_draft: str = ""
    offset: int = 0


class ListExecutionsQuery(BaseModel):
    """Parameters sent to the backend list endpoint."""

    status: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    search: str | None = None
    limit: int = Field(..., gt=0)
    skip: int = Field(0, ge=0)

    def to_params(self) -> dict[str, str | int]:
        """Query-string parameters in the backend's naming."""
        params: dict[str, str | int] = {"limit": self.limit, "skip": self.skip}
        if self.status is not None:
            params["status"] = self.status
        if self.start_date is not None:
            params["startDate"] = self.start_date.isoformat()
        if self.end_date is not None:
            params["endDate"] = self.end_date.isoformat()
        if self.search:
            params["search"] = self.search
        return params


class ExportFilters(BaseModel):
    """Filters for a full-set export (no pagination, no search)."""

    status: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None

    def to_params(self, export_format: ExportFormat) -> dict[str, str]:
        params = {"format": export_format.wire_value}
        if self.status is not None:
            params["status"] = self.status
        if self.start_date is not None:
            params["startDate"] = self.start_date.isoformat()
        if self.end_date is not None:
            params["endDate"] = self.end_date.isoformat()
        return params


class FilterSnapshot(BaseModel):
    """Read-only view of the filter state for the rendering layer."""

    status: StatusFilter
    date_range: DateRangeFilter
    search: str
    search_draft: str
    offset: int
    page_size: int
