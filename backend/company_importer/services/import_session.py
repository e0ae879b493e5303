"""Import session state: settings, tallies, audit entries and row outcomes."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ImportStatus(str, Enum):
    RUNNING = "running"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {ImportStatus.CANCELLED, ImportStatus.COMPLETED, ImportStatus.FAILED}
)
ACTIVE_STATUSES = frozenset({ImportStatus.RUNNING, ImportStatus.PAUSED})

# Header row plus 1-based display numbering
ROW_NUMBER_OFFSET = 2
GENERAL_ERROR_LABEL = "general"
UNKNOWN_COMPANY_LABEL = "unknown"


class ImportSettings(BaseModel):
    """Per-session switches; frozen once the session is created."""

    download_images: bool = False
    create_missing_categories: bool = True
    create_missing_cities: bool = True
    skip_duplicates: bool = True
    update_existing: bool = False
    validate_emails: bool = True
    validate_phones: bool = False
    strict_validation: bool = False

    model_config = {"frozen": True, "extra": "ignore"}


class ImportStats(BaseModel):
    total_rows: int = 0
    processed_rows: int = 0
    successful_imports: int = 0
    failed_imports: int = 0
    skipped_rows: int = 0
    downloaded_images: int = 0
    failed_images: int = 0


class RowError(BaseModel):
    row: int
    company_name: str
    error: str
    data: dict[str, Any] | None = None


class SkippedRow(BaseModel):
    row: int
    company_name: str
    reason: str
    data: dict[str, Any] | None = None


class ImportSession(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    status: ImportStatus = ImportStatus.RUNNING
    records: list[dict[str, Any]] = Field(default_factory=list)
    settings: ImportSettings = Field(default_factory=ImportSettings)
    current_index: int = 0
    stats: ImportStats = Field(default_factory=ImportStats)
    errors: list[RowError] = Field(default_factory=list)
    skipped_companies: list[SkippedRow] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    @classmethod
    def new(
        cls, records: list[dict[str, Any]], settings: ImportSettings | None = None
    ) -> "ImportSession":
        """Build a fresh running session whose totals reflect ``records``."""
        return cls(
            records=list(records),
            settings=settings or ImportSettings(),
            stats=ImportStats(total_rows=len(records)),
        )

    @property
    def progress(self) -> float:
        if not self.stats.total_rows:
            return 1.0 if self.status == ImportStatus.COMPLETED else 0.0
        return self.stats.processed_rows / self.stats.total_rows


@dataclass
class RowOutcome:
    """Result of processing exactly one input row."""

    success: bool = False
    skipped: bool = False
    error: str | None = None
    reason: str | None = None
    images_downloaded: int = 0
    images_failed: int = 0
    company_id: int | None = None
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def failed(cls, error: str, warnings: list[str] | None = None) -> "RowOutcome":
        return cls(success=False, error=error, warnings=list(warnings or []))

    @classmethod
    def skip(cls, reason: str) -> "RowOutcome":
        return cls(success=False, skipped=True, reason=reason)
