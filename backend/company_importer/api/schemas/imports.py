"""Import session request and response payloads."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from company_importer.services.import_session import (
    ImportSession,
    ImportSettings,
    ImportStats,
    RowError,
    SkippedRow,
)


class ImportStartRequest(BaseModel):
    records: list[dict[str, Any]] = Field(..., description="Parsed CSV rows keyed by header")
    settings: ImportSettings = Field(default_factory=ImportSettings)


class ImportStartResponse(BaseModel):
    import_id: str
    status: str
    total_rows: int


class ImportSummary(BaseModel):
    id: str
    status: str = Field(..., description="running|paused|cancelled|completed|failed")
    progress: float = Field(..., description="0-1 range for UI progress bars")
    total_rows: int
    processed_rows: int
    successful_imports: int
    failed_imports: int
    skipped_rows: int
    started_at: datetime
    finished_at: datetime | None = None

    @classmethod
    def from_session(cls, session: ImportSession) -> "ImportSummary":
        return cls(
            id=session.id,
            status=session.status.value,
            progress=session.progress,
            total_rows=session.stats.total_rows,
            processed_rows=session.stats.processed_rows,
            successful_imports=session.stats.successful_imports,
            failed_imports=session.stats.failed_imports,
            skipped_rows=session.stats.skipped_rows,
            started_at=session.started_at,
            finished_at=session.finished_at,
        )


class ImportProgress(BaseModel):
    """Full snapshot for polling dashboards; excludes the raw input rows."""

    id: str
    status: str
    progress: float
    current_index: int
    message: str
    settings: ImportSettings
    stats: ImportStats
    errors: list[RowError]
    skipped_companies: list[SkippedRow]
    started_at: datetime
    finished_at: datetime | None = None

    @classmethod
    def from_session(cls, session: ImportSession) -> "ImportProgress":
        stats = session.stats
        return cls(
            id=session.id,
            status=session.status.value,
            progress=session.progress,
            current_index=session.current_index,
            message=f"Processed {stats.processed_rows}/{stats.total_rows} rows",
            settings=session.settings,
            stats=stats,
            errors=session.errors,
            skipped_companies=session.skipped_companies,
            started_at=session.started_at,
            finished_at=session.finished_at,
        )


class ImportActionResponse(BaseModel):
    import_id: str
    status: str
    message: str


class ImportPreview(BaseModel):
    columns: list[str]
    total_rows: int
    valid_rows: int
    rows_with_images: int
    rows: list[dict[str, Any]]


class CleanupResponse(BaseModel):
    removed: int
