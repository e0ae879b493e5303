"""Endpoints to start, watch and steer company import sessions."""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    UploadFile,
    status,
)
from pydantic import ValidationError

from company_importer.api.dependencies.imports import get_import_service
from company_importer.api.schemas.imports import (
    CleanupResponse,
    ImportActionResponse,
    ImportPreview,
    ImportProgress,
    ImportStartRequest,
    ImportStartResponse,
    ImportSummary,
)
from company_importer.core.exceptions import (
    CsvFormatError,
    SessionNotFoundError,
    SessionStateError,
)
from company_importer.services.csv_ingest import parse_csv
from company_importer.services.import_session import ImportSession, ImportSettings
from company_importer.services.import_service import ImportService

logger = logging.getLogger(__name__)

router = APIRouter()


def _start(
    service: ImportService, records: list[dict], settings: ImportSettings
) -> ImportStartResponse:
    try:
        import_id = service.start(records, settings)
    except Exception as exc:
        logger.error(f"Error starting import: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to start import process",
        ) from exc
    return ImportStartResponse(import_id=import_id, status="running", total_rows=len(records))


async def _read_csv(file: UploadFile) -> tuple[list[dict], list[str]]:
    if not file.filename:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Filename is required",
        )
    if not file.filename.lower().endswith(".csv"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only CSV uploads are supported",
        )
    content = await file.read()
    try:
        return parse_csv(content)
    except CsvFormatError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


def _control(
    action: Callable[[str], ImportSession], import_id: str, verb: str
) -> ImportActionResponse:
    try:
        session = action(import_id)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except SessionStateError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except Exception as exc:
        logger.error(f"Unexpected error trying to {verb} import {import_id}: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred",
        ) from exc
    return ImportActionResponse(
        import_id=import_id,
        status=session.status.value,
        message=f"Import {session.status.value}",
    )


@router.post(
    "/",
    summary="Start an import from parsed rows",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=ImportStartResponse,
)
async def start_import(
    payload: ImportStartRequest,
    service: ImportService = Depends(get_import_service),
) -> ImportStartResponse:
    """Create a running session and process its rows in the background."""
    return _start(service, payload.records, payload.settings)


@router.post(
    "/upload",
    summary="Start an import from a CSV file",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=ImportStartResponse,
)
async def upload_import(
    file: UploadFile = File(...),
    settings: str | None = Form(None, description="ImportSettings as JSON"),
    service: ImportService = Depends(get_import_service),
) -> ImportStartResponse:
    try:
        import_settings = (
            ImportSettings.model_validate_json(settings) if settings else ImportSettings()
        )
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid settings: {exc.errors()[0]['msg']}",
        ) from exc

    records, _ = await _read_csv(file)
    logger.info(f"Received CSV {file.filename} with {len(records)} rows")
    return _start(service, records, import_settings)


@router.post(
    "/preview",
    summary="Inspect a CSV without importing it",
    response_model=ImportPreview,
)
async def preview_import(
    file: UploadFile = File(...),
    service: ImportService = Depends(get_import_service),
) -> ImportPreview:
    records, columns = await _read_csv(file)
    return ImportPreview(**service.preview(records, columns))


@router.get(
    "/",
    summary="List import sessions",
    response_model=list[ImportSummary],
)
async def list_imports(
    service: ImportService = Depends(get_import_service),
) -> list[ImportSummary]:
    try:
        sessions = service.list_sessions()
    except Exception as exc:
        logger.error(f"Failed to list import sessions: {exc}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to retrieve imports: {str(exc)}",
        ) from exc
    return [ImportSummary.from_session(session) for session in sessions]


@router.post(
    "/cleanup",
    summary="Delete finished sessions past the retention window",
    response_model=CleanupResponse,
)
async def cleanup_imports(
    service: ImportService = Depends(get_import_service),
) -> CleanupResponse:
    return CleanupResponse(removed=service.cleanup())


@router.get(
    "/{import_id}",
    summary="Fetch session progress, tallies and audit entries",
    response_model=ImportProgress,
)
async def get_import(
    import_id: str,
    service: ImportService = Depends(get_import_service),
) -> ImportProgress:
    """Expose session state for polling dashboards."""
    try:
        session = service.inspect(import_id)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return ImportProgress.from_session(session)


@router.post("/{import_id}/pause", response_model=ImportActionResponse)
async def pause_import(
    import_id: str,
    service: ImportService = Depends(get_import_service),
) -> ImportActionResponse:
    return _control(service.pause, import_id, "pause")


@router.post("/{import_id}/resume", response_model=ImportActionResponse)
async def resume_import(
    import_id: str,
    service: ImportService = Depends(get_import_service),
) -> ImportActionResponse:
    return _control(service.resume, import_id, "resume")


@router.post("/{import_id}/cancel", response_model=ImportActionResponse)
async def cancel_import(
    import_id: str,
    service: ImportService = Depends(get_import_service),
) -> ImportActionResponse:
    return _control(service.cancel, import_id, "cancel")


@router.delete("/{import_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_import(
    import_id: str,
    service: ImportService = Depends(get_import_service),
) -> None:
    try:
        service.delete(import_id)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
