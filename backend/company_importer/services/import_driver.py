"""Background loop that walks a session's rows in order."""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Callable

from company_importer.core.config import get_settings
from company_importer.core.exceptions import SessionBusyError
from company_importer.services.import_session import (
    ACTIVE_STATUSES,
    GENERAL_ERROR_LABEL,
    ROW_NUMBER_OFFSET,
    UNKNOWN_COMPANY_LABEL,
    ImportSession,
    ImportStats,
    ImportStatus,
    RowError,
    RowOutcome,
    SkippedRow,
)
from company_importer.services.row_processor import RowProcessor
from company_importer.services.session_store import SessionStore
from company_importer.utils.csv_validator import row_label

logger = logging.getLogger(__name__)


class ImportDriver:
    """Drives one session from ``processed_rows`` to the end.

    The driver is the only writer of ``current_index`` and the tallies. Control
    calls change ``status`` alone, which the driver re-reads at every row boundary.
    """

    def __init__(
        self,
        store: SessionStore,
        processor_factory: Callable[[], RowProcessor] | None = None,
        *,
        row_delay: float | None = None,
        poll_interval: float | None = None,
        lease_seconds: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        settings = get_settings()
        self.store = store
        self._processor_factory = processor_factory or RowProcessor
        self.row_delay = settings.import_row_delay_seconds if row_delay is None else row_delay
        self.poll_interval = (
            settings.import_pause_poll_seconds if poll_interval is None else poll_interval
        )
        self.lease_seconds = (
            settings.import_lease_seconds if lease_seconds is None else lease_seconds
        )
        self._sleep = sleep

    def run(self, session_id: str) -> ImportStatus | None:
        """Process remaining rows; returns the status the session ended in."""
        session = self.store.get(session_id)
        if session is None:
            logger.warning(f"Import session {session_id} vanished before the driver started")
            return None
        if session.status.is_terminal:
            logger.info(f"Import session {session_id} already {session.status.value}; nothing to do")
            return session.status

        owner = uuid.uuid4().hex
        if not self.store.acquire_lease(session_id, owner, self.lease_seconds):
            logger.warning(f"Import session {session_id} is already being driven elsewhere")
            raise SessionBusyError(session_id)

        try:
            return self._run_rows(session, owner)
        except SessionBusyError:
            logger.warning(f"Import session {session_id}: lease lost, leaving it to its new owner")
            current = self.store.get(session_id)
            return current.status if current is not None else None
        except Exception as exc:
            logger.error(f"Import session {session_id} failed: {exc}", exc_info=True)
            self._fail(session_id, exc)
            return ImportStatus.FAILED
        finally:
            self.store.release_lease(session_id, owner)

    def _checkpoint(self, session_id: str, owner: str) -> ImportStatus | None:
        """Re-read the status and renew this driver's lease."""
        session = self.store.get(session_id)
        if session is None:
            return None
        if not self.store.renew_lease(session_id, owner, self.lease_seconds):
            raise SessionBusyError(session_id)
        return session.status

    def _await_running(self, session_id: str, owner: str) -> ImportStatus | None:
        status = self._checkpoint(session_id, owner)
        if status == ImportStatus.PAUSED:
            logger.info(f"Import session {session_id} paused")
            while status == ImportStatus.PAUSED:
                self.store.wait_for_status_change(
                    session_id, ImportStatus.PAUSED, self.poll_interval
                )
                status = self._checkpoint(session_id, owner)
            if status == ImportStatus.RUNNING:
                logger.info(f"Import session {session_id} resumed")
        return status

    def _run_rows(self, session: ImportSession, owner: str) -> ImportStatus | None:
        session_id = session.id
        records = session.records
        settings = session.settings
        stats = session.stats.model_copy()
        errors = list(session.errors)
        skipped = list(session.skipped_companies)
        processor = self._processor_factory()

        start = stats.processed_rows
        if start:
            logger.info(f"Import session {session_id} resuming at row {start} of {len(records)}")
        else:
            logger.info(f"Import session {session_id} started with {len(records)} rows")

        for index in range(start, len(records)):
            status = self._await_running(session_id, owner)
            if status is None:
                logger.info(f"Import session {session_id} deleted; driver stopping")
                return None
            if status != ImportStatus.RUNNING:
                logger.info(
                    f"Import session {session_id} {status.value} after {stats.processed_rows} rows"
                )
                return status

            self.store.update(session_id, current_index=index)
            row = records[index]
            row_number = index + ROW_NUMBER_OFFSET
            outcome = processor.process(row, settings, row_number)
            self._tally(outcome, row, row_number, stats, errors, skipped)
            stats.processed_rows += 1
            self.store.update(
                session_id,
                current_index=index,
                stats=stats,
                errors=errors,
                skipped_companies=skipped,
            )
            if self.row_delay:
                self._sleep(self.row_delay)

        completed = self.store.transition(
            session_id,
            ACTIVE_STATUSES,
            ImportStatus.COMPLETED,
            finished_at=datetime.now(timezone.utc),
        )
        if not completed:
            final = self.store.get(session_id)
            return final.status if final is not None else None

        logger.info(
            f"Import session {session_id} completed: "
            f"{stats.successful_imports} imported, {stats.failed_imports} failed, "
            f"{stats.skipped_rows} skipped"
        )
        return ImportStatus.COMPLETED

    @staticmethod
    def _tally(
        outcome: RowOutcome,
        row: dict,
        row_number: int,
        stats: ImportStats,
        errors: list[RowError],
        skipped: list[SkippedRow],
    ) -> None:
        company_name = row_label(row) or UNKNOWN_COMPANY_LABEL
        stats.downloaded_images += outcome.images_downloaded
        stats.failed_images += outcome.images_failed

        if outcome.success:
            stats.successful_imports += 1
        elif outcome.skipped:
            stats.skipped_rows += 1
            skipped.append(
                SkippedRow(
                    row=row_number,
                    company_name=company_name,
                    reason=outcome.reason or "skipped",
                    data=row,
                )
            )
        else:
            stats.failed_imports += 1
            errors.append(
                RowError(
                    row=row_number,
                    company_name=company_name,
                    error=outcome.error or "unknown error",
                    data=row,
                )
            )
            logger.warning(f"Row {row_number} ({company_name}) failed: {outcome.error}")

    def _fail(self, session_id: str, exc: Exception) -> None:
        session = self.store.get(session_id)
        if session is None:
            return
        errors = list(session.errors)
        errors.append(
            RowError(row=0, company_name=GENERAL_ERROR_LABEL, error=str(exc) or exc.__class__.__name__)
        )
        self.store.transition(
            session_id,
            ACTIVE_STATUSES,
            ImportStatus.FAILED,
            errors=errors,
            finished_at=datetime.now(timezone.utc),
        )
