"""Control surface for import sessions: start, inspect, pause, resume, cancel."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any

from company_importer.core.config import Settings, get_settings
from company_importer.core.exceptions import (
    SessionBusyError,
    SessionNotFoundError,
    SessionStateError,
)
from company_importer.services.csv_ingest import build_preview
from company_importer.services.import_driver import ImportDriver
from company_importer.services.import_session import (
    ACTIVE_STATUSES,
    GENERAL_ERROR_LABEL,
    ImportSession,
    ImportSettings,
    ImportStatus,
    RowError,
)
from company_importer.services.session_store import (
    RedisSessionStore,
    SessionStore,
    build_session_store,
)

logger = logging.getLogger(__name__)


class ImportExecutor(ABC):
    """Runs the driver for a session somewhere other than the caller's thread."""

    @abstractmethod
    def submit(self, session_id: str) -> None:
        ...


class ThreadImportExecutor(ImportExecutor):
    """One daemon thread per session inside the API process."""

    def __init__(self, driver: ImportDriver):
        self.driver = driver
        self._threads: dict[str, threading.Thread] = {}

    def submit(self, session_id: str) -> None:
        thread = threading.Thread(
            target=self._run,
            args=(session_id,),
            name=f"import-{session_id}",
            daemon=True,
        )
        self._threads[session_id] = thread
        thread.start()

    def _run(self, session_id: str) -> None:
        try:
            self.driver.run(session_id)
        except SessionBusyError as exc:
            logger.warning(f"Import thread for {session_id} not started: {exc}")
        finally:
            self._threads.pop(session_id, None)

    def join(self, session_id: str, timeout: float | None = None) -> bool:
        """Wait for a session's thread; True once it has finished."""
        thread = self._threads.get(session_id)
        if thread is None:
            return True
        thread.join(timeout)
        if thread.is_alive():
            return False
        self._threads.pop(session_id, None)
        return True


class CeleryImportExecutor(ImportExecutor):
    """Hands the session id to a Celery worker on the ``imports`` queue."""

    queue = "imports"

    def submit(self, session_id: str) -> None:
        from company_importer.workers.tasks.run_import import run_import_session

        run_import_session.apply_async(args=(session_id,), queue=self.queue)


class ImportService:
    def __init__(
        self,
        store: SessionStore,
        executor: ImportExecutor,
        settings: Settings | None = None,
    ):
        self.store = store
        self.executor = executor
        self.settings = settings or get_settings()

    def start(
        self,
        records: list[dict[str, Any]],
        settings: ImportSettings | dict[str, Any] | None = None,
    ) -> str:
        """Register a running session and launch its driver; returns the id."""
        if isinstance(settings, dict):
            settings = ImportSettings.model_validate(settings)
        session = ImportSession.new(records, settings)
        self.store.create(session)

        try:
            self.executor.submit(session.id)
        except Exception as exc:
            logger.error(f"Error launching import session {session.id}: {exc}", exc_info=True)
            self.store.transition(
                session.id,
                ACTIVE_STATUSES,
                ImportStatus.FAILED,
                errors=[
                    RowError(
                        row=0,
                        company_name=GENERAL_ERROR_LABEL,
                        error=f"failed to start import: {exc}",
                    )
                ],
                finished_at=datetime.now(timezone.utc),
            )
            raise

        logger.info(f"Started import session {session.id} with {len(records)} rows")
        return session.id

    def inspect(self, session_id: str) -> ImportSession:
        session = self.store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _transition(
        self,
        session_id: str,
        verb: str,
        allowed_from: Iterable[ImportStatus],
        to: ImportStatus,
        **fields: Any,
    ) -> ImportSession:
        allowed_from = frozenset(allowed_from)
        if not self.store.transition(session_id, allowed_from, to, **fields):
            session = self.inspect(session_id)
            raise SessionStateError(
                f"Cannot {verb} import {session_id}: status is {session.status.value}"
            )
        logger.info(f"Import session {session_id} -> {to.value}")
        return self.inspect(session_id)

    def pause(self, session_id: str) -> ImportSession:
        return self._transition(
            session_id, "pause", {ImportStatus.RUNNING}, ImportStatus.PAUSED
        )

    def resume(self, session_id: str) -> ImportSession:
        return self._transition(
            session_id, "resume", {ImportStatus.PAUSED}, ImportStatus.RUNNING
        )

    def cancel(self, session_id: str) -> ImportSession:
        return self._transition(
            session_id,
            "cancel",
            ACTIVE_STATUSES,
            ImportStatus.CANCELLED,
            finished_at=datetime.now(timezone.utc),
        )

    def list_sessions(self) -> list[ImportSession]:
        """All known sessions, newest first."""
        return sorted(self.store.list(), key=lambda s: s.started_at, reverse=True)

    def delete(self, session_id: str) -> None:
        """Forget a session; a driver still running for it stops at the next row."""
        if not self.store.delete(session_id):
            raise SessionNotFoundError(session_id)

    def cleanup(self, max_age: timedelta | None = None) -> int:
        if max_age is None:
            max_age = timedelta(seconds=self.settings.import_session_retention_seconds)
        return self.store.cleanup_expired(max_age)

    def preview(
        self, records: list[dict[str, Any]], columns: list[str] | None = None
    ) -> dict[str, Any]:
        """Dry summary of rows; nothing is stored or written."""
        if columns is None:
            columns = []
            for record in records:
                columns.extend(key for key in record if key not in columns)
        return build_preview(records, columns)


def build_import_service(settings: Settings | None = None) -> ImportService:
    """Wire store, driver and executor from configuration."""
    settings = settings or get_settings()
    store = build_session_store(settings)
    if settings.import_executor == "celery":
        if not isinstance(store, RedisSessionStore):
            raise ValueError(
                "IMPORT_EXECUTOR=celery requires IMPORT_SESSION_BACKEND=redis so "
                "workers can see the sessions"
            )
        executor: ImportExecutor = CeleryImportExecutor()
    else:
        executor = ThreadImportExecutor(ImportDriver(store))
    logger.info(
        f"Import service ready: store={settings.import_session_backend}, "
        f"executor={settings.import_executor}"
    )
    return ImportService(store, executor, settings=settings)
