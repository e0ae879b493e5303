"""Celery task that drives one import session on a worker."""

from __future__ import annotations

import logging
from functools import lru_cache

from company_importer.core.config import get_settings
from company_importer.core.exceptions import SessionBusyError
from company_importer.core.logging import configure_logging
from company_importer.services.import_driver import ImportDriver
from company_importer.services.session_store import RedisSessionStore, build_session_store
from company_importer.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@lru_cache
def get_worker_store() -> RedisSessionStore:
    """Session store shared by all tasks in this worker process."""
    settings = get_settings()
    store = build_session_store(settings)
    if not isinstance(store, RedisSessionStore):
        raise RuntimeError(
            "Celery workers need IMPORT_SESSION_BACKEND=redis to see API sessions"
        )
    return store


@celery_app.task(
    bind=True,
    name="company_importer.workers.tasks.run_import_session",
    max_retries=5,
)
def run_import_session(self, session_id: str) -> str | None:
    """Run the driver; a re-delivered task picks up at ``processed_rows``.

    While another driver holds the session lease the task retries after one
    lease period, which is when a crashed owner's lease has run out.
    """
    configure_logging()
    logger.info(
        f"Worker picked up import session {session_id} "
        f"(task {self.request.id}, redelivered={bool((self.request.delivery_info or {}).get('redelivered'))})"
    )
    try:
        status = ImportDriver(get_worker_store()).run(session_id)
    except SessionBusyError as exc:
        countdown = get_settings().import_lease_seconds
        logger.info(f"{exc}; retrying in {countdown}s")
        raise self.retry(exc=exc, countdown=countdown)
    return status.value if status is not None else None
