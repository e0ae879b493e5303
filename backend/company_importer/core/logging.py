"""Logging bootstrap shared by the API process and Celery workers."""

import logging

from company_importer.core.config import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Apply the configured log level to the root logger once."""
    level_name = (level or get_settings().log_level or "INFO").upper()
    logging.basicConfig(level=level_name, format=LOG_FORMAT)
    logging.getLogger("company_importer").setLevel(level_name)
    # httpx logs every media request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
