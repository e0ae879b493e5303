"""Business logic for turning an uploaded CSV into import rows."""

from __future__ import annotations

import csv
import io
import logging
from typing import Any

from company_importer.core.exceptions import CsvFormatError
from company_importer.utils.csv_validator import (
    extract_image_urls,
    read_field,
    validate_headers,
)

logger = logging.getLogger(__name__)

PREVIEW_ROWS = 10


def _is_blank(row: dict[str, Any]) -> bool:
    return not any((value or "").strip() for value in row.values() if isinstance(value, str))


def parse_csv(content: bytes) -> tuple[list[dict[str, str]], list[str]]:
    """Decode and parse CSV bytes into ``(rows, columns)``.

    Blank lines are dropped; a leading BOM is tolerated.
    """
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise CsvFormatError(f"File encoding error: {e}") from e

    try:
        reader = csv.DictReader(io.StringIO(text, newline=""))
        if not reader.fieldnames:
            raise CsvFormatError("CSV file appears to be empty or invalid")
        columns = [name.strip() for name in reader.fieldnames if name is not None]
        validate_headers(columns)

        rows: list[dict[str, str]] = []
        for row in reader:
            # Extra cells beyond the header land under the None key
            row.pop(None, None)
            if _is_blank(row):
                continue
            rows.append({(key or "").strip(): (value or "") for key, value in row.items()})
    except csv.Error as e:
        raise CsvFormatError(f"CSV parsing error: {e}") from e

    logger.info(f"Parsed CSV with {len(rows)} rows and {len(columns)} columns")
    return rows, columns


def build_preview(rows: list[dict[str, Any]], columns: list[str]) -> dict[str, Any]:
    """Summarize parsed rows without touching the database."""
    valid_rows = 0
    rows_with_images = 0
    for row in rows:
        if read_field(row, "name") and read_field(row, "category"):
            valid_rows += 1
        urls, _ = extract_image_urls(read_field(row, "images"))
        if urls or read_field(row, "hero_image"):
            rows_with_images += 1

    return {
        "columns": columns,
        "total_rows": len(rows),
        "valid_rows": valid_rows,
        "rows_with_images": rows_with_images,
        "rows": rows[:PREVIEW_ROWS],
    }
