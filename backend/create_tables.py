#!/usr/bin/env python3
"""Create any missing tables for the company directory schema."""

from sqlalchemy import inspect

from company_importer.db import models  # noqa: F401  registers the mappers
from company_importer.db.base import Base
from company_importer.db.session import engine

EXPECTED_TABLES = {table.name for table in Base.metadata.sorted_tables}

if __name__ == "__main__":
    Base.metadata.create_all(bind=engine)
    tables = set(inspect(engine).get_table_names())
    print("Tables in DB:", sorted(tables))
    missing = EXPECTED_TABLES - tables
    if missing:
        raise SystemExit(f"Missing tables after create_all: {', '.join(sorted(missing))}")
    print("All company directory tables are present.")
