#!/usr/bin/env python3
"""Delete finished import sessions older than the retention window."""

import argparse
from datetime import timedelta

from company_importer.core.config import get_settings
from company_importer.core.logging import configure_logging
from company_importer.services.session_store import build_session_store

settings = get_settings()

parser = argparse.ArgumentParser(description=__doc__)
parser.add_argument(
    "--max-age",
    type=int,
    default=settings.import_session_retention_seconds,
    help="Age in seconds after which terminal sessions are removed",
)
parser.add_argument("--dry-run", action="store_true", help="List sessions without deleting")

if __name__ == "__main__":
    args = parser.parse_args()
    configure_logging()
    if settings.import_session_backend != "redis":
        raise SystemExit("In-memory sessions live inside the API process; use POST /api/imports/cleanup")

    store = build_session_store(settings)
    sessions = store.list()
    print(f"Import sessions in store: {len(sessions)}")
    for session in sessions:
        print(f"  {session.id} {session.status.value} started {session.started_at.isoformat()}")

    if args.dry_run:
        print("Dry run, nothing deleted.")
    else:
        removed = store.cleanup_expired(timedelta(seconds=args.max_age))
        print(f"Removed {removed} session(s) older than {args.max_age}s")
