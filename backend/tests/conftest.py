from __future__ import annotations

import os
import tempfile

# Settings are cached on first use, so the environment has to be in place
# before any company_importer module is imported.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("MEDIA_DIR", tempfile.mkdtemp(prefix="company-media-"))
os.environ.setdefault("IMPORT_SESSION_BACKEND", "memory")
os.environ.setdefault("IMPORT_EXECUTOR", "thread")
os.environ.setdefault("IMPORT_ROW_DELAY_SECONDS", "0")
os.environ.setdefault("IMPORT_PAUSE_POLL_SECONDS", "0.05")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from company_importer.db import models  # noqa: F401
from company_importer.db.base import Base
from company_importer.services.session_store import InMemorySessionStore


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture()
def scripted_rows() -> list[dict]:
    return [
        {"Name": "Alpha Co", "result": "ok"},
        {"Name": "Beta Co", "result": "fail", "error": "name too short"},
        {"Name": "Gamma Co", "result": "skip"},
        {"Name": "Delta Co", "result": "ok", "downloaded": 2, "failed": 1},
        {"Name": "Epsilon Co", "result": "ok"},
    ]
