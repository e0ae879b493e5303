from __future__ import annotations

import threading
import time

import pytest
from sqlalchemy import select

from company_importer.core.exceptions import SessionBusyError
from company_importer.db.models import Category, Company
from company_importer.services.import_driver import ImportDriver
from company_importer.services.import_session import (
    ImportSession,
    ImportStats,
    ImportStatus,
)
from company_importer.services.row_processor import RowProcessor
from company_importer.services.session_store import InMemorySessionStore
from fakes import ScriptedProcessor


class _RecordingStore(InMemorySessionStore):
    """Keeps every processed_rows value the driver writes."""

    def __init__(self) -> None:
        super().__init__()
        self.progress: list[int] = []

    def update(self, session_id, **fields) -> None:
        if "stats" in fields:
            self.progress.append(fields["stats"].processed_rows)
        super().update(session_id, **fields)


def _driver(
    store, processor, poll_interval: float = 0.01, lease_seconds: float = 60
) -> ImportDriver:
    return ImportDriver(
        store,
        lambda: processor,
        row_delay=0,
        poll_interval=poll_interval,
        lease_seconds=lease_seconds,
    )


def _start(store, rows) -> ImportSession:
    session = ImportSession.new(rows)
    store.create(session)
    return session


def test_all_valid_rows_complete(store) -> None:
    rows = [{"Name": f"Company {i}"} for i in range(3)]
    session = _start(store, rows)

    status = _driver(store, ScriptedProcessor()).run(session.id)

    final = store.get(session.id)
    assert status == ImportStatus.COMPLETED
    assert final.status == ImportStatus.COMPLETED
    assert final.stats.successful_imports == 3
    assert (final.stats.failed_imports, final.stats.skipped_rows) == (0, 0)
    assert final.errors == []
    assert final.current_index == 2
    assert final.finished_at is not None


def test_failed_row_recorded_with_header_adjusted_number(store, session_factory) -> None:
    rows = [
        {"Nom": "Acme Trading", "Catégorie": "Consulting", "City": "Damascus"},
        {"Nom": "", "Catégorie": "Consulting", "City": "Damascus"},
        {"Nom": "Beta Works", "Catégorie": "Consulting", "City": "Damascus"},
    ]
    session = _start(store, rows)
    processor = RowProcessor(session_factory=session_factory)

    _driver(store, processor).run(session.id)

    final = store.get(session.id)
    assert final.status == ImportStatus.COMPLETED
    assert (final.stats.successful_imports, final.stats.failed_imports) == (2, 1)
    assert len(final.errors) == 1
    assert final.errors[0].row == 3
    assert final.errors[0].error == "name required"
    assert final.errors[0].company_name == "unknown"


def test_tallies_cover_every_outcome(store, scripted_rows) -> None:
    session = _start(store, scripted_rows)
    _driver(store, ScriptedProcessor()).run(session.id)

    final = store.get(session.id)
    stats = final.stats
    assert stats.processed_rows == 5
    assert (stats.successful_imports, stats.failed_imports, stats.skipped_rows) == (3, 1, 1)
    assert (stats.downloaded_images, stats.failed_images) == (2, 1)
    assert [(e.row, e.company_name, e.error) for e in final.errors] == [
        (3, "Beta Co", "name too short")
    ]
    assert [(s.row, s.company_name) for s in final.skipped_companies] == [(4, "Gamma Co")]
    assert final.skipped_companies[0].data == scripted_rows[2]


def test_cancel_after_second_row_stops_before_third(store) -> None:
    rows = [{"Name": f"Company {i}"} for i in range(5)]
    session = _start(store, rows)
    processor = ScriptedProcessor(
        hooks={
            2: lambda: store.transition(
                session.id, {ImportStatus.RUNNING}, ImportStatus.CANCELLED
            )
        }
    )

    status = _driver(store, processor).run(session.id)

    final = store.get(session.id)
    assert status == ImportStatus.CANCELLED
    assert final.status == ImportStatus.CANCELLED
    assert final.stats.processed_rows == 2
    assert final.stats.processed_rows <= final.current_index + 1
    assert [number for number, _ in processor.seen] == [2, 3]


def test_pause_then_resume_matches_uninterrupted_run(scripted_rows) -> None:
    baseline_store = InMemorySessionStore()
    baseline = _start(baseline_store, scripted_rows)
    _driver(baseline_store, ScriptedProcessor()).run(baseline.id)
    expected = baseline_store.get(baseline.id)

    store = _RecordingStore()
    session = _start(store, scripted_rows)

    def _pause_and_schedule_resume() -> None:
        store.transition(session.id, {ImportStatus.RUNNING}, ImportStatus.PAUSED)
        threading.Timer(
            0.05,
            store.transition,
            args=(session.id, {ImportStatus.PAUSED}, ImportStatus.RUNNING),
        ).start()

    processor = ScriptedProcessor(hooks={2: _pause_and_schedule_resume})
    status = _driver(store, processor, poll_interval=5).run(session.id)

    final = store.get(session.id)
    assert status == ImportStatus.COMPLETED
    assert final.stats == expected.stats
    assert final.errors == expected.errors
    assert final.skipped_companies == expected.skipped_companies
    assert [number for number, _ in processor.seen] == [2, 3, 4, 5, 6]
    assert store.progress == sorted(store.progress)
    assert store.progress[-1] == len(scripted_rows)


def test_cancel_wakes_a_paused_driver(store) -> None:
    rows = [{"Name": f"Company {i}"} for i in range(3)]
    session = _start(store, rows)

    def _pause_then_cancel() -> None:
        store.transition(session.id, {ImportStatus.RUNNING}, ImportStatus.PAUSED)
        threading.Timer(
            0.05,
            store.transition,
            args=(session.id, {ImportStatus.PAUSED}, ImportStatus.CANCELLED),
        ).start()

    processor = ScriptedProcessor(hooks={1: _pause_then_cancel})
    started = time.monotonic()
    status = _driver(store, processor, poll_interval=30).run(session.id)

    assert status == ImportStatus.CANCELLED
    assert time.monotonic() - started < 5
    assert store.get(session.id).stats.processed_rows == 1


def test_resumes_from_processed_rows(store) -> None:
    rows = [{"Name": f"Company {i}"} for i in range(4)]
    session = _start(store, rows)
    store.update(
        session.id,
        stats=ImportStats(total_rows=4, processed_rows=2, successful_imports=2),
        current_index=1,
    )
    processor = ScriptedProcessor()

    _driver(store, processor).run(session.id)

    final = store.get(session.id)
    assert [number for number, _ in processor.seen] == [4, 5]
    assert final.stats.successful_imports == 4
    assert final.status == ImportStatus.COMPLETED


def test_terminal_session_is_left_alone(store) -> None:
    session = _start(store, [{"Name": "Acme"}])
    store.transition(session.id, {ImportStatus.RUNNING}, ImportStatus.CANCELLED)
    processor = ScriptedProcessor()

    assert _driver(store, processor).run(session.id) == ImportStatus.CANCELLED
    assert processor.seen == []


def test_driver_error_marks_session_failed(store) -> None:
    session = _start(store, [{"Name": "Acme"}, {"Name": "Beta", "result": "raise"}])

    status = _driver(store, ScriptedProcessor()).run(session.id)

    final = store.get(session.id)
    assert status == ImportStatus.FAILED
    assert final.status == ImportStatus.FAILED
    assert final.stats.processed_rows == 1
    assert final.errors[-1].row == 0
    assert final.errors[-1].company_name == "general"
    assert final.errors[-1].error == "processor exploded"


def test_deleted_session_stops_driver(store) -> None:
    rows = [{"Name": f"Company {i}"} for i in range(3)]
    session = _start(store, rows)
    processor = ScriptedProcessor(hooks={1: lambda: store.delete(session.id)})

    assert _driver(store, processor).run(session.id) is None
    assert len(processor.seen) == 1


def test_empty_import_completes(store) -> None:
    session = _start(store, [])
    assert _driver(store, ScriptedProcessor()).run(session.id) == ImportStatus.COMPLETED
    assert store.get(session.id).progress == 1.0


def _company_row(name: str) -> dict:
    return {"Nom": name, "Catégorie": "Consulting", "Country": "Syria", "City": "Damascus"}


def test_persistence_error_fails_only_that_row(
    store, session_factory, db, monkeypatch: pytest.MonkeyPatch
) -> None:
    rows = [_company_row(name) for name in ("Alpha Co", "Beta Co", "Gamma Co", "Delta Co")]
    session = _start(store, rows)
    processor = RowProcessor(session_factory=session_factory)
    real_save = processor.save_company

    def _save(db_session, record, *args):
        if record.name == "Beta Co":
            raise RuntimeError("insert rejected")
        return real_save(db_session, record, *args)

    monkeypatch.setattr(processor, "save_company", _save)

    status = _driver(store, processor).run(session.id)

    final = store.get(session.id)
    assert status == ImportStatus.COMPLETED
    assert (final.stats.successful_imports, final.stats.failed_imports) == (3, 1)
    assert [(e.row, e.company_name, e.error) for e in final.errors] == [
        (3, "Beta Co", "insert rejected")
    ]
    names = db.scalars(select(Company.name).order_by(Company.id)).all()
    assert names == ["Alpha Co", "Gamma Co", "Delta Co"]


def test_rows_sharing_a_category_reuse_one_entry(store, session_factory, db) -> None:
    session = _start(store, [_company_row("Alpha Co"), _company_row("Beta Co")])

    _driver(store, RowProcessor(session_factory=session_factory)).run(session.id)

    assert store.get(session.id).stats.successful_imports == 2
    categories = db.scalars(select(Category)).all()
    assert [category.name for category in categories] == ["Consulting"]
    category_ids = set(db.scalars(select(Company.category_id)).all())
    assert category_ids == {categories[0].id}


def test_second_driver_is_refused_while_lease_is_held(store) -> None:
    session = _start(store, [{"Name": "Acme"}])
    store.acquire_lease(session.id, "other-worker", 60)
    processor = ScriptedProcessor()

    with pytest.raises(SessionBusyError):
        _driver(store, processor).run(session.id)

    assert processor.seen == []
    assert store.get(session.id).status == ImportStatus.RUNNING


def test_driver_stops_when_its_lease_is_taken_over(store) -> None:
    rows = [{"Name": f"Company {i}"} for i in range(3)]
    session = _start(store, rows)

    def _stall_until_lease_expires() -> None:
        time.sleep(0.3)
        assert store.acquire_lease(session.id, "worker-b", 60)

    processor = ScriptedProcessor(hooks={1: _stall_until_lease_expires})
    status = _driver(store, processor, lease_seconds=0.2).run(session.id)

    final = store.get(session.id)
    assert status == ImportStatus.RUNNING
    assert final.status == ImportStatus.RUNNING
    assert final.stats.processed_rows == 1
    assert final.errors == []
    assert len(processor.seen) == 1


def test_lease_is_released_when_the_driver_finishes(store) -> None:
    session = _start(store, [{"Name": "Acme"}])
    _driver(store, ScriptedProcessor()).run(session.id)
    assert store.acquire_lease(session.id, "next-worker", 60) is True
