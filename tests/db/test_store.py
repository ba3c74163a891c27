"""Tests for the SQLAlchemy-backed record store."""

from datetime import datetime

from letterboxd_trakt.config import SyncConfig
from letterboxd_trakt.db.store import RecordStore
from letterboxd_trakt.sync.engine import SyncEngine
from letterboxd_trakt.sync.models import PassKind, PassResult, SyncStatus, WatchRecord
from tests.fakes import FakeTraktClient


def sample_records():
    return [
        WatchRecord(title="Movie", year="2023", local_rating="4.5", local_watched_date="2023-01-01"),
        WatchRecord(title="Other Film", year="2019", local_rating="3", local_watched_date="2023-02-01"),
        WatchRecord(title="Third", year="2001", local_watched_date="2023-03-01"),
    ]


def test_replace_all_assigns_ids_and_keeps_order(db):
    store = RecordStore()

    stored = store.replace_all(sample_records())

    assert all(r.id is not None for r in stored)
    assert [r.title for r in store.list_records()] == ["Movie", "Other Film", "Third"]


def test_replace_all_discards_previous_import(db):
    store = RecordStore()
    store.replace_all(sample_records())

    store.replace_all([WatchRecord(title="Only", year="2020")])

    assert [r.title for r in store.list_records()] == ["Only"]


def test_save_record_and_filter_by_status(db):
    store = RecordStore()
    first, second, _ = store.replace_all(sample_records())

    first.transition(SyncStatus.FAILED, "Movie not found on Trakt: Movie (2023)")
    store.save_record(first)
    second.transition(SyncStatus.READY_TO_SYNC)
    second.remote_watched_date = "2022-01-01T00:00:00.000Z"
    store.save_record(second)

    failed = store.list_records(SyncStatus.FAILED)
    assert [(r.title, r.last_error) for r in failed] == [
        ("Movie", "Movie not found on Trakt: Movie (2023)")
    ]
    ready = store.list_records(SyncStatus.READY_TO_SYNC)
    assert ready[0].remote_watched_date == "2022-01-01T00:00:00.000Z"
    assert store.status_counts() == {
        "unchecked": 1,
        "ready_to_sync": 1,
        "already_present": 0,
        "synced": 0,
        "failed": 1,
    }


def test_get_records_follows_requested_order(db):
    store = RecordStore()
    a, b, c = store.replace_all(sample_records())

    selected = store.get_records([c.id, a.id, 9999])

    assert [r.title for r in selected] == ["Third", "Movie"]


def test_clear(db):
    store = RecordStore()
    store.replace_all(sample_records())

    assert store.clear() == 3
    assert store.list_records() == []


def test_run_history(db):
    store = RecordStore()
    started = datetime(2024, 1, 1, 12, 0, 0)
    store.start_run("abcd1234", PassKind.SYNC, started)

    result = PassResult(run_id="abcd1234", kind=PassKind.SYNC, started_at=started)
    result.records_processed = 2
    result.records_synced = 1
    result.records_failed = 1
    result.cancelled = True
    result.completed_at = datetime(2024, 1, 1, 12, 5, 0)
    store.finish_run(result)

    runs = store.recent_runs()
    assert runs[0]["run_id"] == "abcd1234"
    assert runs[0]["kind"] == "sync"
    assert runs[0]["status"] == "cancelled"
    assert runs[0]["synced"] == 1
    assert runs[0]["failed"] == 1


def test_engine_persists_every_processed_record(db):
    """Status changes survive a reload, so a later pass resumes from storage."""
    store = RecordStore()
    stored = store.replace_all(sample_records())
    client = FakeTraktClient(history={})
    engine = SyncEngine(SyncConfig(trakt_client_id="id", secret_key="test"), trakt_client=client, store=store)

    result = engine.check_all(store.list_records())

    assert result.records_ready == 3
    assert all(r.status == SyncStatus.READY_TO_SYNC for r in store.list_records())

    engine.sync_all(store.get_records([r.id for r in stored]))

    reloaded = store.list_records()
    assert all(r.status == SyncStatus.FAILED for r in reloaded)
    assert reloaded[0].last_error == "Movie not found on Trakt: Movie (2023)"
    assert store.recent_runs()[0]["kind"] == "sync"
    assert store.recent_runs()[0]["status"] == "completed"
