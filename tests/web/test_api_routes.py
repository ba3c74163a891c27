"""Tests for the JSON API."""

import io

import pytest

from letterboxd_trakt.config import SyncConfig
from letterboxd_trakt.db.store import RecordStore
from letterboxd_trakt.main import create_app
from letterboxd_trakt.sync.engine import SyncEngine
from letterboxd_trakt.sync.models import PassKind, RemoteMovieMatch
from letterboxd_trakt.sync.runner import PassRunner
from tests.fakes import FakeTraktClient

DIARY = (
    "Date,Name,Year,Letterboxd URI,Rating,Rewatch,Tags,Watched Date\n"
    "2023-01-02,Movie,2023,https://boxd.it/a,4.5,,,2023-01-01\n"
    "2023-02-02,Missing Film,2019,https://boxd.it/b,3,,,2023-02-01\n"
)


class ImmediateScheduler:
    """Runs each submitted job on the calling thread."""

    running = False

    def start(self):
        self.running = True

    def shutdown(self, wait=True):
        self.running = False

    def add_job(self, func, trigger=None, args=None, **kwargs):
        func(*(args or []))


class DeferredScheduler(ImmediateScheduler):
    """Holds submitted jobs until ``run_all`` is called."""

    def __init__(self):
        self.jobs = []

    def add_job(self, func, trigger=None, args=None, **kwargs):
        self.jobs.append((func, args or []))

    def run_all(self):
        while self.jobs:
            func, args = self.jobs.pop(0)
            func(*args)


@pytest.fixture
def config():
    return SyncConfig(trakt_client_id="client-id", secret_key="test")


@pytest.fixture
def trakt():
    return FakeTraktClient(
        movies={"Movie": [RemoteMovieMatch(trakt_id=1, title="Movie", year=2023)]},
        access_token=None,
    )


def build(config, trakt, scheduler):
    store = RecordStore()
    engine = SyncEngine(config, trakt_client=trakt, store=store)
    runner = PassRunner(config, store=store, engine=engine, scheduler=scheduler)
    app = create_app(config, runner)
    return app.test_client(), runner


@pytest.fixture
def api(db, config, trakt):
    return build(config, trakt, ImmediateScheduler())


def upload(client, content, filename="diary.csv"):
    return client.post(
        "/api/import",
        data={"file": (io.BytesIO(content), filename)},
        content_type="multipart/form-data",
    )


AUTH = {"Authorization": "Bearer user-token"}


def test_health(api):
    client, _ = api
    response = client.get("/health")
    assert response.status_code == 200
    assert response.get_json()["status"] == "ok"


def test_import_and_list_records(api):
    client, _ = api

    response = upload(client, DIARY.encode("utf-8"))

    assert response.status_code == 200
    assert response.get_json() == {"imported": 2}
    records = client.get("/api/records").get_json()
    assert [r["title"] for r in records] == ["Movie", "Missing Film"]
    assert {r["status"] for r in records} == {"unchecked"}


def test_import_rejects_bad_uploads(api):
    client, _ = api

    assert client.post("/api/import", data={}, content_type="multipart/form-data").status_code == 400
    response = upload(client, b"{}", filename="export.json")
    assert response.status_code == 400
    assert "Unsupported file type" in response.get_json()["error"]


def test_unknown_status_filter(api):
    client, _ = api
    assert client.get("/api/records?status=bogus").status_code == 400


def test_passes_require_a_token(api):
    client, _ = api
    assert client.post("/api/check").status_code == 401
    assert client.post("/api/sync", json={"ids": [1]}).status_code == 401


def test_check_then_sync(api, trakt):
    client, _ = api
    upload(client, DIARY.encode("utf-8"))

    assert client.post("/api/check", headers=AUTH).status_code == 202
    assert trakt.access_token == "user-token"

    records = client.get("/api/records?status=ready_to_sync").get_json()
    assert len(records) == 2

    response = client.post("/api/sync", json={"ids": [r["id"] for r in records]}, headers=AUTH)
    assert response.status_code == 202
    assert response.get_json()["selected"] == 2

    by_title = {r["title"]: r for r in client.get("/api/records").get_json()}
    assert by_title["Movie"]["status"] == "synced"
    assert by_title["Movie"]["remote_rating"] == 9
    assert by_title["Missing Film"]["status"] == "failed"
    assert by_title["Missing Film"]["last_error"] == "Movie not found on Trakt: Missing Film (2019)"

    status = client.get("/api/status").get_json()
    assert status["records"]["synced"] == 1
    assert status["records"]["failed"] == 1
    assert status["passes"]["sync"]["last_result"]["synced"] == 1
    assert status["passes"]["sync"]["progress"] == {"completed": 2, "total": 2}

    runs = client.get("/api/runs").get_json()
    assert [r["kind"] for r in runs] == ["sync", "check"]


def test_sync_requires_id_list(api):
    client, _ = api
    assert client.post("/api/sync", json={"ids": "all"}, headers=AUTH).status_code == 400
    assert client.post("/api/sync", json={}, headers=AUTH).status_code == 400


def test_running_pass_blocks_duplicates_and_can_be_cancelled(db, config, trakt):
    scheduler = DeferredScheduler()
    client, runner = build(config, trakt, scheduler)
    upload(client, DIARY.encode("utf-8"))

    assert client.post("/api/check", headers=AUTH).status_code == 202
    assert client.post("/api/check", headers=AUTH).status_code == 409
    assert client.delete("/api/records").status_code == 409
    assert upload(client, DIARY.encode("utf-8")).status_code == 409

    assert client.post("/api/check/cancel").get_json() == {"cancelled": True}
    assert client.get("/api/status").get_json()["passes"]["check"]["cancelling"] is True

    scheduler.run_all()

    assert not runner.is_running(PassKind.CHECK)
    assert trakt.calls == []
    assert runner.status()["check"]["last_result"]["cancelled"] is True
    assert client.post("/api/check/cancel").get_json() == {"cancelled": False}


def test_cancel_unknown_pass(api):
    client, _ = api
    assert client.post("/api/rewind/cancel").status_code == 404


def test_clear_records(api):
    client, _ = api
    upload(client, DIARY.encode("utf-8"))

    response = client.delete("/api/records")

    assert response.get_json() == {"removed": 2}
    assert client.get("/api/records").get_json() == []


def test_profile_uses_request_token_and_restores_previous(api, trakt):
    client, _ = api
    trakt.access_token = "configured"

    response = client.get("/api/profile", headers=AUTH)

    assert response.status_code == 200
    assert response.get_json()["token"] == "user-token"
    assert trakt.access_token == "configured"
