import importlib
import sqlite3

import pytest
from fastapi.testclient import TestClient

from apps.api.schemas import (
    ActivitiesResponse,
    BestEffortsResponse,
    HealthResponse,
    IngestResponse,
    JobRunsResponse,
    RebuildResponse,
    TrainingLoadResponse,
)
from tests.fixtures.build_fixture_db import build_fixture_db


@pytest.fixture()
def client(tmp_path, monkeypatch):
    db_path = tmp_path / "fixture.db"
    build_fixture_db(db_path)

    monkeypatch.setenv("TRAINING_DB_PATH", str(db_path))
    monkeypatch.setenv("TRAINING_DB_URL", "")

    import packages.config as config
    importlib.reload(config)

    import apps.api.main as api_main
    importlib.reload(api_main)

    with TestClient(api_main.app) as client:
        yield client


def _ride(activity_id="C9", **extra):
    body = {
        "activity_id": activity_id,
        "start_time": "2026-02-06T07:00:00Z",
        "duration_s": 3600,
        "sport": "Virtual Ride",
        "source": "zwift",
        "streams": {"power": [210.0] * 90},
    }
    body.update(extra)
    return body


def test_health_contract_http(client):
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    payload = HealthResponse.model_validate(resp.json())
    assert payload.db == "ok"
    assert resp.headers.get("x-request-id")


def test_ingest_contract_http(client):
    resp = client.post("/api/v1/users/1/activities", json=_ride())
    assert resp.status_code == 201
    payload = IngestResponse.model_validate(resp.json())
    assert payload.kept
    assert payload.canonical_id == "C9"
    assert payload.rebuilt_from == {"cycling": "2026-02-06"}
    assert payload.best_efforts_updated > 0

    listed = client.get("/api/v1/users/1/activities?sport=cycling")
    assert listed.status_code == 200
    activities = ActivitiesResponse.model_validate(listed.json()).activities
    assert [a.activity_id for a in activities] == ["C1", "C9"]
    assert activities[1].sport_raw == "Virtual Ride"
    # Estimated from the power stream when no load is sent.
    assert activities[1].load is not None


def test_invalid_activity_is_rejected(client):
    resp = client.post("/api/v1/users/1/activities", json=_ride(duration_s=0))
    assert resp.status_code == 422
    error = resp.json()["error"]
    assert error["code"] == "validation_error"
    assert error["details"]["field"] == "duration_s"
    assert error["details"]["activity_id"] == "C9"

    listed = client.get("/api/v1/users/1/activities?sport=cycling").json()
    assert [a["activity_id"] for a in listed["activities"]] == ["C1"]


def test_malformed_body_is_request_error(client):
    resp = client.post("/api/v1/users/1/activities", json={"duration_s": 60})
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "invalid_request"


def test_training_load_contract_http(client):
    rebuilt = client.post("/api/v1/users/1/training-load/rebuild")
    assert rebuilt.status_code == 200
    written = RebuildResponse.model_validate(rebuilt.json()).points_written
    assert set(written) == {"cycling", "running", "swimming"}

    resp = client.get("/api/v1/users/1/training-load?sport=running&start=2026-02-01&end=2026-02-03")
    assert resp.status_code == 200
    series = TrainingLoadResponse.model_validate(resp.json()).series
    assert [row.date for row in series] == ["2026-02-01", "2026-02-02", "2026-02-03"]
    assert series[1].load == 0
    for row in series:
        assert row.balance == pytest.approx(row.chronic - row.acute)


def test_training_load_rejects_inverted_range(client):
    resp = client.get("/api/v1/users/1/training-load?start=2026-02-05&end=2026-02-01")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "http_400"

    bad = client.get("/api/v1/users/1/training-load?start=yesterday")
    assert bad.status_code == 400


def test_best_efforts_contract_http(client):
    client.post("/api/v1/users/1/activities", json=_ride(start_time="2026-01-30T07:00:00Z"))
    resp = client.get("/api/v1/users/1/best-efforts?sport=cycling")
    assert resp.status_code == 200
    rows = BestEffortsResponse.model_validate(resp.json()).best_efforts
    assert rows
    assert all(r.unit == "W" and r.time_window == "all" for r in rows)
    one_minute = [r for r in rows if r.duration_s == 60][0]
    assert one_minute.value == 210.0
    assert one_minute.label == "1m"

    bad = client.get("/api/v1/users/1/best-efforts?window=forever")
    assert bad.status_code == 400
    assert bad.json()["error"]["code"] == "http_400"


def test_jobs_contract_http(client):
    resp = client.get("/api/v1/jobs?limit=5")
    assert resp.status_code == 200
    assert JobRunsResponse.model_validate(resp.json()).runs == []


def test_metrics_exposed(client):
    client.post("/api/v1/users/1/activities", json=_ride())
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "activities_ingested_total" in resp.text
    assert "# TYPE http_requests_total counter" in resp.text


def test_range_write_failure_returns_503(client, monkeypatch):
    from services.processing import store

    def boom(*args, **kwargs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(store, "upsert_training_points", boom)
    resp = client.post("/api/v1/users/1/activities", json=_ride())
    assert resp.status_code == 503
    error = resp.json()["error"]
    assert error["code"] == "range_write_failed"
    assert error["details"]["sport"] == "cycling"
