import importlib
import json
import sqlite3
from datetime import date
from pathlib import Path

import pytest

from packages.errors import RangeWriteError, ValidationError
from services.analytics.models import activity_from_dict, validate_activity
from tests.fixtures.build_fixture_db import build_fixture_db

TODAY = date(2026, 2, 10)


def _connect(db_path: Path, monkeypatch):
    monkeypatch.setenv("TRAINING_DB_PATH", str(db_path))
    monkeypatch.setenv("TRAINING_DB_URL", "")

    import packages.config as config
    importlib.reload(config)

    from packages import db
    return db.open_db()


@pytest.fixture()
def fixture_conn(tmp_path, monkeypatch):
    db_path = tmp_path / "fixture.db"
    build_fixture_db(db_path)
    conn = _connect(db_path, monkeypatch)
    yield conn
    conn.close()


@pytest.fixture()
def empty_conn(tmp_path, monkeypatch):
    from packages import db

    conn = _connect(tmp_path / "empty.db", monkeypatch)
    db.init_schema(conn)
    yield conn
    conn.close()


def _rows(conn, table):
    cur = conn.execute(f"SELECT * FROM {table} ORDER BY 1, 2, 3")
    return cur.fetchall()


def _payload(activity_id, start_time, sport="Ride", duration=3600.0, source="manual", **extra):
    payload = {
        "activity_id": activity_id,
        "start_time": start_time,
        "duration_s": duration,
        "sport": sport,
        "source": source,
    }
    payload.update(extra)
    return payload


def _ingest(conn, payload, user_id=1):
    from services.processing.pipeline import ingest_activity

    return ingest_activity(conn, activity_from_dict(payload, user_id), today=TODAY)


def test_ingest_builds_dense_series(empty_conn):
    _ingest(empty_conn, _payload("a", "2026-02-01T08:00:00Z", load=50.0))
    _ingest(empty_conn, _payload("b", "2026-02-08T08:00:00Z", load=50.0))

    rows = empty_conn.execute(
        "SELECT date, load, chronic, acute, balance FROM training_load WHERE user_id=1 AND sport='cycling' ORDER BY date"
    ).fetchall()
    assert [r[0] for r in rows][0] == "2026-02-01"
    assert [r[0] for r in rows][-1] == "2026-02-10"
    assert len(rows) == 10
    assert [r[1] for r in rows][:8] == [50.0, 0, 0, 0, 0, 0, 0, 50.0]
    assert rows[0][2] == pytest.approx(50 / 42)
    assert rows[0][3] == pytest.approx(50 / 7)
    assert rows[6][2] == pytest.approx(50 / 42 * (41 / 42) ** 6)
    for r in rows:
        assert r[4] == pytest.approx(r[2] - r[3])

    buckets = empty_conn.execute("SELECT date, load, activity_count FROM daily_loads ORDER BY date").fetchall()
    assert buckets == [("2026-02-01", 50.0, 1), ("2026-02-08", 50.0, 1)]


def test_incremental_ingest_matches_full_rebuild(fixture_conn):
    from services.processing.pipeline import rebuild_full

    rebuild_full(fixture_conn, 1, today=TODAY)
    _ingest(fixture_conn, _payload("R2", "2026-02-03T06:00:00Z", sport="Run", duration=2400.0, load=35.0))
    incremental = (_rows(fixture_conn, "training_load"), _rows(fixture_conn, "daily_loads"))

    rebuild_full(fixture_conn, 1, today=TODAY)
    full = (_rows(fixture_conn, "training_load"), _rows(fixture_conn, "daily_loads"))
    assert incremental == full


def test_rebuild_is_idempotent(fixture_conn):
    from services.processing.pipeline import rebuild_full

    first_counts = rebuild_full(fixture_conn, 1, today=TODAY)
    first = _rows(fixture_conn, "training_load")
    rebuild_full(fixture_conn, 1, today=TODAY)
    assert _rows(fixture_conn, "training_load") == first
    # Running starts Feb 1, cycling Feb 3, swimming Feb 5; all end on TODAY.
    assert {s.value: n for s, n in first_counts.items()} == {"cycling": 8, "running": 10, "swimming": 6}


def test_rebuild_from_anchor_equals_full(fixture_conn):
    from services.processing import store
    from services.processing.pipeline import rebuild_from, rebuild_full

    rebuild_full(fixture_conn, 1, today=TODAY)
    store.upsert_activity(
        fixture_conn,
        validate_activity(activity_from_dict(_payload("C2", "2026-02-06T17:00:00Z", load=90.0), 1)),
    )
    fixture_conn.commit()
    assert rebuild_from(fixture_conn, 1, "cycling", date(2026, 2, 6), today=TODAY) == 5
    partial = _rows(fixture_conn, "training_load")
    rebuild_full(fixture_conn, 1, today=TODAY)
    assert partial == _rows(fixture_conn, "training_load")


def test_ingest_removes_manual_duplicate(empty_conn):
    manual = _ingest(empty_conn, _payload("M1", "2026-02-01T08:00:00Z", load=60.0, distance_m=30000.0))
    assert manual.kept
    device = _ingest(
        empty_conn,
        _payload(
            "G1",
            "2026-02-01T08:03:00Z",
            duration=3620.0,
            source="garmin",
            load=55.0,
            distance_m=30050.0,
            streams={"power": [220.0] * 120},
        ),
    )
    assert device.kept
    assert device.removed_ids == ["M1"]
    assert device.rebuilt_from == {"cycling": "2026-02-01"}

    rows = empty_conn.execute("SELECT activity_id, duplicate_sources_json FROM activities").fetchall()
    assert [r[0] for r in rows] == ["G1"]
    audit = json.loads(rows[0][1])
    assert [e["activity_id"] for e in audit] == ["M1"]
    assert audit[0]["source"] == "manual"

    loads = empty_conn.execute("SELECT load, activity_count FROM daily_loads").fetchall()
    assert loads == [(55.0, 1)]


def test_reingest_keeps_duplicate_audit(empty_conn):
    _ingest(empty_conn, _payload("M1", "2026-02-01T08:00:00Z", load=60.0, distance_m=30000.0))
    device = _payload(
        "G1",
        "2026-02-01T08:03:00Z",
        duration=3620.0,
        source="garmin",
        load=55.0,
        distance_m=30050.0,
    )
    _ingest(empty_conn, device)
    again = _ingest(empty_conn, dict(device, load=57.0))
    assert again.kept

    row = empty_conn.execute("SELECT load, duplicate_sources_json FROM activities WHERE activity_id='G1'").fetchone()
    assert row[0] == 57.0
    assert [e["activity_id"] for e in json.loads(row[1])] == ["M1"]


def test_late_manual_copy_is_dropped(empty_conn):
    _ingest(empty_conn, _payload("G1", "2026-02-01T08:00:00Z", source="garmin", load=55.0))
    late = _ingest(empty_conn, _payload("M1", "2026-02-01T08:01:00Z", load=60.0))
    assert not late.kept
    assert late.canonical_id == "G1"
    assert late.best_efforts_updated == 0
    ids = [r[0] for r in empty_conn.execute("SELECT activity_id FROM activities").fetchall()]
    assert ids == ["G1"]


def test_chain_across_stored_activities_collapses(empty_conn):
    _ingest(empty_conn, _payload("A", "2026-02-01T08:00:00Z", source="garmin", load=50.0))
    _ingest(empty_conn, _payload("C", "2026-02-01T08:08:00Z", load=50.0))
    assert empty_conn.execute("SELECT COUNT(*) FROM activities").fetchone()[0] == 2
    bridge = _ingest(empty_conn, _payload("B", "2026-02-01T08:04:00Z", load=50.0))
    assert bridge.canonical_id == "A"
    assert sorted(bridge.removed_ids) == ["B", "C"]
    assert empty_conn.execute("SELECT COUNT(*) FROM activities").fetchone()[0] == 1


def test_validation_error_writes_nothing(empty_conn):
    with pytest.raises(ValidationError) as excinfo:
        _ingest(empty_conn, _payload("bad", "2026-02-01T08:00:00Z", duration=0))
    assert excinfo.value.field == "duration_s"
    with pytest.raises(ValidationError):
        _ingest(empty_conn, {"activity_id": "nosport", "start_time": "2026-02-01T08:00:00Z", "duration_s": 60})
    assert empty_conn.execute("SELECT COUNT(*) FROM activities").fetchone()[0] == 0
    assert empty_conn.execute("SELECT COUNT(*) FROM training_load").fetchone()[0] == 0


def test_missing_load_is_estimated(empty_conn):
    _ingest(empty_conn, _payload("P1", "2026-02-01T08:00:00Z", avg_power=250.0))
    load = empty_conn.execute("SELECT load FROM activities WHERE activity_id='P1'").fetchone()[0]
    assert load == pytest.approx(100.0)


def test_string_power_stream_is_estimated_on_ingest(empty_conn):
    _ingest(empty_conn, _payload("P2", "2026-02-01T08:00:00Z", streams={"power": ["200", "210", "220", "230"]}))
    load = empty_conn.execute("SELECT load FROM activities WHERE activity_id='P2'").fetchone()[0]
    assert load == pytest.approx((215.0 / 250.0) ** 2 * 100.0)
    assert empty_conn.execute(
        "SELECT COUNT(*) FROM training_load WHERE user_id=1 AND sport='cycling'"
    ).fetchone()[0] == 10


def test_range_write_rolls_back_on_any_exception(empty_conn):
    from services.analytics.sport import Sport
    from services.processing import store
    from services.processing.pipeline import range_write

    record = activity_from_dict(_payload("RW1", "2026-02-01T08:00:00Z", load=40.0, created_at="2026-02-01T10:00:00Z"), 1)
    with pytest.raises(RuntimeError):
        with range_write(empty_conn, 1, Sport.CYCLING, date(2026, 2, 1), None):
            store.upsert_activity(empty_conn, record)
            raise RuntimeError("bug in caller")
    empty_conn.commit()
    assert empty_conn.execute("SELECT COUNT(*) FROM activities WHERE activity_id='RW1'").fetchone()[0] == 0


def test_range_write_failure_rolls_back(fixture_conn, monkeypatch):
    from services.processing import pipeline, store

    pipeline.rebuild_full(fixture_conn, 1, today=TODAY)
    before = (_rows(fixture_conn, "training_load"), _rows(fixture_conn, "daily_loads"))
    fixture_conn.execute("UPDATE activities SET load=99.0 WHERE activity_id='S1'")
    fixture_conn.commit()

    def boom(*args, **kwargs):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(store, "upsert_training_points", boom)
    with pytest.raises(RangeWriteError) as excinfo:
        pipeline.rebuild_from(fixture_conn, 1, "swimming", None, today=TODAY)
    assert excinfo.value.sport == "swimming"
    assert excinfo.value.to_dict()["end"] == "2026-02-10"
    assert (_rows(fixture_conn, "training_load"), _rows(fixture_conn, "daily_loads")) == before


def test_series_removed_when_sport_has_no_activities(fixture_conn):
    from services.processing import store
    from services.processing.pipeline import rebuild_from, rebuild_full

    rebuild_full(fixture_conn, 1, today=TODAY)
    store.delete_activities(fixture_conn, 1, ["S1"])
    fixture_conn.commit()
    assert rebuild_from(fixture_conn, 1, "swimming", date(2026, 2, 5), today=TODAY) == 0
    remaining = fixture_conn.execute(
        "SELECT COUNT(*) FROM training_load WHERE user_id=1 AND sport='swimming'"
    ).fetchone()[0]
    assert remaining == 0


def test_points_before_first_day_are_pruned(fixture_conn):
    from services.processing import store
    from services.processing.pipeline import rebuild_from, rebuild_full

    rebuild_full(fixture_conn, 1, today=TODAY)
    store.delete_activities(fixture_conn, 1, ["R1", "R1M"])
    fixture_conn.commit()
    _ingest(fixture_conn, _payload("R3", "2026-02-04T07:00:00Z", sport="Run", load=30.0))
    rebuild_from(fixture_conn, 1, "running", date(2026, 2, 1), today=TODAY)
    first = fixture_conn.execute(
        "SELECT MIN(date) FROM training_load WHERE user_id=1 AND sport='running'"
    ).fetchone()[0]
    assert first == "2026-02-04"


def test_best_efforts_only_improve(empty_conn):
    first = _ingest(empty_conn, _payload("E1", "2026-02-01T08:00:00Z", load=50.0, streams={"power": [250.0] * 120}))
    assert first.best_efforts_updated > 0
    stored = dict(
        empty_conn.execute(
            "SELECT duration_s, value FROM best_efforts WHERE time_window='all' AND sport='cycling'"
        ).fetchall()
    )
    assert stored[60] == 250.0
    assert max(stored) == 120

    weaker = _ingest(empty_conn, _payload("E2", "2026-02-03T08:00:00Z", load=50.0, streams={"power": [200.0] * 60}))
    assert weaker.best_efforts_updated == 0

    stronger = _ingest(empty_conn, _payload("E3", "2026-02-05T08:00:00Z", load=50.0, streams={"power": [300.0] * 30}))
    # 30 catalog durations, each in both windows.
    assert stronger.best_efforts_updated == 60
    row = empty_conn.execute(
        "SELECT value, activity_id, date_achieved FROM best_efforts WHERE duration_s=30 AND time_window='all'"
    ).fetchone()
    assert row == (300.0, "E3", "2026-02-05")
    row60 = empty_conn.execute(
        "SELECT value, activity_id FROM best_efforts WHERE duration_s=60 AND time_window='all'"
    ).fetchone()
    assert row60 == (250.0, "E1")
