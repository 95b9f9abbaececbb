import importlib
import sqlite3
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]


def test_schema_files_present():
    assert (ROOT / "database" / "schema.sql").exists()
    assert (ROOT / "database" / "schema_pg.sql").exists()


def test_init_schema_creates_tables(tmp_path, monkeypatch):
    db_path = tmp_path / "smoke.db"
    monkeypatch.setenv("TRAINING_DB_PATH", str(db_path))
    monkeypatch.setenv("TRAINING_DB_URL", "")

    import packages.config as config
    importlib.reload(config)
    from packages import db

    with db.connect() as conn:
        db.init_schema(conn)
        # Running twice must be harmless.
        db.init_schema(conn)

    with sqlite3.connect(db_path) as conn:
        names = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    assert {"activities", "activity_streams", "daily_loads", "training_load", "best_efforts", "job_runs"} <= names


def test_job_runs_ledger_round_trip(tmp_path, monkeypatch):
    monkeypatch.setenv("TRAINING_DB_PATH", str(tmp_path / "jobs.db"))
    monkeypatch.setenv("TRAINING_DB_URL", "")

    import packages.config as config
    importlib.reload(config)
    from packages import db
    from packages.job_state import finish_job_run, list_job_runs, start_job_run

    with db.connect() as conn:
        db.init_schema(conn)
        run_id = start_job_run(conn, "backfill_training_load")
        assert list_job_runs(conn)[0]["status"] == "running"
        finish_job_run(conn, run_id, "partial", 3, 2, 1, "user=1: boom", 0.25)
        other = start_job_run(conn, "deduplicate_history")
        finish_job_run(conn, other, "ok", 1, 1, 0, None, 0.1)

        runs = list_job_runs(conn, job_name="backfill_training_load")
    assert len(runs) == 1
    assert runs[0]["status"] == "partial"
    assert (runs[0]["processed"], runs[0]["succeeded"], runs[0]["failed"]) == (3, 2, 1)
    assert runs[0]["error"] == "user=1: boom"
