from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from packages import db


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def start_job_run(conn, job_name: str) -> int:
    cur = conn.cursor()
    if db.is_postgres():
        cur.execute(
            """
            INSERT INTO job_runs(job_name, started_at, status)
            VALUES(?, ?, ?)
            RETURNING id
            """,
            (job_name, _now_iso(), "running"),
        )
        run_id = cur.fetchone()[0]
        conn.commit()
        return run_id
    cur.execute(
        """
        INSERT INTO job_runs(job_name, started_at, status)
        VALUES(?, ?, ?)
        """,
        (job_name, _now_iso(), "running"),
    )
    conn.commit()
    return cur.lastrowid


def finish_job_run(
    conn,
    run_id: int,
    status: str,
    processed: int,
    succeeded: int,
    failed: int,
    error: Optional[str],
    duration_sec: float,
) -> None:
    conn.execute(
        """
        UPDATE job_runs
        SET finished_at=?,
            status=?,
            processed=?,
            succeeded=?,
            failed=?,
            error=?,
            duration_sec=?
        WHERE id=?
        """,
        (_now_iso(), status, processed, succeeded, failed, error, duration_sec, run_id),
    )
    conn.commit()


def list_job_runs(conn, limit: int = 50, job_name: Optional[str] = None) -> List[dict]:
    clause = ""
    params: list = []
    if job_name:
        clause = "WHERE job_name=?"
        params.append(job_name)
    params.append(limit)
    cur = conn.execute(
        f"""
        SELECT id, job_name, started_at, finished_at, status,
               processed, succeeded, failed, error, duration_sec
        FROM job_runs
        {clause}
        ORDER BY id DESC
        LIMIT ?
        """,
        params,
    )
    cols = [c[0] for c in cur.description]
    return [dict(zip(cols, row)) for row in cur.fetchall()]
