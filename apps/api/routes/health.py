from fastapi import APIRouter

from packages.db import DB_ERRORS, missing_tables
from packages.job_state import list_job_runs
from ..schemas import HealthResponse
from ..utils import db_exists, get_db


router = APIRouter()


@router.get("/health", response_model=HealthResponse)
def health():
    if not db_exists():
        return {"status": "ok", "db": "missing", "last_job": None}
    with get_db() as conn:
        try:
            if missing_tables(conn):
                return {"status": "degraded", "db": "uninitialized", "last_job": None}
            runs = list_job_runs(conn, limit=1)
        except DB_ERRORS:
            return {"status": "degraded", "db": "error", "last_job": None}
    return {"status": "ok", "db": "ok", "last_job": runs[0] if runs else None}
