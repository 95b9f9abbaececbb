from typing import Optional

from fastapi import APIRouter, Query

from packages.job_state import list_job_runs
from ..schemas import JobRunsResponse
from ..utils import db_exists, get_db


router = APIRouter()


@router.get("/jobs", response_model=JobRunsResponse)
def jobs(limit: int = Query(50, ge=1, le=500), job_name: Optional[str] = None):
    if not db_exists():
        return {"db": "missing"}
    with get_db() as conn:
        return {"runs": list_job_runs(conn, limit=limit, job_name=job_name)}
