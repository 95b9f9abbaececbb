import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from services.analytics.models import to_utc_iso
from services.processing import store
from services.processing.pipeline import ingest_payload
from ..schemas import ActivitiesResponse, ActivityIn, ErrorResponse, IngestResponse
from ..utils import db_exists, get_db, parse_date_param, parse_sport_param


router = APIRouter()

logger = logging.getLogger("training.api")

MAX_ACTIVITIES_LIMIT = 500


@router.post(
    "/users/{user_id}/activities",
    response_model=IngestResponse,
    status_code=201,
    responses={422: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
def ingest(user_id: int, body: ActivityIn):
    if not db_exists():
        raise HTTPException(status_code=503, detail="Database not initialized")
    with get_db() as conn:
        result = ingest_payload(conn, body.model_dump(), user_id)
    return result.to_dict()


@router.get("/users/{user_id}/activities", response_model=ActivitiesResponse)
def list_activities(
    user_id: int,
    sport: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
    limit: int = Query(100, ge=1, le=MAX_ACTIVITIES_LIMIT),
):
    if not db_exists():
        return {"db": "missing"}
    start_day = parse_date_param(start, "start")
    end_day = parse_date_param(end, "end")
    with get_db() as conn:
        records = store.load_activities(conn, user_id, parse_sport_param(sport), start_day, end_day)
    out = []
    for r in records[-limit:]:
        out.append(
            {
                "activity_id": r.activity_id,
                "start_time": to_utc_iso(r.start_time),
                "start_date": r.start_date.isoformat(),
                "sport": r.canonical_sport.value,
                "sport_raw": r.sport,
                "source": r.source,
                "duration_s": r.duration_s,
                "distance_m": r.distance_m,
                "load": r.load,
                "created_at": to_utc_iso(r.created_at),
                "duplicate_sources": r.duplicate_sources,
            }
        )
    return {"activities": out}
