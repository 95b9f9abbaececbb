from datetime import date
from typing import Optional

from fastapi import APIRouter, HTTPException

from services.processing import store
from services.processing.pipeline import rebuild_from, rebuild_full
from ..schemas import ErrorResponse, RebuildResponse, TrainingLoadResponse
from ..utils import db_exists, get_db, parse_date_param, parse_sport_param


router = APIRouter()


@router.get("/users/{user_id}/training-load", response_model=TrainingLoadResponse)
def training_load(
    user_id: int,
    sport: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
):
    if not db_exists():
        return {"db": "missing"}
    start_day = parse_date_param(start, "start")
    end_day = parse_date_param(end, "end")
    if start_day and end_day and end_day < start_day:
        raise HTTPException(status_code=400, detail="end must not be before start")
    with get_db() as conn:
        points = store.load_training_series(conn, user_id, parse_sport_param(sport), start_day, end_day)
    return {
        "series": [
            {
                "date": p.day.isoformat(),
                "sport": p.sport.value,
                "load": p.load,
                "chronic": p.chronic,
                "acute": p.acute,
                "balance": p.balance,
                "duration_s": p.duration_s,
            }
            for p in points
        ]
    }


@router.post(
    "/users/{user_id}/training-load/rebuild",
    response_model=RebuildResponse,
    responses={503: {"model": ErrorResponse}},
)
def rebuild(user_id: int, sport: Optional[str] = None, since: Optional[str] = None):
    if not db_exists():
        raise HTTPException(status_code=503, detail="Database not initialized")
    since_day: Optional[date] = parse_date_param(since, "since")
    sport_value = parse_sport_param(sport)
    with get_db() as conn:
        if since_day is not None and sport_value is not None:
            written = {sport_value: rebuild_from(conn, user_id, sport_value, since_day)}
        elif since_day is not None:
            written = {s: rebuild_from(conn, user_id, s, since_day) for s in store.stored_sports(conn, user_id)}
        else:
            written = rebuild_full(conn, user_id, sport_value)
    return {"user_id": user_id, "points_written": {s.value: n for s, n in written.items()}}
