from datetime import date, timedelta
from typing import Optional

from fastapi import APIRouter, HTTPException

import packages.config as config
from services.analytics.best_efforts import WINDOW_ALL, WINDOW_RECENT, WINDOWS, format_duration
from services.analytics.sport import Sport
from services.processing import store
from ..schemas import BestEffortsResponse
from ..utils import db_exists, get_db, parse_sport_param


router = APIRouter()

UNITS = {
    Sport.CYCLING: "W",
    Sport.RUNNING: "s/km",
    Sport.SWIMMING: "s/100m",
}


@router.get("/users/{user_id}/best-efforts", response_model=BestEffortsResponse)
def best_efforts(user_id: int, sport: Optional[str] = None, window: str = WINDOW_ALL):
    if window not in WINDOWS:
        raise HTTPException(status_code=400, detail=f"window must be one of {', '.join(WINDOWS)}")
    if not db_exists():
        return {"db": "missing"}
    wanted = parse_sport_param(sport)
    sports = [wanted] if wanted is not None else list(Sport)
    cutoff = date.today() - timedelta(days=config.RECENT_WINDOW_DAYS)
    rows = []
    with get_db() as conn:
        for s in sports:
            for (duration, win), record in store.load_best_efforts(conn, user_id, s, window).items():
                # Aged-out recent records are not reported.
                if win == WINDOW_RECENT and record.date_achieved < cutoff:
                    continue
                rows.append(
                    {
                        "sport": s.value,
                        "duration_s": duration,
                        "label": format_duration(duration),
                        "time_window": win,
                        "value": record.value,
                        "unit": UNITS[s],
                        "activity_id": record.activity_id,
                        "date_achieved": record.date_achieved.isoformat(),
                    }
                )
    return {"best_efforts": rows}
