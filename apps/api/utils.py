from datetime import date
from typing import Optional

from fastapi import HTTPException

from packages import db
from services.analytics.sport import Sport, normalize_sport


def get_db() -> db.DBConnection:
    return db.open_db()


def db_exists() -> bool:
    return db.db_exists()


def parse_date_param(value: Optional[str], name: str) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{name} must be YYYY-MM-DD")


def parse_sport_param(value: Optional[str]) -> Optional[Sport]:
    if not value:
        return None
    return normalize_sport(value)
