from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Sequence

from packages.errors import ValidationError

from .sport import Sport, try_normalize_sport

MANUAL_SOURCE = "manual"

STREAM_TYPES = ("power", "heart_rate", "cadence", "altitude", "position", "speed")


def parse_dt(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_utc_iso(value: Optional[datetime]) -> Optional[str]:
    # Fixed width so stored timestamps sort lexically.
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def numeric_samples(values: Sequence) -> List[float]:
    """Finite floats from a raw stream; gaps and unparseable entries are skipped."""
    out: List[float] = []
    for v in values:
        if v is None or isinstance(v, bool):
            continue
        try:
            value = float(v)
        except (TypeError, ValueError):
            continue
        if math.isfinite(value):
            out.append(value)
    return out


def parse_day(value) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


@dataclass
class ActivityRecord:
    activity_id: str
    user_id: int
    start_time: Optional[datetime]
    duration_s: Optional[float]
    sport: Optional[str]
    distance_m: Optional[float] = None
    source: str = MANUAL_SOURCE
    created_at: Optional[datetime] = None
    load: Optional[float] = None
    avg_power: Optional[float] = None
    streams: Dict[str, List[Optional[float]]] = field(default_factory=dict)
    duplicate_sources: List[dict] = field(default_factory=list)

    @property
    def canonical_sport(self) -> Optional[Sport]:
        return try_normalize_sport(self.sport)

    @property
    def start_date(self) -> date:
        """UTC calendar day the session started on."""
        return self.start_time.astimezone(timezone.utc).date()

    @property
    def is_external(self) -> bool:
        return bool(self.source) and self.source.strip().lower() != MANUAL_SOURCE

    def has_stream(self, name: str) -> bool:
        data = self.streams.get(name)
        return bool(data) and any(v is not None for v in data)

    def stream(self, name: str) -> Sequence[Optional[float]]:
        return self.streams.get(name) or []


@dataclass(frozen=True)
class DailyLoadBucket:
    day: date
    sport: Sport
    load: float
    duration_s: float
    activity_count: int


@dataclass(frozen=True)
class TrainingLoadPoint:
    day: date
    sport: Sport
    load: float
    chronic: float
    acute: float
    balance: float
    duration_s: float = 0.0


@dataclass(frozen=True)
class BestEffortRecord:
    sport: Sport
    duration_s: int
    value: float
    date_achieved: date
    activity_id: Optional[str] = None
    time_window: str = "all"


def _optional_float(payload: dict, key: str, activity_id) -> Optional[float]:
    raw = payload.get(key)
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{key} is not a number", activity_id, key) from exc


def activity_from_dict(payload: dict, user_id: Optional[int] = None) -> ActivityRecord:
    """Build an ActivityRecord from a normalized upstream payload."""
    activity_id = payload.get("activity_id") or payload.get("id")
    if activity_id is None or str(activity_id).strip() == "":
        raise ValidationError("activity_id is required", None, "activity_id")
    activity_id = str(activity_id)
    uid = user_id if user_id is not None else payload.get("user_id")
    if uid is None:
        raise ValidationError("user_id is required", activity_id, "user_id")
    streams = {}
    for name, data in (payload.get("streams") or {}).items():
        if name in STREAM_TYPES and isinstance(data, list):
            streams[name] = data
    record = ActivityRecord(
        activity_id=activity_id,
        user_id=int(uid),
        start_time=parse_dt(payload.get("start_time")),
        duration_s=_optional_float(payload, "duration_s", activity_id),
        sport=payload.get("sport"),
        distance_m=_optional_float(payload, "distance_m", activity_id),
        source=str(payload.get("source") or MANUAL_SOURCE),
        created_at=parse_dt(payload.get("created_at")),
        load=_optional_float(payload, "load", activity_id),
        avg_power=_optional_float(payload, "avg_power", activity_id),
        streams=streams,
        duplicate_sources=list(payload.get("duplicate_sources") or []),
    )
    return record


def validate_activity(record: ActivityRecord) -> ActivityRecord:
    if record.start_time is None:
        raise ValidationError("start_time is required", record.activity_id, "start_time")
    if record.canonical_sport is None:
        raise ValidationError("sport is required", record.activity_id, "sport")
    duration = record.duration_s
    if duration is None or not math.isfinite(duration) or duration <= 0:
        raise ValidationError("duration_s must be a positive number", record.activity_id, "duration_s")
    if record.distance_m is not None and (not math.isfinite(record.distance_m) or record.distance_m < 0):
        raise ValidationError("distance_m must be non-negative", record.activity_id, "distance_m")
    if record.load is not None and (not math.isfinite(record.load) or record.load < 0):
        raise ValidationError("load must be non-negative", record.activity_id, "load")
    if record.created_at is None:
        record.created_at = datetime.now(timezone.utc)
    return record
