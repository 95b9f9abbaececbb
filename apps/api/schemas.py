from __future__ import annotations

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class DBMissingResponse(BaseModel):
    db: Optional[str] = None


class ErrorDetail(BaseModel):
    code: str
    message: str
    request_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


class JobRunEntry(BaseModel):
    id: Optional[int] = None
    job_name: str
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    status: Optional[str] = None
    processed: Optional[int] = None
    succeeded: Optional[int] = None
    failed: Optional[int] = None
    error: Optional[str] = None
    duration_sec: Optional[float] = None


class HealthResponse(BaseModel):
    status: str
    db: str
    last_job: Optional[JobRunEntry] = None


class JobRunsResponse(DBMissingResponse):
    runs: List[JobRunEntry] = Field(default_factory=list)


class ActivityIn(BaseModel):
    """Normalized activity as delivered by an upstream connector."""

    activity_id: str
    start_time: Optional[str] = None
    duration_s: Optional[float] = None
    distance_m: Optional[float] = None
    sport: Optional[str] = None
    source: str = "manual"
    created_at: Optional[str] = None
    load: Optional[float] = None
    avg_power: Optional[float] = None
    streams: Dict[str, List[Any]] = Field(default_factory=dict)
    duplicate_sources: List[Dict[str, Any]] = Field(default_factory=list)


class IngestResponse(BaseModel):
    activity_id: str
    canonical_id: str
    kept: bool
    removed_ids: List[str] = Field(default_factory=list)
    rebuilt_from: Dict[str, str] = Field(default_factory=dict)
    best_efforts_updated: int = 0


class ActivitySummary(BaseModel):
    activity_id: str
    start_time: Optional[str] = None
    start_date: Optional[str] = None
    sport: str
    sport_raw: Optional[str] = None
    source: Optional[str] = None
    duration_s: Optional[float] = None
    distance_m: Optional[float] = None
    load: Optional[float] = None
    created_at: Optional[str] = None
    duplicate_sources: List[Dict[str, Any]] = Field(default_factory=list)


class ActivitiesResponse(DBMissingResponse):
    activities: List[ActivitySummary] = Field(default_factory=list)


class TrainingLoadRow(BaseModel):
    date: str
    sport: str
    load: float
    chronic: float
    acute: float
    balance: float
    duration_s: float = 0.0


class TrainingLoadResponse(DBMissingResponse):
    series: List[TrainingLoadRow] = Field(default_factory=list)


class RebuildResponse(BaseModel):
    user_id: int
    points_written: Dict[str, int] = Field(default_factory=dict)


class BestEffortRow(BaseModel):
    sport: str
    duration_s: int
    label: str
    time_window: str
    value: float
    unit: str
    activity_id: Optional[str] = None
    date_achieved: str


class BestEffortsResponse(DBMissingResponse):
    best_efforts: List[BestEffortRow] = Field(default_factory=list)
