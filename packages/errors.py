"""Error taxonomy shared by the analytics core, the pipeline and the API."""
from __future__ import annotations

from typing import Optional


class TrainingError(Exception):
    """Base class for errors raised by the analytics core."""


class ValidationError(TrainingError):
    """An incoming activity is missing or has malformed required fields.

    Recovered locally: the record is skipped, never merged and never fed
    into the load series.
    """

    def __init__(self, message: str, activity_id: Optional[str] = None, field: Optional[str] = None):
        super().__init__(message)
        self.activity_id = activity_id
        self.field = field

    def to_dict(self) -> dict:
        return {"activity_id": self.activity_id, "field": self.field}


class RangeWriteError(TrainingError):
    """Storage failed while writing a recomputed date range.

    The range is rolled back before this is raised; callers see either the
    previous rows or the full new range, never a mix.
    """

    def __init__(self, message: str, user_id=None, sport: Optional[str] = None, start=None, end=None):
        super().__init__(message)
        self.user_id = user_id
        self.sport = sport
        self.start = start
        self.end = end

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "sport": self.sport,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
        }


class DuplicateAmbiguityWarning(UserWarning):
    """Several records in a duplicate cluster tie on score and provenance."""
