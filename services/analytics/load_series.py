"""Chronic/acute training-load recurrence over a dense daily timeline.

Everything here is pure: the storage layer hands in daily loads and an
anchor state, and writes back whatever ``compute_series`` returns.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import packages.config as config

from .models import ActivityRecord, DailyLoadBucket, TrainingLoadPoint
from .sport import Sport, normalize_sport


@dataclass(frozen=True)
class DecayConstants:
    chronic_days: float = 42.0
    acute_days: float = 7.0

    @classmethod
    def from_config(cls) -> "DecayConstants":
        return cls(chronic_days=config.CHRONIC_DAYS, acute_days=config.ACUTE_DAYS)


@dataclass(frozen=True)
class SeriesSeed:
    """State of the recurrence at the end of the day before a replay."""

    chronic: float = 0.0
    acute: float = 0.0

    @classmethod
    def from_point(cls, point: Optional[TrainingLoadPoint]) -> "SeriesSeed":
        if point is None:
            return cls()
        return cls(chronic=point.chronic, acute=point.acute)


DailyLoad = Union[float, int, DailyLoadBucket]


def dense_timeline(start: date, end: date) -> List[date]:
    if end < start:
        return []
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def _activity_load(record: ActivityRecord) -> float:
    return float(record.load or 0.0)


def aggregate_daily_loads(
    activities: Iterable[ActivityRecord],
    load_of: Callable[[ActivityRecord], float] = _activity_load,
) -> Dict[Tuple[date, Sport], DailyLoadBucket]:
    """Sum load and duration per (UTC day, canonical sport)."""
    loads: Dict[Tuple[date, Sport], float] = defaultdict(float)
    durations: Dict[Tuple[date, Sport], float] = defaultdict(float)
    counts: Dict[Tuple[date, Sport], int] = defaultdict(int)
    for record in activities:
        key = (record.start_date, normalize_sport(record.sport))
        loads[key] += float(load_of(record) or 0.0)
        durations[key] += float(record.duration_s or 0.0)
        counts[key] += 1
    return {
        key: DailyLoadBucket(key[0], key[1], loads[key], durations[key], counts[key])
        for key in sorted(loads, key=lambda k: (k[0], k[1].value))
    }


def loads_for_sport(
    buckets: Mapping[Tuple[date, Sport], DailyLoadBucket], sport: Sport
) -> Dict[date, DailyLoadBucket]:
    return {day: bucket for (day, s), bucket in buckets.items() if s == sport}


def _load_and_duration(value: Optional[DailyLoad]) -> Tuple[float, float]:
    if value is None:
        return 0.0, 0.0
    if isinstance(value, DailyLoadBucket):
        return float(value.load), float(value.duration_s)
    return float(value), 0.0


def step(prev: SeriesSeed, load: float, constants: DecayConstants) -> SeriesSeed:
    chronic = prev.chronic + (load - prev.chronic) / constants.chronic_days
    acute = prev.acute + (load - prev.acute) / constants.acute_days
    return SeriesSeed(chronic=chronic, acute=acute)


def compute_series(
    loads: Mapping[date, DailyLoad],
    start: date,
    end: date,
    sport: Sport,
    seed: Optional[SeriesSeed] = None,
    constants: Optional[DecayConstants] = None,
) -> List[TrainingLoadPoint]:
    """Replay the recurrence one calendar day at a time from ``start``.

    ``seed`` is the state at the end of ``start - 1``; days missing from
    ``loads`` contribute zero load but still produce a point.
    """
    constants = constants or DecayConstants.from_config()
    state = seed or SeriesSeed()
    points: List[TrainingLoadPoint] = []
    for day in dense_timeline(start, end):
        load, duration = _load_and_duration(loads.get(day))
        state = step(state, load, constants)
        points.append(
            TrainingLoadPoint(
                day=day,
                sport=sport,
                load=load,
                chronic=state.chronic,
                acute=state.acute,
                balance=state.chronic - state.acute,
                duration_s=duration,
            )
        )
    return points


def series_end(last_activity_day: date, today: Optional[date] = None) -> date:
    today = today or date.today()
    return max(today, last_activity_day)

