"""Mean-maximal (best-effort) curves from per-second sensor streams."""
from __future__ import annotations

from datetime import date, timedelta
from operator import sub
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import packages.config as config

from .models import ActivityRecord, BestEffortRecord, numeric_samples
from .sport import Sport, is_pace_sport, normalize_sport

WINDOW_ALL = "all"
WINDOW_RECENT = "recent"
WINDOWS = (WINDOW_ALL, WINDOW_RECENT)

POWER_CEILING_W = 2500.0
SPEED_CEILING_MPS = {
    Sport.RUNNING: 12.5,
    Sport.SWIMMING: 3.5,
    Sport.CYCLING: 30.0,
}
# Pace is reported as seconds per this many metres.
PACE_DISTANCE_M = {
    Sport.RUNNING: 1000.0,
    Sport.SWIMMING: 100.0,
}

# (upper bound in seconds, step); None means "up to the stream length".
DURATION_STEPS: Tuple[Tuple[Optional[int], int], ...] = (
    (60, 1),
    (300, 5),
    (1200, 30),
    (3600, 60),
    (None, 300),
)


def duration_catalog(max_seconds: int) -> List[int]:
    durations: List[int] = []
    current = 0
    for limit, step in DURATION_STEPS:
        upper = max_seconds if limit is None else min(limit, max_seconds)
        while current + step <= upper:
            current += step
            durations.append(current)
    return durations


def clean_samples(samples: Sequence[Optional[float]], sport: Sport) -> List[float]:
    """Drop gaps, non-positive and implausible readings before windowing."""
    ceiling = SPEED_CEILING_MPS[sport] if is_pace_sport(sport) else POWER_CEILING_W
    return [v for v in numeric_samples(samples) if 0 < v <= ceiling]


def _centered_prefix(samples: Sequence[float]) -> Tuple[float, List[float]]:
    # Offsetting by the first sample keeps constant streams exact.
    base = samples[0]
    prefix = [0.0]
    acc = 0.0
    for v in samples:
        acc += v - base
        prefix.append(acc)
    return base, prefix


def _max_window_mean(base: float, prefix: List[float], duration: int) -> float:
    best = max(map(sub, prefix[duration:], prefix[:-duration]))
    return base + best / duration


def speed_to_pace(speed_mps: float, sport: Sport) -> Optional[float]:
    if speed_mps <= 0:
        return None
    return PACE_DISTANCE_M[sport] / speed_mps


def effort_samples(record: ActivityRecord) -> List[Optional[float]]:
    sport = normalize_sport(record.sport)
    if is_pace_sport(sport):
        return list(record.stream("speed"))
    return list(record.stream("power"))


def extract_best_efforts(
    samples: Sequence[Optional[float]],
    sport,
    max_duration: Optional[int] = None,
) -> Dict[int, float]:
    """Best value per catalog duration: max mean power, or min pace."""
    sport = normalize_sport(sport)
    cleaned = clean_samples(samples, sport)
    if not cleaned:
        return {}
    limit = len(cleaned)
    if max_duration is None:
        max_duration = config.BEST_EFFORT_MAX_S
    limit = min(limit, max_duration)
    base, prefix = _centered_prefix(cleaned)
    pace = is_pace_sport(sport)
    out: Dict[int, float] = {}
    for duration in duration_catalog(limit):
        avg = _max_window_mean(base, prefix, duration)
        value = speed_to_pace(avg, sport) if pace else avg
        if value is not None and value > 0:
            out[duration] = value
    return out


def is_better(new_value: float, existing: Optional[float], sport) -> bool:
    if existing is None:
        return True
    if is_pace_sport(sport):
        return new_value < existing
    return new_value > existing


def select_improvements(
    candidates: Mapping[int, float],
    stored: Mapping[int, float],
    sport,
) -> Dict[int, float]:
    return {
        duration: value
        for duration, value in candidates.items()
        if is_better(value, stored.get(duration), sport)
    }


def plan_best_effort_updates(
    candidates: Mapping[int, float],
    stored: Mapping[Tuple[int, str], BestEffortRecord],
    sport,
    activity_day: date,
    activity_id: Optional[str],
    today: Optional[date] = None,
    recent_days: Optional[int] = None,
) -> List[BestEffortRecord]:
    """Records to upsert across both windows; only strict improvements.

    A ``recent`` record achieved before the window cutoff no longer counts,
    so anything from inside the window replaces it.
    """
    sport = normalize_sport(sport)
    today = today or date.today()
    recent_days = config.RECENT_WINDOW_DAYS if recent_days is None else recent_days
    cutoff = today - timedelta(days=recent_days)
    updates: List[BestEffortRecord] = []
    for window in WINDOWS:
        if window == WINDOW_RECENT and activity_day < cutoff:
            continue
        current: Dict[int, float] = {}
        for (duration, win), record in stored.items():
            if win != window:
                continue
            if window == WINDOW_RECENT and record.date_achieved < cutoff:
                continue
            current[duration] = record.value
        for duration, value in sorted(select_improvements(candidates, current, sport).items()):
            updates.append(
                BestEffortRecord(
                    sport=sport,
                    duration_s=duration,
                    value=value,
                    date_achieved=activity_day,
                    activity_id=activity_id,
                    time_window=window,
                )
            )
    return updates


def format_duration(seconds: int) -> str:
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        minutes, rest = divmod(seconds, 60)
        return f"{minutes}m{rest}s" if rest else f"{minutes}m"
    hours, rest = divmod(seconds, 3600)
    minutes = rest // 60
    return f"{hours}h{minutes}m" if minutes else f"{hours}h"
