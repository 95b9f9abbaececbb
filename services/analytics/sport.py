"""Canonical sport buckets and the one alias table every consumer shares."""
from __future__ import annotations

import re
from enum import Enum
from typing import Optional


class Sport(str, Enum):
    RUNNING = "running"
    CYCLING = "cycling"
    SWIMMING = "swimming"


DEFAULT_SPORT = Sport.CYCLING

# Keys are labels with case, spaces, dashes and underscores stripped.
_ALIASES: dict[str, Sport] = {}

_SPORT_LABELS: dict[Sport, tuple[str, ...]] = {
    Sport.RUNNING: (
        "running", "run", "walk", "walking", "hike", "hiking",
        "trail run", "trail running", "virtual run", "treadmill",
        "treadmill running", "track running", "indoor running",
    ),
    Sport.CYCLING: (
        "cycling", "ride", "bike", "biking", "virtual ride", "e-bike ride",
        "e-mountain-bike ride", "mountain bike ride", "mountain biking",
        "gravel ride", "gravel cycling", "road biking", "indoor cycling",
        "handcycle",
    ),
    Sport.SWIMMING: (
        "swimming", "swim", "pool swim", "pool swimming",
        "open water swim", "open water swimming", "lap swimming",
    ),
}

for _sport, _labels in _SPORT_LABELS.items():
    for _label in _labels:
        _ALIASES[re.sub(r"[\s_\-]+", "", _label)] = _sport
    _ALIASES[_sport.value] = _sport


def _key(label: str) -> str:
    return re.sub(r"[\s_\-]+", "", label.strip().lower())


def try_normalize_sport(label) -> Optional[Sport]:
    """Like normalize_sport, but a missing label stays missing."""
    if label is None:
        return None
    if isinstance(label, Sport):
        return label
    if not str(label).strip():
        return None
    return _ALIASES.get(_key(str(label)), DEFAULT_SPORT)


def normalize_sport(label) -> Sport:
    sport = try_normalize_sport(label)
    return sport if sport is not None else DEFAULT_SPORT


def is_pace_sport(sport) -> bool:
    return normalize_sport(sport) in (Sport.RUNNING, Sport.SWIMMING)


def sport_labels(sport: Sport) -> tuple[str, ...]:
    return _SPORT_LABELS[sport]
