"""Resolve activity records that describe the same real-world session.

Duplicates are found pairwise within configurable tolerances, then grouped
by connected components so that chains (A~B, B~C) collapse into a single
cluster even when A and C are too far apart to match directly. One record
per cluster survives; the rest are reported for deletion.
"""
from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

import packages.config as config
from packages.errors import DuplicateAmbiguityWarning

from .models import MANUAL_SOURCE, ActivityRecord

logger = logging.getLogger("training.dedup")

# Power outranks GPS, which outranks heart rate.
COMPLETENESS_WEIGHTS = {
    "power": 30,
    "position": 25,
    "heart_rate": 20,
    "cadence": 10,
    "speed": 5,
    "altitude": 5,
}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class DedupTolerances:
    time_window_s: float = 300.0
    duration_tolerance_s: float = 30.0
    distance_tolerance_m: float = 100.0

    @classmethod
    def from_config(cls) -> "DedupTolerances":
        return cls(
            time_window_s=config.DEDUP_TIME_WINDOW_MIN * 60.0,
            duration_tolerance_s=config.DEDUP_DURATION_TOLERANCE_S,
            distance_tolerance_m=config.DEDUP_DISTANCE_TOLERANCE_M,
        )


@dataclass
class DedupResult:
    canonical: ActivityRecord
    removed: List[ActivityRecord] = field(default_factory=list)
    ambiguous: bool = False

    @property
    def removed_ids(self) -> List[str]:
        return [r.activity_id for r in self.removed]


def completeness_score(record: ActivityRecord) -> int:
    return sum(weight for name, weight in COMPLETENESS_WEIGHTS.items() if record.has_stream(name))


def is_duplicate(a: ActivityRecord, b: ActivityRecord, tolerances: Optional[DedupTolerances] = None) -> bool:
    tolerances = tolerances or DedupTolerances.from_config()
    sport_a = a.canonical_sport
    sport_b = b.canonical_sport
    # A record without a sport is never merged with anything.
    if sport_a is None or sport_b is None or sport_a != sport_b:
        return False
    if a.start_time is None or b.start_time is None:
        return False
    if abs((a.start_time - b.start_time).total_seconds()) > tolerances.time_window_s:
        return False
    if a.duration_s is None or b.duration_s is None:
        return False
    if abs(a.duration_s - b.duration_s) > tolerances.duration_tolerance_s:
        return False
    if a.distance_m and b.distance_m:
        if abs(a.distance_m - b.distance_m) > tolerances.distance_tolerance_m:
            return False
    return True


def _find(parent: List[int], i: int) -> int:
    while parent[i] != i:
        parent[i] = parent[parent[i]]
        i = parent[i]
    return i


def cluster_duplicates(
    records: Sequence[ActivityRecord],
    tolerances: Optional[DedupTolerances] = None,
) -> List[List[ActivityRecord]]:
    """Connected components of the pairwise-duplicate graph, in input order."""
    tolerances = tolerances or DedupTolerances.from_config()
    n = len(records)
    parent = list(range(n))

    # Sweep in start-time order; pairs further apart than the window never match.
    timed = sorted(
        (i for i in range(n) if records[i].start_time is not None),
        key=lambda i: records[i].start_time,
    )
    for pos, i in enumerate(timed):
        for j in timed[pos + 1:]:
            gap = (records[j].start_time - records[i].start_time).total_seconds()
            if gap > tolerances.time_window_s:
                break
            if is_duplicate(records[i], records[j], tolerances):
                root_i, root_j = _find(parent, i), _find(parent, j)
                if root_i != root_j:
                    parent[max(root_i, root_j)] = min(root_i, root_j)

    clusters: dict[int, List[ActivityRecord]] = {}
    for i in range(n):
        clusters.setdefault(_find(parent, i), []).append(records[i])
    return [clusters[root] for root in sorted(clusters)]


def _rank_key(record: ActivityRecord):
    created = record.created_at or _EPOCH
    return (
        -completeness_score(record),
        0 if record.is_external else 1,
        -created.timestamp(),
        record.activity_id,
    )


def _audit_entries(canonical: ActivityRecord, removed: Iterable[ActivityRecord]) -> List[dict]:
    seen = {canonical.activity_id}
    entries: List[dict] = []

    def add(entry: dict) -> None:
        key = entry.get("activity_id")
        if key in seen:
            return
        seen.add(key)
        entries.append(entry)

    for entry in canonical.duplicate_sources:
        add(entry)
    for record in removed:
        add(
            {
                "activity_id": record.activity_id,
                "source": record.source or MANUAL_SOURCE,
                "created_at": record.created_at.isoformat() if record.created_at else None,
            }
        )
        for entry in record.duplicate_sources:
            add(entry)
    return sorted(entries, key=lambda e: str(e.get("activity_id")))


def resolve_group(records: Sequence[ActivityRecord]) -> Optional[DedupResult]:
    """Pick the canonical record of one cluster.

    Priority: data completeness, then external provenance over manual
    entry, then the most recently created record. The canonical record's
    ``duplicate_sources`` is extended with the removed records.
    """
    if not records:
        return None
    ordered = sorted(records, key=_rank_key)
    canonical = ordered[0]
    removed = ordered[1:]
    if not removed:
        return DedupResult(canonical=canonical)

    top_score = completeness_score(canonical)
    tied = [
        r for r in ordered
        if completeness_score(r) == top_score and r.is_external == canonical.is_external
    ]
    ambiguous = len(tied) > 1
    if ambiguous:
        warnings.warn(
            DuplicateAmbiguityWarning(
                f"{len(tied)} duplicates of {canonical.activity_id} tie on completeness={top_score} "
                f"external={canonical.is_external}; kept most recently created"
            ),
            stacklevel=2,
        )

    canonical.duplicate_sources = _audit_entries(canonical, removed)
    logger.info(
        "dedup kept=%s source=%s score=%s removed=%s",
        canonical.activity_id,
        canonical.source,
        top_score,
        ",".join(r.activity_id for r in removed),
    )
    return DedupResult(canonical=canonical, removed=list(removed), ambiguous=ambiguous)


def resolve_duplicates(
    records: Sequence[ActivityRecord],
    tolerances: Optional[DedupTolerances] = None,
) -> List[DedupResult]:
    results: List[DedupResult] = []
    for cluster in cluster_duplicates(records, tolerances):
        if len(cluster) < 2:
            continue
        result = resolve_group(cluster)
        if result is not None:
            results.append(result)
    return results
