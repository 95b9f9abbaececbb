"""Ingest canonical activities and keep the derived tables current.

One ingested activity flows through: validation, load estimate, storage,
deduplication against nearby activities, an incremental series rebuild from
the earliest affected day, and a best-effort update.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional

from packages.db import DB_ERRORS
from packages.errors import RangeWriteError, ValidationError
from packages.metrics import inc, timed
from packages.request_context import user_context
from services.analytics.best_efforts import effort_samples, extract_best_efforts, plan_best_effort_updates
from services.analytics.dedup import DedupResult, DedupTolerances, resolve_duplicates
from services.analytics.load_estimate import estimate_load
from services.analytics.load_series import (
    DecayConstants,
    SeriesSeed,
    aggregate_daily_loads,
    compute_series,
    loads_for_sport,
    series_end,
)
from services.analytics.models import ActivityRecord, BestEffortRecord, activity_from_dict, validate_activity
from services.analytics.sport import Sport, normalize_sport

from . import store

logger = logging.getLogger("training.pipeline")


@dataclass
class IngestResult:
    activity_id: str
    canonical_id: str
    removed_ids: List[str] = field(default_factory=list)
    rebuilt_from: Dict[str, str] = field(default_factory=dict)
    best_efforts_updated: int = 0

    @property
    def kept(self) -> bool:
        return self.activity_id == self.canonical_id

    def to_dict(self) -> dict:
        return {
            "activity_id": self.activity_id,
            "canonical_id": self.canonical_id,
            "kept": self.kept,
            "removed_ids": self.removed_ids,
            "rebuilt_from": self.rebuilt_from,
            "best_efforts_updated": self.best_efforts_updated,
        }


@contextmanager
def range_write(conn, user_id, sport: Optional[Sport], start: Optional[date], end: Optional[date]):
    """Commit everything written inside the block, or roll it all back."""
    try:
        yield
        conn.commit()
    except DB_ERRORS as exc:
        conn.rollback()
        inc("range_write_failures_total")
        label = sport.value if sport is not None else None
        logger.error("range_write_failed user=%s sport=%s start=%s end=%s err=%s", user_id, label, start, end, exc)
        raise RangeWriteError(f"storage failure writing {label} range: {exc}", user_id, label, start, end) from exc
    except Exception:
        conn.rollback()
        raise


def candidate_pool(conn, record: ActivityRecord, tolerances: DedupTolerances) -> List[ActivityRecord]:
    """Stored activities reachable from ``record`` through chained matches.

    The time window is widened around every newly found activity until it
    stops growing, so a chain A~B~C is fetched whole even when only A is new.
    """
    window = timedelta(seconds=tolerances.time_window_s)
    lo = record.start_time - window
    hi = record.start_time + window
    found: Dict[str, ActivityRecord] = {}
    while True:
        batch = store.load_activities_between(conn, record.user_id, lo, hi, with_streams=True)
        new = [r for r in batch if r.activity_id not in found]
        if not new:
            break
        for r in new:
            found[r.activity_id] = r
        starts = [r.start_time for r in found.values()]
        lo, hi = min(starts) - window, max(starts) + window
    if record.activity_id not in found:
        found[record.activity_id] = record
    return sorted(found.values(), key=lambda r: (r.start_time, r.activity_id))


def apply_dedup(conn, records: List[ActivityRecord], tolerances: DedupTolerances) -> List[DedupResult]:
    """Delete the losers of every duplicate cluster in ``records``."""
    results = resolve_duplicates(records, tolerances)
    for result in results:
        store.delete_activities(conn, result.canonical.user_id, result.removed_ids)
        store.update_duplicate_sources(conn, result.canonical)
        inc("duplicates_removed_total", len(result.removed))
    return results


def ingest_activity(
    conn,
    record: ActivityRecord,
    tolerances: Optional[DedupTolerances] = None,
    today: Optional[date] = None,
) -> IngestResult:
    """Store one activity and bring every derived table up to date.

    Raises ValidationError before anything is written when the record is
    unusable, and RangeWriteError when storage fails mid-way.
    """
    tolerances = tolerances or DedupTolerances.from_config()
    with user_context(record.user_id):
        try:
            validate_activity(record)
        except ValidationError:
            inc("activities_rejected_total")
            logger.warning("activity_rejected id=%s", record.activity_id)
            raise
        if record.load is None:
            record.load = estimate_load(record)
        sport = normalize_sport(record.sport)

        affected: Dict[Sport, date] = {sport: record.start_date}
        previous = store.load_activity(conn, record.user_id, record.activity_id, with_streams=False)
        if previous is not None:
            prev_sport = normalize_sport(previous.sport)
            affected[prev_sport] = min(affected.get(prev_sport, previous.start_date), previous.start_date)

        with range_write(conn, record.user_id, sport, record.start_date, None):
            store.upsert_activity(conn, record)
            pool = candidate_pool(conn, record, tolerances)
            dedup_results = apply_dedup(conn, pool, tolerances)
        inc("activities_ingested_total")

        canonical_id = record.activity_id
        removed: List[ActivityRecord] = []
        for dedup in dedup_results:
            removed.extend(dedup.removed)
            if record.activity_id in dedup.removed_ids:
                canonical_id = dedup.canonical.activity_id
        for r in removed:
            s = normalize_sport(r.sport)
            affected[s] = min(affected.get(s, r.start_date), r.start_date)

        result = IngestResult(
            activity_id=record.activity_id,
            canonical_id=canonical_id,
            removed_ids=sorted(r.activity_id for r in removed),
        )

        for s, since in sorted(affected.items(), key=lambda kv: kv[0].value):
            rebuild_from(conn, record.user_id, s, since, today=today)
            result.rebuilt_from[s.value] = since.isoformat()

        if result.kept:
            result.best_efforts_updated = len(update_best_efforts(conn, record, today=today))
        logger.info(
            "ingested id=%s canonical=%s removed=%s best_efforts=%s",
            record.activity_id,
            canonical_id,
            ",".join(result.removed_ids) or "-",
            result.best_efforts_updated,
        )
        return result


def rebuild_from(
    conn,
    user_id: int,
    sport,
    since: Optional[date] = None,
    today: Optional[date] = None,
    constants: Optional[DecayConstants] = None,
) -> int:
    """Replay one sport's series forward from ``since`` and persist it.

    The replay is seeded from the stored point for ``since - 1``. Without a
    usable anchor (``since`` on or before the first activity day, or the
    anchor row missing) it starts at the first activity day from zero.
    Returns the number of points written.
    """
    sport = normalize_sport(sport)
    first, last = store.activity_day_bounds(conn, user_id, sport)
    if first is None:
        with range_write(conn, user_id, sport, since, None):
            store.delete_series(conn, user_id, sport)
        logger.info("series_cleared user=%s sport=%s", user_id, sport.value)
        return 0

    end = series_end(last, today)
    start = first
    seed = SeriesSeed()
    if since is not None and since > first:
        anchor = store.load_training_point(conn, user_id, sport, store.day_before(since))
        if anchor is not None:
            start = since
            seed = SeriesSeed.from_point(anchor)

    with timed("series_rebuild_seconds", sport=sport.value):
        points = []
        buckets = {}
        if start <= end:
            activities = store.load_activities(conn, user_id, sport, start=start, end=end)
            buckets = loads_for_sport(aggregate_daily_loads(activities), sport)
            points = compute_series(buckets, start, end, sport, seed, constants)

        with range_write(conn, user_id, sport, start, end):
            store.replace_daily_loads(conn, user_id, sport, buckets.values(), start, end)
            written = store.upsert_training_points(conn, user_id, points)
            store.prune_series(conn, user_id, sport, first, end)

    inc("series_points_written_total", written)
    logger.info(
        "series_rebuilt user=%s sport=%s start=%s end=%s points=%s",
        user_id,
        sport.value,
        start,
        end,
        written,
    )
    return written


def rebuild_full(
    conn,
    user_id: int,
    sport=None,
    today: Optional[date] = None,
    constants: Optional[DecayConstants] = None,
) -> Dict[Sport, int]:
    sports = [normalize_sport(sport)] if sport is not None else store.stored_sports(conn, user_id)
    return {s: rebuild_from(conn, user_id, s, None, today, constants) for s in sports}


def update_best_efforts(conn, activity: ActivityRecord, today: Optional[date] = None) -> List[BestEffortRecord]:
    """Upsert the catalog durations where ``activity`` strictly beats the stored bests."""
    sport = normalize_sport(activity.sport)
    samples = effort_samples(activity)
    if not samples:
        return []
    candidates = extract_best_efforts(samples, sport)
    if not candidates:
        return []
    stored = store.load_best_efforts(conn, activity.user_id, sport)
    updates = plan_best_effort_updates(
        candidates,
        stored,
        sport,
        activity.start_date,
        activity.activity_id,
        today=today,
    )
    if updates:
        with range_write(conn, activity.user_id, sport, activity.start_date, activity.start_date):
            store.upsert_best_efforts(conn, activity.user_id, updates)
        inc("best_efforts_improved_total", len(updates))
    return updates


def ingest_payload(conn, payload: dict, user_id: Optional[int] = None, **kwargs) -> IngestResult:
    return ingest_activity(conn, activity_from_dict(payload, user_id), **kwargs)
