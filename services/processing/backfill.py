"""Full-history batch jobs: dedup, training-load rebuild and best-effort replay.

Each job works through its items one at a time, counts per-item failures
instead of stopping, and leaves a row in ``job_runs``.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Callable, List, Optional

from packages.db import DB_ERRORS
from packages.errors import TrainingError
from packages.job_state import finish_job_run, start_job_run
from packages.metrics import inc
from packages.request_context import job_run_context, user_context
from services.analytics.dedup import DedupTolerances
from services.analytics.sport import normalize_sport

from . import store
from .pipeline import apply_dedup, rebuild_from, update_best_efforts

logger = logging.getLogger("training.backfill")

MAX_ERRORS_KEPT = 50

# Per-item failures: domain errors and storage errors raised outside a range write.
ITEM_ERRORS = (TrainingError,) + DB_ERRORS


@dataclass
class BackfillTally:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    def ok(self) -> None:
        self.processed += 1
        self.succeeded += 1

    def fail(self, item: str, exc: Exception) -> None:
        self.processed += 1
        self.failed += 1
        if len(self.errors) < MAX_ERRORS_KEPT:
            self.errors.append(f"{item}: {exc}")

    def merge(self, other: "BackfillTally") -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.errors.extend(other.errors[: max(0, MAX_ERRORS_KEPT - len(self.errors))])

    @property
    def status(self) -> str:
        if self.failed == 0:
            return "ok"
        return "partial" if self.succeeded else "error"

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "errors": list(self.errors),
            "status": self.status,
        }


def _run_job(conn, job_name: str, user_ids: Optional[List[int]], work: Callable[[int, BackfillTally], None]) -> BackfillTally:
    run_id = start_job_run(conn, job_name)
    started = time.perf_counter()
    tally = BackfillTally()
    error = None
    with job_run_context(run_id):
        users = user_ids if user_ids is not None else store.list_user_ids(conn)
        logger.info("job_start job=%s users=%s", job_name, len(users))
        try:
            for uid in users:
                with user_context(uid):
                    work(uid, tally)
        except Exception as exc:
            error = str(exc)
            logger.exception("job_aborted job=%s", job_name)
            finish_job_run(
                conn, run_id, "error", tally.processed, tally.succeeded, tally.failed,
                error, time.perf_counter() - started,
            )
            raise
        if tally.errors:
            error = "; ".join(tally.errors[:5])
        finish_job_run(
            conn, run_id, tally.status, tally.processed, tally.succeeded, tally.failed,
            error, time.perf_counter() - started,
        )
        inc("backfill_items_total", tally.processed, job=job_name)
        inc("backfill_failures_total", tally.failed, job=job_name)
        logger.info(
            "job_done job=%s processed=%s succeeded=%s failed=%s",
            job_name,
            tally.processed,
            tally.succeeded,
            tally.failed,
        )
    return tally


def deduplicate_history(
    conn,
    user_ids: Optional[List[int]] = None,
    tolerances: Optional[DedupTolerances] = None,
) -> BackfillTally:
    """Resolve duplicate clusters across each user's whole history."""
    tolerances = tolerances or DedupTolerances.from_config()

    def work(uid: int, tally: BackfillTally) -> None:
        try:
            records = store.load_activities(conn, uid, with_streams=True)
            results = apply_dedup(conn, records, tolerances)
            conn.commit()
        except DB_ERRORS as exc:
            conn.rollback()
            tally.fail(f"user={uid}", exc)
            return
        for result in results:
            tally.ok()
            logger.info("history_dedup kept=%s removed=%s", result.canonical.activity_id, ",".join(result.removed_ids))

    return _run_job(conn, "deduplicate_history", user_ids, work)


def backfill_training_load(
    conn,
    user_ids: Optional[List[int]] = None,
    sport=None,
    today: Optional[date] = None,
) -> BackfillTally:
    """Full rebuild of every (user, sport) series; one item per pair."""

    def work(uid: int, tally: BackfillTally) -> None:
        try:
            sports = [normalize_sport(sport)] if sport is not None else store.stored_sports(conn, uid)
        except DB_ERRORS as exc:
            conn.rollback()
            tally.fail(f"user={uid} sports", exc)
            return
        for s in sports:
            try:
                rebuild_from(conn, uid, s, None, today=today)
                tally.ok()
            except ITEM_ERRORS as exc:
                conn.rollback()
                tally.fail(f"user={uid} sport={s.value}", exc)

    return _run_job(conn, "backfill_training_load", user_ids, work)


def backfill_best_efforts(
    conn,
    user_ids: Optional[List[int]] = None,
    sport=None,
    today: Optional[date] = None,
    reset: bool = False,
) -> BackfillTally:
    """Replay stored activities oldest first through the best-effort update.

    With ``reset`` the stored bests are cleared first, so records set by
    since-deleted activities disappear.
    """

    def work(uid: int, tally: BackfillTally) -> None:
        wanted = normalize_sport(sport) if sport is not None else None
        if reset:
            try:
                sports = [wanted] if wanted is not None else store.stored_sports(conn, uid)
                for s in sports:
                    store.delete_best_efforts(conn, uid, s)
                conn.commit()
            except DB_ERRORS as exc:
                conn.rollback()
                tally.fail(f"user={uid} reset", exc)
                return
        try:
            activities = store.load_activities(conn, uid, wanted, with_streams=True)
        except DB_ERRORS as exc:
            conn.rollback()
            tally.fail(f"user={uid} load", exc)
            return
        for activity in activities:
            try:
                update_best_efforts(conn, activity, today=today)
                tally.ok()
            except ITEM_ERRORS as exc:
                conn.rollback()
                tally.fail(activity.activity_id, exc)

    return _run_job(conn, "backfill_best_efforts", user_ids, work)
