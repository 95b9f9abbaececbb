import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from packages import db
from packages.error_reporting import init_error_reporting
from packages.logging_utils import setup_logging
from packages.job_lock import job_lock
from services.processing.backfill import (
    BackfillTally,
    backfill_best_efforts,
    backfill_training_load,
    deduplicate_history,
)


STEPS = ("dedup", "load", "best-efforts")


def main() -> None:
    p = argparse.ArgumentParser(description="Rebuild derived tables from the stored activity history.")
    p.add_argument("--user-id", type=int, action="append", dest="user_ids", help="Repeatable; defaults to all users")
    p.add_argument("--sport", default=None, help="Limit load and best-effort steps to one sport")
    p.add_argument("--step", choices=STEPS, action="append", dest="steps", help="Repeatable; defaults to all steps")
    p.add_argument("--reset-best-efforts", action="store_true", help="Clear stored bests before replaying")
    args = p.parse_args()

    setup_logging()
    init_error_reporting("training-backfill")

    if not db.db_exists():
        raise SystemExit("DB not initialized. Run scripts/init_db.py")

    steps = args.steps or list(STEPS)
    total = BackfillTally()
    with job_lock("pipeline") as acquired:
        if not acquired:
            print("Pipeline lock active; skipping backfill run.")
            raise SystemExit(2)
        with db.open_db() as conn:
            # Later steps read canonical activities only.
            if "dedup" in steps:
                total.merge(deduplicate_history(conn, args.user_ids))
            if "load" in steps:
                total.merge(backfill_training_load(conn, args.user_ids, args.sport))
            if "best-efforts" in steps:
                total.merge(
                    backfill_best_efforts(conn, args.user_ids, args.sport, reset=args.reset_best_efforts)
                )

    print(f"processed={total.processed} succeeded={total.succeeded} failed={total.failed}")
    for err in total.errors:
        print(f"  {err}")
    if total.failed:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
