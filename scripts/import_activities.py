import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from packages import db
from packages.error_reporting import init_error_reporting
from packages.job_lock import job_lock
from packages.logging_utils import setup_logging
from services.ingestion.activity_import import import_activities


def main() -> None:
    p = argparse.ArgumentParser(description="Import normalized activities (JSON lines) through the pipeline.")
    p.add_argument("path", help="JSON-lines file, one activity per line")
    p.add_argument("--user-id", type=int, default=None, help="Overrides user_id on every line")
    p.add_argument("--streams-dir", default=None, help="Directory of <activity_id>.json stream files")
    args = p.parse_args()

    setup_logging()
    init_error_reporting("training-import")

    path = Path(args.path).expanduser().resolve()
    if not path.exists():
        raise SystemExit(f"Import file not found: {path}")
    if not db.db_exists():
        raise SystemExit("DB not initialized. Run scripts/init_db.py")

    streams_dir = Path(args.streams_dir).expanduser().resolve() if args.streams_dir else None
    with job_lock("pipeline") as acquired:
        if not acquired:
            print("Pipeline lock active; skipping import.")
            raise SystemExit(2)
        with db.open_db() as conn:
            tally = import_activities(conn, path, args.user_id, streams_dir)

    print(f"processed={tally.processed} succeeded={tally.succeeded} failed={tally.failed}")
    for err in tally.errors:
        print(f"  {err}")
    if tally.failed and not tally.succeeded:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
