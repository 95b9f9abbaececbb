"""Import normalized activities from a JSON-lines file through the pipeline.

Each line is one activity object. Streams may be inline under ``streams`` or
in ``<streams_dir>/<activity_id>.json`` next to the file.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterator, Optional, Tuple

from packages.errors import RangeWriteError, ValidationError
from packages.metrics import inc
from services.processing.backfill import BackfillTally
from services.processing.pipeline import ingest_payload

logger = logging.getLogger("training.ingestion")


def iter_payloads(path: Path) -> Iterator[Tuple[int, Optional[dict], Optional[str]]]:
    """Yield ``(line_no, payload, error)``; malformed lines carry an error instead."""
    with path.open("r", encoding="utf-8") as fh:
        for line_no, line in enumerate(fh, start=1):
            if not line.strip():
                continue
            try:
                row = json.loads(line)
            except json.JSONDecodeError as exc:
                yield line_no, None, f"invalid json: {exc.msg}"
                continue
            if not isinstance(row, dict):
                yield line_no, None, "expected an object"
                continue
            yield line_no, row, None


def attach_stream_file(payload: dict, streams_dir: Optional[Path]) -> dict:
    if streams_dir is None or payload.get("streams"):
        return payload
    activity_id = payload.get("activity_id") or payload.get("id")
    if activity_id is None:
        return payload
    p = streams_dir / f"{activity_id}.json"
    if not p.exists():
        return payload
    try:
        payload["streams"] = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        logger.warning("bad_stream_file path=%s", p)
    return payload


def import_activities(
    conn,
    path: Path,
    user_id: Optional[int] = None,
    streams_dir: Optional[Path] = None,
) -> BackfillTally:
    """Ingest every activity in ``path``; bad records are counted and skipped."""
    tally = BackfillTally()
    if streams_dir is None and (path.parent / "streams").is_dir():
        streams_dir = path.parent / "streams"
    for line_no, payload, error in iter_payloads(path):
        item = f"line {line_no}"
        if error:
            tally.fail(item, ValueError(error))
            continue
        try:
            ingest_payload(conn, attach_stream_file(payload, streams_dir), user_id)
            tally.ok()
        except ValidationError as exc:
            tally.fail(f"{item} ({exc.activity_id or '-'})", exc)
        except RangeWriteError as exc:
            # Storage failures are not per-record problems.
            logger.error("import_aborted %s err=%s", item, exc)
            raise
    inc("import_lines_total", tally.processed)
    logger.info(
        "import_done path=%s processed=%s succeeded=%s failed=%s",
        path,
        tally.processed,
        tally.succeeded,
        tally.failed,
    )
    return tally
