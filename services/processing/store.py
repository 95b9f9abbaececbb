"""Row-level reads and upserts for activities, series and best efforts.

Nothing here commits; callers own the transaction boundaries.
"""
from __future__ import annotations

import json
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from services.analytics.models import (
    ActivityRecord,
    BestEffortRecord,
    DailyLoadBucket,
    TrainingLoadPoint,
    parse_day,
    parse_dt,
    to_utc_iso,
)
from services.analytics.sport import Sport, normalize_sport

_ACTIVITY_COLUMNS = (
    "activity_id, user_id, start_time, duration_s, distance_m, sport_raw, sport, "
    "source, created_at, load, avg_power, duplicate_sources_json"
)


def _row_to_activity(row: Sequence) -> ActivityRecord:
    try:
        duplicate_sources = json.loads(row[11]) if row[11] else []
    except json.JSONDecodeError:
        duplicate_sources = []
    return ActivityRecord(
        activity_id=row[0],
        user_id=row[1],
        start_time=parse_dt(row[2]),
        duration_s=row[3],
        distance_m=row[4],
        sport=row[5] or row[6],
        source=row[7],
        created_at=parse_dt(row[8]),
        load=row[9],
        avg_power=row[10],
        duplicate_sources=duplicate_sources,
    )


def upsert_activity(conn, record: ActivityRecord) -> None:
    conn.execute(
        """
        INSERT INTO activities(
          user_id, activity_id, start_time, start_date, duration_s, distance_m,
          sport_raw, sport, source, created_at, load, avg_power, duplicate_sources_json
        ) VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?)
        ON CONFLICT(user_id, activity_id) DO UPDATE SET
          start_time=excluded.start_time,
          start_date=excluded.start_date,
          duration_s=excluded.duration_s,
          distance_m=excluded.distance_m,
          sport_raw=excluded.sport_raw,
          sport=excluded.sport,
          source=excluded.source,
          created_at=excluded.created_at,
          load=excluded.load,
          avg_power=excluded.avg_power,
          duplicate_sources_json=COALESCE(excluded.duplicate_sources_json, activities.duplicate_sources_json)
        """,
        (
            record.user_id,
            record.activity_id,
            to_utc_iso(record.start_time),
            record.start_date.isoformat(),
            record.duration_s,
            record.distance_m,
            str(record.sport) if record.sport is not None else None,
            normalize_sport(record.sport).value,
            record.source,
            to_utc_iso(record.created_at),
            record.load,
            record.avg_power,
            json.dumps(record.duplicate_sources) if record.duplicate_sources else None,
        ),
    )
    upsert_streams(conn, record)


def upsert_streams(conn, record: ActivityRecord) -> None:
    rows = [
        (record.user_id, record.activity_id, name, json.dumps(list(data)))
        for name, data in sorted(record.streams.items())
    ]
    if not rows:
        return
    conn.executemany(
        """
        INSERT INTO activity_streams(user_id, activity_id, stream_type, data_json)
        VALUES (?,?,?,?)
        ON CONFLICT(user_id, activity_id, stream_type) DO UPDATE SET
          data_json=excluded.data_json
        """,
        rows,
    )


def update_duplicate_sources(conn, record: ActivityRecord) -> None:
    conn.execute(
        "UPDATE activities SET duplicate_sources_json=? WHERE user_id=? AND activity_id=?",
        (
            json.dumps(record.duplicate_sources) if record.duplicate_sources else None,
            record.user_id,
            record.activity_id,
        ),
    )


def delete_activities(conn, user_id: int, activity_ids: Iterable[str]) -> int:
    ids = list(activity_ids)
    if not ids:
        return 0
    conn.executemany(
        "DELETE FROM activity_streams WHERE user_id=? AND activity_id=?",
        [(user_id, a) for a in ids],
    )
    conn.executemany(
        "DELETE FROM activities WHERE user_id=? AND activity_id=?",
        [(user_id, a) for a in ids],
    )
    return len(ids)


def load_streams(conn, user_id: int, activity_ids: Sequence[str]) -> Dict[str, Dict[str, list]]:
    out: Dict[str, Dict[str, list]] = {}
    for activity_id in activity_ids:
        rows = conn.execute(
            "SELECT stream_type, data_json FROM activity_streams WHERE user_id=? AND activity_id=?",
            (user_id, activity_id),
        ).fetchall()
        streams: Dict[str, list] = {}
        for stream_type, data_json in rows:
            try:
                streams[stream_type] = json.loads(data_json)
            except json.JSONDecodeError:
                continue
        out[activity_id] = streams
    return out


def _attach_streams(conn, user_id: int, records: List[ActivityRecord]) -> List[ActivityRecord]:
    streams = load_streams(conn, user_id, [r.activity_id for r in records])
    for record in records:
        record.streams = streams.get(record.activity_id, {})
    return records


def load_activity(conn, user_id: int, activity_id: str, with_streams: bool = True) -> Optional[ActivityRecord]:
    row = conn.execute(
        f"SELECT {_ACTIVITY_COLUMNS} FROM activities WHERE user_id=? AND activity_id=?",
        (user_id, activity_id),
    ).fetchone()
    if not row:
        return None
    record = _row_to_activity(row)
    if with_streams:
        _attach_streams(conn, user_id, [record])
    return record


def load_activities(
    conn,
    user_id: int,
    sport: Optional[Sport] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    with_streams: bool = False,
) -> List[ActivityRecord]:
    """Activities ordered by start time, optionally filtered by UTC start day."""
    clause = ""
    params: list = [user_id]
    if sport is not None:
        clause += " AND sport=?"
        params.append(normalize_sport(sport).value)
    if start is not None:
        clause += " AND start_date >= ?"
        params.append(start.isoformat())
    if end is not None:
        clause += " AND start_date <= ?"
        params.append(end.isoformat())
    rows = conn.execute(
        f"""
        SELECT {_ACTIVITY_COLUMNS}
        FROM activities
        WHERE user_id=?{clause}
        ORDER BY start_time, activity_id
        """,
        params,
    ).fetchall()
    records = [_row_to_activity(r) for r in rows]
    if with_streams:
        _attach_streams(conn, user_id, records)
    return records


def load_activities_between(
    conn, user_id: int, lo: datetime, hi: datetime, with_streams: bool = True
) -> List[ActivityRecord]:
    rows = conn.execute(
        f"""
        SELECT {_ACTIVITY_COLUMNS}
        FROM activities
        WHERE user_id=? AND start_time >= ? AND start_time <= ?
        ORDER BY start_time, activity_id
        """,
        (user_id, to_utc_iso(lo), to_utc_iso(hi)),
    ).fetchall()
    records = [_row_to_activity(r) for r in rows]
    if with_streams:
        _attach_streams(conn, user_id, records)
    return records


def activity_day_bounds(conn, user_id: int, sport: Sport) -> Tuple[Optional[date], Optional[date]]:
    row = conn.execute(
        "SELECT MIN(start_date), MAX(start_date) FROM activities WHERE user_id=? AND sport=?",
        (user_id, sport.value),
    ).fetchone()
    if not row or row[0] is None:
        return None, None
    return parse_day(row[0]), parse_day(row[1])


def stored_sports(conn, user_id: int) -> List[Sport]:
    """Sports with activities or leftover series rows for the user."""
    rows = conn.execute(
        """
        SELECT sport FROM activities WHERE user_id=?
        UNION
        SELECT sport FROM training_load WHERE user_id=?
        UNION
        SELECT sport FROM daily_loads WHERE user_id=?
        """,
        (user_id, user_id, user_id),
    ).fetchall()
    return sorted({normalize_sport(r[0]) for r in rows}, key=lambda s: s.value)


def list_user_ids(conn) -> List[int]:
    rows = conn.execute("SELECT DISTINCT user_id FROM activities ORDER BY user_id").fetchall()
    return [r[0] for r in rows]


def replace_daily_loads(
    conn, user_id: int, sport: Sport, buckets: Iterable[DailyLoadBucket], start: date, end: date
) -> None:
    conn.execute(
        "DELETE FROM daily_loads WHERE user_id=? AND sport=? AND date >= ? AND date <= ?",
        (user_id, sport.value, start.isoformat(), end.isoformat()),
    )
    conn.executemany(
        """
        INSERT INTO daily_loads(user_id, date, sport, load, duration_s, activity_count)
        VALUES (?,?,?,?,?,?)
        """,
        [
            (user_id, b.day.isoformat(), sport.value, b.load, b.duration_s, b.activity_count)
            for b in buckets
        ],
    )


def upsert_training_points(conn, user_id: int, points: Iterable[TrainingLoadPoint]) -> int:
    rows = [
        (
            user_id,
            p.day.isoformat(),
            p.sport.value,
            p.load,
            p.chronic,
            p.acute,
            p.balance,
            p.duration_s,
        )
        for p in points
    ]
    if not rows:
        return 0
    conn.executemany(
        """
        INSERT INTO training_load(user_id, date, sport, load, chronic, acute, balance, duration_s)
        VALUES (?,?,?,?,?,?,?,?)
        ON CONFLICT(user_id, date, sport) DO UPDATE SET
          load=excluded.load,
          chronic=excluded.chronic,
          acute=excluded.acute,
          balance=excluded.balance,
          duration_s=excluded.duration_s
        """,
        rows,
    )
    return len(rows)


def prune_series(conn, user_id: int, sport: Sport, first: date, end: date) -> None:
    """Drop series rows outside ``[first, end]``."""
    for table in ("training_load", "daily_loads"):
        conn.execute(
            f"DELETE FROM {table} WHERE user_id=? AND sport=? AND (date < ? OR date > ?)",
            (user_id, sport.value, first.isoformat(), end.isoformat()),
        )


def delete_series(conn, user_id: int, sport: Sport) -> None:
    for table in ("training_load", "daily_loads"):
        conn.execute(f"DELETE FROM {table} WHERE user_id=? AND sport=?", (user_id, sport.value))


def _row_to_point(row: Sequence) -> TrainingLoadPoint:
    return TrainingLoadPoint(
        day=parse_day(row[0]),
        sport=normalize_sport(row[1]),
        load=row[2],
        chronic=row[3],
        acute=row[4],
        balance=row[5],
        duration_s=row[6] or 0.0,
    )


def load_training_point(conn, user_id: int, sport: Sport, day: date) -> Optional[TrainingLoadPoint]:
    row = conn.execute(
        """
        SELECT date, sport, load, chronic, acute, balance, duration_s
        FROM training_load
        WHERE user_id=? AND sport=? AND date=?
        """,
        (user_id, sport.value, day.isoformat()),
    ).fetchone()
    return _row_to_point(row) if row else None


def load_training_series(
    conn,
    user_id: int,
    sport: Optional[Sport] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[TrainingLoadPoint]:
    clause = ""
    params: list = [user_id]
    if sport is not None:
        clause += " AND sport=?"
        params.append(sport.value)
    if start is not None:
        clause += " AND date >= ?"
        params.append(start.isoformat())
    if end is not None:
        clause += " AND date <= ?"
        params.append(end.isoformat())
    rows = conn.execute(
        f"""
        SELECT date, sport, load, chronic, acute, balance, duration_s
        FROM training_load
        WHERE user_id=?{clause}
        ORDER BY sport, date
        """,
        params,
    ).fetchall()
    return [_row_to_point(r) for r in rows]


def load_best_efforts(
    conn, user_id: int, sport: Sport, time_window: Optional[str] = None
) -> Dict[Tuple[int, str], BestEffortRecord]:
    clause = ""
    params: list = [user_id, sport.value]
    if time_window is not None:
        clause = " AND time_window=?"
        params.append(time_window)
    rows = conn.execute(
        f"""
        SELECT duration_s, time_window, value, activity_id, date_achieved
        FROM best_efforts
        WHERE user_id=? AND sport=?{clause}
        ORDER BY time_window, duration_s
        """,
        params,
    ).fetchall()
    return {
        (r[0], r[1]): BestEffortRecord(
            sport=sport,
            duration_s=r[0],
            value=r[2],
            date_achieved=parse_day(r[4]),
            activity_id=r[3],
            time_window=r[1],
        )
        for r in rows
    }


def upsert_best_efforts(conn, user_id: int, records: Iterable[BestEffortRecord]) -> int:
    rows = [
        (
            user_id,
            r.sport.value,
            r.duration_s,
            r.time_window,
            r.value,
            r.activity_id,
            r.date_achieved.isoformat(),
        )
        for r in records
    ]
    if not rows:
        return 0
    conn.executemany(
        """
        INSERT INTO best_efforts(user_id, sport, duration_s, time_window, value, activity_id, date_achieved)
        VALUES (?,?,?,?,?,?,?)
        ON CONFLICT(user_id, sport, duration_s, time_window) DO UPDATE SET
          value=excluded.value,
          activity_id=excluded.activity_id,
          date_achieved=excluded.date_achieved
        """,
        rows,
    )
    return len(rows)


def delete_best_efforts(conn, user_id: int, sport: Sport) -> None:
    conn.execute("DELETE FROM best_efforts WHERE user_id=? AND sport=?", (user_id, sport.value))


def day_before(day: date) -> date:
    return day - timedelta(days=1)
