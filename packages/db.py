import sqlite3
from pathlib import Path
from typing import Iterable, Optional

import packages.config as config

try:  # Optional dependency for Postgres
    import psycopg2
except ImportError:  # pragma: no cover - optional in SQLite-only envs
    psycopg2 = None


# Errors that mean "the store failed", as opposed to bugs in our own code.
DB_ERRORS: tuple = (sqlite3.Error,) + ((psycopg2.Error,) if psycopg2 is not None else ())


def is_postgres() -> bool:
    return bool(config.DB_URL) and config.DB_URL.startswith("postgres")


def db_exists() -> bool:
    if is_postgres():
        return True
    return config.DB_PATH.exists()


def _adapt_sql(sql: str) -> str:
    if not is_postgres():
        return sql
    return sql.replace("?", "%s")


class DBCursor:
    def __init__(self, cursor, postgres: bool):
        self._cursor = cursor
        self._postgres = postgres

    @property
    def description(self):
        return self._cursor.description

    @property
    def lastrowid(self):
        return self._cursor.lastrowid

    @property
    def rowcount(self) -> int:
        return self._cursor.rowcount

    def execute(self, sql: str, params: Optional[Iterable] = None):
        sql = _adapt_sql(sql) if self._postgres else sql
        if params is None:
            self._cursor.execute(sql)
        else:
            self._cursor.execute(sql, list(params))
        return self

    def executemany(self, sql: str, rows: Iterable[Iterable]):
        sql = _adapt_sql(sql) if self._postgres else sql
        self._cursor.executemany(sql, [list(r) for r in rows])
        return self

    def fetchone(self):
        return self._cursor.fetchone()

    def fetchall(self):
        return self._cursor.fetchall()

    def __iter__(self):
        return iter(self._cursor)


class DBConnection:
    def __init__(self, conn, postgres: bool):
        self._conn = conn
        self._postgres = postgres

    @property
    def postgres(self) -> bool:
        return self._postgres

    def cursor(self):
        return DBCursor(self._conn.cursor(), self._postgres)

    def execute(self, sql: str, params: Optional[Iterable] = None):
        cur = self.cursor()
        cur.execute(sql, params)
        return cur

    def executemany(self, sql: str, rows: Iterable[Iterable]):
        cur = self.cursor()
        cur.executemany(sql, rows)
        return cur

    def executescript(self, sql: str) -> None:
        if not self._postgres:
            self._conn.executescript(sql)
            return
        for stmt in _split_sql(sql):
            if stmt:
                self._conn.cursor().execute(stmt)

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type:
            try:
                self.rollback()
            finally:
                self.close()
        else:
            try:
                self.commit()
            finally:
                self.close()


def connect() -> DBConnection:
    if is_postgres():
        if psycopg2 is None:
            raise RuntimeError("psycopg2 is required for Postgres. Add psycopg2-binary.")
        return DBConnection(psycopg2.connect(config.DB_URL), postgres=True)
    return DBConnection(sqlite3.connect(config.DB_PATH), postgres=False)


def configure_connection(conn: DBConnection) -> None:
    if is_postgres():
        return
    try:
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
    except sqlite3.OperationalError:
        return


CORE_TABLES = ("activities", "activity_streams", "daily_loads", "training_load", "best_efforts", "job_runs")


def open_db() -> DBConnection:
    """Connect and apply per-connection settings."""
    conn = connect()
    configure_connection(conn)
    return conn


def missing_tables(conn: DBConnection) -> list[str]:
    if conn.postgres:
        cur = conn.execute(
            "SELECT table_name FROM information_schema.tables WHERE table_schema = current_schema()"
        )
    else:
        cur = conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
    present = {row[0] for row in cur.fetchall()}
    return [name for name in CORE_TABLES if name not in present]


def schema_path() -> Path:
    root = Path(__file__).resolve().parents[1]
    if is_postgres():
        return root / "database" / "schema_pg.sql"
    return root / "database" / "schema.sql"


def init_schema(conn: DBConnection) -> None:
    conn.executescript(schema_path().read_text())
    conn.commit()


def _split_sql(sql: str) -> list[str]:
    parts = []
    buf = []
    for line in sql.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("--"):
            continue
        buf.append(line)
        if stripped.endswith(";"):
            parts.append("\n".join(buf).strip().rstrip(";"))
            buf = []
    if buf:
        parts.append("\n".join(buf).strip().rstrip(";"))
    return parts
