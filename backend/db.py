from __future__ import annotations

import json
import os
import sqlite3
from datetime import datetime, timezone
from typing import Any

from backend import settings

try:
    import psycopg2  # type: ignore
    from psycopg2.extras import RealDictCursor  # type: ignore
except Exception:  # pragma: no cover - optional dependency at runtime
    psycopg2 = None
    RealDictCursor = None

logger = settings.logger.getChild("db")

DB_INTEGRITY_ERRORS: tuple[type[Exception], ...] = (sqlite3.IntegrityError,)
if psycopg2 is not None:
    DB_INTEGRITY_ERRORS = DB_INTEGRITY_ERRORS + (psycopg2.IntegrityError,)

DB_ERRORS: tuple[type[Exception], ...] = (sqlite3.Error,)
if psycopg2 is not None:
    DB_ERRORS = DB_ERRORS + (psycopg2.Error,)


def now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def dump_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"))


def load_json_list(value: Any) -> list[Any]:
    if value in (None, ""):
        return []
    if isinstance(value, list):
        return value
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError):
        return []
    return parsed if isinstance(parsed, list) else []


def adapt_query_for_backend(query: str, params: Any = None) -> tuple[str, Any]:
    if settings.DB_BACKEND != "postgres" or params is None:
        return query, params
    converted_query = query.replace("?", "%s")
    if isinstance(params, list):
        return converted_query, tuple(params)
    return converted_query, params


class DBCursor:
    def __init__(self, raw_cursor: Any):
        self._raw_cursor = raw_cursor

    def execute(self, query: str, params: Any = None) -> "DBCursor":
        converted_query, converted_params = adapt_query_for_backend(query, params)
        if converted_params is None:
            self._raw_cursor.execute(converted_query)
        else:
            self._raw_cursor.execute(converted_query, converted_params)
        return self

    def fetchone(self) -> Any:
        return self._raw_cursor.fetchone()

    def fetchall(self) -> list[Any]:
        return self._raw_cursor.fetchall()

    def close(self) -> None:
        self._raw_cursor.close()

    @property
    def rowcount(self) -> int:
        return int(getattr(self._raw_cursor, "rowcount", 0))


class DBConnection:
    def __init__(self, raw_connection: Any):
        self._raw_connection = raw_connection

    def cursor(self) -> DBCursor:
        if settings.DB_BACKEND == "postgres":
            if RealDictCursor is None:
                raise RuntimeError("RealDictCursor unavailable while DATABASE_URL is configured.")
            return DBCursor(self._raw_connection.cursor(cursor_factory=RealDictCursor))
        return DBCursor(self._raw_connection.cursor())

    def execute(self, query: str, params: Any = None) -> DBCursor:
        cursor = self.cursor()
        cursor.execute(query, params)
        return cursor

    def commit(self) -> None:
        self._raw_connection.commit()

    def rollback(self) -> None:
        self._raw_connection.rollback()

    def close(self) -> None:
        self._raw_connection.close()

    def __enter__(self) -> "DBConnection":
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        self.close()


def db_connection(timeout: float = 15) -> DBConnection:
    if settings.DB_BACKEND == "postgres":
        if psycopg2 is None:
            raise RuntimeError("DATABASE_URL is configured but psycopg2 is not installed.")
        raw_connection = psycopg2.connect(settings.DATABASE_URL, connect_timeout=10)
        return DBConnection(raw_connection)
    db_dir = os.path.dirname(settings.DB_PATH)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)
    raw_connection = sqlite3.connect(settings.DB_PATH, timeout=timeout, check_same_thread=False)
    raw_connection.row_factory = sqlite3.Row
    return DBConnection(raw_connection)


def begin_write_transaction(cursor: DBCursor, timeout_seconds: int | None = None) -> None:
    if settings.DB_BACKEND == "postgres":
        cursor.execute("BEGIN")
        if timeout_seconds:
            cursor.execute(f"SET LOCAL statement_timeout = {int(timeout_seconds) * 1000}")
        return
    cursor.execute("BEGIN IMMEDIATE")


SQLITE_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS industry_insights (
        industry TEXT PRIMARY KEY,
        salary_ranges_json TEXT NOT NULL DEFAULT '[]',
        growth_rate REAL NOT NULL DEFAULT 0,
        demand_level TEXT NOT NULL DEFAULT 'Medium',
        top_skills_json TEXT NOT NULL DEFAULT '[]',
        market_outlook TEXT NOT NULL DEFAULT 'Neutral',
        key_trends_json TEXT NOT NULL DEFAULT '[]',
        recommended_skills_json TEXT NOT NULL DEFAULT '[]',
        last_updated TEXT NOT NULL,
        next_update TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        clerk_user_id TEXT NOT NULL UNIQUE,
        email TEXT NOT NULL DEFAULT '',
        name TEXT NOT NULL DEFAULT '',
        image_url TEXT,
        industry TEXT,
        experience INTEGER,
        bio TEXT,
        skills_json TEXT NOT NULL DEFAULT '[]',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (industry) REFERENCES industry_insights (industry)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS resumes (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL UNIQUE,
        content TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (user_id) REFERENCES users (id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS assessments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        category TEXT NOT NULL,
        quiz_score REAL NOT NULL,
        improvement_tip TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY (user_id) REFERENCES users (id)
    )
    """,
]

POSTGRES_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS industry_insights (
        industry TEXT PRIMARY KEY,
        salary_ranges_json TEXT NOT NULL DEFAULT '[]',
        growth_rate DOUBLE PRECISION NOT NULL DEFAULT 0,
        demand_level TEXT NOT NULL DEFAULT 'Medium',
        top_skills_json TEXT NOT NULL DEFAULT '[]',
        market_outlook TEXT NOT NULL DEFAULT 'Neutral',
        key_trends_json TEXT NOT NULL DEFAULT '[]',
        recommended_skills_json TEXT NOT NULL DEFAULT '[]',
        last_updated TEXT NOT NULL,
        next_update TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS users (
        id BIGSERIAL PRIMARY KEY,
        clerk_user_id TEXT NOT NULL UNIQUE,
        email TEXT NOT NULL DEFAULT '',
        name TEXT NOT NULL DEFAULT '',
        image_url TEXT,
        industry TEXT REFERENCES industry_insights (industry),
        experience INTEGER,
        bio TEXT,
        skills_json TEXT NOT NULL DEFAULT '[]',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS resumes (
        id BIGSERIAL PRIMARY KEY,
        user_id BIGINT NOT NULL UNIQUE REFERENCES users (id),
        content TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS assessments (
        id BIGSERIAL PRIMARY KEY,
        user_id BIGINT NOT NULL REFERENCES users (id),
        category TEXT NOT NULL,
        quiz_score DOUBLE PRECISION NOT NULL,
        improvement_tip TEXT,
        created_at TEXT NOT NULL
    )
    """,
]


def init_db() -> None:
    connection = db_connection()
    try:
        cursor = connection.cursor()
        statements = POSTGRES_SCHEMA if settings.DB_BACKEND == "postgres" else SQLITE_SCHEMA
        for statement in statements:
            cursor.execute(statement)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_users_industry ON users (industry)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_assessments_user_time ON assessments (user_id, created_at)")
        connection.commit()
    finally:
        connection.close()
    if settings.DB_BACKEND == "postgres":
        logger.info("Using external Postgres database.")
    else:
        logger.info("Using database path: %s", settings.DB_PATH)
