"""Data access layer for TextJobs without external ORM dependencies."""

from __future__ import annotations

import datetime
import functools
import json
import os
import sqlite3
import threading
import uuid
from typing import Optional, Sequence
from urllib.parse import urlparse

import psycopg
from psycopg.rows import dict_row

from config.settings import get_settings

_connection: Optional[object] = None
_backend: Optional[str] = None  # "sqlite" or "postgres"
_database_url: Optional[str] = None
# One shared connection; every statement and its commit or rollback runs under this lock.
_lock = threading.RLock()

JOB_STATUSES = ("queued", "processing", "completed", "error")
TERMINAL_JOB_STATUSES = ("completed", "error")

_JOB_TIMESTAMP_FIELDS = ("created_at", "updated_at", "processed_at")


def _serialized(func):
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        with _lock:
            return func(*args, **kwargs)

    return wrapper


def _resolve_default_sqlite_path() -> str:
    root_dir = os.path.dirname(os.path.dirname(__file__))
    return os.path.join(root_dir, "textjobs_dev.sqlite")


def _normalize_sqlite_path(database_url: str) -> str:
    parsed = urlparse(database_url)
    path = parsed.path or ""
    if path.startswith("/"):
        path = path[1:]
    if path in {"", ":memory:"}:
        return ":memory:"
    if parsed.netloc:
        path = os.path.join(parsed.netloc, path)
    return path or _resolve_default_sqlite_path()


def configure(database_url: Optional[str]) -> None:
    """Point the data layer at ``database_url`` and drop any open connection."""
    global _database_url
    reset_engine()
    _database_url = database_url


@_serialized
def get_connection():
    """Return a singleton database connection."""
    global _connection, _backend
    if _connection is not None:
        return _connection

    database_url = _database_url or get_settings().DATABASE_URL
    database_url = database_url or f"sqlite:///{_resolve_default_sqlite_path()}"

    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    if database_url.startswith("sqlite"):
        db_path = _normalize_sqlite_path(database_url)
        # Timestamps are stored as ISO strings and parsed in _coerce_timestamp.
        conn = sqlite3.connect(db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        _connection = conn
        _backend = "sqlite"
    else:
        conn = psycopg.connect(database_url, row_factory=dict_row)
        _connection = conn
        _backend = "postgres"

    return _connection


def get_backend() -> str:
    """Return the active backend name, connecting first if needed."""
    get_connection()
    return _backend or "sqlite"


@_serialized
def reset_engine() -> None:
    """Reset the current database connection (used in tests)."""
    global _connection, _backend
    if _connection is not None:
        _connection.close()
    _connection = None
    _backend = None


@_serialized
def init_db() -> None:
    """Create the jobs, webhook_events and (SQLite) queue tables if missing."""
    conn = get_connection()
    cur = conn.cursor()
    try:
        if _backend == "postgres":
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS jobs (
                    id VARCHAR(36) PRIMARY KEY,
                    text_input TEXT NOT NULL,
                    status VARCHAR(16) NOT NULL DEFAULT 'queued'
                        CHECK (status IN ('queued', 'processing', 'completed', 'error')),
                    result TEXT NULL,
                    error_message TEXT NULL,
                    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    processed_at TIMESTAMP NULL
                );
                """
            )
            cur.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_jobs_status
                ON jobs (status);
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS webhook_events (
                    id SERIAL PRIMARY KEY,
                    job_id VARCHAR(36) NOT NULL,
                    event_type VARCHAR(32) NOT NULL,
                    payload JSONB NOT NULL,
                    received_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
                );
                """
            )
            cur.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_webhook_events_job
                ON webhook_events (job_id);
                """
            )
        else:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    text_input TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'queued'
                        CHECK (status IN ('queued', 'processing', 'completed', 'error')),
                    result TEXT NULL,
                    error_message TEXT NULL,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL,
                    processed_at TIMESTAMP NULL
                );
                """
            )
            cur.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_jobs_status
                ON jobs (status);
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS webhook_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    job_id TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    received_at TIMESTAMP NOT NULL
                );
                """
            )
            cur.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_webhook_events_job
                ON webhook_events (job_id);
                """
            )
            # Mirrors the pgmq message table so the database queue works offline.
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS queue_messages (
                    msg_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    queue_name TEXT NOT NULL,
                    read_ct INTEGER NOT NULL DEFAULT 0,
                    enqueued_at TIMESTAMP NOT NULL,
                    vt TIMESTAMP NOT NULL,
                    message TEXT NOT NULL
                );
                """
            )
            cur.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_queue_messages_visible
                ON queue_messages (queue_name, vt);
                """
            )
        conn.commit()
    finally:
        cur.close()


def utcnow() -> datetime.datetime:
    """Naive UTC timestamp, the format stored in every TIMESTAMP column."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def _db_timestamp(value: Optional[datetime.datetime]):
    if value is None or _backend == "postgres":
        return value
    return value.strftime("%Y-%m-%d %H:%M:%S.%f")


def _coerce_timestamp(value):
    if isinstance(value, str):
        return datetime.datetime.fromisoformat(value)
    return value


def _row_to_dict(row) -> Optional[dict]:
    if row is None:
        return None
    return dict(row)


def _row_to_job(row) -> Optional[dict[str, object]]:
    job = _row_to_dict(row)
    if job is None:
        return None
    for field in _JOB_TIMESTAMP_FIELDS:
        job[field] = _coerce_timestamp(job.get(field))
    return job


@_serialized
def _execute_fetchone(query: str, params: tuple) -> Optional[dict]:
    conn = get_connection()
    cur = conn.cursor()
    try:
        if _backend == "sqlite":
            query = query.replace("%s", "?")
        cur.execute(query, params)
        row = _row_to_dict(cur.fetchone())
        # End the read transaction so the connection is never left idle in one.
        conn.commit()
        return row
    except Exception:
        conn.rollback()
        raise
    finally:
        cur.close()


@_serialized
def create_job(text_input: str, *, now: Optional[datetime.datetime] = None) -> dict[str, object]:
    """Insert a new queued job and return the stored row."""
    job_id = str(uuid.uuid4())
    timestamp = now or utcnow()

    conn = get_connection()
    cur = conn.cursor()
    try:
        query = """
            INSERT INTO jobs (id, text_input, status, result, error_message,
                              created_at, updated_at, processed_at)
            VALUES (%s, %s, 'queued', NULL, NULL, %s, %s, NULL);
        """
        if _backend == "sqlite":
            query = query.replace("%s", "?")
        cur.execute(
            query,
            (job_id, text_input, _db_timestamp(timestamp), _db_timestamp(timestamp)),
        )
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        cur.close()

    job = get_job_by_id(job_id)
    if job is None:
        raise RuntimeError("Job was created but could not be read back.")
    return job


def get_job_by_id(job_id: str) -> Optional[dict[str, object]]:
    """Return the full job row or None."""
    row = _execute_fetchone("SELECT * FROM jobs WHERE id = %s;", (job_id,))
    return _row_to_job(row)


@_serialized
def update_job_status(
    job_id: str,
    status: str,
    *,
    from_statuses: Sequence[str],
    result: Optional[str] = None,
    error_message: Optional[str] = None,
    processed_at: Optional[datetime.datetime] = None,
    updated_at: Optional[datetime.datetime] = None,
) -> bool:
    """Move a job to ``status`` if it currently sits in one of ``from_statuses``.

    ``result`` and ``error_message`` are always overwritten so the row never
    carries a stale value from an earlier state. Returns True when a row was
    updated.
    """
    if status not in JOB_STATUSES:
        raise ValueError(f"Unknown job status: {status}")
    if not from_statuses:
        return False

    conn = get_connection()
    cur = conn.cursor()
    placeholders = ", ".join(["%s"] * len(from_statuses))
    query = f"""
        UPDATE jobs
        SET status = %s,
            result = %s,
            error_message = %s,
            processed_at = COALESCE(%s, processed_at),
            updated_at = %s
        WHERE id = %s AND status IN ({placeholders});
    """
    if _backend == "sqlite":
        query = query.replace("%s", "?")
    try:
        cur.execute(
            query,
            (
                status,
                result,
                error_message,
                _db_timestamp(processed_at),
                _db_timestamp(updated_at or utcnow()),
                job_id,
                *from_statuses,
            ),
        )
        updated = cur.rowcount > 0
        conn.commit()
        return updated
    except Exception:
        conn.rollback()
        raise
    finally:
        cur.close()


@_serialized
def delete_job(job_id: str) -> None:
    """Delete a job row; test helper, webhook events are kept for audit."""
    conn = get_connection()
    cur = conn.cursor()
    try:
        if _backend == "sqlite":
            cur.execute("DELETE FROM jobs WHERE id = ?;", (job_id,))
        else:
            cur.execute("DELETE FROM jobs WHERE id = %s;", (job_id,))
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        cur.close()


def count_jobs() -> int:
    """Total number of job rows (used by tests)."""
    row = _execute_fetchone("SELECT COUNT(*) AS total FROM jobs;", ())
    return int(row["total"]) if row else 0


@_serialized
def create_webhook_event(
    *,
    job_id: str,
    event_type: str,
    payload: dict[str, object],
) -> dict[str, object]:
    """Persist a webhook notification for audit and return the stored row."""
    received_at = utcnow()
    encoded = json.dumps(payload, default=str)

    conn = get_connection()
    cur = conn.cursor()
    try:
        if _backend == "sqlite":
            cur.execute(
                """
                INSERT INTO webhook_events (job_id, event_type, payload, received_at)
                VALUES (?, ?, ?, ?);
                """,
                (job_id, event_type, encoded, _db_timestamp(received_at)),
            )
            new_id = cur.lastrowid
        else:
            cur.execute(
                """
                INSERT INTO webhook_events (job_id, event_type, payload, received_at)
                VALUES (%s, %s, %s::jsonb, %s)
                RETURNING id;
                """,
                (job_id, event_type, encoded, received_at),
            )
            new_id = cur.fetchone()["id"]
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        cur.close()

    return {
        "id": int(new_id),
        "job_id": job_id,
        "event_type": event_type,
        "payload": payload,
        "received_at": received_at,
    }


@_serialized
def list_webhook_events_for_job(job_id: str) -> list[dict[str, object]]:
    """Return stored webhook events for a job, oldest first (read by tests)."""
    conn = get_connection()
    cur = conn.cursor()
    try:
        if _backend == "sqlite":
            cur.execute(
                "SELECT * FROM webhook_events WHERE job_id = ? ORDER BY id ASC;",
                (job_id,),
            )
        else:
            cur.execute(
                "SELECT * FROM webhook_events WHERE job_id = %s ORDER BY id ASC;",
                (job_id,),
            )
        rows = [dict(row) for row in cur.fetchall() or []]
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        cur.close()

    for row in rows:
        if isinstance(row.get("payload"), str):
            row["payload"] = json.loads(row["payload"])
        row["received_at"] = _coerce_timestamp(row.get("received_at"))
    return rows


# Message queue -------------------------------------------------------------
#
# PostgreSQL deployments use the pgmq extension; SQLite keeps the same
# msg_id / read_ct / enqueued_at / vt / message shape in queue_messages.


@_serialized
def ensure_message_queue(queue_name: str) -> None:
    """Create the named queue if the backend needs it created explicitly."""
    conn = get_connection()
    if _backend != "postgres":
        return
    cur = conn.cursor()
    try:
        cur.execute("CREATE EXTENSION IF NOT EXISTS pgmq;")
        cur.execute("SELECT pgmq.create(%s);", (queue_name,))
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        cur.close()


def _row_to_queue_message(row) -> dict[str, object]:
    message = dict(row)
    body = message.get("message")
    if isinstance(body, (str, bytes)):
        message["message"] = json.loads(body)
    message["enqueued_at"] = _coerce_timestamp(message.get("enqueued_at"))
    message["vt"] = _coerce_timestamp(message.get("vt"))
    return message


@_serialized
def queue_send(
    queue_name: str,
    message: dict[str, object],
    *,
    now: Optional[datetime.datetime] = None,
) -> int:
    """Append a message to the queue and return its msg_id."""
    encoded = json.dumps(message)
    conn = get_connection()
    cur = conn.cursor()
    try:
        if _backend == "sqlite":
            timestamp = _db_timestamp(now or utcnow())
            cur.execute(
                """
                INSERT INTO queue_messages (queue_name, read_ct, enqueued_at, vt, message)
                VALUES (?, 0, ?, ?, ?);
                """,
                (queue_name, timestamp, timestamp, encoded),
            )
            msg_id = cur.lastrowid
        else:
            cur.execute(
                "SELECT pgmq.send(%s, %s::jsonb) AS msg_id;",
                (queue_name, encoded),
            )
            msg_id = cur.fetchone()["msg_id"]
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        cur.close()
    return int(msg_id)


@_serialized
def queue_read(
    queue_name: str,
    visibility_timeout: int,
    limit: int = 1,
    *,
    now: Optional[datetime.datetime] = None,
) -> list[dict[str, object]]:
    """Claim up to ``limit`` visible messages, hiding them for ``visibility_timeout`` seconds."""
    conn = get_connection()
    cur = conn.cursor()
    try:
        if _backend == "sqlite":
            current = now or utcnow()
            deadline = current + datetime.timedelta(seconds=visibility_timeout)
            # A single UPDATE ... RETURNING statement keeps the claim atomic.
            cur.execute(
                """
                UPDATE queue_messages
                SET vt = ?, read_ct = read_ct + 1
                WHERE msg_id IN (
                    SELECT msg_id FROM queue_messages
                    WHERE queue_name = ? AND vt <= ?
                    ORDER BY msg_id ASC
                    LIMIT ?
                )
                RETURNING msg_id, read_ct, enqueued_at, vt, message;
                """,
                (_db_timestamp(deadline), queue_name, _db_timestamp(current), limit),
            )
        else:
            cur.execute(
                """
                SELECT msg_id, read_ct, enqueued_at, vt, message
                FROM pgmq.read(%s, %s, %s);
                """,
                (queue_name, visibility_timeout, limit),
            )
        rows = cur.fetchall() or []
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        cur.close()

    messages = [_row_to_queue_message(row) for row in rows]
    messages.sort(key=lambda item: item["msg_id"])
    return messages


@_serialized
def queue_delete(queue_name: str, msg_id: int) -> bool:
    """Delete a message; returns False when it was already gone."""
    conn = get_connection()
    cur = conn.cursor()
    try:
        if _backend == "sqlite":
            cur.execute(
                "DELETE FROM queue_messages WHERE queue_name = ? AND msg_id = ?;",
                (queue_name, msg_id),
            )
            deleted = cur.rowcount > 0
        else:
            cur.execute(
                "SELECT pgmq.delete(%s, %s::bigint) AS deleted;",
                (queue_name, msg_id),
            )
            row = cur.fetchone()
            deleted = bool(row and row["deleted"])
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        cur.close()
    return deleted


def queue_length(queue_name: str) -> int:
    """Return the number of undeleted messages, visible or not (used by tests)."""
    if get_backend() == "postgres":
        row = _execute_fetchone(
            "SELECT queue_length FROM pgmq.metrics(%s);",
            (queue_name,),
        )
        return int(row["queue_length"]) if row else 0
    row = _execute_fetchone(
        "SELECT COUNT(*) AS total FROM queue_messages WHERE queue_name = %s;",
        (queue_name,),
    )
    return int(row["total"]) if row else 0
