from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Iterator, List, Optional, Tuple

import mysql.connector

from ..core.exceptions import TransientExternalError
from .connection import DatabaseConnection

_TRANSIENT = (mysql.connector.errors.OperationalError, mysql.connector.errors.InterfaceError)


@contextmanager
def db_cursor(conn_factory: DatabaseConnection, *, dictionary: bool = True) -> Iterator[Tuple[Any, Any]]:
    """One unit of work: commit on clean exit, rollback on any error.

    Closing a pooled connection returns it to the pool.
    """

    conn = conn_factory.connect()
    cur = conn.cursor(dictionary=dictionary)
    try:
        yield conn, cur
    except Exception:
        conn.rollback()
        raise
    else:
        conn.commit()
    finally:
        cur.close()
        conn.close()


@contextmanager
def transient_db_errors():
    """Lost connections and server-side timeouts become retryable for the job queue."""

    try:
        yield
    except _TRANSIENT as exc:
        raise TransientExternalError(f"Database unavailable: {exc}") from exc


def fetchone(cur) -> Optional[Dict[str, Any]]:
    return cur.fetchone() or None


def fetchall(cur) -> List[Dict[str, Any]]:
    return list(cur.fetchall() or [])


def load_json(value: Any) -> Dict[str, Any]:
    # Depending on the connector build a JSON column is str, bytes or an already decoded dict.
    if value in (None, "", b""):
        return {}
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    return json.loads(value) if isinstance(value, str) else dict(value)


def dump_json(value: Optional[Dict[str, Any]]) -> str:
    return json.dumps(value or {}, ensure_ascii=False, default=str)


def mysql_date_text(value: Any) -> str:
    """DATE column as 'YYYY-MM-DD'."""

    if value is None:
        return ""
    if isinstance(value, (date, datetime)):
        return value.strftime("%Y-%m-%d")
    return str(value)


def mysql_time_text(value: Any) -> str:
    """TIME column as 'HH:MM:SS'.

    The C extension hands TIME back as timedelta, the pure connector as
    timedelta or str; both are folded into one day.
    """

    if value is None:
        return ""
    if isinstance(value, time):
        return value.strftime("%H:%M:%S")
    if isinstance(value, timedelta):
        seconds = int(value.total_seconds()) % 86400
    elif isinstance(value, str):
        parts = value.strip().split(":")
        if len(parts) < 2:
            raise ValueError(f"Invalid time string: {value!r}")
        sec = int(float(parts[2])) if len(parts) > 2 and parts[2] else 0
        seconds = int(parts[0]) * 3600 + int(parts[1]) * 60 + sec
    else:
        raise TypeError(f"Unsupported MySQL TIME value type: {type(value)!r}")
    return f"{seconds // 3600:02d}:{seconds % 3600 // 60:02d}:{seconds % 60:02d}"
