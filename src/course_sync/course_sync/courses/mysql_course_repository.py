from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, Optional, Sequence

from ..core.enums import SyncStatus
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall, fetchone, mysql_date_text, mysql_time_text, transient_db_errors
from .model import CourseOccurrence
from .repository import CheckpointRepository, CourseRepository

_COLUMNS = """
    occurrence_id, course_id, course_name, term, occ_date, start_time, end_time,
    periods, location, week, teacher_ids, teacher_names, requires_checkin,
    revision, change_seq, sync_status, last_synced_at
"""

_NEEDS_SYNC = (SyncStatus.UNSYNCED.value, SyncStatus.TEACHER_SYNCED.value)


def _split_csv(value: Optional[str]) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(v.strip() for v in str(value).split(",") if v.strip())


def _row_to_occurrence(r: Dict[str, Any]) -> CourseOccurrence:
    return CourseOccurrence(
        occurrence_id=str(r["occurrence_id"]),
        course_id=str(r["course_id"]),
        course_name=r["course_name"],
        term=r["term"],
        date=mysql_date_text(r["occ_date"]),
        start_time=mysql_time_text(r["start_time"]),
        end_time=mysql_time_text(r["end_time"]),
        periods=r.get("periods") or "",
        location=r.get("location") or "",
        week=int(r["week"]) if r.get("week") is not None else None,
        teacher_ids=_split_csv(r.get("teacher_ids")),
        teacher_names=_split_csv(r.get("teacher_names")),
        requires_checkin=bool(r.get("requires_checkin", 1)),
        revision=int(r["revision"]),
        change_seq=int(r["change_seq"]),
        sync_status=SyncStatus(r["sync_status"]),
        last_synced_at=r.get("last_synced_at"),
    )


class MySQLCourseRepository(CourseRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    async def list_needing_sync(
        self,
        term: str,
        *,
        course_ids: Optional[Sequence[str]] = None,
        after: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[CourseOccurrence]:
        return await asyncio.to_thread(self._list_needing_sync, term, course_ids, after, limit)

    def _list_needing_sync(
        self, term: str, course_ids: Optional[Sequence[str]], after: Optional[str], limit: Optional[int]
    ) -> list[CourseOccurrence]:
        clauses = ["term=%s", "sync_status IN (%s,%s)"]
        params: list[object] = [term, *_NEEDS_SYNC]
        if course_ids:
            clauses.append(f"course_id IN ({','.join(['%s'] * len(course_ids))})")
            params.extend(course_ids)
        if after is not None:
            clauses.append("occurrence_id > %s")
            params.append(after)

        where = " AND ".join(clauses)
        limit_sql = ""
        if limit:
            limit_sql = "LIMIT %s"
            params.append(int(limit))

        with transient_db_errors(), db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_COLUMNS} FROM course_occurrences WHERE {where} ORDER BY occurrence_id ASC {limit_sql}",
                tuple(params),
            )
            return [_row_to_occurrence(r) for r in fetchall(cur)]

    async def list_changed_since(self, term: str, checkpoint: int) -> list[CourseOccurrence]:
        return await asyncio.to_thread(self._list_changed_since, term, checkpoint)

    def _list_changed_since(self, term: str, checkpoint: int) -> list[CourseOccurrence]:
        with transient_db_errors(), db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_COLUMNS}
                FROM course_occurrences
                WHERE term=%s AND change_seq > %s
                ORDER BY change_seq ASC, occurrence_id ASC
                """,
                (term, int(checkpoint)),
            )
            return [_row_to_occurrence(r) for r in fetchall(cur)]

    async def get(self, occurrence_id: str) -> Optional[CourseOccurrence]:
        return await asyncio.to_thread(self._get, occurrence_id)

    def _get(self, occurrence_id: str) -> Optional[CourseOccurrence]:
        with transient_db_errors(), db_cursor(self._conn_factory) as (_, cur):
            cur.execute(f"SELECT {_COLUMNS} FROM course_occurrences WHERE occurrence_id=%s", (occurrence_id,))
            r = fetchone(cur)
            return _row_to_occurrence(r) if r else None

    async def list_by_status(self, term: str, status: SyncStatus) -> list[CourseOccurrence]:
        return await asyncio.to_thread(self._list_by_status, term, status)

    def _list_by_status(self, term: str, status: SyncStatus) -> list[CourseOccurrence]:
        with transient_db_errors(), db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_COLUMNS} FROM course_occurrences WHERE term=%s AND sync_status=%s ORDER BY occurrence_id",
                (term, SyncStatus(status).value),
            )
            return [_row_to_occurrence(r) for r in fetchall(cur)]

    async def update_sync_status(
        self,
        occurrence_id: str,
        status: SyncStatus,
        *,
        expected: SyncStatus,
        synced_at: Optional[datetime] = None,
    ) -> bool:
        return await asyncio.to_thread(self._update_sync_status, occurrence_id, status, expected, synced_at)

    def _update_sync_status(
        self, occurrence_id: str, status: SyncStatus, expected: SyncStatus, synced_at: Optional[datetime]
    ) -> bool:
        with transient_db_errors(), db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                UPDATE course_occurrences
                SET sync_status=%s, last_synced_at=COALESCE(%s, last_synced_at)
                WHERE occurrence_id=%s AND sync_status=%s
                """,
                (SyncStatus(status).value, synced_at, occurrence_id, SyncStatus(expected).value),
            )
            return cur.rowcount > 0


class MySQLCheckpointRepository(CheckpointRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    async def get(self, term: str) -> int:
        return await asyncio.to_thread(self._get, term)

    def _get(self, term: str) -> int:
        with transient_db_errors(), db_cursor(self._conn_factory) as (_, cur):
            cur.execute("SELECT last_seq FROM sync_checkpoints WHERE term=%s", (term,))
            r = fetchone(cur)
            return int(r["last_seq"]) if r else 0

    async def advance(self, term: str, seq: int) -> int:
        return await asyncio.to_thread(self._advance, term, seq)

    def _advance(self, term: str, seq: int) -> int:
        with transient_db_errors(), db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                INSERT INTO sync_checkpoints(term, last_seq)
                VALUES(%s,%s)
                ON DUPLICATE KEY UPDATE last_seq=GREATEST(last_seq, VALUES(last_seq))
                """,
                (term, int(seq)),
            )
            cur.execute("SELECT last_seq FROM sync_checkpoints WHERE term=%s", (term,))
            r = fetchone(cur)
            return int(r["last_seq"]) if r else int(seq)
