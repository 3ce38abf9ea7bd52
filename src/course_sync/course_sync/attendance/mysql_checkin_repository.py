from __future__ import annotations

import asyncio
from typing import Any, Dict

from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchone, transient_db_errors
from .model import CheckInTable
from .repository import CheckInTableRepository


def _row_to_table(r: Dict[str, Any]) -> CheckInTable:
    return CheckInTable(
        table_id=int(r["table_id"]),
        occurrence_id=str(r["occurrence_id"]),
        course_id=str(r["course_id"]),
        term=r["term"],
        student_count=int(r["student_count"]),
        checkin_url=r["checkin_url"],
        created_at=r.get("created_at"),
    )


class MySQLCheckInTableRepository(CheckInTableRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    async def create_if_absent(
        self,
        *,
        occurrence_id: str,
        course_id: str,
        term: str,
        student_count: int,
        checkin_url: str,
    ) -> tuple[CheckInTable, bool]:
        return await asyncio.to_thread(
            self._create_if_absent, occurrence_id, course_id, term, int(student_count), checkin_url
        )

    def _create_if_absent(
        self, occurrence_id: str, course_id: str, term: str, student_count: int, checkin_url: str
    ) -> tuple[CheckInTable, bool]:
        with transient_db_errors(), db_cursor(self._conn_factory) as (_, cur):
            # occurrence_id is UNIQUE; a concurrent insert turns into a no-op.
            cur.execute(
                """
                INSERT IGNORE INTO checkin_tables(occurrence_id, course_id, term, student_count, checkin_url)
                VALUES(%s,%s,%s,%s,%s)
                """,
                (occurrence_id, course_id, term, student_count, checkin_url),
            )
            created = cur.rowcount > 0
            cur.execute(
                """
                SELECT table_id, occurrence_id, course_id, term, student_count, checkin_url, created_at
                FROM checkin_tables
                WHERE occurrence_id=%s
                """,
                (occurrence_id,),
            )
            return _row_to_table(fetchone(cur)), created

