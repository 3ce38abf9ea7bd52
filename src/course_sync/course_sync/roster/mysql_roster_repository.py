from __future__ import annotations

import asyncio

from ..core.enums import ParticipantType
from ..core.exceptions import NotFoundError
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall, fetchone, transient_db_errors
from .model import Participant
from .repository import RosterRepository


class MySQLRosterRepository(RosterRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    async def find_teachers(self, course_id: str) -> list[Participant]:
        return await asyncio.to_thread(self._find_teachers, course_id)

    async def find_students(self, course_id: str, term: str) -> list[Participant]:
        return await asyncio.to_thread(self._find_students, course_id, term)

    def _ensure_course(self, cur, course_id: str) -> None:
        cur.execute("SELECT course_id FROM courses WHERE course_id=%s", (course_id,))
        if not fetchone(cur):
            raise NotFoundError(f"Course not found: {course_id}")

    def _find_teachers(self, course_id: str) -> list[Participant]:
        with transient_db_errors(), db_cursor(self._conn_factory) as (_, cur):
            self._ensure_course(cur, course_id)
            cur.execute(
                """
                SELECT t.teacher_id, t.full_name, uc.calendar_id
                FROM course_teachers ct
                JOIN teachers t ON t.teacher_id = ct.teacher_id
                LEFT JOIN user_calendars uc ON uc.user_type='teacher' AND uc.user_id = t.teacher_id
                WHERE ct.course_id=%s
                ORDER BY t.teacher_id ASC
                """,
                (course_id,),
            )
            return [
                Participant(
                    participant_id=str(r["teacher_id"]),
                    name=r["full_name"],
                    participant_type=ParticipantType.TEACHER,
                    calendar_id=r.get("calendar_id"),
                )
                for r in fetchall(cur)
            ]

    def _find_students(self, course_id: str, term: str) -> list[Participant]:
        with transient_db_errors(), db_cursor(self._conn_factory) as (_, cur):
            self._ensure_course(cur, course_id)
            cur.execute(
                """
                SELECT s.student_id, s.full_name, uc.calendar_id
                FROM student_courses sc
                JOIN students s ON s.student_id = sc.student_id
                LEFT JOIN user_calendars uc ON uc.user_type='student' AND uc.user_id = s.student_id
                WHERE sc.course_id=%s AND sc.term=%s
                ORDER BY s.student_id ASC
                """,
                (course_id, term),
            )
            return [
                Participant(
                    participant_id=str(r["student_id"]),
                    name=r["full_name"],
                    participant_type=ParticipantType.STUDENT,
                    calendar_id=r.get("calendar_id"),
                )
                for r in fetchall(cur)
            ]
