from __future__ import annotations

from typing import Protocol

from .model import CheckInTable


class CheckInTableRepository(Protocol):
    async def create_if_absent(
        self,
        *,
        occurrence_id: str,
        course_id: str,
        term: str,
        student_count: int,
        checkin_url: str,
    ) -> tuple[CheckInTable, bool]:
        """Create the table unless one exists for the occurrence.

        Returns (table, created).
        """

        raise NotImplementedError
