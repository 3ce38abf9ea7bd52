from __future__ import annotations

from typing import Protocol

from .model import Participant


class RosterRepository(Protocol):
    """Read-only lookup of who teaches and who attends a course.

    Both methods raise NotFoundError for a course the roster does not know.
    """

    async def find_teachers(self, course_id: str) -> list[Participant]:
        raise NotImplementedError

    async def find_students(self, course_id: str, term: str) -> list[Participant]:
        raise NotImplementedError
