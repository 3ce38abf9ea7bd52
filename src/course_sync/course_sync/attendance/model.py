from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class CheckInTable:
    """Attendance check-in record of one course occurrence."""

    table_id: int
    occurrence_id: str
    course_id: str
    term: str
    student_count: int
    checkin_url: str
    created_at: Optional[datetime] = None
