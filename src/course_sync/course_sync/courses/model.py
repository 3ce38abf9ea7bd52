from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ..core.enums import SyncStatus


@dataclass(frozen=True)
class CourseOccurrence:
    """One scheduled meeting of a course section.

    `date` and the times are local civil values as stored by the timetable
    ('2025-03-18', '08:00:00'); they carry no offset.
    """

    occurrence_id: str
    course_id: str
    course_name: str
    term: str
    date: str
    start_time: str
    end_time: str
    periods: str = ""
    location: str = ""
    week: Optional[int] = None
    teacher_ids: tuple[str, ...] = field(default_factory=tuple)
    teacher_names: tuple[str, ...] = field(default_factory=tuple)
    requires_checkin: bool = True
    revision: int = 1
    change_seq: int = 0
    sync_status: SyncStatus = SyncStatus.UNSYNCED
    last_synced_at: Optional[datetime] = None

    def schedule_fingerprint(self) -> str:
        # Any change here moves or renames the calendar event.
        return "|".join([self.date, self.start_time, self.end_time, self.location, self.course_name])

    @property
    def needs_sync(self) -> bool:
        return self.sync_status in {SyncStatus.UNSYNCED, SyncStatus.TEACHER_SYNCED}
