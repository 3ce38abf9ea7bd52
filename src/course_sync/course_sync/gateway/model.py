from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class ScheduleParams:
    """Provider parameters of one calendar event."""

    calendar_id: str
    summary: str
    start: str
    end: str
    description: str = ""
    location: str = ""
    reminder_minutes: tuple[int, ...] = field(default_factory=tuple)

    def to_request_body(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "description": self.description,
            "location": self.location,
            "start_time": {"datetime": self.start},
            "end_time": {"datetime": self.end},
            "reminders": [{"minutes": int(m)} for m in self.reminder_minutes],
        }


@dataclass(frozen=True)
class CalendarEvent:
    event_id: str
    calendar_id: str
    summary: str = ""
    start: Optional[str] = None
    end: Optional[str] = None

    @classmethod
    def from_response(cls, calendar_id: str, data: Dict[str, Any]) -> "CalendarEvent":
        start = data.get("start_time")
        end = data.get("end_time")
        return cls(
            event_id=str(data.get("id") or data.get("event_id") or ""),
            calendar_id=calendar_id,
            summary=data.get("summary") or "",
            start=start.get("datetime") if isinstance(start, dict) else start,
            end=end.get("datetime") if isinstance(end, dict) else end,
        )
