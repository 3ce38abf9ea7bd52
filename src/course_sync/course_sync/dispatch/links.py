from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import quote


@dataclass(frozen=True)
class LinkBuilder:
    """Deep links from calendar events back to the check-in/leave pages."""

    base_url: str

    def _url(self, path: str, occurrence_id: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path}/{quote(str(occurrence_id), safe='')}"

    def checkin_url(self, occurrence_id: str) -> str:
        return self._url("checkin", occurrence_id)

    def leave_url(self, occurrence_id: str) -> str:
        return self._url("leave", occurrence_id)

    def attendance_url(self, occurrence_id: str) -> str:
        return self._url("attendance", occurrence_id)
