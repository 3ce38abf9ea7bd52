from __future__ import annotations

from typing import Protocol

from .model import CalendarEvent, ScheduleParams


class CalendarGateway(Protocol):
    """Remote calendar provider.

    Implementations raise TransientExternalError for failures worth retrying,
    NotFoundError when the calendar or event does not exist and
    ValidationError for rejected requests.
    """

    async def create_schedule(self, params: ScheduleParams, *, idempotency_key: str) -> CalendarEvent:
        raise NotImplementedError

    async def delete_schedule(self, calendar_id: str, event_id: str) -> None:
        raise NotImplementedError

    async def list_schedules(self, calendar_id: str, start: str, end: str) -> list[CalendarEvent]:
        raise NotImplementedError

    async def aclose(self) -> None:
        return None
