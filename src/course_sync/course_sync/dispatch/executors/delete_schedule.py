from __future__ import annotations

import logging
from typing import Any, Dict, Mapping

from ...common.datetime_utils import same_instant
from ...common.validators import require_mapping
from ...core.constants import PRIORITY_REMOVAL
from ...core.enums import TaskType
from ...core.exceptions import NotFoundError
from ...gateway.client import CalendarGateway
from ...tasks.payloads import DeleteLeafPayload, payload_from_dict
from .base import Executor

logger = logging.getLogger(__name__)


class DeleteScheduleExecutor(Executor):
    """Removes one participant's event; an event that is already gone counts as deleted."""

    name = "delete_schedule"
    task_types = frozenset({TaskType.DELETE_LEAF})
    priority = PRIORITY_REMOVAL

    def __init__(self, gateway: CalendarGateway):
        self._gateway = gateway

    def validate(self, payload: Mapping[str, Any]) -> DeleteLeafPayload:
        return payload_from_dict(TaskType.DELETE_LEAF, require_mapping(payload, "payload"))

    async def perform(self, payload: DeleteLeafPayload) -> Dict[str, Any]:
        if payload.event_id:
            deleted = await self._delete(payload.calendar_id, payload.event_id)
            return {"deleted": deleted, "event_ids": [payload.event_id]}

        try:
            events = await self._gateway.list_schedules(payload.calendar_id, payload.start, payload.end)
        except NotFoundError:
            logger.info("Calendar %s no longer exists; nothing to delete", payload.calendar_id)
            return {"deleted": 0, "event_ids": []}

        matches = [
            e
            for e in events
            if e.summary == payload.summary and same_instant(e.start, payload.start) and same_instant(e.end, payload.end)
        ]
        deleted = 0
        for event in matches:
            deleted += await self._delete(payload.calendar_id, event.event_id)
        return {"deleted": deleted, "event_ids": [e.event_id for e in matches]}

    async def _delete(self, calendar_id: str, event_id: str) -> int:
        try:
            await self._gateway.delete_schedule(calendar_id, event_id)
        except NotFoundError:
            logger.info("Event %s already absent from calendar %s", event_id, calendar_id)
            return 0
        return 1
