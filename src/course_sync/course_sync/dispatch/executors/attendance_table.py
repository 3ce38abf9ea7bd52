from __future__ import annotations

from typing import Any, Dict, Mapping

from ...attendance.repository import CheckInTableRepository
from ...common.validators import require_mapping
from ...core.constants import PRIORITY_ATTENDANCE_TABLE
from ...core.enums import TaskType
from ...tasks.payloads import AttendanceTablePayload, payload_from_dict
from ..links import LinkBuilder
from .base import Executor


class AttendanceTableExecutor(Executor):
    name = "create_attendance_table"
    task_types = frozenset({TaskType.ATTENDANCE_TABLE})
    priority = PRIORITY_ATTENDANCE_TABLE

    def __init__(self, tables: CheckInTableRepository, links: LinkBuilder):
        self._tables = tables
        self._links = links

    def validate(self, payload: Mapping[str, Any]) -> AttendanceTablePayload:
        return payload_from_dict(TaskType.ATTENDANCE_TABLE, require_mapping(payload, "payload"))

    async def perform(self, payload: AttendanceTablePayload) -> Dict[str, Any]:
        table, created = await self._tables.create_if_absent(
            occurrence_id=payload.occurrence_id,
            course_id=payload.course_id,
            term=payload.term,
            student_count=payload.student_count,
            checkin_url=self._links.checkin_url(payload.occurrence_id),
        )
        return {"table_id": table.table_id, "created": created, "checkin_url": table.checkin_url}
