from __future__ import annotations

from typing import Any, Dict, Mapping

from ...common.datetime_utils import to_offset_datetime
from ...common.validators import require_mapping, require_non_empty
from ...core.constants import DEFAULT_REMINDER_MINUTES, DEFAULT_TIMEZONE_OFFSET, PRIORITY_PARTICIPANT
from ...core.enums import ParticipantType, TaskType
from ...gateway.client import CalendarGateway
from ...gateway.model import ScheduleParams
from ...tasks.payloads import ScheduleLeafPayload, payload_from_dict
from ..links import LinkBuilder
from .base import Executor


class CreateScheduleExecutor(Executor):
    name = "create_schedule"
    task_types = frozenset({TaskType.TEACHER_LEAF, TaskType.STUDENT_LEAF})
    priority = PRIORITY_PARTICIPANT

    def __init__(
        self,
        gateway: CalendarGateway,
        links: LinkBuilder,
        *,
        timezone_offset: str = DEFAULT_TIMEZONE_OFFSET,
        reminder_minutes: int = DEFAULT_REMINDER_MINUTES,
    ):
        self._gateway = gateway
        self._links = links
        self._offset = timezone_offset
        self._reminder_minutes = int(reminder_minutes)

    def validate(self, payload: Mapping[str, Any]) -> ScheduleLeafPayload:
        leaf = payload_from_dict(TaskType.TEACHER_LEAF, require_mapping(payload, "payload"))
        require_non_empty(leaf.calendar_id, "calendar_id")
        for field_name in ("course_name", "date", "start_time", "end_time"):
            require_non_empty(getattr(leaf, field_name), field_name)
        return leaf

    def build_description(self, leaf: ScheduleLeafPayload) -> str:
        lines = [f"Môn học: {leaf.course_name} ({leaf.course_id})"]
        when = f"Ngày: {leaf.date}"
        if leaf.periods:
            when += f", tiết {leaf.periods}"
        if leaf.week is not None:
            when = f"Tuần {leaf.week} - {when}"
        lines.append(when)
        if leaf.location:
            lines.append(f"Địa điểm: {leaf.location}")
        if leaf.teacher_names:
            lines.append(f"Giảng viên: {', '.join(leaf.teacher_names)}")

        if leaf.participant_type == ParticipantType.STUDENT:
            lines.append(f"Điểm danh: {self._links.checkin_url(leaf.occurrence_id)}")
            lines.append(f"Xin nghỉ: {self._links.leave_url(leaf.occurrence_id)}")
        else:
            lines.append(f"Danh sách điểm danh: {self._links.attendance_url(leaf.occurrence_id)}")
        return "\n".join(lines)

    def build_params(self, leaf: ScheduleLeafPayload) -> ScheduleParams:
        return ScheduleParams(
            calendar_id=str(leaf.calendar_id),
            summary=leaf.course_name,
            start=to_offset_datetime(leaf.date, leaf.start_time, offset=self._offset),
            end=to_offset_datetime(leaf.date, leaf.end_time, offset=self._offset),
            description=self.build_description(leaf),
            location=leaf.location,
            reminder_minutes=(self._reminder_minutes,),
        )

    async def perform(self, payload: ScheduleLeafPayload) -> Dict[str, Any]:
        params = self.build_params(payload)
        event = await self._gateway.create_schedule(params, idempotency_key=payload.idempotency_token)
        return {
            "event_id": event.event_id,
            "calendar_id": params.calendar_id,
            "summary": params.summary,
            "start": params.start,
            "end": params.end,
        }
