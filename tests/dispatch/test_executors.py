from __future__ import annotations

import pytest

from conftest import FakeCalendarGateway, InMemoryCheckInTables
from src.course_sync.course_sync.core.enums import ErrorClass, ParticipantType, TaskType
from src.course_sync.course_sync.core.exceptions import ValidationError
from src.course_sync.course_sync.dispatch.executors.attendance_table import AttendanceTableExecutor
from src.course_sync.course_sync.dispatch.executors.create_schedule import CreateScheduleExecutor
from src.course_sync.course_sync.dispatch.executors.delete_schedule import DeleteScheduleExecutor
from src.course_sync.course_sync.dispatch.factory import ExecutorFactory
from src.course_sync.course_sync.dispatch.links import LinkBuilder
from src.course_sync.course_sync.gateway.model import CalendarEvent
from src.course_sync.course_sync.jobs.model import CompletionCallback, SyncJob
from src.course_sync.course_sync.tasks.payloads import (
    AttendanceTablePayload,
    DeleteLeafPayload,
    ScheduleLeafPayload,
    payload_to_dict,
)

LINKS = LinkBuilder("http://checkin.test/")


def _leaf(participant_type=ParticipantType.STUDENT, **overrides) -> dict:
    values = dict(
        term="2025-1",
        occurrence_id="OCC1",
        course_id="CS101",
        course_name="Nhập môn lập trình",
        revision=1,
        participant_type=participant_type,
        participant_id="S01",
        participant_name="Sinh viên 1",
        date="2025-03-18",
        start_time="08:00:00",
        end_time="09:40:00",
        idempotency_token="tok-1",
        calendar_id="cal-S01",
        location="A1-201",
        periods="1-2",
        week=3,
        teacher_names=("Giảng viên 1",),
    )
    values.update(overrides)
    return payload_to_dict(ScheduleLeafPayload(**values))


def _job(executor: str, payload: dict) -> SyncJob:
    return SyncJob(
        job_id="j1",
        name="sync/2025-1/OCC1@1/students/S01",
        executor=executor,
        task_id="t1",
        payload=payload,
        callback=CompletionCallback.for_node("t1"),
        attempts=1,
    )


def test_student_description_carries_checkin_and_leave_links():
    executor = CreateScheduleExecutor(FakeCalendarGateway(), LINKS)
    params = executor.build_params(executor.validate(_leaf()))

    assert params.summary == "Nhập môn lập trình"
    assert params.start == "2025-03-18T08:00:00+08:00"
    assert params.end == "2025-03-18T09:40:00+08:00"
    assert params.reminder_minutes == (15,)
    assert "Tuần 3 - Ngày: 2025-03-18, tiết 1-2" in params.description
    assert "Điểm danh: http://checkin.test/checkin/OCC1" in params.description
    assert "Xin nghỉ: http://checkin.test/leave/OCC1" in params.description


def test_teacher_description_links_attendance_list():
    executor = CreateScheduleExecutor(FakeCalendarGateway(), LINKS, timezone_offset="+07:00")
    params = executor.build_params(executor.validate(_leaf(ParticipantType.TEACHER, participant_id="T01")))

    assert params.start.endswith("+07:00")
    assert "Danh sách điểm danh: http://checkin.test/attendance/OCC1" in params.description
    assert "Xin nghỉ" not in params.description


def test_missing_calendar_is_rejected_by_validate():
    executor = CreateScheduleExecutor(FakeCalendarGateway(), LINKS)

    with pytest.raises(ValidationError):
        executor.validate(_leaf(calendar_id=None))


@pytest.mark.asyncio
async def test_create_uses_idempotency_token_and_returns_event():
    gateway = FakeCalendarGateway()
    result = await CreateScheduleExecutor(gateway, LINKS).execute(_job("create_schedule", _leaf()))

    assert result.success is True
    assert result.data["event_id"] == "evt-1"
    assert result.data["calendar_id"] == "cal-S01"
    assert gateway.idempotency_keys == ["tok-1"]


@pytest.mark.asyncio
async def test_create_classifies_errors():
    gateway = FakeCalendarGateway()
    gateway.transient_failures["cal-S01"] = 1
    executor = CreateScheduleExecutor(gateway, LINKS)

    transient = await executor.execute(_job("create_schedule", _leaf()))
    gateway.rejected_calendars.add("cal-S01")
    rejected = await executor.execute(_job("create_schedule", _leaf()))

    assert transient.error_class == ErrorClass.RETRYABLE
    assert transient.retryable is True
    assert rejected.error_class == ErrorClass.TERMINAL
    assert rejected.retryable is False


@pytest.mark.asyncio
async def test_delete_by_summary_and_time_window():
    gateway = FakeCalendarGateway()
    gateway.events["cal-S01"] = {
        "e1": CalendarEvent("e1", "cal-S01", "Nhập môn lập trình", "2025-03-18T00:00:00Z", "2025-03-18T01:40:00Z"),
        "e2": CalendarEvent("e2", "cal-S01", "Cấu trúc dữ liệu", "2025-03-18T00:00:00Z", "2025-03-18T01:40:00Z"),
    }
    payload = payload_to_dict(
        DeleteLeafPayload(
            term="2025-1",
            occurrence_id="OCC1",
            participant_type=ParticipantType.STUDENT,
            participant_id="S01",
            calendar_id="cal-S01",
            summary="Nhập môn lập trình",
            start="2025-03-18T08:00:00+08:00",
            end="2025-03-18T09:40:00+08:00",
        )
    )

    result = await DeleteScheduleExecutor(gateway).execute(_job("delete_schedule", payload))

    assert result.data == {"deleted": 1, "event_ids": ["e1"]}
    assert list(gateway.events["cal-S01"]) == ["e2"]


@pytest.mark.asyncio
async def test_delete_of_missing_event_or_calendar_succeeds():
    gateway = FakeCalendarGateway()
    executor = DeleteScheduleExecutor(gateway)
    base = dict(
        term="2025-1",
        occurrence_id="OCC1",
        participant_type=ParticipantType.TEACHER,
        participant_id="T01",
        calendar_id="cal-gone",
        summary="Nhập môn lập trình",
        start="2025-03-18T08:00:00+08:00",
        end="2025-03-18T09:40:00+08:00",
    )

    by_id = await executor.execute(_job("delete_schedule", payload_to_dict(DeleteLeafPayload(**base, event_id="e9"))))
    by_window = await executor.execute(_job("delete_schedule", payload_to_dict(DeleteLeafPayload(**base))))

    assert by_id.success and by_id.data["deleted"] == 0
    assert by_window.success and by_window.data["deleted"] == 0


@pytest.mark.asyncio
async def test_attendance_table_is_created_once():
    tables = InMemoryCheckInTables()
    executor = AttendanceTableExecutor(tables, LINKS)
    payload = payload_to_dict(
        AttendanceTablePayload(term="2025-1", occurrence_id="OCC1", course_id="CS101", revision=1, student_count=30)
    )

    first = await executor.execute(_job("create_attendance_table", payload))
    second = await executor.execute(_job("create_attendance_table", payload))

    assert first.data["created"] is True
    assert second.data["created"] is False
    assert first.data["table_id"] == second.data["table_id"]
    assert tables.tables["OCC1"].checkin_url == "http://checkin.test/checkin/OCC1"


def test_factory_routes_leaf_types():
    factory = ExecutorFactory(
        [
            CreateScheduleExecutor(FakeCalendarGateway(), LINKS),
            DeleteScheduleExecutor(FakeCalendarGateway()),
            AttendanceTableExecutor(InMemoryCheckInTables(), LINKS),
        ]
    )

    assert factory.for_task_type(TaskType.STUDENT_LEAF).name == "create_schedule"
    assert factory.for_task_type(TaskType.DELETE_LEAF).name == "delete_schedule"
    assert factory.by_name("create_attendance_table").task_types == frozenset({TaskType.ATTENDANCE_TABLE})
    with pytest.raises(ValidationError):
        factory.for_task_type(TaskType.COURSE)
