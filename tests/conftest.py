from __future__ import annotations

import itertools
from dataclasses import replace
from datetime import datetime
from typing import Optional, Sequence

import pytest

from src.course_sync.course_sync.attendance.model import CheckInTable
from src.course_sync.course_sync.container import Container, wire
from src.course_sync.course_sync.core.enums import ParticipantType, SyncStatus
from src.course_sync.course_sync.core.exceptions import NotFoundError, TransientExternalError, ValidationError
from src.course_sync.course_sync.courses.model import CourseOccurrence
from src.course_sync.course_sync.gateway.model import CalendarEvent, ScheduleParams
from src.course_sync.course_sync.jobs.retry import RetryPolicy
from src.course_sync.course_sync.roster.model import Participant
from src.course_sync.course_sync.tasks.memory_store import InMemoryTaskTreeStore


class InMemoryCourses:
    def __init__(self, rows: Sequence[CourseOccurrence] = ()):
        self.rows: dict[str, CourseOccurrence] = {r.occurrence_id: r for r in rows}
        self.history: list[tuple[str, SyncStatus]] = []

    def put(self, occ: CourseOccurrence) -> None:
        self.rows[occ.occurrence_id] = occ

    def bump(self, occurrence_id: str, *, change_seq: int, **changes) -> CourseOccurrence:
        """Simulate a timetable edit: new revision, status back to unsynced."""

        occ = self.rows[occurrence_id]
        occ = replace(occ, revision=occ.revision + 1, change_seq=change_seq, sync_status=SyncStatus.UNSYNCED, **changes)
        self.rows[occurrence_id] = occ
        return occ

    async def list_needing_sync(self, term, *, course_ids=None, after=None, limit=None):
        rows = sorted(
            (
                r
                for r in self.rows.values()
                if r.term == term
                and r.needs_sync
                and (not course_ids or r.course_id in course_ids)
                and (after is None or r.occurrence_id > after)
            ),
            key=lambda r: r.occurrence_id,
        )
        return rows[:limit] if limit else rows

    async def list_changed_since(self, term, checkpoint):
        rows = [r for r in self.rows.values() if r.term == term and r.change_seq > checkpoint]
        return sorted(rows, key=lambda r: r.change_seq)

    async def get(self, occurrence_id):
        return self.rows.get(occurrence_id)

    async def list_by_status(self, term, status):
        return sorted(
            (r for r in self.rows.values() if r.term == term and r.sync_status == status),
            key=lambda r: r.occurrence_id,
        )

    async def update_sync_status(self, occurrence_id, status, *, expected, synced_at=None):
        occ = self.rows.get(occurrence_id)
        if occ is None or occ.sync_status != expected:
            return False
        self.rows[occurrence_id] = replace(occ, sync_status=status, last_synced_at=synced_at)
        self.history.append((occurrence_id, status))
        return True


class InMemoryCheckpoints:
    def __init__(self, values: Optional[dict[str, int]] = None):
        self.values = dict(values or {})

    async def get(self, term):
        return self.values.get(term, 0)

    async def advance(self, term, seq):
        self.values[term] = max(self.values.get(term, 0), int(seq))
        return self.values[term]


class InMemoryRoster:
    def __init__(self):
        self.teachers: dict[str, list[Participant]] = {}
        self.students: dict[str, list[Participant]] = {}
        # course_id -> exception raised by every lookup for that course
        self.failures: dict[str, Exception] = {}

    def enroll(self, course_id: str, *, teachers: int = 0, students: int = 0, with_calendars: bool = True) -> None:
        self.teachers[course_id] = [
            Participant(f"T{i:02d}", f"Giảng viên {i}", ParticipantType.TEACHER, f"cal-T{i:02d}" if with_calendars else None)
            for i in range(1, teachers + 1)
        ]
        self.students[course_id] = [
            Participant(f"S{i:02d}", f"Sinh viên {i}", ParticipantType.STUDENT, f"cal-S{i:02d}" if with_calendars else None)
            for i in range(1, students + 1)
        ]

    async def find_teachers(self, course_id):
        if course_id in self.failures:
            raise self.failures[course_id]
        if course_id not in self.teachers:
            raise NotFoundError(f"Course not found: {course_id}")
        return list(self.teachers[course_id])

    async def find_students(self, course_id, term):
        if course_id not in self.students:
            raise NotFoundError(f"Course not found: {course_id}")
        return list(self.students[course_id])


class InMemoryCheckInTables:
    def __init__(self):
        self.tables: dict[str, CheckInTable] = {}
        self._ids = itertools.count(1)

    async def create_if_absent(self, *, occurrence_id, course_id, term, student_count, checkin_url):
        if occurrence_id in self.tables:
            return self.tables[occurrence_id], False
        table = CheckInTable(
            table_id=next(self._ids),
            occurrence_id=occurrence_id,
            course_id=course_id,
            term=term,
            student_count=student_count,
            checkin_url=checkin_url,
            created_at=datetime.now(),
        )
        self.tables[occurrence_id] = table
        return table, True


class FakeCalendarGateway:
    """Records calendar events per calendar; failures can be scripted per calendar id."""

    def __init__(self):
        self.events: dict[str, dict[str, CalendarEvent]] = {}
        self.calls: list[tuple[str, str]] = []
        self.idempotency_keys: list[str] = []
        self.transient_failures: dict[str, int] = {}
        self.rejected_calendars: set[str] = set()
        self._ids = itertools.count(1)

    def live(self) -> list[CalendarEvent]:
        return [e for events in self.events.values() for e in events.values()]

    async def create_schedule(self, params: ScheduleParams, *, idempotency_key: str) -> CalendarEvent:
        self.calls.append(("create", params.calendar_id))
        self.idempotency_keys.append(idempotency_key)
        if self.transient_failures.get(params.calendar_id, 0) > 0:
            self.transient_failures[params.calendar_id] -= 1
            raise TransientExternalError("calendar busy")
        if params.calendar_id in self.rejected_calendars:
            raise ValidationError("calendar rejected the event")

        event = CalendarEvent(
            event_id=f"evt-{next(self._ids)}",
            calendar_id=params.calendar_id,
            summary=params.summary,
            start=params.start,
            end=params.end,
        )
        self.events.setdefault(params.calendar_id, {})[event.event_id] = event
        return event

    async def delete_schedule(self, calendar_id: str, event_id: str) -> None:
        self.calls.append(("delete", calendar_id))
        if event_id not in self.events.get(calendar_id, {}):
            raise NotFoundError(f"event {event_id} not found")
        del self.events[calendar_id][event_id]

    async def list_schedules(self, calendar_id: str, start: str, end: str) -> list[CalendarEvent]:
        self.calls.append(("list", calendar_id))
        if calendar_id not in self.events:
            raise NotFoundError(f"calendar {calendar_id} not found")
        return list(self.events[calendar_id].values())


def make_occurrence(occurrence_id: str = "OCC1", **overrides) -> CourseOccurrence:
    values = dict(
        occurrence_id=occurrence_id,
        course_id="CS101",
        course_name="Nhập môn lập trình",
        term="2025-1",
        date="2025-03-18",
        start_time="08:00:00",
        end_time="09:40:00",
        periods="1-2",
        location="A1-201",
        week=3,
        revision=1,
        change_seq=1,
    )
    values.update(overrides)
    return CourseOccurrence(**values)


class Engine:
    """Wired engine over in-memory fakes; `async with` starts and stops the queue workers."""

    def __init__(self, container: Container, courses, roster, checkin, checkpoints, gateway):
        self.container = container
        self.courses = courses
        self.roster = roster
        self.checkin = checkin
        self.checkpoints = checkpoints
        self.gateway = gateway

    @property
    def store(self):
        return self.container.task_store

    @property
    def orchestrator(self):
        return self.container.orchestrator

    @property
    def aggregator(self):
        return self.container.aggregator

    async def drain(self) -> None:
        await self.container.queue.join()

    async def __aenter__(self) -> "Engine":
        await self.container.queue.start(self.container.runner)
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.container.queue.stop()


@pytest.fixture
def engine_factory():
    def _make(*, workers: int = 4, max_attempts: int = 3) -> Engine:
        courses = InMemoryCourses()
        roster = InMemoryRoster()
        checkin = InMemoryCheckInTables()
        checkpoints = InMemoryCheckpoints()
        gateway = FakeCalendarGateway()
        container = wire(
            courses_repo=courses,
            checkpoints_repo=checkpoints,
            roster_repo=roster,
            checkin_repo=checkin,
            task_store=InMemoryTaskTreeStore(),
            gateway=gateway,
            checkin_base_url="http://checkin.test",
            workers=workers,
            retry_policy=RetryPolicy(max_attempts=max_attempts, base_delay=0.0),
        )
        return Engine(container, courses, roster, checkin, checkpoints, gateway)

    return _make


@pytest.fixture
def occurrence():
    return make_occurrence
