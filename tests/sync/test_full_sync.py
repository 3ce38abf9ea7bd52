from __future__ import annotations

import pytest

from src.course_sync.course_sync.core.enums import Outcome, SyncStatus, TaskStatus, TaskType
from src.course_sync.course_sync.jobs.model import Completion
from src.course_sync.course_sync.sync.model import FullSyncOptions
from src.course_sync.course_sync.tasks import naming

TERM = "2025-1"


async def _nodes(engine):
    return await engine.store.list_tasks(name_prefix=naming.term_prefix(TERM))


def _by_type(nodes, task_type):
    return [n for n in nodes if n.task_type == task_type]


@pytest.mark.asyncio
async def test_full_sync_builds_one_node_per_participant(engine_factory, occurrence):
    engine = engine_factory()
    engine.courses.put(occurrence("OCC1"))
    engine.roster.enroll("CS101", teachers=2, students=30)

    async with engine:
        result = await engine.orchestrator.start_full_sync(TERM)
        await engine.drain()

    nodes = await _nodes(engine)
    # root + course + attendance + teacher group + 2 teachers + student group + 30 students
    assert len(nodes) == 37
    assert sum(1 for n in nodes if n.is_leaf) == 33
    assert len(_by_type(nodes, TaskType.TEACHER_LEAF)) == 2
    assert len(_by_type(nodes, TaskType.STUDENT_LEAF)) == 30
    assert result.processed == 1
    assert result.created_tasks == 37
    assert result.dispatched_jobs == 33
    assert all(n.status == TaskStatus.SUCCESS for n in nodes)

    assert engine.courses.rows["OCC1"].sync_status == SyncStatus.STUDENT_SYNCED
    assert engine.courses.history == [("OCC1", SyncStatus.TEACHER_SYNCED), ("OCC1", SyncStatus.STUDENT_SYNCED)]
    assert len(engine.gateway.live()) == 32
    assert "OCC1" in engine.checkin.tables


@pytest.mark.asyncio
async def test_rerun_reuses_pending_teacher_leaf(engine_factory, occurrence):
    engine = engine_factory()
    engine.courses.put(occurrence("OCC1"))
    engine.roster.enroll("CS101", teachers=2, students=30)

    # Queue not started yet: every job stays queued.
    first = await engine.orchestrator.start_full_sync(TERM)
    t01 = await engine.store.get_task_by_name(
        naming.participant_leaf_name(naming.course_name(TERM, "OCC1", 1), "teacher", "T01")
    )
    await engine.aggregator.apply_completion(
        Completion(node_id=t01.task_id, outcome=Outcome.SUCCESS, data={"event_id": "evt-manual", "calendar_id": "cal-T01"})
    )

    second = await engine.orchestrator.start_full_sync(TERM)

    nodes = await _nodes(engine)
    assert second.root_id == first.root_id
    assert second.created_tasks == 0
    assert len(_by_type(nodes, TaskType.TEACHER_LEAF)) == 2
    assert engine.container.queue.in_flight == 33

    async with engine:
        await engine.drain()

    creates = [c for c in engine.gateway.calls if c[0] == "create"]
    assert len(creates) == 31
    assert ("create", "cal-T01") not in creates
    assert engine.courses.rows["OCC1"].sync_status == SyncStatus.STUDENT_SYNCED


@pytest.mark.asyncio
async def test_full_sync_twice_creates_nothing_new(engine_factory, occurrence):
    engine = engine_factory()
    engine.courses.put(occurrence("OCC1"))
    engine.courses.put(occurrence("OCC2", date="2025-03-25", change_seq=2))
    engine.roster.enroll("CS101", teachers=1, students=3)

    async with engine:
        first = await engine.orchestrator.start_full_sync(TERM, FullSyncOptions(batch_size=1, max_concurrency=2))
        await engine.drain()
        second = await engine.orchestrator.start_full_sync(TERM)
        await engine.drain()

    assert first.processed == 2
    assert second.root_id == first.root_id
    assert second.created_tasks == 0
    assert second.processed == 0
    assert len([c for c in engine.gateway.calls if c[0] == "create"]) == 8
    assert len(set(engine.gateway.idempotency_keys)) == 8


@pytest.mark.asyncio
async def test_course_without_students_is_still_student_synced(engine_factory, occurrence):
    engine = engine_factory()
    engine.courses.put(occurrence("OCC1"))
    engine.roster.enroll("CS101", teachers=1, students=0)

    async with engine:
        await engine.orchestrator.start_full_sync(TERM)
        await engine.drain()

    nodes = await _nodes(engine)
    assert _by_type(nodes, TaskType.STUDENT_GROUP) == []
    assert len(nodes) == 5
    assert engine.courses.rows["OCC1"].sync_status == SyncStatus.STUDENT_SYNCED


@pytest.mark.asyncio
async def test_one_failing_leaf_fails_its_group(engine_factory, occurrence):
    engine = engine_factory()
    engine.courses.put(occurrence("OCC1"))
    engine.roster.enroll("CS101", teachers=1, students=5)
    engine.gateway.rejected_calendars.add("cal-S03")

    async with engine:
        result = await engine.orchestrator.start_full_sync(TERM)
        await engine.drain()

    nodes = await _nodes(engine)
    group = _by_type(nodes, TaskType.STUDENT_GROUP)[0]
    assert group.status == TaskStatus.FAILED
    assert group.result == {"total": 5, "failed_count": 1, "cancelled_count": 0}
    assert _by_type(nodes, TaskType.TEACHER_GROUP)[0].status == TaskStatus.SUCCESS

    stats = await engine.orchestrator.get_sync_status(result.root_id)
    assert stats.status == "failed"
    assert stats.failed_tasks == 1
    assert stats.completed_tasks == 6
    assert stats.failures[0]["occurrence_id"] == "OCC1"


@pytest.mark.asyncio
async def test_transient_errors_are_retried_until_success(engine_factory, occurrence):
    engine = engine_factory(max_attempts=3)
    engine.courses.put(occurrence("OCC1"))
    engine.roster.enroll("CS101", teachers=1, students=1)
    engine.gateway.transient_failures["cal-S01"] = 2

    async with engine:
        await engine.orchestrator.start_full_sync(TERM)
        await engine.drain()

    assert engine.gateway.calls.count(("create", "cal-S01")) == 3
    assert engine.courses.rows["OCC1"].sync_status == SyncStatus.STUDENT_SYNCED


@pytest.mark.asyncio
async def test_participant_without_calendar_fails_at_dispatch(engine_factory, occurrence):
    engine = engine_factory()
    engine.courses.put(occurrence("OCC1"))
    engine.roster.enroll("CS101", teachers=1, students=2, with_calendars=False)

    async with engine:
        result = await engine.orchestrator.start_full_sync(TERM)
        await engine.drain()

    assert result.rejected_jobs == 3
    assert result.dispatched_jobs == 1  # attendance table
    stats = await engine.orchestrator.get_sync_status(result.root_id)
    assert stats.failed_tasks == 3
    assert stats.status == "failed"


@pytest.mark.asyncio
async def test_unknown_course_is_reported_and_batch_continues(engine_factory, occurrence):
    engine = engine_factory()
    engine.courses.put(occurrence("OCC1", course_id="GONE"))
    engine.courses.put(occurrence("OCC2"))
    engine.roster.enroll("CS101", teachers=1, students=1)

    async with engine:
        result = await engine.orchestrator.start_full_sync(TERM)
        await engine.drain()

    assert [f.occurrence_id for f in result.failures] == ["OCC1"]
    assert result.processed == 1
    assert engine.courses.rows["OCC2"].sync_status == SyncStatus.STUDENT_SYNCED
    assert engine.courses.rows["OCC1"].sync_status == SyncStatus.UNSYNCED


@pytest.mark.asyncio
async def test_status_reports_progress(engine_factory, occurrence):
    engine = engine_factory()
    engine.courses.put(occurrence("OCC1"))
    engine.roster.enroll("CS101", teachers=2, students=3)

    result = await engine.orchestrator.start_full_sync(TERM)
    running = await engine.orchestrator.get_sync_status(result.root_id)

    async with engine:
        await engine.drain()
    done = await engine.orchestrator.get_sync_status(result.root_id)

    assert running.status == "running"
    assert running.completed_tasks == 0
    assert done.status == "completed"
    assert (done.total_courses, done.teacher_tasks, done.student_tasks, done.completed_tasks) == (1, 2, 3, 6)
    assert done.to_dict()["term"] == TERM
    assert await engine.orchestrator.get_sync_status("missing") is None


@pytest.mark.asyncio
async def test_cancel_stops_pending_work(engine_factory, occurrence):
    engine = engine_factory()
    engine.courses.put(occurrence("OCC1"))
    engine.roster.enroll("CS101", teachers=1, students=2)

    result = await engine.orchestrator.start_full_sync(TERM)
    assert await engine.orchestrator.cancel_sync(result.root_id) is True

    async with engine:
        await engine.drain()

    assert engine.gateway.calls == []
    assert engine.courses.rows["OCC1"].sync_status == SyncStatus.UNSYNCED
    assert (await engine.orchestrator.get_sync_status(result.root_id)).status == "cancelled"
    # Cancelling again, or cancelling something unknown, changes nothing.
    assert await engine.orchestrator.cancel_sync(result.root_id) is False
    assert await engine.orchestrator.cancel_sync("missing") is False


@pytest.mark.asyncio
async def test_full_sync_after_cancel_opens_a_new_attempt(engine_factory, occurrence):
    engine = engine_factory()
    engine.courses.put(occurrence("OCC1"))
    engine.roster.enroll("CS101", teachers=1, students=2)

    first = await engine.orchestrator.start_full_sync(TERM)
    t01 = await engine.store.get_task_by_name(
        naming.participant_leaf_name(naming.course_name(TERM, "OCC1", 1), "teacher", "T01")
    )
    # T01's event was created before the operator cancelled the run.
    await engine.aggregator.apply_completion(
        Completion(node_id=t01.task_id, outcome=Outcome.SUCCESS, data={"event_id": "evt-T01", "calendar_id": "cal-T01"})
    )
    await engine.orchestrator.cancel_sync(first.root_id)

    async with engine:
        second = await engine.orchestrator.start_full_sync(TERM)
        await engine.drain()

    assert second.root_id != first.root_id
    assert (await engine.store.get_task(second.root_id)).name == naming.attempt_name(naming.full_root_name(TERM), 2)
    assert second.processed == 1
    course = await engine.store.get_task_by_name(naming.course_name(TERM, "OCC1", 1, attempt=2))
    assert course.status == TaskStatus.SUCCESS

    creates = sorted(c for c in engine.gateway.calls if c[0] == "create")
    assert creates == [("create", "cal-S01"), ("create", "cal-S02")]
    assert engine.courses.rows["OCC1"].sync_status == SyncStatus.STUDENT_SYNCED
    assert (await engine.orchestrator.get_sync_status(first.root_id)).status == "cancelled"
    assert (await engine.orchestrator.get_sync_status(second.root_id)).status == "completed"


@pytest.mark.asyncio
async def test_unexpected_roster_error_only_fails_that_occurrence(engine_factory, occurrence):
    engine = engine_factory()
    engine.courses.put(occurrence("OCC1", course_id="BROKEN"))
    engine.courses.put(occurrence("OCC2"))
    engine.roster.enroll("CS101", teachers=1, students=1)
    engine.roster.failures["BROKEN"] = RuntimeError("1205 Lock wait timeout exceeded")

    async with engine:
        result = await engine.orchestrator.start_full_sync(TERM)
        await engine.drain()

    assert [(f.occurrence_id, f.course_id) for f in result.failures] == [("OCC1", "BROKEN")]
    assert "RuntimeError" in result.failures[0].reason
    assert result.processed == 1
    assert engine.courses.rows["OCC2"].sync_status == SyncStatus.STUDENT_SYNCED
    assert engine.courses.rows["OCC1"].sync_status == SyncStatus.UNSYNCED
    assert (await engine.store.get_task(result.root_id)).status == TaskStatus.SUCCESS


@pytest.mark.asyncio
async def test_group_result_notes_roster_growth_between_runs(engine_factory, occurrence):
    engine = engine_factory()
    engine.courses.put(occurrence("OCC1"))
    engine.roster.enroll("CS101", teachers=1, students=2)

    await engine.orchestrator.start_full_sync(TERM)
    engine.roster.enroll("CS101", teachers=1, students=3)

    async with engine:
        rerun = await engine.orchestrator.start_full_sync(TERM)
        await engine.drain()

    assert rerun.created_tasks == 1
    group = _by_type(await _nodes(engine), TaskType.STUDENT_GROUP)[0]
    assert group.status == TaskStatus.SUCCESS
    assert group.result == {"total": 3, "failed_count": 0, "cancelled_count": 0, "expected_children": 2}
    assert engine.courses.rows["OCC1"].sync_status == SyncStatus.STUDENT_SYNCED


@pytest.mark.asyncio
async def test_course_filter_limits_the_run(engine_factory, occurrence):
    engine = engine_factory()
    engine.courses.put(occurrence("OCC1"))
    engine.courses.put(occurrence("OCC2", course_id="CS102"))
    engine.roster.enroll("CS101", teachers=1, students=1)
    engine.roster.enroll("CS102", teachers=1, students=1)

    async with engine:
        result = await engine.orchestrator.start_full_sync(TERM, FullSyncOptions(course_ids=["CS102"]))
        await engine.drain()

    assert result.processed == 1
    assert engine.courses.rows["OCC1"].sync_status == SyncStatus.UNSYNCED
    assert engine.courses.rows["OCC2"].sync_status == SyncStatus.STUDENT_SYNCED
