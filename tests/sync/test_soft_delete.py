from __future__ import annotations

import pytest

from src.course_sync.course_sync.core.enums import SyncStatus, TaskStatus, TaskType
from src.course_sync.course_sync.tasks import naming

TERM = "2025-1"


@pytest.mark.asyncio
async def test_soft_delete_stays_pending_until_deletions_finish(engine_factory, occurrence):
    engine = engine_factory()
    engine.courses.put(occurrence("OCC1"))
    engine.roster.enroll("CS101", teachers=1, students=2)

    async with engine:
        await engine.orchestrator.start_full_sync(TERM)
        await engine.drain()
    assert len(engine.gateway.live()) == 3

    # Workers stopped: deletion jobs wait in the queue.
    marked = await engine.aggregator.soft_delete(["OCC1"])
    assert marked.succeeded == ["OCC1"]
    assert engine.courses.rows["OCC1"].sync_status == SyncStatus.SOFT_DELETED_PENDING

    waiting = await engine.aggregator.complete_soft_delete(TERM)
    assert waiting.pending == ["OCC1"]
    assert engine.courses.rows["OCC1"].sync_status == SyncStatus.SOFT_DELETED_PENDING

    async with engine:
        await engine.drain()

    done = await engine.aggregator.complete_soft_delete(TERM)
    assert done.succeeded == ["OCC1"]
    assert engine.courses.rows["OCC1"].sync_status == SyncStatus.SOFT_DELETED_DONE
    assert engine.gateway.live() == []

    group = await engine.store.get_task_by_name(naming.soft_delete_group_name(TERM, "OCC1"))
    assert group.status == TaskStatus.SUCCESS
    leaves = await engine.store.get_children(group.task_id)
    assert {leaf.task_type for leaf in leaves} == {TaskType.DELETE_LEAF}
    assert len(leaves) == 3


@pytest.mark.asyncio
async def test_soft_delete_without_events_completes_on_sweep(engine_factory, occurrence):
    engine = engine_factory()
    engine.courses.put(occurrence("OCC1"))

    marked = await engine.aggregator.soft_delete(["OCC1"])
    done = await engine.aggregator.complete_soft_delete(TERM)

    assert marked.succeeded == ["OCC1"]
    assert done.succeeded == ["OCC1"]
    assert await engine.store.get_task_by_name(naming.soft_delete_root_name(TERM)) is None
    assert engine.courses.rows["OCC1"].sync_status == SyncStatus.SOFT_DELETED_DONE


@pytest.mark.asyncio
async def test_batch_commits_per_occurrence(engine_factory, occurrence):
    engine = engine_factory()
    engine.courses.put(occurrence("OCC1"))
    engine.courses.put(occurrence("OCC3"))

    result = await engine.aggregator.soft_delete(["OCC1", "MISSING", "OCC3"])

    assert result.succeeded == ["OCC1", "OCC3"]
    assert list(result.failed) == ["MISSING"]
    assert engine.courses.rows["OCC3"].sync_status == SyncStatus.SOFT_DELETED_PENDING


@pytest.mark.asyncio
async def test_soft_delete_cancels_unfinished_sync(engine_factory, occurrence):
    engine = engine_factory()
    engine.courses.put(occurrence("OCC1"))
    engine.roster.enroll("CS101", teachers=1, students=2)

    run = await engine.orchestrator.start_full_sync(TERM)
    await engine.aggregator.soft_delete(["OCC1"])

    async with engine:
        await engine.drain()
        again = await engine.orchestrator.start_full_sync(TERM)
        await engine.drain()

    course = await engine.store.get_task_by_name(naming.course_name(TERM, "OCC1", 1))
    assert course.status == TaskStatus.CANCELLED
    assert engine.gateway.calls == []
    assert again.root_id == run.root_id
    assert again.processed == 0
    assert (await engine.store.get_task(run.root_id)).status == TaskStatus.SUCCESS
    assert engine.courses.rows["OCC1"].sync_status == SyncStatus.SOFT_DELETED_PENDING

    await engine.aggregator.complete_soft_delete(TERM)
    assert engine.courses.rows["OCC1"].sync_status == SyncStatus.SOFT_DELETED_DONE


@pytest.mark.asyncio
async def test_repeated_soft_delete_is_a_no_op(engine_factory, occurrence):
    engine = engine_factory()
    engine.courses.put(occurrence("OCC1"))
    engine.roster.enroll("CS101", teachers=1, students=1)

    async with engine:
        await engine.orchestrator.start_full_sync(TERM)
        await engine.drain()
        await engine.aggregator.soft_delete(["OCC1"])
        await engine.drain()
        second = await engine.aggregator.soft_delete(["OCC1"])
        await engine.drain()

    assert second.succeeded == ["OCC1"]
    assert engine.gateway.calls.count(("delete", "cal-S01")) == 1
    assert engine.courses.history.count(("OCC1", SyncStatus.SOFT_DELETED_PENDING)) == 1
