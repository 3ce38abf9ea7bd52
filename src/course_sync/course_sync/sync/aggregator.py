from __future__ import annotations

import asyncio
import logging
from collections import Counter
from contextlib import asynccontextmanager
from typing import Callable, Iterable, Optional

from ..common.datetime_utils import now_local
from ..core.enums import SYNC_PROGRESSION, Outcome, SyncStatus, TaskStatus, TaskType
from ..core.exceptions import DomainError, NotFoundError
from ..courses.model import CourseOccurrence
from ..courses.repository import CourseRepository
from ..dispatch.dispatcher import DispatchResult, WorkDispatcher
from ..jobs.model import Completion
from ..tasks import naming
from ..tasks.model import TaskNode
from ..tasks.payloads import DeleteLeafPayload, GroupPayload, RootPayload
from ..tasks.repository import TaskTreeStore
from .index import TaskIndex, collect_live_events, find_or_create
from .model import BatchResult, ReconcileResult

logger = logging.getLogger(__name__)

# Branches that must be terminal before the teachers count as synced.
TEACHER_BRANCHES = frozenset({TaskType.ATTENDANCE_TABLE, TaskType.REMOVAL_GROUP, TaskType.TEACHER_GROUP})


class StatusAggregator:
    """Single consumer of completion descriptors.

    Applies leaf transitions, rolls group completion up the tree from live
    child state and is the only writer of an occurrence's sync status.
    """

    def __init__(
        self,
        store: TaskTreeStore,
        courses: CourseRepository,
        dispatcher: WorkDispatcher,
        *,
        clock: Callable = now_local,
    ):
        self._store = store
        self._courses = courses
        self._dispatcher = dispatcher
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: Counter = Counter()

    async def apply_completion(self, completion: Completion) -> bool:
        """Apply one leaf outcome. A descriptor for a terminal node is a no-op."""

        node = await self._store.get_task(completion.node_id)
        if node is None:
            logger.warning("Completion for unknown task %s ignored", completion.node_id)
            return False
        if node.is_terminal:
            logger.debug("Completion for %s ignored, task already %s", node.name, node.status.value)
            return False

        if completion.outcome == Outcome.SUCCESS:
            applied = await self._store.succeed(node.task_id, reason=completion.reason, result=completion.data)
        else:
            applied = await self._store.fail(
                node.task_id, reason=completion.reason or "failed", result=completion.data or None
            )
        if not applied:
            logger.debug("Task %s changed state concurrently; completion dropped", node.name)
            return False

        if completion.outcome == Outcome.FAILED:
            logger.warning("Task %s failed: %s", node.name, completion.reason)
        if node.parent_id:
            await self.recompute(node.parent_id)
        return True

    @asynccontextmanager
    async def _guard(self, key: str):
        """Per-key lock, dropped once nobody holds or waits for it."""

        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] <= 0:
                del self._holders[key]
                self._locks.pop(key, None)

    async def recompute(self, task_id: str) -> None:
        """Settle `task_id` from its live children, then walk up while nodes complete."""

        current: Optional[str] = task_id
        while current:
            node, changed = await self._settle(current)
            if node is None:
                return
            if node.task_type == TaskType.COURSE:
                await self._advance_occurrence(node)
            if not changed:
                return
            current = node.parent_id

    async def _settle(self, task_id: str) -> tuple[Optional[TaskNode], bool]:
        async with self._guard(task_id):
            node = await self._store.get_task(task_id)
            # Only a sealed (running) group can finish.
            if node is None or node.status != TaskStatus.RUNNING or node.is_leaf:
                return node, False

            children = await self._store.get_children(task_id)
            if any(not c.is_terminal for c in children):
                return node, False

            failed = sum(1 for c in children if c.status == TaskStatus.FAILED)
            cancelled = sum(1 for c in children if c.status == TaskStatus.CANCELLED)
            result = {"total": len(children), "failed_count": failed, "cancelled_count": cancelled}
            expected = int(node.payload.get("expected_children") or 0)
            if expected and expected != len(children):
                # Roster changed between runs of the same revision.
                logger.warning("Task %s planned %s children but has %s", node.name, expected, len(children))
                result["expected_children"] = expected
            # A root is only cancelled by an operator; superseded or soft-deleted courses do not cancel the run.
            if cancelled and node.task_type != TaskType.ROOT:
                target = TaskStatus.CANCELLED
                reason = f"{cancelled} child task(s) cancelled"
            elif failed:
                target = TaskStatus.FAILED
                reason = f"{failed}/{len(children)} child task(s) failed"
            else:
                target = TaskStatus.SUCCESS
                reason = None

            changed = await self._store.transition(
                task_id, target, expected=(TaskStatus.RUNNING,), reason=reason, result=result
            )
            if changed:
                logger.info("Task %s completed as %s (%s)", node.name, target.value, result)
            return (await self._store.get_task(task_id)), changed

    async def _advance_occurrence(self, course: TaskNode) -> bool:
        if course.status in {TaskStatus.PENDING, TaskStatus.CANCELLED}:
            return False

        async with self._guard(f"occurrence:{course.payload.get('occurrence_id')}"):
            children = await self._store.get_children(course.task_id)
            if any(c.status == TaskStatus.CANCELLED for c in children):
                return False

            teacher_ready = all(c.is_terminal for c in children if c.task_type in TEACHER_BRANCHES)
            student_ready = teacher_ready and all(
                c.is_terminal for c in children if c.task_type == TaskType.STUDENT_GROUP
            )
            if student_ready:
                target = SyncStatus.STUDENT_SYNCED
            elif teacher_ready:
                target = SyncStatus.TEACHER_SYNCED
            else:
                return False

            return await self._advance_to(str(course.payload["occurrence_id"]), int(course.payload["revision"]), target)

    async def _advance_to(self, occurrence_id: str, revision: int, target: SyncStatus) -> bool:
        advanced = False
        # A lost compare-and-set re-reads the row; bounded so a stuck row cannot spin.
        for _ in range(2 * len(SYNC_PROGRESSION)):
            occ = await self._courses.get(occurrence_id)
            if occ is None or occ.sync_status.is_soft_deleted or occ.revision != revision:
                # Stale subtree or soft-deleted row: never move it.
                return advanced

            position = SYNC_PROGRESSION.index(occ.sync_status)
            if position >= SYNC_PROGRESSION.index(target):
                return advanced

            step = SYNC_PROGRESSION[position + 1]
            ok = await self._courses.update_sync_status(
                occurrence_id, step, expected=occ.sync_status, synced_at=self._clock()
            )
            if ok:
                logger.info("Occurrence %s: %s -> %s", occurrence_id, occ.sync_status.value, step.value)
                advanced = True
        return advanced

    async def soft_delete(self, occurrence_ids: Iterable[str]) -> BatchResult:
        """Mark rows soft-deleted-pending and schedule deletion of their live events.

        Each occurrence commits on its own; a failure is recorded and the batch continues.
        """

        result = BatchResult()
        for occurrence_id in occurrence_ids:
            try:
                if await self._soft_delete_one(str(occurrence_id)):
                    result.succeeded.append(str(occurrence_id))
            except DomainError as exc:
                logger.warning("Soft delete of %s failed: %s", occurrence_id, exc)
                result.failed[str(occurrence_id)] = str(exc)
        return result

    async def _soft_delete_one(self, occurrence_id: str) -> bool:
        occ = await self._courses.get(occurrence_id)
        if occ is None:
            raise NotFoundError(f"Occurrence not found: {occurrence_id}")
        if occ.sync_status.is_soft_deleted:
            return True

        ok = await self._courses.update_sync_status(
            occurrence_id, SyncStatus.SOFT_DELETED_PENDING, expected=occ.sync_status, synced_at=self._clock()
        )
        if not ok:
            raise DomainError(f"Occurrence {occurrence_id} changed concurrently, retry the soft delete")

        await self._schedule_deletions(occ)
        return True

    async def _schedule_deletions(self, occ: CourseOccurrence) -> None:
        index = await TaskIndex.load(self._store, naming.occurrence_prefix(occ.term, occ.occurrence_id))
        courses = index.course_nodes(occ.occurrence_id)
        for course in courses:
            if not course.is_terminal:
                await self._store.cancel_task(course.task_id, reason="occurrence soft-deleted")
                await self.recompute(course.parent_id)

        live = [e for e in collect_live_events(index, courses).values() if e.calendar_id]
        if not live:
            logger.info("Occurrence %s has no live calendar events", occ.occurrence_id)
            return

        root, _ = await self._find_or_create_root(occ.term)
        group_name = naming.soft_delete_group_name(occ.term, occ.occurrence_id)
        group, _ = await find_or_create(
            self._store,
            index,
            name=group_name,
            parent_id=root.task_id,
            task_type=TaskType.DELETE_GROUP,
            payload=GroupPayload(term=occ.term, occurrence_id=occ.occurrence_id, expected_children=len(live)),
        )

        leaves: list[TaskNode] = []
        for event in live:
            leaf, _ = await find_or_create(
                self._store,
                index,
                name=naming.soft_delete_leaf_name(occ.term, occ.occurrence_id, event.participant_type, event.participant_id),
                parent_id=group.task_id,
                task_type=TaskType.DELETE_LEAF,
                payload=DeleteLeafPayload(
                    term=occ.term,
                    occurrence_id=occ.occurrence_id,
                    participant_type=event.participant_type,
                    participant_id=event.participant_id,
                    calendar_id=event.calendar_id,
                    summary=event.summary,
                    start=event.start or "",
                    end=event.end or "",
                    event_id=event.event_id,
                ),
            )
            leaves.append(leaf)

        await self._store.start(group.task_id)
        for leaf in leaves:
            await self.start_and_dispatch(leaf)
        await self.recompute(group.task_id)

    async def _find_or_create_root(self, term: str) -> tuple[TaskNode, bool]:
        name = naming.soft_delete_root_name(term)
        index = TaskIndex()
        existing = await self._store.get_task_by_name(name)
        if existing is not None:
            index.add(existing)
        root, created = await find_or_create(
            self._store, index, name=name, parent_id=None, task_type=TaskType.ROOT, payload=RootPayload(term=term, mode="soft_delete")
        )
        if root.status == TaskStatus.PENDING:
            await self._store.start(root.task_id)
        return root, created

    async def start_and_dispatch(self, leaf: TaskNode) -> Optional[DispatchResult]:
        """Start a leaf if needed and enqueue its job.

        Returns None when the leaf is no longer running. A rejected payload fails
        the leaf right away.
        """

        if leaf.status == TaskStatus.PENDING:
            await self._store.start(leaf.task_id)
        leaf = await self._store.get_task(leaf.task_id) or leaf
        if leaf.status != TaskStatus.RUNNING:
            return None

        dispatched = self._dispatcher.dispatch(leaf)
        if not dispatched.accepted:
            await self.apply_completion(Completion(node_id=leaf.task_id, outcome=Outcome.FAILED, reason=dispatched.reason))
        return dispatched

    async def complete_soft_delete(self, term: str) -> BatchResult:
        """Flip soft-deleted-pending rows whose deletion jobs are all terminal to soft-deleted-done."""

        result = BatchResult()
        for occ in await self._courses.list_by_status(term, SyncStatus.SOFT_DELETED_PENDING):
            try:
                group = await self._store.get_task_by_name(naming.soft_delete_group_name(term, occ.occurrence_id))
                if group is not None:
                    leaves = await self._store.get_children(group.task_id)
                    if any(not leaf.is_terminal for leaf in leaves):
                        result.pending.append(occ.occurrence_id)
                        continue

                ok = await self._courses.update_sync_status(
                    occ.occurrence_id,
                    SyncStatus.SOFT_DELETED_DONE,
                    expected=SyncStatus.SOFT_DELETED_PENDING,
                    synced_at=self._clock(),
                )
                if ok:
                    result.succeeded.append(occ.occurrence_id)
                else:
                    result.failed[occ.occurrence_id] = "status changed concurrently"
            except DomainError as exc:
                logger.warning("Completing soft delete of %s failed: %s", occ.occurrence_id, exc)
                result.failed[occ.occurrence_id] = str(exc)
        return result

    async def reconcile(self, root_id: str) -> ReconcileResult:
        """Re-derive group completion and occurrence status of a whole tree from live state."""

        root = await self._store.get_task(root_id)
        if root is None:
            raise NotFoundError(f"Task not found: {root_id}")

        nodes = [root, *await self._store.get_descendants(root_id)]
        parents = {n.task_id: n.parent_id for n in nodes}

        def depth(node: TaskNode) -> int:
            d, current = 0, node.parent_id
            while current in parents:
                d += 1
                current = parents[current]
            return d

        settled = 0
        advanced = 0
        for node in sorted((n for n in nodes if not n.is_leaf), key=depth, reverse=True):
            current, changed = await self._settle(node.task_id)
            settled += int(changed)
            if current is not None and current.task_type == TaskType.COURSE:
                advanced += int(await self._advance_occurrence(current))
        return ReconcileResult(root_id=root_id, settled_groups=settled, advanced_occurrences=advanced)
