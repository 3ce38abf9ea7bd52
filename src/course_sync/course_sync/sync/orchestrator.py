from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from ..common.validators import require_non_empty
from ..core.constants import DEFAULT_MAX_CONCURRENCY
from ..core.enums import ParticipantType, TaskStatus, TaskType
from ..core.exceptions import DomainError, ValidationError
from ..courses.model import CourseOccurrence
from ..courses.repository import CheckpointRepository, CourseRepository
from ..roster.model import Participant
from ..roster.repository import RosterRepository
from ..tasks import naming
from ..tasks.model import TaskNode
from ..tasks.payloads import (
    AttendanceTablePayload,
    CoursePayload,
    DeleteLeafPayload,
    GroupPayload,
    RootPayload,
    ScheduleLeafPayload,
)
from ..tasks.repository import TaskTreeStore
from .aggregator import StatusAggregator
from .index import LiveEvent, TaskIndex, attendance_created, collect_live_events, find_or_create
from .model import CourseFailure, FullSyncOptions, SyncRunResult, SyncStatistics

logger = logging.getLogger(__name__)

_DISPATCH_ORDER = {TaskType.DELETE_LEAF: 0, TaskType.ATTENDANCE_TABLE: 1}

_GROUP_TYPES = {ParticipantType.TEACHER: TaskType.TEACHER_GROUP, ParticipantType.STUDENT: TaskType.STUDENT_GROUP}
_LEAF_TYPES = {ParticipantType.TEACHER: TaskType.TEACHER_LEAF, ParticipantType.STUDENT: TaskType.STUDENT_LEAF}


@dataclass(frozen=True)
class CoursePlan:
    """What one revision of an occurrence still has to do."""

    attendance: bool
    removals: tuple[LiveEvent, ...] = ()
    teachers: tuple[Participant, ...] = ()
    students: tuple[Participant, ...] = ()


@dataclass
class _Build:
    created: int = 0
    dispatched: int = 0
    rejected: int = 0
    skipped: bool = False
    leaves: list[TaskNode] = field(default_factory=list)


class SyncOrchestrator:
    """Builds and extends a term's task tree from timetable rows.

    Every node is looked up by its deterministic name before it is created,
    so a re-run attaches to what an earlier run left behind.
    """

    def __init__(
        self,
        store: TaskTreeStore,
        courses: CourseRepository,
        roster: RosterRepository,
        aggregator: StatusAggregator,
        checkpoints: CheckpointRepository,
    ):
        self._store = store
        self._courses = courses
        self._roster = roster
        self._aggregator = aggregator
        self._checkpoints = checkpoints

    async def start_full_sync(self, term: str, options: Optional[FullSyncOptions] = None) -> SyncRunResult:
        term = require_non_empty(term, "term")
        options = options or FullSyncOptions()

        index = await TaskIndex.load(self._store, naming.term_prefix(term))
        root, created = await self._open_root(index, naming.full_root_name(term), RootPayload(term=term, mode="full"))
        result = SyncRunResult(root_id=root.task_id, term=term, mode="full", created_tasks=int(created))

        after: Optional[str] = None
        while True:
            page = await self._courses.list_needing_sync(
                term, course_ids=options.course_ids, after=after, limit=options.batch_size
            )
            if not page:
                break
            await self._build_batch(page, root, index, result, max_concurrency=options.max_concurrency)
            if len(page) < options.batch_size:
                break
            after = page[-1].occurrence_id

        await self._seal(root)
        logger.info(
            "Full sync %s: processed=%s skipped=%s created=%s dispatched=%s failures=%s",
            term,
            result.processed,
            result.skipped,
            result.created_tasks,
            result.dispatched_jobs,
            len(result.failures),
        )
        return result

    async def incremental_sync(self, term: str, since: Optional[int] = None) -> SyncRunResult:
        term = require_non_empty(term, "term")
        stored = await self._checkpoints.get(term)
        checkpoint = int(since) if since is not None else stored
        if checkpoint < 0:
            raise ValidationError("since không hợp lệ")

        rows = await self._courses.list_changed_since(term, checkpoint)
        index = await TaskIndex.load(self._store, naming.term_prefix(term))
        root, created = await self._open_root(
            index,
            naming.incremental_root_name(term, checkpoint),
            RootPayload(term=term, mode="incremental", checkpoint=checkpoint),
        )
        result = SyncRunResult(root_id=root.task_id, term=term, mode="incremental", created_tasks=int(created))

        live_rows = [r for r in rows if not r.sync_status.is_soft_deleted]
        outcomes = await self._build_batch(live_rows, root, index, result, max_concurrency=DEFAULT_MAX_CONCURRENCY)

        # Advance up to, not past, the first row whose subtree could not be built.
        watermark = checkpoint
        for occ in sorted(rows, key=lambda r: r.change_seq):
            if not outcomes.get(occ.occurrence_id, True):
                break
            watermark = max(watermark, occ.change_seq)
        result.checkpoint = await self._checkpoints.advance(term, watermark) if watermark > stored else stored

        await self._seal(root)
        logger.info(
            "Incremental sync %s since %s: changed=%s created=%s checkpoint=%s failures=%s",
            term,
            checkpoint,
            len(rows),
            result.created_tasks,
            result.checkpoint,
            len(result.failures),
        )
        return result

    async def get_sync_status(self, root_id: str) -> Optional[SyncStatistics]:
        root = await self._store.get_task(root_id)
        if root is None:
            return None

        nodes = await self._store.get_descendants(root_id)
        leaves = [n for n in nodes if n.is_leaf]
        failed = [n for n in leaves if n.status == TaskStatus.FAILED]

        if root.status == TaskStatus.CANCELLED:
            status = "cancelled"
        elif root.status == TaskStatus.PENDING or any(not n.is_terminal for n in leaves):
            status = "running"
        elif failed:
            status = "failed"
        else:
            status = "completed"

        stamps = [n.updated_at for n in [root, *nodes] if n.updated_at]
        return SyncStatistics(
            root_id=root.task_id,
            term=str(root.payload.get("term", "")),
            status=status,
            total_courses=sum(1 for n in nodes if n.task_type == TaskType.COURSE),
            teacher_tasks=sum(1 for n in leaves if n.task_type == TaskType.TEACHER_LEAF),
            student_tasks=sum(1 for n in leaves if n.task_type == TaskType.STUDENT_LEAF),
            completed_tasks=sum(1 for n in leaves if n.status == TaskStatus.SUCCESS),
            failed_tasks=len(failed),
            started_at=root.created_at,
            updated_at=max(stamps) if stamps else None,
            failures=tuple(
                {"task": n.name, "occurrence_id": n.payload.get("occurrence_id"), "reason": n.reason} for n in failed
            ),
        )

    async def cancel_sync(self, root_id: str) -> bool:
        outcome = await self._store.cancel_task(root_id, reason="cancelled by operator")
        if outcome.success:
            logger.info("Cancelled sync %s (%s tasks)", root_id, outcome.cancelled_count)
        return outcome.success

    async def _open_root(self, index: TaskIndex, name: str, payload: RootPayload) -> tuple[TaskNode, bool]:
        """Reuse the run's root unless an operator cancelled it; then open the next attempt."""

        attempt = 1
        while True:
            root, created = await find_or_create(
                self._store,
                index,
                name=naming.attempt_name(name, attempt),
                parent_id=None,
                task_type=TaskType.ROOT,
                payload=payload,
            )
            if root.status != TaskStatus.CANCELLED:
                if created and attempt > 1:
                    logger.info("Sync %s was cancelled, continuing as %s", name, root.name)
                return root, created
            attempt += 1

    async def _seal(self, root: TaskNode) -> None:
        if root.status == TaskStatus.PENDING:
            await self._store.start(root.task_id)
        await self._aggregator.recompute(root.task_id)

    async def _build_batch(
        self,
        rows: Sequence[CourseOccurrence],
        root: TaskNode,
        index: TaskIndex,
        result: SyncRunResult,
        *,
        max_concurrency: int,
    ) -> dict[str, bool]:
        semaphore = asyncio.Semaphore(max(1, int(max_concurrency)))
        outcomes: dict[str, bool] = {}

        async def run(occ: CourseOccurrence) -> None:
            async with semaphore:
                outcomes[occ.occurrence_id] = await self._sync_one(occ, root, index, result)

        await asyncio.gather(*(run(occ) for occ in rows))
        return outcomes

    async def _sync_one(self, occ: CourseOccurrence, root: TaskNode, index: TaskIndex, result: SyncRunResult) -> bool:
        try:
            build = await self._build_occurrence(occ, root, index)
        except DomainError as exc:
            logger.warning(
                "Skipping occurrence %s of course %s: %s", occ.occurrence_id, occ.course_id, exc
            )
            result.failures.append(CourseFailure(occurrence_id=occ.occurrence_id, course_id=occ.course_id, reason=str(exc)))
            return False
        except Exception as exc:
            # Unexpected roster/store errors abort only this occurrence's subtree.
            logger.exception("Building occurrence %s of course %s failed", occ.occurrence_id, occ.course_id)
            result.failures.append(
                CourseFailure(occurrence_id=occ.occurrence_id, course_id=occ.course_id, reason=f"{type(exc).__name__}: {exc}")
            )
            return False

        if build.skipped:
            result.skipped += 1
        else:
            result.processed += 1
        result.created_tasks += build.created
        result.dispatched_jobs += build.dispatched
        result.rejected_jobs += build.rejected
        return True

    async def _participants(self, occ: CourseOccurrence) -> tuple[list[Participant], list[Participant]]:
        teachers = await self._roster.find_teachers(occ.course_id)
        if occ.teacher_ids:
            wanted = set(occ.teacher_ids)
            teachers = [t for t in teachers if t.participant_id in wanted]
        students = await self._roster.find_students(occ.course_id, occ.term)
        return teachers, students

    def plan(
        self,
        occ: CourseOccurrence,
        teachers: Sequence[Participant],
        students: Sequence[Participant],
        index: TaskIndex,
        prior: Sequence[TaskNode],
    ) -> CoursePlan:
        attendance = occ.requires_checkin and not attendance_created(index, prior)
        if not prior:
            return CoursePlan(attendance=attendance, teachers=tuple(teachers), students=tuple(students))

        # An event created for another schedule fingerprint is deleted and recreated.
        live = {k: e for k, e in collect_live_events(index, prior).items() if e.calendar_id}
        fingerprint = occ.schedule_fingerprint()
        kept = {k for k, e in live.items() if e.fingerprint == fingerprint}

        current = {(p.participant_type, p.participant_id) for p in [*teachers, *students]}
        return CoursePlan(
            attendance=attendance,
            removals=tuple(e for k, e in live.items() if k not in current or k not in kept),
            teachers=tuple(t for t in teachers if (t.participant_type, t.participant_id) not in kept),
            students=tuple(s for s in students if (s.participant_type, s.participant_id) not in kept),
        )

    async def _build_occurrence(self, occ: CourseOccurrence, root: TaskNode, index: TaskIndex) -> _Build:
        build = _Build()
        if occ.sync_status.is_soft_deleted:
            build.skipped = True
            return build

        existing = index.course_nodes(occ.occurrence_id)
        if any(int(c.payload["revision"]) > occ.revision for c in existing):
            logger.info("Occurrence %s revision %s is stale, skipping", occ.occurrence_id, occ.revision)
            build.skipped = True
            return build
        # Cancelled attempts of this revision count as history; the next attempt gets a fresh subtree.
        cancelled = [
            c for c in existing if int(c.payload["revision"]) == occ.revision and c.status == TaskStatus.CANCELLED
        ]
        attempt = 1 + max((int(c.payload.get("attempt", 1)) for c in cancelled), default=0)
        cancelled_ids = {c.task_id for c in cancelled}
        prior = [c for c in existing if int(c.payload["revision"]) < occ.revision or c.task_id in cancelled_ids]

        teachers, students = await self._participants(occ)
        plan = self.plan(occ, teachers, students, index, prior)

        course_node_name = naming.course_name(occ.term, occ.occurrence_id, occ.revision, attempt)
        course = await self._node(
            build,
            index,
            name=course_node_name,
            parent=root,
            task_type=TaskType.COURSE,
            payload=CoursePayload(
                term=occ.term,
                occurrence_id=occ.occurrence_id,
                course_id=occ.course_id,
                course_name=occ.course_name,
                revision=occ.revision,
                fingerprint=occ.schedule_fingerprint(),
                date=occ.date,
                start_time=occ.start_time,
                end_time=occ.end_time,
                location=occ.location,
                attempt=attempt,
            ),
        )
        if course.is_terminal:
            build.skipped = True
            return build

        for stale in prior:
            if not stale.is_terminal:
                await self._store.cancel_task(stale.task_id, reason=f"superseded by revision {occ.revision}")
                await self._aggregator.recompute(stale.parent_id)

        groups: list[TaskNode] = []
        if plan.removals:
            group = await self._node(
                build,
                index,
                name=naming.removal_group_name(course_node_name),
                parent=course,
                task_type=TaskType.REMOVAL_GROUP,
                payload=GroupPayload(
                    term=occ.term,
                    occurrence_id=occ.occurrence_id,
                    revision=occ.revision,
                    expected_children=len(plan.removals),
                ),
            )
            if not group.is_terminal:
                groups.append(group)
                for event in plan.removals:
                    await self._leaf(
                        build,
                        index,
                        name=naming.removal_leaf_name(course_node_name, event.participant_type, event.participant_id),
                        parent=group,
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

        if plan.attendance:
            await self._leaf(
                build,
                index,
                name=naming.attendance_name(course_node_name),
                parent=course,
                task_type=TaskType.ATTENDANCE_TABLE,
                payload=AttendanceTablePayload(
                    term=occ.term,
                    occurrence_id=occ.occurrence_id,
                    course_id=occ.course_id,
                    revision=occ.revision,
                    student_count=len(students),
                ),
            )

        teacher_names = occ.teacher_names or tuple(t.name for t in teachers)
        for participant_type, participants in (
            (ParticipantType.TEACHER, plan.teachers),
            (ParticipantType.STUDENT, plan.students),
        ):
            # No participants: the branch is absent and counts as complete.
            if not participants:
                continue
            group = await self._node(
                build,
                index,
                name=naming.group_name(course_node_name, participant_type),
                parent=course,
                task_type=_GROUP_TYPES[participant_type],
                payload=GroupPayload(
                    term=occ.term,
                    occurrence_id=occ.occurrence_id,
                    revision=occ.revision,
                    expected_children=len(participants),
                ),
            )
            if group.is_terminal:
                continue
            groups.append(group)
            for p in participants:
                await self._leaf(
                    build,
                    index,
                    name=naming.participant_leaf_name(course_node_name, participant_type, p.participant_id),
                    parent=group,
                    task_type=_LEAF_TYPES[participant_type],
                    payload=ScheduleLeafPayload(
                        term=occ.term,
                        occurrence_id=occ.occurrence_id,
                        course_id=occ.course_id,
                        course_name=occ.course_name,
                        revision=occ.revision,
                        participant_type=participant_type,
                        participant_id=p.participant_id,
                        participant_name=p.name,
                        date=occ.date,
                        start_time=occ.start_time,
                        end_time=occ.end_time,
                        idempotency_token=naming.idempotency_token(
                            occ.occurrence_id, participant_type, p.participant_id, occ.revision
                        ),
                        calendar_id=p.calendar_id,
                        location=occ.location,
                        periods=occ.periods,
                        week=occ.week,
                        teacher_names=teacher_names,
                    ),
                )

        # Seal: groups and course start only once all their children exist.
        for group in groups:
            if group.status == TaskStatus.PENDING:
                await self._store.start(group.task_id)
        if course.status == TaskStatus.PENDING:
            await self._store.start(course.task_id)

        for leaf in sorted(build.leaves, key=lambda n: _DISPATCH_ORDER.get(n.task_type, 2)):
            if leaf.is_terminal:
                continue
            dispatched = await self._aggregator.start_and_dispatch(leaf)
            if dispatched is None:
                continue
            if dispatched.accepted:
                build.dispatched += 1
            else:
                build.rejected += 1

        for group in groups:
            await self._aggregator.recompute(group.task_id)
        await self._aggregator.recompute(course.task_id)
        return build

    async def _node(self, build: _Build, index: TaskIndex, *, name, parent: TaskNode, task_type, payload) -> TaskNode:
        node, created = await find_or_create(
            self._store, index, name=name, parent_id=parent.task_id, task_type=task_type, payload=payload
        )
        build.created += int(created)
        return node

    async def _leaf(self, build: _Build, index: TaskIndex, *, name, parent: TaskNode, task_type, payload) -> TaskNode:
        leaf = await self._node(build, index, name=name, parent=parent, task_type=task_type, payload=payload)
        build.leaves.append(leaf)
        return leaf
