from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from ..core.enums import ParticipantType, TaskStatus, TaskType
from ..core.exceptions import ConflictError
from ..tasks.model import TaskNode
from ..tasks.payloads import TaskPayload
from ..tasks.repository import TaskTreeStore

logger = logging.getLogger(__name__)


class TaskIndex:
    """In-memory name -> node index of one term, loaded once per batch run."""

    def __init__(self, nodes: Iterable[TaskNode] = ()):
        self._by_name: dict[str, TaskNode] = {}
        self._children: dict[str, list[str]] = {}
        for node in nodes:
            self.add(node)

    @classmethod
    async def load(cls, store: TaskTreeStore, prefix: str) -> "TaskIndex":
        return cls(await store.list_tasks(name_prefix=prefix))

    def get(self, name: str) -> Optional[TaskNode]:
        return self._by_name.get(name)

    def add(self, node: TaskNode) -> None:
        known = node.name in self._by_name
        self._by_name[node.name] = node
        if node.parent_id and not known:
            self._children.setdefault(node.parent_id, []).append(node.name)

    def children_of(self, node: TaskNode) -> list[TaskNode]:
        return [self._by_name[n] for n in self._children.get(node.task_id, [])]

    def course_nodes(self, occurrence_id: str) -> list[TaskNode]:
        nodes = [
            n
            for n in self._by_name.values()
            if n.task_type == TaskType.COURSE and n.payload.get("occurrence_id") == occurrence_id
        ]
        return sorted(nodes, key=lambda n: (int(n.payload.get("revision", 0)), int(n.payload.get("attempt", 1))))


async def find_or_create(
    store: TaskTreeStore,
    index: TaskIndex,
    *,
    name: str,
    parent_id: Optional[str],
    task_type: TaskType,
    payload: TaskPayload,
) -> tuple[TaskNode, bool]:
    """Look the node up by its deterministic name before creating it.

    A ConflictError means another run created it first; the stored node wins.
    """

    existing = index.get(name)
    if existing is not None:
        return existing, False

    try:
        node = await store.create_task(name=name, parent_id=parent_id, task_type=task_type, payload=payload)
        created = True
    except ConflictError:
        node = await store.get_task_by_name(name)
        if node is None:
            raise
        logger.debug("Task %s already existed, reusing %s", name, node.task_id)
        created = False

    index.add(node)
    return node, created


@dataclass(frozen=True)
class LiveEvent:
    """A calendar event a previous revision created and nobody deleted yet."""

    participant_type: ParticipantType
    participant_id: str
    calendar_id: str
    summary: str
    start: Optional[str] = None
    end: Optional[str] = None
    event_id: Optional[str] = None
    # Schedule fingerprint of the course node that created the event.
    fingerprint: Optional[str] = None


def collect_live_events(index: TaskIndex, course_nodes: Iterable[TaskNode]) -> Dict[tuple[ParticipantType, str], LiveEvent]:
    """Replay successful creates and deletes of the given course subtrees, oldest attempt first."""

    live: Dict[tuple[ParticipantType, str], LiveEvent] = {}
    for course in course_nodes:
        children = index.children_of(course)
        # Within one revision removals precede creates.
        for group in [c for c in children if c.task_type == TaskType.REMOVAL_GROUP]:
            for leaf in index.children_of(group):
                if leaf.status == TaskStatus.SUCCESS:
                    live.pop((ParticipantType(leaf.payload["participant_type"]), str(leaf.payload["participant_id"])), None)

        for group in [c for c in children if c.task_type in {TaskType.TEACHER_GROUP, TaskType.STUDENT_GROUP}]:
            for leaf in index.children_of(group):
                if leaf.status != TaskStatus.SUCCESS:
                    continue
                key = (ParticipantType(leaf.payload["participant_type"]), str(leaf.payload["participant_id"]))
                live[key] = LiveEvent(
                    participant_type=key[0],
                    participant_id=key[1],
                    calendar_id=str(leaf.result.get("calendar_id") or leaf.payload.get("calendar_id") or ""),
                    summary=leaf.result.get("summary") or leaf.payload.get("course_name") or "",
                    start=leaf.result.get("start"),
                    end=leaf.result.get("end"),
                    event_id=leaf.result.get("event_id"),
                    fingerprint=course.payload.get("fingerprint"),
                )
    return live


def attendance_created(index: TaskIndex, course_nodes: Iterable[TaskNode]) -> bool:
    return any(
        c.task_type == TaskType.ATTENDANCE_TABLE and c.status == TaskStatus.SUCCESS
        for course in course_nodes
        for c in index.children_of(course)
    )
