from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from ..core.enums import TaskStatus, TaskType
from ..core.exceptions import InvalidTransitionError

# pending -> running -> {success, failed, cancelled}; pending may be cancelled directly.
ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.RUNNING, TaskStatus.CANCELLED}),
    TaskStatus.RUNNING: frozenset({TaskStatus.SUCCESS, TaskStatus.FAILED, TaskStatus.CANCELLED}),
    TaskStatus.SUCCESS: frozenset(),
    TaskStatus.FAILED: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}


def check_transition(expected: Iterable[TaskStatus], target: TaskStatus) -> None:
    """Raise if any of the `expected` source states cannot move to `target`."""

    for source in expected:
        if target not in ALLOWED_TRANSITIONS[TaskStatus(source)]:
            raise InvalidTransitionError(f"Cannot move task from {TaskStatus(source).value} to {target.value}")


@dataclass(frozen=True)
class TaskNode:
    task_id: str
    name: str
    parent_id: Optional[str]
    task_type: TaskType
    status: TaskStatus
    payload: Dict[str, Any] = field(default_factory=dict)
    reason: Optional[str] = None
    result: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_leaf(self) -> bool:
        return self.task_type.is_leaf

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "name": self.name,
            "parent_id": self.parent_id,
            "task_type": self.task_type.value,
            "status": self.status.value,
            "payload": dict(self.payload),
            "reason": self.reason,
            "result": dict(self.result),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class CancelResult:
    success: bool
    cancelled_count: int = 0
