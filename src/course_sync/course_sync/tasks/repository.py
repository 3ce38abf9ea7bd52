from __future__ import annotations

from typing import Any, Dict, Iterable, Optional, Protocol

from ..core.enums import TaskStatus, TaskType
from .model import CancelResult, TaskNode
from .payloads import TaskPayload


class TaskTreeStore(Protocol):
    """Parent/child task persistence with a compare-and-set state machine.

    Every transition method returns True only when it changed the row; a
    transition requested from a state that no longer holds returns False.
    """

    async def create_task(
        self,
        *,
        name: str,
        parent_id: Optional[str],
        task_type: TaskType,
        payload: TaskPayload,
    ) -> TaskNode:
        """Create a pending node. Raises ConflictError if `name` is taken."""

        raise NotImplementedError

    async def get_task(self, task_id: str) -> Optional[TaskNode]:
        raise NotImplementedError

    async def get_task_by_name(self, name: str) -> Optional[TaskNode]:
        raise NotImplementedError

    async def get_children(self, task_id: str) -> list[TaskNode]:
        raise NotImplementedError

    async def get_descendants(self, task_id: str) -> list[TaskNode]:
        raise NotImplementedError

    async def list_tasks(self, *, name_prefix: str) -> list[TaskNode]:
        raise NotImplementedError

    async def transition(
        self,
        task_id: str,
        target: TaskStatus,
        *,
        expected: Iterable[TaskStatus],
        reason: Optional[str] = None,
        result: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Raises InvalidTransitionError when expected -> target is not a legal move."""

        raise NotImplementedError

    async def start(self, task_id: str) -> bool:
        raise NotImplementedError

    async def succeed(self, task_id: str, *, reason: Optional[str] = None, result: Optional[Dict[str, Any]] = None) -> bool:
        raise NotImplementedError

    async def fail(self, task_id: str, *, reason: str, result: Optional[Dict[str, Any]] = None) -> bool:
        raise NotImplementedError

    async def cancel_task(self, task_id: str, *, reason: str) -> CancelResult:
        """Cancel the node and every non-terminal descendant."""

        raise NotImplementedError


class TransitionShortcuts:
    """start/succeed/fail expressed through a store's `transition`."""

    async def start(self, task_id: str) -> bool:
        return await self.transition(task_id, TaskStatus.RUNNING, expected=(TaskStatus.PENDING,))

    async def succeed(self, task_id: str, *, reason: Optional[str] = None, result: Optional[Dict[str, Any]] = None) -> bool:
        return await self.transition(
            task_id, TaskStatus.SUCCESS, expected=(TaskStatus.RUNNING,), reason=reason, result=result
        )

    async def fail(self, task_id: str, *, reason: str, result: Optional[Dict[str, Any]] = None) -> bool:
        return await self.transition(
            task_id, TaskStatus.FAILED, expected=(TaskStatus.RUNNING,), reason=reason, result=result
        )
