from __future__ import annotations

import asyncio
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from ..core.enums import TaskStatus, TaskType
from ..core.exceptions import ConflictError, NotFoundError
from .model import CancelResult, TaskNode, check_transition
from .payloads import TaskPayload, check_payload_type, payload_to_dict
from .repository import TaskTreeStore, TransitionShortcuts


class InMemoryTaskTreeStore(TransitionShortcuts, TaskTreeStore):
    """Process-local store. Used by tests and single-process runs."""

    def __init__(self):
        self._by_id: dict[str, TaskNode] = {}
        self._id_by_name: dict[str, str] = {}
        self._children: dict[str, list[str]] = {}
        self._lock = asyncio.Lock()

    async def create_task(
        self,
        *,
        name: str,
        parent_id: Optional[str],
        task_type: TaskType,
        payload: TaskPayload,
    ) -> TaskNode:
        check_payload_type(task_type, payload)
        async with self._lock:
            if name in self._id_by_name:
                raise ConflictError(name)
            if parent_id is not None and parent_id not in self._by_id:
                raise NotFoundError(f"Parent task not found: {parent_id}")

            now = datetime.now()
            node = TaskNode(
                task_id=str(uuid.uuid4()),
                name=name,
                parent_id=parent_id,
                task_type=TaskType(task_type),
                status=TaskStatus.PENDING,
                payload=payload_to_dict(payload),
                created_at=now,
                updated_at=now,
            )
            self._by_id[node.task_id] = node
            self._id_by_name[name] = node.task_id
            if parent_id is not None:
                self._children.setdefault(parent_id, []).append(node.task_id)
            return node

    async def get_task(self, task_id: str) -> Optional[TaskNode]:
        return self._by_id.get(task_id)

    async def get_task_by_name(self, name: str) -> Optional[TaskNode]:
        task_id = self._id_by_name.get(name)
        return self._by_id.get(task_id) if task_id else None

    async def get_children(self, task_id: str) -> list[TaskNode]:
        return [self._by_id[c] for c in self._children.get(task_id, [])]

    async def get_descendants(self, task_id: str) -> list[TaskNode]:
        return [self._by_id[i] for i in self._descendant_ids(task_id)]

    def _descendant_ids(self, task_id: str) -> list[str]:
        out: list[str] = []
        stack = list(self._children.get(task_id, []))
        while stack:
            current = stack.pop(0)
            out.append(current)
            stack.extend(self._children.get(current, []))
        return out

    async def list_tasks(self, *, name_prefix: str) -> list[TaskNode]:
        return [n for n in self._by_id.values() if n.name.startswith(name_prefix)]

    async def transition(
        self,
        task_id: str,
        target: TaskStatus,
        *,
        expected: Iterable[TaskStatus],
        reason: Optional[str] = None,
        result: Optional[Dict[str, Any]] = None,
    ) -> bool:
        expected = tuple(TaskStatus(s) for s in expected)
        check_transition(expected, target)
        async with self._lock:
            node = self._by_id.get(task_id)
            if node is None or node.status not in expected:
                return False
            self._by_id[task_id] = replace(
                node,
                status=target,
                reason=reason if reason is not None else node.reason,
                result=dict(result) if result is not None else node.result,
                updated_at=datetime.now(),
            )
            return True

    async def cancel_task(self, task_id: str, *, reason: str) -> CancelResult:
        async with self._lock:
            node = self._by_id.get(task_id)
            if node is None:
                return CancelResult(success=False)

            now = datetime.now()
            count = 0
            for current in [task_id, *self._descendant_ids(task_id)]:
                n = self._by_id[current]
                if n.is_terminal:
                    continue
                self._by_id[current] = replace(n, status=TaskStatus.CANCELLED, reason=reason, updated_at=now)
                count += 1
            return CancelResult(success=count > 0, cancelled_count=count)
