from __future__ import annotations

import asyncio
import uuid
from typing import Any, Dict, Iterable, Optional

import mysql.connector

from ..core.enums import TaskStatus, TaskType
from ..core.exceptions import ConflictError
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, dump_json, fetchall, fetchone, load_json, transient_db_errors
from .model import CancelResult, TaskNode, check_transition
from .payloads import TaskPayload, check_payload_type, payload_to_dict
from .repository import TaskTreeStore, TransitionShortcuts

_COLUMNS = "id, parent_id, name, task_type, status, payload, reason, result, created_at, updated_at"

_DUPLICATE_ENTRY = 1062

_NON_TERMINAL = (TaskStatus.PENDING.value, TaskStatus.RUNNING.value)


def _row_to_node(r: Dict[str, Any]) -> TaskNode:
    return TaskNode(
        task_id=str(r["id"]),
        name=r["name"],
        parent_id=str(r["parent_id"]) if r.get("parent_id") else None,
        task_type=TaskType(r["task_type"]),
        status=TaskStatus(r["status"]),
        payload=load_json(r.get("payload")),
        reason=r.get("reason"),
        result=load_json(r.get("result")),
        created_at=r.get("created_at"),
        updated_at=r.get("updated_at"),
    )


class MySQLTaskTreeStore(TransitionShortcuts, TaskTreeStore):
    """sync_tasks table; UNIQUE(name) enforces idempotent creation.

    Blocking connector calls run in worker threads so queue workers sharing the
    event loop keep running.
    """

    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    async def create_task(
        self,
        *,
        name: str,
        parent_id: Optional[str],
        task_type: TaskType,
        payload: TaskPayload,
    ) -> TaskNode:
        check_payload_type(task_type, payload)
        return await asyncio.to_thread(self._create_task, name, parent_id, TaskType(task_type), payload_to_dict(payload))

    def _create_task(self, name: str, parent_id: Optional[str], task_type: TaskType, payload: Dict[str, Any]) -> TaskNode:
        task_id = str(uuid.uuid4())
        try:
            with transient_db_errors(), db_cursor(self._conn_factory) as (_, cur):
                cur.execute(
                    """
                    INSERT INTO sync_tasks(id, parent_id, name, task_type, status, payload)
                    VALUES(%s,%s,%s,%s,%s,%s)
                    """,
                    (task_id, parent_id, name, task_type.value, TaskStatus.PENDING.value, dump_json(payload)),
                )
                cur.execute(f"SELECT {_COLUMNS} FROM sync_tasks WHERE id=%s", (task_id,))
                return _row_to_node(fetchone(cur))
        except mysql.connector.errors.IntegrityError as exc:
            if exc.errno == _DUPLICATE_ENTRY:
                raise ConflictError(name) from exc
            raise

    async def get_task(self, task_id: str) -> Optional[TaskNode]:
        return await asyncio.to_thread(self._get_one, "id", task_id)

    async def get_task_by_name(self, name: str) -> Optional[TaskNode]:
        return await asyncio.to_thread(self._get_one, "name", name)

    def _get_one(self, column: str, value: str) -> Optional[TaskNode]:
        with transient_db_errors(), db_cursor(self._conn_factory) as (_, cur):
            cur.execute(f"SELECT {_COLUMNS} FROM sync_tasks WHERE {column}=%s", (value,))
            r = fetchone(cur)
            return _row_to_node(r) if r else None

    async def get_children(self, task_id: str) -> list[TaskNode]:
        return await asyncio.to_thread(self._get_children, task_id)

    def _get_children(self, task_id: str) -> list[TaskNode]:
        with transient_db_errors(), db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_COLUMNS} FROM sync_tasks WHERE parent_id=%s ORDER BY created_at ASC, name ASC",
                (task_id,),
            )
            return [_row_to_node(r) for r in fetchall(cur)]

    async def get_descendants(self, task_id: str) -> list[TaskNode]:
        return await asyncio.to_thread(self._get_descendants, task_id)

    def _get_descendants(self, task_id: str) -> list[TaskNode]:
        with transient_db_errors(), db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                WITH RECURSIVE tree AS (
                    SELECT id FROM sync_tasks WHERE parent_id=%s
                    UNION ALL
                    SELECT t.id FROM sync_tasks t JOIN tree ON t.parent_id = tree.id
                )
                SELECT {_COLUMNS}
                FROM sync_tasks
                WHERE id IN (SELECT id FROM tree)
                ORDER BY created_at ASC, name ASC
                """,
                (task_id,),
            )
            return [_row_to_node(r) for r in fetchall(cur)]

    async def list_tasks(self, *, name_prefix: str) -> list[TaskNode]:
        return await asyncio.to_thread(self._list_tasks, name_prefix)

    def _list_tasks(self, name_prefix: str) -> list[TaskNode]:
        escaped = name_prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        with transient_db_errors(), db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_COLUMNS} FROM sync_tasks WHERE name LIKE %s ORDER BY created_at ASC, name ASC",
                (escaped + "%",),
            )
            return [_row_to_node(r) for r in fetchall(cur)]

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
        return await asyncio.to_thread(self._transition, task_id, target, expected, reason, result)

    def _transition(
        self,
        task_id: str,
        target: TaskStatus,
        expected: tuple[TaskStatus, ...],
        reason: Optional[str],
        result: Optional[Dict[str, Any]],
    ) -> bool:
        placeholders = ",".join(["%s"] * len(expected))
        with transient_db_errors(), db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                UPDATE sync_tasks
                SET status=%s,
                    reason=COALESCE(%s, reason),
                    result=COALESCE(%s, result),
                    updated_at=CURRENT_TIMESTAMP(6)
                WHERE id=%s AND status IN ({placeholders})
                """,
                (
                    target.value,
                    reason,
                    dump_json(result) if result is not None else None,
                    task_id,
                    *(s.value for s in expected),
                ),
            )
            return cur.rowcount > 0

    async def cancel_task(self, task_id: str, *, reason: str) -> CancelResult:
        return await asyncio.to_thread(self._cancel_task, task_id, reason)

    def _cancel_task(self, task_id: str, reason: str) -> CancelResult:
        with transient_db_errors(), db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                WITH RECURSIVE tree AS (
                    SELECT id FROM sync_tasks WHERE id=%s
                    UNION ALL
                    SELECT t.id FROM sync_tasks t JOIN tree ON t.parent_id = tree.id
                )
                SELECT id FROM tree
                """,
                (task_id,),
            )
            ids = [str(r["id"]) for r in fetchall(cur)]
            if not ids:
                return CancelResult(success=False)

            id_placeholders = ",".join(["%s"] * len(ids))
            cur.execute(
                f"""
                UPDATE sync_tasks
                SET status=%s, reason=%s, updated_at=CURRENT_TIMESTAMP(6)
                WHERE id IN ({id_placeholders}) AND status IN (%s,%s)
                """,
                (TaskStatus.CANCELLED.value, reason, *ids, *_NON_TERMINAL),
            )
            count = cur.rowcount
            return CancelResult(success=count > 0, cancelled_count=count)
