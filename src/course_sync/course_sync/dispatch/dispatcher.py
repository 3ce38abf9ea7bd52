from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from ..core.exceptions import ValidationError
from ..jobs.model import CompletionCallback, SyncJob
from ..jobs.queue import AsyncJobQueue
from ..tasks.model import TaskNode
from .factory import ExecutorFactory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchResult:
    accepted: bool
    job_id: Optional[str] = None
    reason: Optional[str] = None


class WorkDispatcher:
    """Turns one leaf node into exactly one queued job.

    A leaf whose payload fails validation is not enqueued; the caller fails
    the node through the aggregator so its group can still complete.
    """

    def __init__(self, queue: AsyncJobQueue, executors: ExecutorFactory):
        self._queue = queue
        self._executors = executors

    def dispatch(self, node: TaskNode) -> DispatchResult:
        try:
            executor = self._executors.for_task_type(node.task_type)
            executor.validate(node.payload)
        except ValidationError as exc:
            logger.warning("Rejected leaf %s before enqueue: %s", node.name, exc)
            return DispatchResult(accepted=False, reason=str(exc))

        job = SyncJob(
            job_id=str(uuid.uuid4()),
            name=node.name,
            executor=executor.name,
            task_id=node.task_id,
            payload=dict(node.payload),
            callback=CompletionCallback.for_node(node.task_id),
            priority=executor.priority,
        )
        job_id = self._queue.add_task(job)
        return DispatchResult(accepted=True, job_id=job_id)
