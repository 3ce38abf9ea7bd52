from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..jobs.model import JobResult, SyncJob
from ..jobs.queue import JobProcessor
from ..tasks.repository import TaskTreeStore
from .factory import ExecutorFactory

if TYPE_CHECKING:
    from ..sync.aggregator import StatusAggregator

logger = logging.getLogger(__name__)


class JobRunner(JobProcessor):
    """Queue processor: runs the executor, reports the final outcome to the aggregator."""

    def __init__(self, store: TaskTreeStore, executors: ExecutorFactory, aggregator: "StatusAggregator"):
        self._store = store
        self._executors = executors
        self._aggregator = aggregator

    async def run(self, job: SyncJob) -> JobResult:
        node = await self._store.get_task(job.task_id)
        if node is None:
            return JobResult.skip(f"task {job.task_id} no longer exists")
        if node.is_terminal:
            # Cancelled or already completed by an earlier attempt.
            return JobResult.skip(f"task already {node.status.value}")
        return await self._executors.by_name(job.executor).execute(job)

    async def finalize(self, job: SyncJob, result: JobResult) -> None:
        if result.skipped:
            logger.debug("Skipped job %s: %s", job.name, result.error)
            return
        await self._aggregator.apply_completion(job.callback.resolve(result))
