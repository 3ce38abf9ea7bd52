from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import replace
from typing import Optional, Protocol

from ..core.constants import DEFAULT_QUEUE_WORKERS
from ..core.enums import ErrorClass
from .model import JobResult, SyncJob
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


class JobProcessor(Protocol):
    async def run(self, job: SyncJob) -> JobResult:
        """Execute one attempt. Should not raise."""

        raise NotImplementedError

    async def finalize(self, job: SyncJob, result: JobResult) -> None:
        """Receive the final result of a job, exactly once."""

        raise NotImplementedError


class AsyncJobQueue:
    """Priority job queue served by a pool of asyncio workers.

    Jobs are de-duplicated by name while in flight: adding a job whose name is
    queued, running or waiting for a retry returns the existing job id.
    """

    def __init__(self, *, workers: int = DEFAULT_QUEUE_WORKERS, retry_policy: Optional[RetryPolicy] = None):
        self._worker_count = max(1, int(workers))
        self._retry = retry_policy or RetryPolicy()
        self._queue: asyncio.PriorityQueue = asyncio.PriorityQueue()
        self._seq = itertools.count()
        self._in_flight: dict[str, str] = {}
        self._workers: list[asyncio.Task] = []
        self._timers: set[asyncio.Task] = set()
        self._processor: Optional[JobProcessor] = None
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def add_task(self, job: SyncJob) -> str:
        existing = self._in_flight.get(job.name)
        if existing is not None:
            logger.debug("Job %s already in flight as %s", job.name, existing)
            return existing

        self._in_flight[job.name] = job.job_id
        self._idle.clear()
        self._put(job)
        return job.job_id

    def _put(self, job: SyncJob) -> None:
        self._queue.put_nowait((-job.priority, next(self._seq), job))

    async def start(self, processor: JobProcessor) -> None:
        if self._workers:
            return
        self._processor = processor
        self._workers = [asyncio.create_task(self._worker(i)) for i in range(self._worker_count)]
        logger.info("Job queue started with %s workers", self._worker_count)

    async def join(self) -> None:
        """Wait until every added job has been finalized."""

        await self._idle.wait()

    async def stop(self) -> None:
        for task in [*self._workers, *self._timers]:
            task.cancel()
        await asyncio.gather(*self._workers, *self._timers, return_exceptions=True)
        self._workers = []
        self._timers.clear()
        logger.info("Job queue stopped (%s jobs still in flight)", len(self._in_flight))

    async def _worker(self, index: int) -> None:
        while True:
            _, _, job = await self._queue.get()
            try:
                await self._handle(job)
            except Exception:
                logger.exception("Worker %s failed while handling job %s", index, job.name)
                self._done(job)
            finally:
                self._queue.task_done()

    async def _handle(self, job: SyncJob) -> None:
        job = replace(job, attempts=job.attempts + 1)
        try:
            result = await self._processor.run(job)
        except Exception as exc:
            logger.exception("Processor raised for job %s", job.name)
            result = JobResult.failure(str(exc), ErrorClass.TERMINAL)

        if result.retryable and self._retry.should_retry(job.attempts):
            delay = self._retry.delay_for(job.attempts)
            logger.warning(
                "Job %s attempt %s/%s failed (%s); retrying in %.2fs",
                job.name,
                job.attempts,
                self._retry.max_attempts,
                result.error,
                delay,
            )
            timer = asyncio.create_task(self._requeue_later(job, delay))
            self._timers.add(timer)
            timer.add_done_callback(self._timers.discard)
            return

        try:
            await self._processor.finalize(job, result)
        finally:
            self._done(job)

    async def _requeue_later(self, job: SyncJob, delay: float) -> None:
        await asyncio.sleep(delay)
        self._put(job)

    def _done(self, job: SyncJob) -> None:
        if self._in_flight.get(job.name) == job.job_id:
            del self._in_flight[job.name]
        if not self._in_flight:
            self._idle.set()
