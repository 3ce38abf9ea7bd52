from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping

from ...core.enums import ErrorClass, TaskType
from ...core.exceptions import DomainError, TransientExternalError
from ...jobs.model import JobResult, SyncJob
from ...tasks.payloads import TaskPayload

logger = logging.getLogger(__name__)


class Executor(ABC):
    """Strategy Pattern: one executor per leaf type, one side effect per job.

    `execute` never raises; every failure is classified into the JobResult.
    """

    name: str = ""
    task_types: frozenset[TaskType] = frozenset()
    priority: int = 0

    @abstractmethod
    def validate(self, payload: Mapping[str, Any]) -> TaskPayload:
        """Decode and check a leaf payload. Raises ValidationError."""

        raise NotImplementedError

    @abstractmethod
    async def perform(self, payload: TaskPayload) -> Dict[str, Any]:
        raise NotImplementedError

    async def execute(self, job: SyncJob) -> JobResult:
        try:
            payload = self.validate(job.payload)
            data = await self.perform(payload)
        except TransientExternalError as exc:
            logger.warning("Job %s attempt %s hit a transient error: %s", job.name, job.attempts, exc)
            return JobResult.failure(str(exc), ErrorClass.RETRYABLE)
        except DomainError as exc:
            logger.info("Job %s failed permanently: %s", job.name, exc)
            return JobResult.failure(str(exc), ErrorClass.TERMINAL)
        except Exception as exc:
            logger.exception("Executor %s crashed on job %s", self.name, job.name)
            return JobResult.failure(f"{type(exc).__name__}: {exc}", ErrorClass.TERMINAL)
        return JobResult.ok(data)
