from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from ..core.enums import TaskType
from ..core.exceptions import ValidationError
from .executors.base import Executor


@dataclass
class ExecutorFactory:
    """Factory Pattern: choose the executor for a leaf type or a queued job."""

    executors: Sequence[Executor]

    def __post_init__(self):
        self._by_type: dict[TaskType, Executor] = {}
        self._by_name: dict[str, Executor] = {}
        for executor in self.executors:
            self._by_name[executor.name] = executor
            for task_type in executor.task_types:
                self._by_type[task_type] = executor

    def for_task_type(self, task_type: TaskType) -> Executor:
        executor = self._by_type.get(TaskType(task_type))
        if executor is None:
            raise ValidationError(f"Không có executor cho loại task {TaskType(task_type).value}")
        return executor

    def by_name(self, name: str) -> Executor:
        executor = self._by_name.get(name)
        if executor is None:
            raise ValidationError(f"Không có executor tên {name}")
        return executor
