from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..core.enums import ErrorClass, Outcome


@dataclass(frozen=True)
class Completion:
    """Typed completion descriptor handed to the status aggregator."""

    node_id: str
    outcome: Outcome
    reason: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CompletionCallback:
    on_success: Completion
    on_failure: Completion

    @classmethod
    def for_node(cls, node_id: str) -> "CompletionCallback":
        return cls(
            on_success=Completion(node_id=node_id, outcome=Outcome.SUCCESS),
            on_failure=Completion(node_id=node_id, outcome=Outcome.FAILED),
        )

    def resolve(self, result: "JobResult") -> Completion:
        if result.success:
            return Completion(
                node_id=self.on_success.node_id,
                outcome=Outcome.SUCCESS,
                reason=self.on_success.reason,
                data=dict(result.data),
            )
        return Completion(
            node_id=self.on_failure.node_id,
            outcome=Outcome.FAILED,
            reason=result.error or self.on_failure.reason,
            data=dict(result.data),
        )


@dataclass(frozen=True)
class JobResult:
    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    error_class: Optional[ErrorClass] = None
    skipped: bool = False

    @property
    def retryable(self) -> bool:
        return not self.success and self.error_class == ErrorClass.RETRYABLE

    @classmethod
    def ok(cls, data: Optional[Dict[str, Any]] = None) -> "JobResult":
        return cls(success=True, data=dict(data or {}))

    @classmethod
    def failure(cls, error: str, error_class: ErrorClass) -> "JobResult":
        return cls(success=False, error=error, error_class=error_class)

    @classmethod
    def skip(cls, reason: str) -> "JobResult":
        return cls(success=False, error=reason, error_class=ErrorClass.TERMINAL, skipped=True)


@dataclass(frozen=True)
class SyncJob:
    job_id: str
    name: str
    executor: str
    task_id: str
    payload: Dict[str, Any]
    callback: CompletionCallback
    priority: int = 0
    attempts: int = 0
