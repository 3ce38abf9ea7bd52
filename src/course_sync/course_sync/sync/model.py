from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Sequence

from ..core.constants import DEFAULT_BATCH_SIZE, DEFAULT_MAX_CONCURRENCY
from ..core.exceptions import ValidationError


@dataclass(frozen=True)
class FullSyncOptions:
    batch_size: int = DEFAULT_BATCH_SIZE
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    course_ids: Optional[Sequence[str]] = None

    def __post_init__(self):
        if int(self.batch_size) < 1:
            raise ValidationError("batch_size phải lớn hơn 0")
        if int(self.max_concurrency) < 1:
            raise ValidationError("max_concurrency phải lớn hơn 0")
        if self.course_ids is not None:
            object.__setattr__(self, "course_ids", tuple(str(c) for c in self.course_ids))


@dataclass(frozen=True)
class CourseFailure:
    occurrence_id: str
    course_id: str
    reason: str


@dataclass
class SyncRunResult:
    """Summary of one orchestrator run."""

    root_id: str
    term: str
    mode: str
    processed: int = 0
    skipped: int = 0
    created_tasks: int = 0
    dispatched_jobs: int = 0
    rejected_jobs: int = 0
    checkpoint: Optional[int] = None
    failures: list[CourseFailure] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SyncStatistics:
    root_id: str
    term: str
    status: str
    total_courses: int
    teacher_tasks: int
    student_tasks: int
    completed_tasks: int
    failed_tasks: int
    started_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    failures: tuple[Dict[str, Any], ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["started_at"] = self.started_at.isoformat() if self.started_at else None
        out["updated_at"] = self.updated_at.isoformat() if self.updated_at else None
        out["failures"] = [dict(f) for f in self.failures]
        return out


@dataclass
class BatchResult:
    """Per-occurrence outcome of a batch status update. Each row commits on its own."""

    succeeded: list[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    pending: list[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ReconcileResult:
    root_id: str
    settled_groups: int
    advanced_occurrences: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
