from __future__ import annotations

from enum import Enum


class SyncStatus(str, Enum):
    """Trạng thái đồng bộ của một buổi học (course occurrence)."""

    UNSYNCED = "unsynced"
    TEACHER_SYNCED = "teacher_synced"
    STUDENT_SYNCED = "student_synced"
    SOFT_DELETED_PENDING = "soft_deleted_pending"
    SOFT_DELETED_DONE = "soft_deleted_done"

    @property
    def is_soft_deleted(self) -> bool:
        return self in {SyncStatus.SOFT_DELETED_PENDING, SyncStatus.SOFT_DELETED_DONE}


# Forward path only; soft-delete states are overrides outside this ladder.
SYNC_PROGRESSION = (SyncStatus.UNSYNCED, SyncStatus.TEACHER_SYNCED, SyncStatus.STUDENT_SYNCED)


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_TASK_STATUSES


TERMINAL_TASK_STATUSES = frozenset({TaskStatus.SUCCESS, TaskStatus.FAILED, TaskStatus.CANCELLED})


class TaskType(str, Enum):
    ROOT = "root"
    COURSE = "course"
    ATTENDANCE_TABLE = "attendance_table"
    TEACHER_GROUP = "teacher_group"
    TEACHER_LEAF = "teacher_leaf"
    STUDENT_GROUP = "student_group"
    STUDENT_LEAF = "student_leaf"
    REMOVAL_GROUP = "removal_group"
    DELETE_GROUP = "delete_group"
    DELETE_LEAF = "delete_leaf"

    @property
    def is_leaf(self) -> bool:
        return self in LEAF_TASK_TYPES


LEAF_TASK_TYPES = frozenset(
    {TaskType.ATTENDANCE_TABLE, TaskType.TEACHER_LEAF, TaskType.STUDENT_LEAF, TaskType.DELETE_LEAF}
)


class ParticipantType(str, Enum):
    TEACHER = "teacher"
    STUDENT = "student"


class Outcome(str, Enum):
    """Kết quả cuối cùng của một job, dùng trong completion descriptor."""

    SUCCESS = "success"
    FAILED = "failed"


class ErrorClass(str, Enum):
    RETRYABLE = "retryable"
    TERMINAL = "terminal"
