"""Typed task payloads.

Every task type carries exactly one payload shape. Payloads are validated
when constructed and re-validated when decoded from the store, so readers
never have to trust a loose metadata dict.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from ..common.validators import require_mapping, require_non_empty
from ..core.enums import ParticipantType, TaskType
from ..core.exceptions import ValidationError

ROOT_MODES = ("full", "incremental", "soft_delete")


def _require_revision(value: Any) -> int:
    try:
        revision = int(value)
    except (TypeError, ValueError):
        raise ValidationError("revision không hợp lệ") from None
    if revision < 1:
        raise ValidationError("revision không hợp lệ")
    return revision


@dataclass(frozen=True)
class RootPayload:
    term: str
    mode: str
    checkpoint: Optional[int] = None

    def __post_init__(self):
        require_non_empty(self.term, "term")
        if self.mode not in ROOT_MODES:
            raise ValidationError(f"mode không hợp lệ: {self.mode!r}")


@dataclass(frozen=True)
class CoursePayload:
    term: str
    occurrence_id: str
    course_id: str
    course_name: str
    revision: int
    fingerprint: str
    date: str
    start_time: str
    end_time: str
    location: str = ""
    attempt: int = 1

    def __post_init__(self):
        for name in ("term", "occurrence_id", "course_id"):
            require_non_empty(getattr(self, name), name)
        object.__setattr__(self, "revision", _require_revision(self.revision))
        if int(self.attempt) < 1:
            raise ValidationError("attempt không hợp lệ")


@dataclass(frozen=True)
class AttendanceTablePayload:
    term: str
    occurrence_id: str
    course_id: str
    revision: int
    student_count: int = 0

    def __post_init__(self):
        for name in ("term", "occurrence_id", "course_id"):
            require_non_empty(getattr(self, name), name)
        object.__setattr__(self, "revision", _require_revision(self.revision))
        if int(self.student_count) < 0:
            raise ValidationError("student_count không hợp lệ")


@dataclass(frozen=True)
class GroupPayload:
    """Shared by teacher/student/removal/soft-delete groups."""

    term: str
    occurrence_id: str
    revision: Optional[int] = None
    expected_children: int = 0

    def __post_init__(self):
        require_non_empty(self.term, "term")
        require_non_empty(self.occurrence_id, "occurrence_id")


@dataclass(frozen=True)
class ScheduleLeafPayload:
    """One participant's calendar event for one occurrence.

    calendar_id may be missing here; the create executor rejects such leaves
    at dispatch time so the node is still recorded as failed.
    """

    term: str
    occurrence_id: str
    course_id: str
    course_name: str
    revision: int
    participant_type: ParticipantType
    participant_id: str
    participant_name: str
    date: str
    start_time: str
    end_time: str
    idempotency_token: str
    calendar_id: Optional[str] = None
    location: str = ""
    periods: str = ""
    week: Optional[int] = None
    teacher_names: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        for name in ("term", "occurrence_id", "course_id", "participant_id", "idempotency_token"):
            require_non_empty(getattr(self, name), name)
        object.__setattr__(self, "revision", _require_revision(self.revision))
        object.__setattr__(self, "participant_type", _participant_type(self.participant_type))
        object.__setattr__(self, "teacher_names", tuple(self.teacher_names or ()))


@dataclass(frozen=True)
class DeleteLeafPayload:
    """Removal of one participant's event.

    With event_id the event is deleted directly, otherwise it is matched by
    summary and start/end inside the calendar.
    """

    term: str
    occurrence_id: str
    participant_type: ParticipantType
    participant_id: str
    calendar_id: str
    summary: str
    start: str
    end: str
    event_id: Optional[str] = None

    def __post_init__(self):
        for name in ("term", "occurrence_id", "participant_id", "calendar_id"):
            require_non_empty(getattr(self, name), name)
        if not self.event_id:
            for name in ("summary", "start", "end"):
                require_non_empty(getattr(self, name), name)
        object.__setattr__(self, "participant_type", _participant_type(self.participant_type))


TaskPayload = Union[
    RootPayload, CoursePayload, AttendanceTablePayload, GroupPayload, ScheduleLeafPayload, DeleteLeafPayload
]

PAYLOAD_TYPES: dict[TaskType, type] = {
    TaskType.ROOT: RootPayload,
    TaskType.COURSE: CoursePayload,
    TaskType.ATTENDANCE_TABLE: AttendanceTablePayload,
    TaskType.TEACHER_GROUP: GroupPayload,
    TaskType.STUDENT_GROUP: GroupPayload,
    TaskType.REMOVAL_GROUP: GroupPayload,
    TaskType.DELETE_GROUP: GroupPayload,
    TaskType.TEACHER_LEAF: ScheduleLeafPayload,
    TaskType.STUDENT_LEAF: ScheduleLeafPayload,
    TaskType.DELETE_LEAF: DeleteLeafPayload,
}


def _participant_type(value: Any) -> ParticipantType:
    try:
        return ParticipantType(value)
    except ValueError:
        raise ValidationError(f"participant_type không hợp lệ: {value!r}") from None


def check_payload_type(task_type: TaskType, payload: TaskPayload) -> None:
    expected = PAYLOAD_TYPES[TaskType(task_type)]
    if not isinstance(payload, expected):
        raise ValidationError(f"{task_type.value}: payload phải là {expected.__name__}")


def payload_to_dict(payload: TaskPayload) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in asdict(payload).items():
        if isinstance(value, Enum):
            value = value.value
        elif isinstance(value, tuple):
            value = list(value)
        out[key] = value
    return out


def payload_from_dict(task_type: TaskType, data: Mapping[str, Any]) -> TaskPayload:
    cls = PAYLOAD_TYPES[TaskType(task_type)]
    data = require_mapping(data, "payload")
    known = {f.name for f in fields(cls)}
    kwargs = {k: v for k, v in data.items() if k in known}
    if "teacher_names" in kwargs and kwargs["teacher_names"] is not None:
        kwargs["teacher_names"] = tuple(kwargs["teacher_names"])
    try:
        return cls(**kwargs)
    except TypeError as exc:
        raise ValidationError(f"{TaskType(task_type).value}: payload thiếu trường ({exc})") from exc
