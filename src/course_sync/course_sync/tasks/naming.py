"""Deterministic task names.

Every name of one term starts with `sync/{term}/` so a batch can load the
whole term with one prefix query. Names double as idempotency keys: the
store rejects a second node with the same name.
"""
from __future__ import annotations

import hashlib

from ..core.constants import TASK_NAME_PREFIX
from ..core.enums import ParticipantType


def term_prefix(term: str) -> str:
    return f"{TASK_NAME_PREFIX}/{term}/"


def full_root_name(term: str) -> str:
    return f"{term_prefix(term)}full"


def incremental_root_name(term: str, checkpoint: int) -> str:
    return f"{term_prefix(term)}incremental/{int(checkpoint)}"


def soft_delete_root_name(term: str) -> str:
    return f"{term_prefix(term)}soft-delete"


def occurrence_prefix(term: str, occurrence_id: str) -> str:
    # '@' terminates the id so OCC1 never matches OCC10.
    return f"{term_prefix(term)}{occurrence_id}@"


def attempt_name(name: str, attempt: int) -> str:
    # A cancelled node keeps its name; the next attempt gets a "#n" suffix.
    return name if int(attempt) <= 1 else f"{name}#{int(attempt)}"


def course_name(term: str, occurrence_id: str, revision: int, attempt: int = 1) -> str:
    return attempt_name(f"{occurrence_prefix(term, occurrence_id)}{int(revision)}", attempt)


def attendance_name(course: str) -> str:
    return f"{course}/attendance"


def group_name(course: str, participant_type: ParticipantType) -> str:
    return f"{course}/{ParticipantType(participant_type).value}s"


def participant_leaf_name(course: str, participant_type: ParticipantType, participant_id: str) -> str:
    return f"{group_name(course, participant_type)}/{participant_id}"


def removal_group_name(course: str) -> str:
    return f"{course}/removed"


def removal_leaf_name(course: str, participant_type: ParticipantType, participant_id: str) -> str:
    return f"{removal_group_name(course)}/{ParticipantType(participant_type).value}:{participant_id}"


def soft_delete_group_name(term: str, occurrence_id: str) -> str:
    return f"{term_prefix(term)}{occurrence_id}/soft-delete"


def soft_delete_leaf_name(term: str, occurrence_id: str, participant_type: ParticipantType, participant_id: str) -> str:
    return f"{soft_delete_group_name(term, occurrence_id)}/{ParticipantType(participant_type).value}:{participant_id}"


def idempotency_token(occurrence_id: str, participant_type: ParticipantType, participant_id: str, revision: int) -> str:
    raw = f"{occurrence_id}:{ParticipantType(participant_type).value}:{participant_id}:r{int(revision)}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]
