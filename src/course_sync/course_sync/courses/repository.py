from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol, Sequence

from ..core.enums import SyncStatus
from .model import CourseOccurrence


class CourseRepository(Protocol):
    async def list_needing_sync(
        self,
        term: str,
        *,
        course_ids: Optional[Sequence[str]] = None,
        after: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[CourseOccurrence]:
        """Rows that are neither student-synced nor soft-deleted.

        Ordered by occurrence_id; `after` is a keyset cursor (exclusive).
        """

        raise NotImplementedError

    async def list_changed_since(self, term: str, checkpoint: int) -> list[CourseOccurrence]:
        """Rows with change_seq > checkpoint, ordered by change_seq."""

        raise NotImplementedError

    async def get(self, occurrence_id: str) -> Optional[CourseOccurrence]:
        raise NotImplementedError

    async def list_by_status(self, term: str, status: SyncStatus) -> list[CourseOccurrence]:
        raise NotImplementedError

    async def update_sync_status(
        self,
        occurrence_id: str,
        status: SyncStatus,
        *,
        expected: SyncStatus,
        synced_at: Optional[datetime] = None,
    ) -> bool:
        """Compare-and-set: only writes when the stored status equals `expected`."""

        raise NotImplementedError


class CheckpointRepository(Protocol):
    async def get(self, term: str) -> int:
        raise NotImplementedError

    async def advance(self, term: str, seq: int) -> int:
        """Move the watermark forward; never backwards. Returns the stored value."""

        raise NotImplementedError
