from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..core.enums import ParticipantType


@dataclass(frozen=True)
class Participant:
    participant_id: str
    name: str
    participant_type: ParticipantType
    calendar_id: Optional[str] = None
