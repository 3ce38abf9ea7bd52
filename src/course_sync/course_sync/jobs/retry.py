from __future__ import annotations

from dataclasses import dataclass

from ..core.constants import DEFAULT_BACKOFF_SECONDS, DEFAULT_MAX_ATTEMPTS, DEFAULT_MAX_BACKOFF_SECONDS


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BACKOFF_SECONDS
    factor: float = 2.0
    max_delay: float = DEFAULT_MAX_BACKOFF_SECONDS

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts

    def delay_for(self, attempt: int) -> float:
        """Delay before attempt `attempt + 1`, attempts counted from 1."""

        return min(self.max_delay, self.base_delay * (self.factor ** max(attempt - 1, 0)))
