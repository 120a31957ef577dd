"""Retry policy: exponential backoff from a base delay, bounded attempts."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

DEFAULT_BASE_DELAY_SECONDS = 2.0
DEFAULT_MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class RetryPolicy:
    base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS

    def normalized(self) -> "RetryPolicy":
        return RetryPolicy(
            base_delay_seconds=self.base_delay_seconds if self.base_delay_seconds > 0 else DEFAULT_BASE_DELAY_SECONDS,
            max_attempts=self.max_attempts if self.max_attempts > 0 else DEFAULT_MAX_ATTEMPTS,
        )

    def resolve_max_attempts(self, override: int = 0) -> int:
        """Message override, then policy value, then the default of 3."""
        if override > 0:
            return override
        if self.max_attempts > 0:
            return self.max_attempts
        return DEFAULT_MAX_ATTEMPTS

    def next_retry(self, attempt: int, max_attempts: int, now: datetime) -> Optional[datetime]:
        """
        Earliest time of the next attempt, or None when attempts are exhausted.

        The delay is ``base_delay * 2^(attempt - 1)``.
        """
        if attempt >= max_attempts:
            return None
        base = self.base_delay_seconds if self.base_delay_seconds > 0 else DEFAULT_BASE_DELAY_SECONDS
        delay = base * (2 ** max(attempt - 1, 0))
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(timezone.utc) + timedelta(seconds=delay)
