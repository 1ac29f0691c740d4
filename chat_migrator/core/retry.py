"""Retry policy shared by token bucket waits and the backoff executor."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from chat_migrator.types import ClassifiedError

if TYPE_CHECKING:
    from chat_migrator.core.config import RateLimitConfig


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff schedule: ``min(base_delay * 2**attempt, max_delay)``."""

    max_retries: int
    base_delay: float
    max_delay: float
    backoff_factor: float = 2.0

    @classmethod
    def from_config(cls, config: RateLimitConfig) -> RetryPolicy:
        return cls(
            max_retries=config.max_retries,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
        )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt: int, retry_after: float | None = None) -> float:
        """Seconds to wait after failed ``attempt`` (0-based).

        A platform-supplied ``retry_after`` replaces the computed backoff.
        """
        if retry_after is not None and retry_after >= 0:
            return float(retry_after)
        return min(self.base_delay * (self.backoff_factor**attempt), self.max_delay)


@dataclass
class RetryState:
    """Progress of one work item through its retry policy."""

    policy: RetryPolicy
    attempt: int = 0  # attempts started so far
    last_error: BaseException | None = None
    last_classification: ClassifiedError | None = None
    delays: list[float] = field(default_factory=list)

    def start_attempt(self) -> int:
        self.attempt += 1
        return self.attempt

    def record_failure(
        self, error: BaseException, classification: ClassifiedError
    ) -> None:
        self.last_error = error
        self.last_classification = classification

    @property
    def can_retry(self) -> bool:
        return self.attempt < self.policy.max_attempts

    def next_delay(self) -> float:
        """Backoff before the next attempt; records it for inspection."""
        retry_after = (
            self.last_classification.retry_after if self.last_classification else None
        )
        delay = self.policy.delay_for(self.attempt - 1, retry_after)
        self.delays.append(delay)
        return delay
