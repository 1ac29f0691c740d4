"""Token bucket used to pace calls within one throttling tier.

Tokens are refilled lazily: every acquisition or observation first credits
the whole tokens earned since the last refill, capped at capacity. The
refill-then-take sequence runs under a lock so concurrent callers can never
see a partial refill or spend the same token twice; waiting happens outside
the lock.
"""

from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from typing import Awaitable, Callable

from chat_migrator.core.config import RateLimitConfig
from chat_migrator.core.retry import RetryPolicy
from chat_migrator.exceptions import RateLimitExhaustedError
from chat_migrator.utils.logging import log_with_context

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class TokenBucket:
    """Capped, time-refilled supply of permits for one tier.

    Args:
        config: Capacity, refill rate and wait schedule of the bucket.
        tier: Name used in log records and errors.
        clock: Monotonic time source in seconds.
        sleep: Awaitable sleep used between attempts.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        tier: str = "default",
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config
        self.tier = str(tier)
        self._clock = clock
        self._sleep = sleep
        self._policy = RetryPolicy.from_config(config)
        self._lock = threading.Lock()
        self._tokens: float = float(config.capacity)
        self._last_refill_at: float = clock()

    @property
    def capacity(self) -> int:
        return self.config.capacity

    def _refill(self) -> None:
        """Credit whole tokens earned since the last refill. Caller holds the lock."""
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill_at)
        earned = math.floor(elapsed * self.config.refill_rate)

        if self._tokens + earned >= self.config.capacity:
            self._tokens = float(self.config.capacity)
            self._last_refill_at = now
        elif earned > 0:
            self._tokens += earned
            # Keep the fractional remainder so frequent polling never starves refill
            self._last_refill_at += earned / self.config.refill_rate

    def try_acquire(self) -> bool:
        """Take one token if one is available, without waiting."""
        with self._lock:
            self._refill()
            if self._tokens >= 1:
                self._tokens -= 1
                return True
            return False

    async def acquire(self) -> None:
        """Take one token, waiting with exponential backoff while empty.

        Raises:
            RateLimitExhaustedError: If no token became available after
                ``max_retries`` waits.
        """
        attempt = 0
        while True:
            if self.try_acquire():
                if attempt:
                    log_with_context(
                        logging.DEBUG,
                        f"Acquired {self.tier} token after {attempt} wait(s)",
                        tier=self.tier,
                        attempt=attempt,
                    )
                return

            if attempt >= self.config.max_retries:
                log_with_context(
                    logging.WARNING,
                    f"No {self.tier} tokens available after {attempt} retries",
                    tier=self.tier,
                    attempt=attempt,
                )
                raise RateLimitExhaustedError(self.tier, attempt)

            delay = self._policy.delay_for(attempt)
            log_with_context(
                logging.DEBUG,
                f"{self.tier} bucket empty, waiting {delay:.2f}s "
                f"(attempt {attempt + 1}/{self.config.max_retries})",
                tier=self.tier,
                attempt=attempt + 1,
                delay=delay,
            )
            await self._sleep(delay)
            attempt += 1

    def available_tokens(self) -> int:
        """Refill and report the whole tokens currently available."""
        with self._lock:
            self._refill()
            return int(self._tokens)
