"""Registry holding exactly one token bucket per throttling tier.

A registry is built once per run and passed to the executor and sequencer,
so tests can run isolated registries side by side.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time

from chat_migrator.core.config import (
    CommandProfile,
    RateLimitConfig,
    get_default_config,
)
from chat_migrator.core.retry import RetryPolicy
from chat_migrator.core.token_bucket import Clock, Sleep, TokenBucket
from chat_migrator.types import TierStatus
from chat_migrator.utils.logging import log_with_context


class RateLimiterRegistry:
    """Lazily provisions and owns the token bucket of every tier."""

    def __init__(self, clock: Clock = time.monotonic, sleep: Sleep = asyncio.sleep) -> None:
        self._clock = clock
        self._sleep = sleep
        self._buckets: dict[str, TokenBucket] = {}
        self._lock = threading.Lock()

    def _bucket(self, tier: str) -> TokenBucket:
        key = str(tier)
        bucket = self._buckets.get(key)
        if bucket is not None:
            return bucket
        with self._lock:
            # Another caller may have created it while we waited for the lock
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = self._build(key, get_default_config(key))
                self._buckets[key] = bucket
                log_with_context(
                    logging.DEBUG,
                    f"Initialized {key} bucket with default limits "
                    f"(capacity={bucket.capacity}, refill={bucket.config.refill_rate:.3f}/s)",
                    tier=key,
                )
            return bucket

    def _build(self, tier: str, config: RateLimitConfig) -> TokenBucket:
        return TokenBucket(config, tier=tier, clock=self._clock, sleep=self._sleep)

    def configure(self, tier: str, config: RateLimitConfig) -> None:
        """Replace the tier's bucket with a fresh one built from ``config``."""
        key = str(tier)
        with self._lock:
            self._buckets[key] = self._build(key, config)
        log_with_context(
            logging.DEBUG,
            f"Configured {key}: capacity={config.capacity}, "
            f"refill={config.refill_rate:.3f}/s, max_retries={config.max_retries}",
            tier=key,
        )

    def apply_profile(self, profile: CommandProfile) -> None:
        """Configure every tier the profile overrides."""
        for tier, config in profile.tier_configs().items():
            self.configure(tier, config)

    async def acquire(self, tier: str) -> None:
        """Wait for and take one token of ``tier``.

        Raises:
            RateLimitExhaustedError: If the tier's bucket stayed empty.
            ConfigError: If the tier is unknown and was never configured.
        """
        await self._bucket(tier).acquire()

    def config_for(self, tier: str) -> RateLimitConfig:
        return self._bucket(tier).config

    def policy_for(self, tier: str) -> RetryPolicy:
        return RetryPolicy.from_config(self.config_for(tier))

    def status(self, tier: str) -> TierStatus:
        bucket = self._bucket(tier)
        return TierStatus(available=bucket.available_tokens(), capacity=bucket.capacity)

    def configured_tiers(self) -> list[str]:
        return sorted(self._buckets)

    def reset(self) -> None:
        """Drop every bucket; the next use of a tier starts from defaults."""
        with self._lock:
            self._buckets.clear()
