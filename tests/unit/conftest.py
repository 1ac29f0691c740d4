"""Unit test configuration and shared fixtures."""

from __future__ import annotations

import pytest

from chat_migrator.core.config import CommandProfile, RateLimitConfig
from chat_migrator.core.coordinator import MigrationCoordinator
from chat_migrator.core.executor import BackoffExecutor
from chat_migrator.core.registry import RateLimiterRegistry
from chat_migrator.types import ServiceTier

# ---------------------------------------------------------------------------
# Shared rate limit factories
# ---------------------------------------------------------------------------


def _make_config(**overrides) -> RateLimitConfig:
    """Build a small RateLimitConfig; keyword arguments replace fields."""
    values = {
        "capacity": 3,
        "refill_rate": 1.0,
        "max_retries": 3,
        "base_delay": 1.0,
        "max_delay": 30.0,
    }
    values.update(overrides)
    return RateLimitConfig(**values)


@pytest.fixture()
def registry(clock):
    """Registry driven by the fake clock."""
    return RateLimiterRegistry(clock=clock, sleep=clock.sleep)


@pytest.fixture()
def executor(registry, clock):
    """Executor over the fake-clock registry."""
    return BackoffExecutor(registry, sleep=clock.sleep)


@pytest.fixture()
def make_coordinator(clock):
    """Factory fixture for a coordinator on the fake clock.

    Every tier gets a roomy bucket unless ``configs`` says otherwise, so
    driver tests never wait on tokens by accident.
    """

    def _make(max_concurrent=1, configs=None, abort_on_auth_failure=True):
        profile = CommandProfile(name="test", max_concurrent_operations=max_concurrent)
        coordinator = MigrationCoordinator.for_profile(
            profile,
            clock=clock,
            sleep=clock.sleep,
            abort_on_auth_failure=abort_on_auth_failure,
        )
        roomy = _make_config(capacity=1000, refill_rate=100.0, base_delay=0.1, max_delay=1.0)
        for tier in ServiceTier:
            coordinator.registry.configure(tier, (configs or {}).get(tier, roomy))
        return coordinator

    return _make


@pytest.fixture()
def make_config():
    """Factory fixture returning small RateLimitConfigs."""
    return _make_config
