"""
Per-run wiring of the rate-limited execution components.

One :class:`MigrationCoordinator` is built for each command run from its
effective :class:`CommandProfile`. It owns the registry and hands the same
instance to the executor and sequencer, so every call of the run shares one
bucket per tier.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

from chat_migrator.core.classifier import ErrorClassifier, default_classifier
from chat_migrator.core.config import CommandProfile
from chat_migrator.core.executor import BackoffExecutor
from chat_migrator.core.governor import ConcurrencyGovernor
from chat_migrator.core.registry import RateLimiterRegistry
from chat_migrator.core.run_log import RunLog
from chat_migrator.core.sequencer import OrderingSequencer, ThreadMapping
from chat_migrator.core.token_bucket import Clock, Sleep
from chat_migrator.utils.logging import log_with_context


@dataclass
class MigrationCoordinator:
    """Registry, executor, sequencer, governor and run log of one run."""

    profile: CommandProfile
    registry: RateLimiterRegistry
    executor: BackoffExecutor
    sequencer: OrderingSequencer
    governor: ConcurrencyGovernor
    run_log: RunLog = field(default_factory=RunLog)
    abort_on_auth_failure: bool = True

    @classmethod
    def for_profile(
        cls,
        profile: CommandProfile,
        classifier: ErrorClassifier | None = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
        abort_on_auth_failure: bool = True,
        run_log: RunLog | None = None,
    ) -> MigrationCoordinator:
        """Build and configure every component for ``profile``.

        Passing ``run_log`` lets the stages of one run share a log.
        """
        registry = RateLimiterRegistry(clock=clock, sleep=sleep)
        registry.apply_profile(profile)
        executor = BackoffExecutor(registry, classifier or default_classifier(), sleep=sleep)
        coordinator = cls(
            profile=profile,
            registry=registry,
            executor=executor,
            sequencer=OrderingSequencer(executor, ThreadMapping()),
            governor=ConcurrencyGovernor(profile.max_concurrent_operations),
            run_log=run_log if run_log is not None else RunLog(),
            abort_on_auth_failure=abort_on_auth_failure,
        )
        log_with_context(
            logging.INFO,
            f"Configured rate limits for {profile.name} "
            f"({profile.max_concurrent_operations} concurrent operation(s))",
            profile=profile.name,
        )
        return coordinator

    @property
    def thread_mapping(self) -> ThreadMapping:
        return self.sequencer.threads

    def reset_for_run(self) -> None:
        """Clear run-scoped state: thread roots and recorded errors."""
        self.sequencer.reset()
        self.run_log.clear()
