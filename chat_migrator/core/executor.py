"""Backoff executor: the single retry boundary for outbound API calls.

Every work item is one opaque coroutine function. The executor takes a
token from the item's tier, runs it, and on failure asks the classifier
whether to back off and retry or to give up. Nothing above the executor
retries.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from chat_migrator.core.classifier import ErrorClassifier, default_classifier
from chat_migrator.core.registry import RateLimiterRegistry
from chat_migrator.core.retry import RetryPolicy, RetryState
from chat_migrator.core.token_bucket import Sleep
from chat_migrator.exceptions import RateLimitExhaustedError, WorkItemFailedError
from chat_migrator.types import ClassifiedError, ErrorKind
from chat_migrator.utils.logging import log_with_context

T = TypeVar("T")

WorkFn = Callable[[], Awaitable[T]]


class BackoffExecutor:
    """Runs work items under their tier's rate limit with retries.

    Args:
        registry: Source of token buckets and per-tier retry policies.
        classifier: Decides which failures are worth retrying.
        sleep: Awaitable sleep used between attempts.
    """

    def __init__(
        self,
        registry: RateLimiterRegistry,
        classifier: ErrorClassifier | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.registry = registry
        self.classifier = classifier or default_classifier()
        self._sleep = sleep

    async def run(
        self,
        tier: str,
        work_fn: WorkFn[T],
        *,
        label: str | None = None,
        policy: RetryPolicy | None = None,
    ) -> T:
        """Run ``work_fn`` under ``tier``'s limits and return its result.

        Args:
            tier: Throttling tier the call belongs to.
            work_fn: Zero-argument coroutine function performing one call.
            label: Short description of the item for logs and errors.
            policy: Retry policy; defaults to the tier's configured one.

        Raises:
            WorkItemFailedError: On a permanent or unknown failure, or when
                retries are exhausted. The original error is chained.
        """
        state = RetryState(policy or self.registry.policy_for(tier))
        tier_name = str(tier)

        while True:
            attempt = state.start_attempt()
            try:
                await self.registry.acquire(tier)
            except RateLimitExhaustedError as e:
                classification = ClassifiedError(
                    kind=ErrorKind.RATE_LIMITED, reason="bucket_exhausted"
                )
                self._log_terminal(tier_name, label, attempt, e, classification)
                raise WorkItemFailedError(
                    tier_name, attempt, e, classification, label
                ) from e

            try:
                return await work_fn()
            except Exception as e:  # noqa: BLE001
                classification = self.classifier.classify(e)
                state.record_failure(e, classification)

                if not classification.kind.retryable or not state.can_retry:
                    self._log_terminal(tier_name, label, attempt, e, classification)
                    raise WorkItemFailedError(
                        tier_name, attempt, e, classification, label
                    ) from e

                delay = state.next_delay()
                log_with_context(
                    logging.WARNING,
                    f"{classification.kind.value.replace('_', ' ').capitalize()} "
                    f"error on {tier_name}{_label(label)}: {e}. Retrying in {delay:.1f}s "
                    f"(attempt {attempt}/{state.policy.max_attempts})",
                    tier=tier_name,
                    attempt=attempt,
                    delay=delay,
                    status=classification.status,
                )
                await self._sleep(delay)

    def _log_terminal(
        self,
        tier: str,
        label: str | None,
        attempt: int,
        error: BaseException,
        classification: ClassifiedError,
    ) -> None:
        if classification.kind.retryable:
            message = f"Max retries reached on {tier}{_label(label)}. Last error: {error}"
        else:
            message = (
                f"{classification.kind.value.capitalize()} error on {tier}{_label(label)} "
                f"not retried: {error}"
            )
        log_with_context(
            logging.ERROR,
            message,
            tier=tier,
            attempt=attempt,
            status=classification.status,
            reason=classification.reason,
        )


def _label(label: str | None) -> str:
    return f" ({label})" if label else ""
