"""Custom exception hierarchy for the chat migration tool."""

from __future__ import annotations

from chat_migrator.types import ClassifiedError, ErrorKind


class MigratorError(Exception):
    """Base exception for all migration-related errors."""


class ConfigError(MigratorError):
    """Raised when configuration is invalid or missing."""


class ExportError(MigratorError):
    """Raised when export or import data is invalid or unreadable."""


class AuthenticationError(MigratorError):
    """Raised when credentials are rejected; aborts the whole run."""


class SequencingError(MigratorError):
    """Raised when an upload session is advanced out of phase order."""


class MigrationAbortedError(MigratorError):
    """Raised when the migration is aborted due to errors exceeding thresholds."""


class RateLimitExhaustedError(MigratorError):
    """Raised when a token bucket stays empty through all of its waits."""

    def __init__(self, tier: str, waits: int) -> None:
        super().__init__(
            f"Rate limit exceeded for {tier}: no tokens available after {waits} retries"
        )
        self.tier = tier
        self.waits = waits


class SlackApiError(MigratorError):
    """Raised by the Slack Web API client when a call is not ``ok``."""

    def __init__(
        self,
        message: str,
        *,
        method: str,
        status: int | None = None,
        code: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message)
        self.method = method
        self.status = status
        self.code = code
        self.retry_after = retry_after


class WorkItemFailedError(MigratorError):
    """Terminal failure of one work item submitted to the backoff executor.

    Carries the tier, the number of attempts made and the original error so
    a driver can record the failure against the item without retrying it.
    """

    def __init__(
        self,
        tier: str,
        attempts: int,
        original: BaseException,
        classification: ClassifiedError,
        label: str | None = None,
    ) -> None:
        target = f" ({label})" if label else ""
        super().__init__(
            f"{tier}{target} failed after {attempts} attempt(s) "
            f"[{classification.kind.value}]: {original}"
        )
        self.tier = tier
        self.attempts = attempts
        self.original = original
        self.classification = classification
        self.label = label

    @property
    def is_authentication_failure(self) -> bool:
        """True when the original error means the credentials were rejected."""
        return (
            self.classification.reason == "auth"
            or self.classification.status == 401
            or isinstance(self.original, AuthenticationError)
        )

    @property
    def rate_limit_exhausted(self) -> bool:
        """True when the item gave up because the tier stayed throttled."""
        return isinstance(self.original, RateLimitExhaustedError) or (
            self.classification.kind is ErrorKind.RATE_LIMITED
        )
