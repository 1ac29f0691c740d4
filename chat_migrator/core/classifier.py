"""Error classification for the backoff executor.

Each platform raises its own error shapes: ``googleapiclient`` raises
``HttpError`` with the status on ``resp``, the Slack Web API reports an
``error`` code with an HTTP 200 or 429, and transports raise their own
connection errors. Classification is an ordered list of small
:class:`ClassificationRule` predicates per platform. Rules are grouped by
kind and evaluated rate-limit first, then transient, then permanent; the
first match wins and anything unmatched is ``UNKNOWN``.
"""

from __future__ import annotations

import socket
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Sequence

import httplib2
import requests
from google.auth.exceptions import RefreshError, TransportError
from googleapiclient.errors import HttpError

from chat_migrator.constants import (
    GOOGLE_QUOTA_MESSAGES,
    HTTP_BAD_REQUEST,
    HTTP_RATE_LIMIT,
    HTTP_SERVER_ERROR_MAX,
    HTTP_SERVER_ERROR_MIN,
    HTTP_UNAUTHORIZED,
    SLACK_AUTH_CODES,
    SLACK_RATE_LIMIT_CODES,
    SLACK_SCOPE_CODES,
    SLACK_SDK_RATE_LIMIT_CODE,
    SLACK_TRANSIENT_CODES,
)
from chat_migrator.exceptions import AuthenticationError, SlackApiError
from chat_migrator.types import ClassifiedError, ErrorKind

Predicate = Callable[[BaseException], bool]

# Evaluation order across kinds
_KIND_PRIORITY = {
    ErrorKind.RATE_LIMITED: 0,
    ErrorKind.TRANSIENT: 1,
    ErrorKind.PERMANENT: 2,
    ErrorKind.UNKNOWN: 3,
}


@dataclass(frozen=True)
class ClassificationRule:
    """Maps errors matching ``predicate`` to ``kind``."""

    name: str
    kind: ErrorKind
    predicate: Predicate

    def matches(self, error: BaseException) -> bool:
        try:
            return bool(self.predicate(error))
        except (AttributeError, TypeError, ValueError, KeyError):
            return False


# ---------------------------------------------------------------------------
# Shape helpers
# ---------------------------------------------------------------------------


def http_status(error: BaseException) -> int | None:
    """Best-effort HTTP status of an error from any supported client."""
    if isinstance(error, HttpError):
        return int(error.resp.status)
    if isinstance(error, SlackApiError):
        return error.status
    response = getattr(error, "response", None)
    if response is not None:
        for attr in ("status_code", "status"):
            status = getattr(response, attr, None)
            if isinstance(status, int):
                return status
    for attr in ("status", "status_code", "code"):
        status = getattr(error, attr, None)
        if isinstance(status, int):
            return status
    return None


def _headers(error: BaseException) -> Any:
    if isinstance(error, HttpError):
        return error.resp
    response = getattr(error, "response", None)
    return getattr(response, "headers", None) or {}


def retry_after_seconds(error: BaseException) -> float | None:
    """``Retry-After`` in seconds when the error carries one."""
    explicit = getattr(error, "retry_after", None)
    if isinstance(explicit, (int, float)):
        return float(explicit)
    headers = _headers(error)
    try:
        value = headers.get("retry-after") or headers.get("Retry-After")
    except AttributeError:
        return None
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def slack_error_code(error: BaseException) -> str | None:
    """Slack ``error`` code from our client or an SDK-style response."""
    if isinstance(error, SlackApiError):
        return error.code
    response = getattr(error, "response", None)
    try:
        code = response["error"]  # SDK responses are subscriptable
    except (TypeError, KeyError, IndexError):
        data = getattr(error, "data", None)
        code = data.get("error") if isinstance(data, dict) else None
    return code if isinstance(code, str) else None


def _message(error: BaseException) -> str:
    text = str(error)
    if isinstance(error, HttpError):
        reason = getattr(error, "reason", None) or ""
        text = f"{text} {reason}"
    return text


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


GENERIC_RULES: list[ClassificationRule] = [
    ClassificationRule(
        "http_429", ErrorKind.RATE_LIMITED, lambda e: http_status(e) == HTTP_RATE_LIMIT
    ),
    ClassificationRule(
        "http_5xx",
        ErrorKind.TRANSIENT,
        lambda e: HTTP_SERVER_ERROR_MIN <= (http_status(e) or 0) <= HTTP_SERVER_ERROR_MAX,
    ),
    ClassificationRule(
        "transport",
        ErrorKind.TRANSIENT,
        lambda e: isinstance(
            e,
            (
                requests.ConnectionError,
                requests.Timeout,
                httplib2.HttpLib2Error,
                socket.timeout,
                ConnectionError,
                TimeoutError,
            ),
        ),
    ),
    ClassificationRule(
        "auth",
        ErrorKind.PERMANENT,
        lambda e: isinstance(e, AuthenticationError)
        or http_status(e) == HTTP_UNAUTHORIZED,
    ),
    ClassificationRule(
        "http_4xx",
        ErrorKind.PERMANENT,
        lambda e: HTTP_BAD_REQUEST <= (http_status(e) or 0) < HTTP_SERVER_ERROR_MIN,
    ),
]

GOOGLE_RULES: list[ClassificationRule] = [
    ClassificationRule(
        "google_quota",
        ErrorKind.RATE_LIMITED,
        lambda e: any(marker in _message(e) for marker in GOOGLE_QUOTA_MESSAGES),
    ),
    ClassificationRule(
        "google_transport", ErrorKind.TRANSIENT, lambda e: isinstance(e, TransportError)
    ),
    ClassificationRule("auth", ErrorKind.PERMANENT, lambda e: isinstance(e, RefreshError)),
]

SLACK_RULES: list[ClassificationRule] = [
    ClassificationRule(
        "slack_rate_limited",
        ErrorKind.RATE_LIMITED,
        lambda e: slack_error_code(e) in SLACK_RATE_LIMIT_CODES
        or getattr(e, "code", None) in (SLACK_SDK_RATE_LIMIT_CODE, *SLACK_RATE_LIMIT_CODES),
    ),
    ClassificationRule(
        "slack_rate_limited_message",
        ErrorKind.RATE_LIMITED,
        lambda e: any(code in str(e) for code in SLACK_RATE_LIMIT_CODES),
    ),
    ClassificationRule(
        "slack_transient",
        ErrorKind.TRANSIENT,
        lambda e: slack_error_code(e) in SLACK_TRANSIENT_CODES,
    ),
    ClassificationRule(
        "auth", ErrorKind.PERMANENT, lambda e: slack_error_code(e) in SLACK_AUTH_CODES
    ),
    ClassificationRule(
        "permission",
        ErrorKind.PERMANENT,
        lambda e: slack_error_code(e) in SLACK_SCOPE_CODES,
    ),
    # Any other Slack error code is a definite answer from the API
    ClassificationRule(
        "slack_error",
        ErrorKind.PERMANENT,
        lambda e: isinstance(e, SlackApiError) and e.code is not None,
    ),
]


def _ordered(rules: Iterable[ClassificationRule]) -> list[ClassificationRule]:
    # sorted() is stable, so rules keep their relative order within a kind
    return sorted(rules, key=lambda rule: _KIND_PRIORITY[rule.kind])


class ErrorClassifier:
    """Turns any raised error into a :class:`ClassifiedError`."""

    def __init__(self, rules: Sequence[ClassificationRule]) -> None:
        self.rules: tuple[ClassificationRule, ...] = tuple(_ordered(rules))

    def extended(self, rules: Iterable[ClassificationRule]) -> ErrorClassifier:
        """Return a classifier that also applies ``rules``.

        Added rules come before existing rules of the same kind.
        """
        return ErrorClassifier([*rules, *self.rules])

    def classify(self, error: BaseException) -> ClassifiedError:
        status = http_status(error)
        for rule in self.rules:
            if rule.matches(error):
                retry_after = (
                    retry_after_seconds(error)
                    if rule.kind is ErrorKind.RATE_LIMITED
                    else None
                )
                return ClassifiedError(
                    kind=rule.kind,
                    retry_after=retry_after,
                    status=status,
                    reason=rule.name,
                )
        return ClassifiedError(kind=ErrorKind.UNKNOWN, status=status)

    __call__ = classify


def default_classifier() -> ErrorClassifier:
    """Classifier that understands both platforms and common transports."""
    return ErrorClassifier([*GOOGLE_RULES, *SLACK_RULES, *GENERIC_RULES])
