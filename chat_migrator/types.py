"""Shared type definitions for the chat migration tool.

Provides the throttling tier identifiers, the classified-error shape
consumed by the backoff executor, and TypedDicts for the import data and
status structures flowing through the migration drivers.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TypedDict

# ---------------------------------------------------------------------------
# Throttling tiers
# ---------------------------------------------------------------------------


class ServiceTier(str, Enum):
    """A named throttling domain with its own bucket."""

    GOOGLE_CHAT = "google-chat"
    GOOGLE_DIRECTORY = "google-directory"
    SLACK = "slack"
    SLACK_TIER_1 = "slack-tier1"  # 1+ per minute
    SLACK_TIER_2 = "slack-tier2"  # 20+ per minute
    SLACK_TIER_3 = "slack-tier3"  # 50+ per minute
    SLACK_TIER_4 = "slack-tier4"  # 100+ per minute
    SLACK_SPECIAL = "slack-special"  # chat.postMessage, per channel

    def __str__(self) -> str:
        return self.value


# Slack Web API methods by their documented rate limit tier
SLACK_METHOD_TIERS: dict[str, ServiceTier] = {
    "chat.postMessage": ServiceTier.SLACK_SPECIAL,
    "reactions.add": ServiceTier.SLACK_TIER_3,
    "files.getUploadURLExternal": ServiceTier.SLACK_TIER_4,
    "files.completeUploadExternal": ServiceTier.SLACK_TIER_4,
    "conversations.list": ServiceTier.SLACK_TIER_2,
    "conversations.create": ServiceTier.SLACK_TIER_2,
    "conversations.info": ServiceTier.SLACK_TIER_3,
    "conversations.setPurpose": ServiceTier.SLACK_TIER_3,
    "conversations.archive": ServiceTier.SLACK_TIER_3,
    "auth.test": ServiceTier.SLACK_TIER_4,
}


def tier_for_slack_method(method: str) -> ServiceTier:
    """Return the throttling tier for a Slack Web API method."""
    return SLACK_METHOD_TIERS.get(method, ServiceTier.SLACK)


class TierStatus(TypedDict):
    """Observable state of one tier's bucket."""

    available: int
    capacity: int


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


class ErrorKind(str, Enum):
    """How the backoff executor should treat a failure."""

    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in (ErrorKind.RATE_LIMITED, ErrorKind.TRANSIENT)


@dataclass(frozen=True)
class ClassifiedError:
    """Normalized view of a failure from either platform."""

    kind: ErrorKind
    retry_after: float | None = None  # seconds, when the platform said so
    status: int | None = None
    reason: str | None = None  # name of the rule that matched


# ---------------------------------------------------------------------------
# Sequencer results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ThreadResolution:
    """Outcome of posting one message into a (possibly new) thread.

    ``thread_id`` is the destination id recorded for the thread key;
    ``message_id`` is the id of the message this call posted.
    """

    thread_id: str | None
    message_id: str
    is_root: bool


# ---------------------------------------------------------------------------
# Import data (already transformed for Slack)
# ---------------------------------------------------------------------------


class ImportAttachment(TypedDict, total=False):
    """A local file to upload alongside a message."""

    local_path: str
    filename: str
    title: str
    alt_text: str


class ImportReaction(TypedDict, total=False):
    """A reaction to add; ``name`` may be a Slack name or a unicode emoji."""

    name: str


class ImportMessage(TypedDict, total=False):
    """A message ready to post into a Slack channel."""

    text: str
    display_name: str
    timestamp: str
    thread_id: str
    attachments: list[ImportAttachment]
    reactions: list[ImportReaction]


class ImportChannel(TypedDict, total=False):
    """A channel and its messages in posting order."""

    name: str
    is_private: bool
    messages: list[ImportMessage]


class ImportSummary(TypedDict):
    """Per-channel counters returned by the Slack import driver."""

    channel: str
    messages_posted: int
    messages_failed: int
    threads_started: int
    files_uploaded: int
    reactions_added: int


class TransformStats(TypedDict):
    """Counters returned by the export-to-import transform."""

    channels: int
    messages: int
    skipped: int
    users: int
    threads: int
    attachments: int
    reactions: int
