"""Ordering for the multi-call protocols that ride on the executor.

Two protocols need their calls submitted in order:

* threads: a reply can only be posted once the destination has assigned an
  id to the thread's root message, recorded in a write-once
  :class:`ThreadMapping`;
* attachments: each file goes through allocate, transfer and finalize, and
  a message's files are uploaded strictly one after another.

The executor and token buckets are order-agnostic; all ordering lives here.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Protocol, TypeVar

from chat_migrator.core.executor import BackoffExecutor
from chat_migrator.exceptions import SequencingError
from chat_migrator.types import ServiceTier, ThreadResolution
from chat_migrator.utils.logging import log_with_context

A = TypeVar("A")

PostRoot = Callable[[], Awaitable[str]]
PostReply = Callable[[str], Awaitable[str]]


# ---------------------------------------------------------------------------
# Thread mapping
# ---------------------------------------------------------------------------


class ThreadMapping:
    """Source thread key -> destination id of the thread's root message.

    Entries are write-once: the first recorded root wins and later writers
    for the same key get the existing id back.
    """

    def __init__(self) -> None:
        self._roots: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        return self._roots.get(key)

    def record(self, key: str, root_id: str) -> str:
        """Store ``root_id`` unless the key is taken; return the stored id."""
        with self._lock:
            return self._roots.setdefault(key, root_id)

    def __contains__(self, key: object) -> bool:
        return key in self._roots

    def __len__(self) -> int:
        return len(self._roots)

    def clear(self) -> None:
        with self._lock:
            self._roots.clear()

    def as_dict(self) -> dict[str, str]:
        return dict(self._roots)


# ---------------------------------------------------------------------------
# Upload sessions
# ---------------------------------------------------------------------------


class UploadPhase(str, Enum):
    """Phases of one attachment upload, in the only order allowed."""

    ALLOCATED = "allocated"
    TRANSFERRED = "transferred"
    FINALIZED = "finalized"


_NEXT_PHASE = {
    None: UploadPhase.ALLOCATED,
    UploadPhase.ALLOCATED: UploadPhase.TRANSFERRED,
    UploadPhase.TRANSFERRED: UploadPhase.FINALIZED,
}


@dataclass
class UploadSession(Generic[A]):
    """State of one attachment moving through the upload phases."""

    attachment: A
    remote_handle: str | None = None
    upload_target: str | None = None
    phase: UploadPhase | None = None
    result: Any = None

    def advance(self, phase: UploadPhase) -> None:
        """Move to ``phase``; it must be the next one.

        Raises:
            SequencingError: If ``phase`` is not the immediate successor.
        """
        expected = _NEXT_PHASE.get(self.phase)
        if phase is not expected:
            current = self.phase.value if self.phase else "new"
            raise SequencingError(
                f"Cannot move upload session from {current} to {phase.value}"
            )
        self.phase = phase

    @property
    def finalized(self) -> bool:
        return self.phase is UploadPhase.FINALIZED


@dataclass(frozen=True)
class Allocation:
    """What the platform returns when an upload slot is allocated."""

    remote_handle: str
    upload_target: str | None = None


class UploadPhases(Protocol[A]):
    """Platform calls making up one attachment upload."""

    async def allocate(self, attachment: A) -> Allocation: ...

    async def transfer(self, session: UploadSession[A]) -> None: ...

    async def finalize(self, session: UploadSession[A]) -> Any: ...


# ---------------------------------------------------------------------------
# Sequencer
# ---------------------------------------------------------------------------


class OrderingSequencer:
    """Submits order-sensitive call sequences to the executor.

    Args:
        executor: Executor every individual call is routed through.
        thread_mapping: Run-scoped thread key -> root id table.
        thread_tier: Tier used for root and reply posts.
        upload_tier: Tier used for every upload phase call.
    """

    def __init__(
        self,
        executor: BackoffExecutor,
        thread_mapping: ThreadMapping | None = None,
        thread_tier: str = ServiceTier.SLACK_SPECIAL,
        upload_tier: str = ServiceTier.SLACK_TIER_4,
    ) -> None:
        self.executor = executor
        self.threads = thread_mapping if thread_mapping is not None else ThreadMapping()
        self.thread_tier = thread_tier
        self.upload_tier = upload_tier
        self._message_locks: dict[str, asyncio.Lock] = {}
        # Callers holding or waiting on each message lock
        self._lock_users: dict[str, int] = {}

    async def resolve_thread(
        self,
        key: str | None,
        post_root: PostRoot,
        post_reply: PostReply,
        *,
        tier: str | None = None,
    ) -> ThreadResolution:
        """Post a message into the thread identified by ``key``.

        Without a mapping for ``key`` the message is posted as the thread
        root and its id recorded. With one, it is posted as a reply to the
        mapped id. A ``None`` key posts a standalone message.

        Two callers racing on an unseen key both post a root; only the first
        to finish is recorded and the other root stays on the destination.

        Raises:
            WorkItemFailedError: If the post fails terminally.
        """
        tier = tier or self.thread_tier

        if key is None:
            message_id = await self.executor.run(tier, post_root, label="post message")
            return ThreadResolution(thread_id=None, message_id=message_id, is_root=True)

        root_id = self.threads.get(key)
        if root_id is not None:
            message_id = await self.executor.run(
                tier, lambda: post_reply(root_id), label=f"reply in thread {key}"
            )
            return ThreadResolution(thread_id=root_id, message_id=message_id, is_root=False)

        message_id = await self.executor.run(tier, post_root, label=f"root of thread {key}")
        recorded = self.threads.record(key, message_id)
        if recorded != message_id:
            log_with_context(
                logging.WARNING,
                f"Thread {key} already had root {recorded}; root {message_id} "
                "posted concurrently is left as a duplicate",
                tier=tier,
                thread_key=key,
            )
        return ThreadResolution(thread_id=recorded, message_id=message_id, is_root=True)

    async def upload_attachments(
        self,
        attachments: list[A],
        phases: UploadPhases[A],
        *,
        tier: str | None = None,
        message_key: str | None = None,
    ) -> list[UploadSession[A]]:
        """Upload ``attachments`` one at a time, each through all phases.

        Attachment ``i`` is finalized before attachment ``i + 1`` is
        allocated. Calls sharing a ``message_key`` never overlap.

        Returns:
            One finalized session per attachment, in input order.

        Raises:
            WorkItemFailedError: If any phase fails terminally; later
                attachments are not started.
        """
        tier = tier or self.upload_tier
        if message_key is None:
            return await self._upload_in_order(attachments, phases, tier)

        lock = self._message_locks.setdefault(message_key, asyncio.Lock())
        self._lock_users[message_key] = self._lock_users.get(message_key, 0) + 1
        try:
            async with lock:
                return await self._upload_in_order(attachments, phases, tier)
        finally:
            remaining = self._lock_users.get(message_key, 1) - 1
            if remaining:
                self._lock_users[message_key] = remaining
            else:
                self._lock_users.pop(message_key, None)
                self._message_locks.pop(message_key, None)

    async def _upload_in_order(
        self, attachments: list[A], phases: UploadPhases[A], tier: str
    ) -> list[UploadSession[A]]:
        sessions: list[UploadSession[A]] = []
        for index, attachment in enumerate(attachments, start=1):
            label = f"attachment {index}/{len(attachments)}"
            session: UploadSession[A] = UploadSession(attachment)

            allocation = await self.executor.run(
                tier, lambda: phases.allocate(attachment), label=f"allocate {label}"
            )
            session.remote_handle = allocation.remote_handle
            session.upload_target = allocation.upload_target
            session.advance(UploadPhase.ALLOCATED)

            await self.executor.run(
                tier, lambda: phases.transfer(session), label=f"transfer {label}"
            )
            session.advance(UploadPhase.TRANSFERRED)

            session.result = await self.executor.run(
                tier, lambda: phases.finalize(session), label=f"finalize {label}"
            )
            session.advance(UploadPhase.FINALIZED)

            log_with_context(
                logging.DEBUG,
                f"Uploaded {label} as {session.remote_handle}",
                tier=tier,
            )
            sessions.append(session)
        return sessions

    def reset(self) -> None:
        """Forget all thread roots and message locks (start of a run)."""
        self.threads.clear()
        self._message_locks.clear()
        self._lock_users.clear()
