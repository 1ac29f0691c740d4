"""
Display name lookup for Google Chat senders.

Exported messages only carry ``users/<id>`` resource names. The names are
looked up in the Workspace directory, one ``users.get`` per user on the
``google-directory`` tier, and written next to the space files as
``users.json`` (``{"users/123": "Alice Smith"}``) for the transform step.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable

from chat_migrator.constants import HTTP_FORBIDDEN, HTTP_NOT_FOUND
from chat_migrator.core.classifier import http_status
from chat_migrator.core.token_bucket import Clock
from chat_migrator.exceptions import ExportError, WorkItemFailedError
from chat_migrator.services.directory_adapter import DirectoryAdapter
from chat_migrator.types import ServiceTier
from chat_migrator.utils.logging import log_with_context

if TYPE_CHECKING:
    from chat_migrator.core.coordinator import MigrationCoordinator

USERS_FILENAME = "users.json"
USER_CACHE_EXPIRY = 300.0
USER_CACHE_MAX_ATTEMPTS = 3


def user_key(user_id: str) -> str:
    """``users/123`` -> ``123``."""
    return user_id[len("users/"):] if user_id.startswith("users/") else user_id


def display_name_from(user: dict[str, Any]) -> str | None:
    """Best available name: display name, then full name, then primary email."""
    name = user.get("name") or {}
    return name.get("displayName") or name.get("fullName") or user.get("primaryEmail")


def collect_user_ids(messages: Iterable[dict[str, Any]]) -> set[str]:
    """Senders and mentioned users of ``messages``."""
    user_ids: set[str] = set()
    for message in messages:
        sender = (message.get("sender") or {}).get("name")
        if sender:
            user_ids.add(sender)
        for annotation in message.get("annotations") or []:
            if annotation.get("type") != "USER_MENTION":
                continue
            mentioned = ((annotation.get("userMention") or {}).get("user") or {}).get("name")
            if mentioned:
                user_ids.add(mentioned)
    return user_ids


@dataclass
class _CacheEntry:
    name: str | None
    stored_at: float
    failures: int = 0


class UserNameCache:
    """Looked-up names, including misses, kept for ``expiry`` seconds.

    A user whose lookup failed ``max_attempts`` times in a row is skipped
    until the entry expires.
    """

    def __init__(
        self,
        expiry: float = USER_CACHE_EXPIRY,
        max_attempts: int = USER_CACHE_MAX_ATTEMPTS,
        clock: Clock = time.monotonic,
    ) -> None:
        self.expiry = expiry
        self.max_attempts = max_attempts
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}

    def _fresh(self, user_id: str) -> _CacheEntry | None:
        entry = self._entries.get(user_id)
        if entry is None:
            return None
        if self._clock() - entry.stored_at > self.expiry:
            del self._entries[user_id]
            return None
        return entry

    def has(self, user_id: str) -> bool:
        """True when a lookup for ``user_id`` would be answered from cache."""
        entry = self._fresh(user_id)
        if entry is None:
            return False
        return entry.failures == 0 or entry.failures >= self.max_attempts

    def get(self, user_id: str) -> str | None:
        entry = self._fresh(user_id)
        return entry.name if entry else None

    def store(self, user_id: str, name: str | None) -> None:
        self._entries[user_id] = _CacheEntry(name, self._clock())

    def record_failure(self, user_id: str) -> None:
        entry = self._fresh(user_id)
        failures = entry.failures + 1 if entry else 1
        self._entries[user_id] = _CacheEntry(None, self._clock(), failures)

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()


async def resolve_user_names(
    coordinator: MigrationCoordinator,
    adapter: DirectoryAdapter,
    user_ids: Iterable[str],
    cache: UserNameCache | None = None,
) -> dict[str, str]:
    """Look up display names for ``user_ids``.

    Users without a name in the directory are left out of the result and
    recorded as warnings; a refused or failed lookup never fails the run.

    Raises:
        WorkItemFailedError: On an authentication failure.
    """
    cache = cache if cache is not None else UserNameCache()
    names: dict[str, str] = {}
    pending: list[str] = []
    for user_id in sorted(set(user_ids)):
        if cache.has(user_id):
            cached = cache.get(user_id)
            if cached:
                names[user_id] = cached
        else:
            pending.append(user_id)

    log_with_context(
        logging.INFO,
        f"Looking up {len(pending)} user(s) in the directory "
        f"({len(names)} cached)",
    )

    async def fetch(user_id: str) -> dict[str, Any]:
        key = user_key(user_id)
        return await coordinator.executor.run(
            ServiceTier.GOOGLE_DIRECTORY,
            lambda: asyncio.to_thread(adapter.get_user, key),
            label=f"user {user_id}",
        )

    results = await coordinator.governor.run_all(
        pending, fetch, abort_on_auth_failure=coordinator.abort_on_auth_failure
    )

    for user_id, result in results:
        if isinstance(result, BaseException):
            cache.record_failure(user_id)
            original = result.original if isinstance(result, WorkItemFailedError) else result
            status = http_status(original)
            if status == HTTP_FORBIDDEN:
                coordinator.run_log.add_warning(
                    "user_lookup",
                    user_id,
                    "Directory access denied; check admin privileges and "
                    "domain-wide delegation",
                )
            elif status == HTTP_NOT_FOUND:
                coordinator.run_log.add_warning(
                    "user_lookup", user_id, "User not found in directory"
                )
            else:
                coordinator.run_log.add_failure("user_lookup", user_id, result)
            continue

        name = display_name_from(result)
        cache.store(user_id, name)
        if name:
            names[user_id] = name
        else:
            coordinator.run_log.add_warning(
                "user_lookup", user_id, "No name data found in directory"
            )

    return names


def _read_space_messages(export_dir: str) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = []
    for filename in sorted(os.listdir(export_dir)):
        if not filename.endswith(".json") or filename == USERS_FILENAME:
            continue
        with open(os.path.join(export_dir, filename), encoding="utf-8") as f:
            messages.extend(json.load(f).get("messages") or [])
    return messages


def _write_users_file(path: str, names: dict[str, str]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(names, f, indent=2, ensure_ascii=False, sort_keys=True)


async def export_user_names(
    coordinator: MigrationCoordinator,
    adapter: DirectoryAdapter,
    export_dir: str,
    cache: UserNameCache | None = None,
) -> dict[str, str]:
    """Resolve every user seen in the space files of ``export_dir``.

    Writes ``<export_dir>/users.json`` and returns the same mapping.

    Raises:
        ExportError: If the space files cannot be read.
        WorkItemFailedError: On an authentication failure.
    """
    try:
        messages = await asyncio.to_thread(_read_space_messages, export_dir)
    except (OSError, json.JSONDecodeError, AttributeError) as e:
        raise ExportError(f"Cannot read exported spaces in {export_dir}: {e}") from e

    names = await resolve_user_names(
        coordinator, adapter, collect_user_ids(messages), cache
    )
    path = os.path.join(export_dir, USERS_FILENAME)
    await asyncio.to_thread(_write_users_file, path, names)
    log_with_context(
        logging.INFO, f"Wrote {len(names)} user name(s) to {path}", users=len(names)
    )
    return names
