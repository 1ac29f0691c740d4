"""Concurrency governor bounding how many channels or spaces run at once.

Independent of the token buckets: a worker may hold a slot while it waits
for a token.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, TypeVar

from chat_migrator.exceptions import (
    AuthenticationError,
    MigrationAbortedError,
    WorkItemFailedError,
)
from chat_migrator.utils.logging import log_with_context

T = TypeVar("T")
I = TypeVar("I")  # noqa: E741


def is_run_fatal(error: BaseException) -> bool:
    """True for failures that must stop the whole run (rejected credentials)."""
    if isinstance(error, AuthenticationError):
        return True
    return isinstance(error, WorkItemFailedError) and error.is_authentication_failure


class ConcurrencyGovernor:
    """Counting semaphore around higher-level units of work."""

    def __init__(self, max_concurrent: int = 1) -> None:
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")
        self.max_concurrent = max_concurrent
        self._semaphore: asyncio.Semaphore | None = None
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def _slots(self) -> asyncio.Semaphore:
        # Created on first use so it belongs to the running event loop
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrent)
        return self._semaphore

    async def with_slot(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run ``fn`` once a slot is free; the slot is released however it ends."""
        async with self._slots():
            self._in_flight += 1
            try:
                return await fn()
            finally:
                self._in_flight -= 1

    async def run_all(
        self,
        items: Iterable[I],
        fn: Callable[[I], Awaitable[T]],
        abort_on_auth_failure: bool = True,
    ) -> list[tuple[I, T | BaseException]]:
        """Run ``fn`` for every item, each in its own slot.

        A failing item does not stop its siblings; its exception is returned
        in place of a result. Authentication failures are the exception:
        items that have not started yet are skipped, and the failure is
        raised once every started item has settled.

        Returns:
            ``(item, result_or_exception)`` pairs in input order.
        """
        items = list(items)
        fatal: list[BaseException] = []

        async def guarded(item: I) -> T:
            if fatal:
                raise MigrationAbortedError(f"Skipped {item!r}: run aborted")
            try:
                return await fn(item)
            except Exception as e:
                if abort_on_auth_failure and is_run_fatal(e):
                    fatal.append(e)
                raise

        async def one(item: I) -> T:
            return await self.with_slot(lambda: guarded(item))

        results = await asyncio.gather(*(one(item) for item in items), return_exceptions=True)
        if fatal:
            raise fatal[0]

        pairs: list[tuple[I, T | BaseException]] = []
        for item, result in zip(items, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                log_with_context(logging.DEBUG, f"Work unit {item!r} failed: {result}")
            pairs.append((item, result))
        return pairs
