"""Typed adapter for the read side of the Google Chat API.

Replaces raw ``chat.spaces().messages().list(...).execute()`` chains
with explicit method calls that are easier to mock, test, and type-check.

The adapter makes blocking calls and adds no retry logic of its own; the
export driver runs each call through the backoff executor.
"""

from __future__ import annotations

from typing import Any

SPACES_PAGE_SIZE = 100
MESSAGES_PAGE_SIZE = 1000
MEMBERS_PAGE_SIZE = 100


class ChatAdapter:
    """Thin typed wrapper around the Google Chat API service."""

    def __init__(self, service: Any) -> None:
        self._svc = service

    # -- Spaces ---------------------------------------------------------------

    def list_spaces(
        self,
        page_size: int = SPACES_PAGE_SIZE,
        page_token: str | None = None,
    ) -> dict[str, Any]:
        """List spaces visible to the authenticated user.

        Args:
            page_size: Maximum spaces per page.
            page_token: Continuation token from a previous response.

        Returns:
            Raw API response dict with ``spaces`` and ``nextPageToken`` keys.
        """
        kwargs: dict[str, Any] = {"pageSize": page_size}
        if page_token:
            kwargs["pageToken"] = page_token
        result: dict[str, Any] = self._svc.spaces().list(**kwargs).execute()
        return result

    def get_space(self, name: str) -> dict[str, Any]:
        """Get a single space by resource name (e.g. ``spaces/AAAA``)."""
        result: dict[str, Any] = self._svc.spaces().get(name=name).execute()
        return result

    # -- Messages -------------------------------------------------------------

    def list_messages(
        self,
        parent: str,
        page_size: int = MESSAGES_PAGE_SIZE,
        page_token: str | None = None,
        order_by: str | None = "createTime asc",
        show_deleted: bool = False,
    ) -> dict[str, Any]:
        """List messages in a space.

        Args:
            parent: Space resource name.
            page_size: Maximum messages per page.
            page_token: Continuation token from a previous response.
            order_by: Ordering; oldest first by default so threads read in order.
            show_deleted: Include deleted messages.

        Returns:
            Raw API response dict with ``messages`` and ``nextPageToken`` keys.
        """
        kwargs: dict[str, Any] = {"parent": parent, "pageSize": page_size}
        if page_token:
            kwargs["pageToken"] = page_token
        if order_by is not None:
            kwargs["orderBy"] = order_by
        if show_deleted:
            kwargs["showDeleted"] = True
        result: dict[str, Any] = self._svc.spaces().messages().list(**kwargs).execute()
        return result

    # -- Memberships ----------------------------------------------------------

    def list_memberships(
        self,
        parent: str,
        page_size: int = MEMBERS_PAGE_SIZE,
        page_token: str | None = None,
    ) -> dict[str, Any]:
        """List memberships in a space.

        Returns:
            Raw API response dict with ``memberships`` key.
        """
        kwargs: dict[str, Any] = {"parent": parent, "pageSize": page_size}
        if page_token:
            kwargs["pageToken"] = page_token
        result: dict[str, Any] = self._svc.spaces().members().list(**kwargs).execute()
        return result
