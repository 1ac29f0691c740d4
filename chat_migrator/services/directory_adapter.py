"""Typed adapter for the Admin SDK Directory API (user profiles only).

Like :class:`~chat_migrator.services.chat_adapter.ChatAdapter`, it makes
blocking calls with no retry logic; callers run each call through the
backoff executor on the ``google-directory`` tier.
"""

from __future__ import annotations

from typing import Any


class DirectoryAdapter:
    """Thin typed wrapper around the Directory API service."""

    def __init__(self, service: Any) -> None:
        self._svc = service

    def get_user(self, user_key: str) -> dict[str, Any]:
        """Get one user by id or primary email.

        Args:
            user_key: Directory user key; Chat's ``users/<id>`` prefix must
                already be stripped.

        Returns:
            Raw user resource with ``name`` and ``primaryEmail`` keys.
        """
        result: dict[str, Any] = self._svc.users().get(userKey=user_key).execute()
        return result
