"""Minimal Slack Web API client over ``requests``.

Only the methods the import driver needs. Every failure surfaces as a
:class:`SlackApiError` carrying the HTTP status, the Slack ``error`` code
and any ``Retry-After`` so the classifier can decide what to retry. The
client itself never retries.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from chat_migrator.constants import (
    HTTP_OK,
    HTTP_RATE_LIMIT,
    SLACK_API_BASE_URL,
    SLACK_REQUEST_TIMEOUT,
    SLACK_UPLOAD_TIMEOUT,
)
from chat_migrator.exceptions import SlackApiError
from chat_migrator.utils.logging import log_with_context


def _retry_after(response: requests.Response) -> float | None:
    value = response.headers.get("Retry-After")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


class SlackWebClient:
    """Blocking Slack Web API client authenticated with a bot token."""

    def __init__(
        self,
        token: str,
        base_url: str = SLACK_API_BASE_URL,
        session: requests.Session | None = None,
        timeout: float = SLACK_REQUEST_TIMEOUT,
    ) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers["Authorization"] = f"Bearer {token}"

    def api_call(self, method: str, **params: Any) -> dict[str, Any]:
        """POST ``params`` as JSON to ``method`` and return the response body.

        Raises:
            SlackApiError: On a non-200 status or a body with ``ok: false``.
            requests.RequestException: On transport failures.
        """
        log_with_context(logging.DEBUG, f"Slack API call: {method}", method=method)
        response = self._session.post(
            f"{self.base_url}{method}",
            json={k: v for k, v in params.items() if v is not None},
            timeout=self.timeout,
        )

        if response.status_code == HTTP_RATE_LIMIT:
            raise SlackApiError(
                f"{method} was rate limited",
                method=method,
                status=response.status_code,
                code="ratelimited",
                retry_after=_retry_after(response),
            )
        if response.status_code != HTTP_OK:
            raise SlackApiError(
                f"{method} failed with HTTP {response.status_code}",
                method=method,
                status=response.status_code,
            )

        data: dict[str, Any] = response.json()
        if not data.get("ok"):
            code = data.get("error", "unknown_error")
            raise SlackApiError(
                f"{method} failed: {code}",
                method=method,
                status=response.status_code,
                code=code,
                retry_after=_retry_after(response),
            )
        return data

    # -- Messages -------------------------------------------------------------

    def post_message(
        self, channel: str, text: str, thread_ts: str | None = None
    ) -> str:
        """Post a message and return its ``ts``."""
        data = self.api_call(
            "chat.postMessage", channel=channel, text=text, thread_ts=thread_ts
        )
        return str(data["ts"])

    def add_reaction(self, channel: str, timestamp: str, name: str) -> None:
        self.api_call("reactions.add", channel=channel, timestamp=timestamp, name=name)

    # -- Channels -------------------------------------------------------------

    def create_channel(self, name: str, is_private: bool = False) -> dict[str, Any]:
        data = self.api_call("conversations.create", name=name, is_private=is_private)
        return dict(data["channel"])

    def list_channels(self, cursor: str | None = None) -> dict[str, Any]:
        return self.api_call(
            "conversations.list",
            types="public_channel,private_channel",
            limit=200,
            cursor=cursor,
        )

    # -- External file uploads ------------------------------------------------

    def get_upload_url(
        self, filename: str, length: int, alt_text: str | None = None
    ) -> tuple[str, str]:
        """Allocate an upload; returns ``(file_id, upload_url)``."""
        data = self.api_call(
            "files.getUploadURLExternal",
            filename=filename,
            length=length,
            alt_txt=alt_text,
        )
        return str(data["file_id"]), str(data["upload_url"])

    def upload_bytes(self, upload_url: str, content: bytes, filename: str) -> None:
        """Send file content to the URL returned by :meth:`get_upload_url`."""
        response = self._session.post(
            upload_url, data=content, timeout=SLACK_UPLOAD_TIMEOUT
        )
        if response.status_code != HTTP_OK:
            raise SlackApiError(
                f"File upload failed for {filename}: HTTP {response.status_code}",
                method="upload",
                status=response.status_code,
                retry_after=_retry_after(response),
            )

    def complete_upload(
        self,
        files: list[dict[str, str]],
        channel_id: str | None = None,
        initial_comment: str | None = None,
        thread_ts: str | None = None,
    ) -> dict[str, Any]:
        """Finish uploads; with ``channel_id`` the files are shared there."""
        return self.api_call(
            "files.completeUploadExternal",
            files=files,
            channel_id=channel_id,
            initial_comment=initial_comment,
            thread_ts=thread_ts,
        )
