"""
Slack import driver.

Posts each channel's messages in order. Thread replies go through the
ordering sequencer so a reply is only sent once its root has a Slack
``ts``; attachments follow their message through the three-phase external
upload; reactions are added last. Every Slack call is one work item on the
tier Slack assigns to its method.
"""

from __future__ import annotations

import asyncio
import datetime
import json
import logging
import os
from typing import TYPE_CHECKING, Any

import emoji
from tqdm import tqdm

from chat_migrator.core.sequencer import Allocation, UploadSession
from chat_migrator.exceptions import ExportError, SlackApiError, WorkItemFailedError
from chat_migrator.services.slack_client import SlackWebClient
from chat_migrator.types import (
    ImportAttachment,
    ImportChannel,
    ImportMessage,
    ImportSummary,
    tier_for_slack_method,
)
from chat_migrator.utils.logging import log_with_context

if TYPE_CHECKING:
    from chat_migrator.core.coordinator import MigrationCoordinator

POST_TIER = tier_for_slack_method("chat.postMessage")
UPLOAD_TIER = tier_for_slack_method("files.getUploadURLExternal")
REACTION_TIER = tier_for_slack_method("reactions.add")
CHANNEL_TIER = tier_for_slack_method("conversations.create")


def load_import_file(path: str) -> list[ImportChannel]:
    """Read the channels from an import JSON file (``{"channels": [...]}``).

    Raises:
        ExportError: If the file is missing, not JSON, or has no channel list.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ExportError(f"Cannot read import file {path}: {e}") from e

    channels = data.get("channels") if isinstance(data, dict) else None
    if not isinstance(channels, list):
        raise ExportError(f"Import file {path} has no 'channels' list")
    return channels


def format_message_text(message: ImportMessage) -> str:
    """Prefix the text with its original sender and time."""
    sender = message.get("display_name") or "Unknown User"
    when = ""
    if message.get("timestamp"):
        try:
            parsed = datetime.datetime.fromisoformat(
                message["timestamp"].replace("Z", "+00:00")
            )
            when = f" at _{parsed.strftime('%Y-%m-%d %H:%M')}_"
        except ValueError:
            when = f" at _{message['timestamp']}_"
    return f"*{sender}*{when}\n\n{message.get('text', '')}"


def _read_bytes(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def slack_reaction_name(name: str) -> str:
    """Turn a unicode emoji into its Slack short name; names pass through."""
    name = name.strip(":")
    if emoji.is_emoji(name):
        return emoji.demojize(name, language="alias").strip(":")
    return name


class SlackAttachmentUploader:
    """External upload phases for the files of one message.

    Finalizing shares the file into ``channel_id``, inside ``thread_ts``
    when the message belongs to a thread.
    """

    def __init__(
        self, client: SlackWebClient, channel_id: str, thread_ts: str | None = None
    ) -> None:
        self.client = client
        self.channel_id = channel_id
        self.thread_ts = thread_ts

    async def allocate(self, attachment: ImportAttachment) -> Allocation:
        length = await asyncio.to_thread(os.path.getsize, attachment["local_path"])
        file_id, upload_url = await asyncio.to_thread(
            self.client.get_upload_url,
            attachment["filename"],
            length,
            attachment.get("alt_text"),
        )
        return Allocation(remote_handle=file_id, upload_target=upload_url)

    async def transfer(self, session: UploadSession[ImportAttachment]) -> None:
        attachment = session.attachment
        content = await asyncio.to_thread(_read_bytes, attachment["local_path"])
        await asyncio.to_thread(
            self.client.upload_bytes,
            session.upload_target,
            content,
            attachment["filename"],
        )

    async def finalize(self, session: UploadSession[ImportAttachment]) -> Any:
        attachment = session.attachment
        title = attachment.get("title") or attachment["filename"]
        return await asyncio.to_thread(
            self.client.complete_upload,
            [{"id": session.remote_handle, "title": title}],
            self.channel_id,
            None,
            self.thread_ts,
        )


async def find_or_create_channel(
    coordinator: MigrationCoordinator,
    client: SlackWebClient,
    name: str,
    is_private: bool = False,
) -> str:
    """Return the id of channel ``name``, creating it when missing.

    A name that already looks like a channel id is used as is.
    """
    if name.startswith("C") and name.isupper():
        return name

    cursor: str | None = None
    while True:
        page_cursor = cursor
        page = await coordinator.executor.run(
            CHANNEL_TIER,
            lambda: asyncio.to_thread(client.list_channels, page_cursor),
            label="list channels",
        )
        for channel in page.get("channels", []):
            if channel.get("name") == name:
                return str(channel["id"])
        cursor = (page.get("response_metadata") or {}).get("next_cursor")
        if not cursor:
            break

    log_with_context(logging.INFO, f"Creating channel #{name}", channel=name)
    created = await coordinator.executor.run(
        CHANNEL_TIER,
        lambda: asyncio.to_thread(client.create_channel, name, is_private),
        label=f"create #{name}",
    )
    return str(created["id"])


async def _post_message(
    coordinator: MigrationCoordinator,
    client: SlackWebClient,
    channel_id: str,
    channel_name: str,
    index: int,
    message: ImportMessage,
    summary: ImportSummary,
) -> None:
    text = format_message_text(message)

    async def post_root() -> str:
        return await asyncio.to_thread(client.post_message, channel_id, text)

    async def post_reply(root_ts: str) -> str:
        return await asyncio.to_thread(client.post_message, channel_id, text, root_ts)

    resolution = await coordinator.sequencer.resolve_thread(
        message.get("thread_id"), post_root, post_reply, tier=POST_TIER
    )
    summary["messages_posted"] += 1
    if resolution.is_root and resolution.thread_id is not None:
        summary["threads_started"] += 1

    attachments = message.get("attachments") or []
    if attachments:
        uploader = SlackAttachmentUploader(client, channel_id, resolution.thread_id)
        try:
            sessions = await coordinator.sequencer.upload_attachments(
                attachments,
                uploader,
                tier=UPLOAD_TIER,
                message_key=f"{channel_id}:{index}",
            )
            summary["files_uploaded"] += len(sessions)
        except (WorkItemFailedError, OSError) as e:
            coordinator.run_log.add_failure(
                "file_upload", f"{len(attachments)} attachments on #{channel_name}", e,
                warning=True,
            )
            names = ", ".join(a.get("filename", "?") for a in attachments)
            notice = f"_Attachments could not be uploaded: {names}_"
            try:
                await coordinator.executor.run(
                    POST_TIER,
                    lambda: asyncio.to_thread(
                        client.post_message, channel_id, notice, resolution.thread_id
                    ),
                    label="attachment fallback notice",
                )
            except WorkItemFailedError as notice_error:
                if notice_error.is_authentication_failure:
                    raise
                coordinator.run_log.add_failure(
                    "message_post", f"attachment notice on #{channel_name}",
                    notice_error, warning=True,
                )

    for reaction in message.get("reactions") or []:
        name = slack_reaction_name(reaction.get("name", ""))
        if not name:
            continue
        try:
            await coordinator.executor.run(
                REACTION_TIER,
                lambda: asyncio.to_thread(
                    client.add_reaction, channel_id, resolution.message_id, name
                ),
                label=f"reaction :{name}:",
            )
            summary["reactions_added"] += 1
        except WorkItemFailedError as e:
            if isinstance(e.original, SlackApiError) and e.original.code == "already_reacted":
                continue
            coordinator.run_log.add_failure(
                "reaction_add", f":{name}: on #{channel_name}", e, warning=True
            )


async def import_channel(
    coordinator: MigrationCoordinator,
    client: SlackWebClient,
    channel: ImportChannel,
    target_channel: str | None = None,
) -> ImportSummary:
    """Post one channel's messages in order.

    A message that cannot be posted is recorded in the run log and skipped;
    its thread, if it was the root, then starts with the next message.

    Raises:
        WorkItemFailedError: If the channel cannot be found or created, or on
            an authentication failure.
    """
    name = target_channel or channel["name"]
    messages = channel.get("messages") or []
    summary: ImportSummary = {
        "channel": name,
        "messages_posted": 0,
        "messages_failed": 0,
        "threads_started": 0,
        "files_uploaded": 0,
        "reactions_added": 0,
    }

    channel_id = await find_or_create_channel(
        coordinator, client, name, channel.get("is_private", False)
    )
    log_with_context(
        logging.INFO,
        f"Importing {len(messages)} messages into #{name}",
        channel=name,
        channel_id=channel_id,
    )

    pbar = tqdm(messages, desc=f"Importing messages to #{name}")
    for index, message in enumerate(pbar):
        try:
            await _post_message(
                coordinator, client, channel_id, name, index, message, summary
            )
        except WorkItemFailedError as e:
            if e.is_authentication_failure:
                raise
            summary["messages_failed"] += 1
            coordinator.run_log.add_failure(
                "message_post", message.get("display_name") or "Unknown User", e
            )

    log_with_context(
        logging.INFO,
        f"Finished #{name}: {summary['messages_posted']} posted, "
        f"{summary['messages_failed']} failed",
        channel=name,
    )
    return summary


async def import_channels(
    coordinator: MigrationCoordinator,
    client: SlackWebClient,
    channels: list[ImportChannel],
    target_channel: str | None = None,
) -> list[ImportSummary]:
    """Import every channel, as many at once as the profile allows.

    Raises:
        WorkItemFailedError: On an authentication failure, once the channels
            already in progress have settled.
    """
    results = await coordinator.governor.run_all(
        channels,
        lambda channel: import_channel(coordinator, client, channel, target_channel),
        abort_on_auth_failure=coordinator.abort_on_auth_failure,
    )

    summaries: list[ImportSummary] = []
    for channel, result in results:
        if isinstance(result, BaseException):
            coordinator.run_log.add_failure(
                "channel_import", channel.get("name", "?"), result
            )
        else:
            summaries.append(result)
    return summaries
