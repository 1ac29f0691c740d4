"""
Offline conversion of a Google Chat export into a Slack import file.

Reads the per-space JSON files written by the export driver (plus
``users.json`` when the directory lookup ran) and produces the
``{"channels": [...]}`` document the import driver consumes. No API calls
are made. Message text is carried over as is.
"""

from __future__ import annotations

import datetime
import json
import logging
import os
import re
from typing import Any

from chat_migrator.core.run_log import RunLog
from chat_migrator.exceptions import ExportError
from chat_migrator.services.slack_import import slack_reaction_name
from chat_migrator.services.user_directory import USERS_FILENAME
from chat_migrator.types import (
    ImportAttachment,
    ImportChannel,
    ImportMessage,
    ImportReaction,
    TransformStats,
)
from chat_migrator.utils.logging import log_with_context

ATTACHMENTS_DIRNAME = "attachments"
SLACK_CHANNEL_NAME_MAX = 80
DM_SPACE_TYPES = ("DM", "DIRECT_MESSAGE")


def normalize_channel_name(display_name: str) -> str:
    """Lowercase, hyphen-separated name within Slack's length limit."""
    name = re.sub(r"[^a-z0-9\-_]", "-", display_name.lower())
    name = re.sub(r"-+", "-", name).strip("-")
    return name[:SLACK_CHANNEL_NAME_MAX]


def channel_name_for(space: dict[str, Any]) -> str:
    """Slack channel name for a space; DMs and unnamed spaces use the space id."""
    name = normalize_channel_name(space.get("displayName") or "")
    if name:
        return name
    space_id = space.get("name", "unknown").rsplit("/", 1)[-1]
    prefix = "dm" if space.get("spaceType") in DM_SPACE_TYPES else "space"
    return normalize_channel_name(f"{prefix}-{space_id}")


def load_export(input_dir: str) -> tuple[list[dict[str, Any]], dict[str, str]]:
    """Read every space file and the user names from an export directory.

    Returns:
        ``(spaces, users)``: space documents in file name order and the
        ``users/<id>`` -> display name mapping (empty without ``users.json``).

    Raises:
        ExportError: If the directory or a file in it cannot be read.
    """
    try:
        filenames = sorted(os.listdir(input_dir))
    except OSError as e:
        raise ExportError(f"Cannot read export directory {input_dir}: {e}") from e

    spaces: list[dict[str, Any]] = []
    users: dict[str, str] = {}
    for filename in filenames:
        if not filename.endswith(".json"):
            continue
        path = os.path.join(input_dir, filename)
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ExportError(f"Cannot read export file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ExportError(f"Export file {path} must contain an object")

        if filename == USERS_FILENAME:
            users = {str(k): str(v) for k, v in data.items()}
        elif "space" in data:
            spaces.append(data)
    return spaces, users


def _display_name(user: dict[str, Any] | None, users: dict[str, str]) -> str | None:
    if not user or not user.get("name"):
        return None
    return users.get(user["name"]) or user.get("displayName") or user["name"]


def _attachments(
    message: dict[str, Any], input_dir: str, run_log: RunLog
) -> list[ImportAttachment]:
    attachments: list[ImportAttachment] = []
    for attachment in message.get("attachment") or []:
        filename = os.path.basename(
            attachment.get("localFilePath") or attachment.get("contentName") or ""
        )
        if not filename:
            continue
        local_path = os.path.abspath(os.path.join(input_dir, ATTACHMENTS_DIRNAME, filename))
        if not os.path.isfile(local_path):
            run_log.add_warning(
                "attachment_missing",
                filename,
                f"Not found under {ATTACHMENTS_DIRNAME}/; left out of "
                f"{message.get('name', 'message')}",
            )
            continue
        attachments.append(
            ImportAttachment(
                local_path=local_path,
                filename=filename,
                title=attachment.get("contentName") or filename,
                alt_text=f"Attachment: {filename}",
            )
        )
    return attachments


def _reactions(message: dict[str, Any]) -> list[ImportReaction]:
    reactions: list[ImportReaction] = []
    for summary in message.get("emojiReactionSummaries") or []:
        unicode = (summary.get("emoji") or {}).get("unicode")
        if unicode:
            reactions.append(ImportReaction(name=slack_reaction_name(unicode)))
    return reactions


def transform_message(
    message: dict[str, Any],
    users: dict[str, str],
    input_dir: str,
    run_log: RunLog,
) -> ImportMessage | None:
    """Convert one exported message; ``None`` when it has no sender."""
    display_name = _display_name(message.get("sender"), users)
    if display_name is None:
        return None

    result = ImportMessage(text=message.get("text") or "", display_name=display_name)
    if message.get("createTime"):
        result["timestamp"] = message["createTime"]
    thread_name = (message.get("thread") or {}).get("name")
    if thread_name:
        result["thread_id"] = thread_name
    attachments = _attachments(message, input_dir, run_log)
    if attachments:
        result["attachments"] = attachments
    reactions = _reactions(message)
    if reactions:
        result["reactions"] = reactions
    return result


def transform_export(
    input_dir: str,
    output_path: str | None = None,
    run_log: RunLog | None = None,
) -> tuple[list[ImportChannel], TransformStats]:
    """Convert an export directory into import channels.

    Writes ``{"export_timestamp", "channels"}`` to ``output_path`` unless it
    is ``None`` (dry run). Messages without a sender are skipped and
    counted; attachments never downloaded are left out with a warning.

    Raises:
        ExportError: If the export cannot be read or the output written.
    """
    run_log = run_log if run_log is not None else RunLog()
    spaces, users = load_export(input_dir)
    stats = TransformStats(
        channels=0, messages=0, skipped=0, users=len(users),
        threads=0, attachments=0, reactions=0,
    )

    channels: list[ImportChannel] = []
    taken: set[str] = set()
    for data in spaces:
        space = data.get("space") or {}
        name = base = channel_name_for(space)
        suffix = 2
        while name in taken:
            name = f"{base[:SLACK_CHANNEL_NAME_MAX - 4]}-{suffix}"
            suffix += 1
        taken.add(name)

        messages: list[ImportMessage] = []
        thread_sizes: dict[str, int] = {}
        for raw in data.get("messages") or []:
            message = transform_message(raw, users, input_dir, run_log)
            if message is None:
                stats["skipped"] += 1
                run_log.add_warning(
                    "message_skipped", raw.get("name", "?"), "Message has no sender"
                )
                continue
            messages.append(message)
            stats["attachments"] += len(message.get("attachments", []))
            stats["reactions"] += len(message.get("reactions", []))
            if "thread_id" in message:
                key = message["thread_id"]
                thread_sizes[key] = thread_sizes.get(key, 0) + 1

        channels.append(
            ImportChannel(
                name=name,
                is_private=space.get("spaceType") in DM_SPACE_TYPES,
                messages=messages,
            )
        )
        stats["channels"] += 1
        stats["messages"] += len(messages)
        stats["threads"] += sum(1 for size in thread_sizes.values() if size > 1)

    if output_path is not None:
        document = {
            "export_timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
            "channels": channels,
        }
        try:
            with open(output_path, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, ensure_ascii=False)
        except OSError as e:
            raise ExportError(f"Cannot write import file {output_path}: {e}") from e

    log_with_context(
        logging.INFO,
        f"Transformed {stats['messages']} messages in {stats['channels']} channel(s)"
        + (f" to {output_path}" if output_path else " (dry run)"),
        channels=stats["channels"],
        messages=stats["messages"],
    )
    return channels, stats
