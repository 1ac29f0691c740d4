"""
Google Chat export driver.

Reads spaces, their members and their messages through the backoff
executor under the ``google-chat`` tier and writes one JSON file per space.
Spaces run concurrently up to the profile's limit; a space that fails is
recorded in the run log and the rest of the export carries on.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import TYPE_CHECKING, Any, Callable

from chat_migrator.exceptions import ExportError
from chat_migrator.services.chat_adapter import ChatAdapter
from chat_migrator.services.directory_adapter import DirectoryAdapter
from chat_migrator.services.user_directory import export_user_names
from chat_migrator.types import ServiceTier
from chat_migrator.utils.logging import log_with_context

if TYPE_CHECKING:
    from chat_migrator.core.coordinator import MigrationCoordinator


def space_filename(space_name: str) -> str:
    """``spaces/AAAA`` -> ``AAAA.json``."""
    return f"{space_name.rsplit('/', 1)[-1]}.json"


def _write_space_file(path: str, data: dict[str, Any]) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


async def _paginate(
    coordinator: MigrationCoordinator,
    fetch: Callable[[str | None], dict[str, Any]],
    key: str,
    label: str,
) -> list[dict[str, Any]]:
    """Collect ``key`` items from every page; each page is one work item."""
    items: list[dict[str, Any]] = []
    page_token: str | None = None
    page = 0
    while True:
        page += 1
        token = page_token
        response = await coordinator.executor.run(
            ServiceTier.GOOGLE_CHAT,
            lambda: asyncio.to_thread(fetch, token),
            label=f"{label} page {page}",
        )
        items.extend(response.get(key, []))
        page_token = response.get("nextPageToken")
        if not page_token:
            return items


async def list_space_names(
    coordinator: MigrationCoordinator, adapter: ChatAdapter
) -> list[str]:
    spaces = await _paginate(
        coordinator,
        lambda token: adapter.list_spaces(page_token=token),
        "spaces",
        "list spaces",
    )
    return [space["name"] for space in spaces if space.get("name")]


async def export_space(
    coordinator: MigrationCoordinator,
    adapter: ChatAdapter,
    space_name: str,
    output_dir: str,
) -> int:
    """Export one space to ``<output_dir>/<space id>.json``.

    Returns:
        Number of messages written.

    Raises:
        WorkItemFailedError: If any call for the space fails terminally.
    """
    log_with_context(logging.INFO, f"Exporting {space_name}", space=space_name)

    space = await coordinator.executor.run(
        ServiceTier.GOOGLE_CHAT,
        lambda: asyncio.to_thread(adapter.get_space, space_name),
        label=f"get {space_name}",
    )
    members = await _paginate(
        coordinator,
        lambda token: adapter.list_memberships(space_name, page_token=token),
        "memberships",
        f"members of {space_name}",
    )
    messages = await _paginate(
        coordinator,
        lambda token: adapter.list_messages(space_name, page_token=token),
        "messages",
        f"messages of {space_name}",
    )

    path = os.path.join(output_dir, space_filename(space_name))
    await asyncio.to_thread(
        _write_space_file,
        path,
        {"space": space, "memberships": members, "messages": messages},
    )

    log_with_context(
        logging.INFO,
        f"Exported {len(messages)} messages from {space_name} to {path}",
        space=space_name,
        messages=len(messages),
    )
    return len(messages)


async def export_spaces(
    coordinator: MigrationCoordinator,
    adapter: ChatAdapter,
    output_dir: str,
    space_names: list[str] | None = None,
) -> dict[str, int]:
    """Export ``space_names`` (default: every visible space).

    Returns:
        Message count per successfully exported space.

    Raises:
        WorkItemFailedError: If listing spaces fails, or an authentication
            failure aborts the run.
        ExportError: If the output directory cannot be created.
    """
    try:
        os.makedirs(output_dir, exist_ok=True)
    except OSError as e:
        raise ExportError(f"Cannot create output directory {output_dir}: {e}") from e

    if space_names is None:
        space_names = await list_space_names(coordinator, adapter)
    log_with_context(logging.INFO, f"Exporting {len(space_names)} space(s)")

    results = await coordinator.governor.run_all(
        space_names,
        lambda name: export_space(coordinator, adapter, name, output_dir),
        abort_on_auth_failure=coordinator.abort_on_auth_failure,
    )

    exported: dict[str, int] = {}
    for name, result in results:
        if isinstance(result, BaseException):
            coordinator.run_log.add_failure("space_export", name, result)
        else:
            exported[name] = result
    return exported


async def export_workspace(
    coordinator: MigrationCoordinator,
    adapter: ChatAdapter,
    directory: DirectoryAdapter | None,
    output_dir: str,
    space_names: list[str] | None = None,
) -> dict[str, int]:
    """Export spaces, then write ``users.json`` when ``directory`` is given.

    Raises:
        WorkItemFailedError: On an authentication failure.
        ExportError: If the output directory cannot be used.
    """
    exported = await export_spaces(coordinator, adapter, output_dir, space_names)
    if directory is not None and exported:
        await export_user_names(coordinator, directory, output_dir)
    return exported
