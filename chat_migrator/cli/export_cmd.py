"""CLI command handler for exporting Google Chat spaces."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import click

from chat_migrator.cli.common import (
    cli,
    common_options,
    create_run_output_directory,
    handle_exception,
)
from chat_migrator.core.config import load_config
from chat_migrator.core.coordinator import MigrationCoordinator
from chat_migrator.services.chat_adapter import ChatAdapter
from chat_migrator.services.chat_export import export_workspace
from chat_migrator.services.directory_adapter import DirectoryAdapter
from chat_migrator.utils.api import DIRECTORY_SCOPES, get_gcp_service
from chat_migrator.utils.logging import log_with_context, setup_logger

# ---------------------------------------------------------------------------
# export subcommand
# ---------------------------------------------------------------------------


@cli.command()
@common_options
@click.option(
    "--creds_path",
    required=True,
    help="Path to service account credentials JSON",
)
@click.option(
    "--workspace_admin",
    required=True,
    help="Email of the Workspace user to impersonate",
)
@click.option(
    "--export_path",
    default="chat_export",
    show_default=True,
    help="Directory to write one JSON file per space into",
)
@click.option(
    "--space",
    "spaces",
    multiple=True,
    help="Space to export (e.g. spaces/AAAA); repeatable. Default: all spaces",
)
@click.option(
    "--skip_user_lookup",
    is_flag=True,
    default=False,
    help="Do not look up sender names in the Workspace directory",
)
def export(
    creds_path: str,
    workspace_admin: str,
    export_path: str,
    spaces: tuple[str, ...],
    skip_user_lookup: bool,
    config: str,
    verbose: bool,
    json_logs: bool,
) -> None:
    """Export Google Chat spaces and their messages to JSON files.

    Args:
        creds_path: Path to service account credentials JSON.
        workspace_admin: Email of the Workspace user to impersonate.
        export_path: Directory for the exported space files.
        spaces: Spaces to export; all visible spaces when empty.
        skip_user_lookup: Skip writing users.json from the directory.
        config: Path to config YAML.
        verbose: Enable verbose console logging.
        json_logs: Write the main log file as JSON lines.
    """
    setup_logger(verbose)

    try:
        cfg = load_config(Path(config))
        output_dir = create_run_output_directory(cfg.output_dir, "export")
        setup_logger(verbose, output_dir, json_logs)
        log_with_context(logging.INFO, f"Output directory: {output_dir}")

        coordinator = MigrationCoordinator.for_profile(
            cfg.profile("export"), abort_on_auth_failure=cfg.abort_on_auth_failure
        )
        adapter = ChatAdapter(get_gcp_service(creds_path, workspace_admin, "chat", "v1"))
        directory = None
        if not skip_user_lookup:
            directory = DirectoryAdapter(
                get_gcp_service(
                    creds_path, workspace_admin, "admin", "directory_v1", DIRECTORY_SCOPES
                )
            )
    except Exception as e:
        handle_exception(e)
        sys.exit(1)

    try:
        exported = asyncio.run(
            export_workspace(
                coordinator, adapter, directory, export_path, list(spaces) or None
            )
        )
    except (Exception, KeyboardInterrupt) as e:
        handle_exception(e)
        sys.exit(1)
    finally:
        coordinator.run_log.write(output_dir)

    total = sum(exported.values())
    log_with_context(
        logging.INFO,
        f"Exported {total} messages from {len(exported)} space(s) to {export_path}",
    )
    if coordinator.run_log.has_errors():
        log_with_context(
            logging.WARNING,
            f"Export finished with {coordinator.run_log.error_count} error(s); "
            f"see {output_dir}",
        )
