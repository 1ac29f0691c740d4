"""CLI command handler for the end-to-end migration (export, transform, import)."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from pathlib import Path

import click

from chat_migrator.cli.common import (
    cli,
    common_options,
    create_run_output_directory,
    handle_exception,
)
from chat_migrator.cli.import_cmd import log_import_summaries
from chat_migrator.cli.transform_cmd import log_transform_stats
from chat_migrator.core.config import load_config
from chat_migrator.core.coordinator import MigrationCoordinator
from chat_migrator.core.run_log import RunLog
from chat_migrator.exceptions import ConfigError
from chat_migrator.services.chat_adapter import ChatAdapter
from chat_migrator.services.chat_export import export_workspace
from chat_migrator.services.directory_adapter import DirectoryAdapter
from chat_migrator.services.slack_client import SlackWebClient
from chat_migrator.services.slack_import import import_channels
from chat_migrator.services.transform import transform_export
from chat_migrator.types import ImportSummary, TransformStats
from chat_migrator.utils.api import DIRECTORY_SCOPES, get_gcp_service
from chat_migrator.utils.logging import log_with_context, setup_logger

EXPORT_DIRNAME = "export"
IMPORT_FILENAME = "import.json"


async def run_migration(
    export_coordinator: MigrationCoordinator,
    import_coordinator: MigrationCoordinator,
    adapter: ChatAdapter,
    directory: DirectoryAdapter | None,
    client: SlackWebClient | None,
    data_dir: str,
    spaces: list[str] | None = None,
) -> tuple[TransformStats, list[ImportSummary]]:
    """Export into ``<data_dir>/export``, transform, then import.

    The import stage is skipped when ``client`` is ``None`` (dry run). Each
    stage runs under its own command profile.

    Raises:
        WorkItemFailedError: On an authentication failure in any stage.
        ExportError: If the export cannot be written or read back.
    """
    export_dir = os.path.join(data_dir, EXPORT_DIRNAME)
    import_file = os.path.join(data_dir, IMPORT_FILENAME)

    log_with_context(logging.INFO, "Stage 1/3: export from Google Chat")
    await export_workspace(export_coordinator, adapter, directory, export_dir, spaces)

    log_with_context(logging.INFO, "Stage 2/3: transform to Slack import format")
    channels, stats = await asyncio.to_thread(
        transform_export,
        export_dir,
        None if client is None else import_file,
        import_coordinator.run_log,
    )
    log_transform_stats(stats)

    if client is None:
        log_with_context(logging.INFO, "Stage 3/3: import skipped (dry run)")
        return stats, []

    log_with_context(logging.INFO, "Stage 3/3: import into Slack")
    summaries = await import_channels(import_coordinator, client, channels)
    return stats, summaries


# ---------------------------------------------------------------------------
# migrate subcommand
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
    "--slack_token",
    envvar="SLACK_BOT_TOKEN",
    default=None,
    help="Slack bot token (or set SLACK_BOT_TOKEN); not needed with --dry_run",
)
@click.option(
    "--space",
    "spaces",
    multiple=True,
    help="Space to migrate (e.g. spaces/AAAA); repeatable. Default: all spaces",
)
@click.option(
    "--data_dir",
    default="migration_data",
    show_default=True,
    help="Directory for the export files and the generated import file",
)
@click.option(
    "--skip_user_lookup",
    is_flag=True,
    default=False,
    help="Do not look up sender names in the Workspace directory",
)
@click.option(
    "--dry_run",
    is_flag=True,
    default=False,
    help="Export and transform only; nothing is posted to Slack",
)
def migrate(
    creds_path: str,
    workspace_admin: str,
    slack_token: str | None,
    spaces: tuple[str, ...],
    data_dir: str,
    skip_user_lookup: bool,
    dry_run: bool,
    config: str,
    verbose: bool,
    json_logs: bool,
) -> None:
    """Run the full Google Chat to Slack migration.

    Args:
        creds_path: Path to service account credentials JSON.
        workspace_admin: Email of the Workspace user to impersonate.
        slack_token: Slack bot token.
        spaces: Spaces to migrate; all visible spaces when empty.
        data_dir: Directory for intermediate files.
        skip_user_lookup: Skip the directory name lookup.
        dry_run: Stop before the import stage.
        config: Path to config YAML.
        verbose: Enable verbose console logging.
        json_logs: Write the main log file as JSON lines.
    """
    setup_logger(verbose)

    try:
        if not dry_run and not slack_token:
            raise ConfigError(
                "--slack_token (or SLACK_BOT_TOKEN) is required without --dry_run"
            )
        cfg = load_config(Path(config))
        output_dir = create_run_output_directory(cfg.output_dir, "migrate")
        setup_logger(verbose, output_dir, json_logs)
        log_with_context(logging.INFO, f"Output directory: {output_dir}")

        run_log = RunLog()
        export_coordinator = MigrationCoordinator.for_profile(
            cfg.profile("export"),
            abort_on_auth_failure=cfg.abort_on_auth_failure,
            run_log=run_log,
        )
        import_coordinator = MigrationCoordinator.for_profile(
            cfg.profile("import"),
            abort_on_auth_failure=cfg.abort_on_auth_failure,
            run_log=run_log,
        )
        adapter = ChatAdapter(get_gcp_service(creds_path, workspace_admin, "chat", "v1"))
        directory = None
        if not skip_user_lookup:
            directory = DirectoryAdapter(
                get_gcp_service(
                    creds_path, workspace_admin, "admin", "directory_v1", DIRECTORY_SCOPES
                )
            )
        client = None if dry_run else SlackWebClient(slack_token)
    except Exception as e:
        handle_exception(e)
        sys.exit(1)

    try:
        _, summaries = asyncio.run(
            run_migration(
                export_coordinator,
                import_coordinator,
                adapter,
                directory,
                client,
                data_dir,
                list(spaces) or None,
            )
        )
    except (Exception, KeyboardInterrupt) as e:
        handle_exception(e)
        sys.exit(1)
    finally:
        run_log.write(output_dir)

    log_import_summaries(summaries)
    if run_log.has_errors():
        log_with_context(
            logging.WARNING,
            f"Migration finished with {run_log.error_count} error(s); see {output_dir}",
        )
    elif dry_run:
        log_with_context(
            logging.INFO, f"Dry run complete; import file not written. Data in {data_dir}"
        )
    else:
        log_with_context(logging.INFO, f"Migration complete. Data in {data_dir}")
