"""CLI command handler for importing messages into Slack."""

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
from chat_migrator.services.slack_client import SlackWebClient
from chat_migrator.services.slack_import import import_channels, load_import_file
from chat_migrator.types import ImportSummary
from chat_migrator.utils.logging import log_with_context, setup_logger


def log_import_summaries(summaries: list[ImportSummary]) -> None:
    for summary in summaries:
        log_with_context(
            logging.INFO,
            f"#{summary['channel']}: {summary['messages_posted']} messages, "
            f"{summary['threads_started']} threads, {summary['files_uploaded']} files, "
            f"{summary['reactions_added']} reactions, "
            f"{summary['messages_failed']} failed",
            channel=summary["channel"],
        )


# ---------------------------------------------------------------------------
# import subcommand
# ---------------------------------------------------------------------------


@cli.command("import")
@common_options
@click.option(
    "--import_file",
    required=True,
    help="Path to the import JSON file ({\"channels\": [...]})",
)
@click.option(
    "--slack_token",
    envvar="SLACK_BOT_TOKEN",
    required=True,
    help="Slack bot token (or set SLACK_BOT_TOKEN)",
)
@click.option(
    "--channel",
    "target_channel",
    default=None,
    help="Post every imported channel into this Slack channel instead",
)
def import_(
    import_file: str,
    slack_token: str,
    target_channel: str | None,
    config: str,
    verbose: bool,
    json_logs: bool,
) -> None:
    """Import messages, files and reactions into Slack channels.

    Args:
        import_file: Path to the import JSON file.
        slack_token: Slack bot token.
        target_channel: Optional single destination channel.
        config: Path to config YAML.
        verbose: Enable verbose console logging.
        json_logs: Write the main log file as JSON lines.
    """
    setup_logger(verbose)

    try:
        cfg = load_config(Path(config))
        channels = load_import_file(import_file)
        output_dir = create_run_output_directory(cfg.output_dir, "import")
        setup_logger(verbose, output_dir, json_logs)
        log_with_context(logging.INFO, f"Output directory: {output_dir}")

        coordinator = MigrationCoordinator.for_profile(
            cfg.profile("import"), abort_on_auth_failure=cfg.abort_on_auth_failure
        )
        client = SlackWebClient(slack_token)
    except Exception as e:
        handle_exception(e)
        sys.exit(1)

    try:
        summaries = asyncio.run(
            import_channels(coordinator, client, channels, target_channel)
        )
    except (Exception, KeyboardInterrupt) as e:
        handle_exception(e)
        sys.exit(1)
    finally:
        coordinator.run_log.write(output_dir)

    log_import_summaries(summaries)
    if coordinator.run_log.has_errors():
        log_with_context(
            logging.WARNING,
            f"Import finished with {coordinator.run_log.error_count} error(s); "
            f"see {output_dir}",
        )
