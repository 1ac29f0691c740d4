"""CLI command handler for turning an export into a Slack import file."""

from __future__ import annotations

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
from chat_migrator.core.run_log import RunLog
from chat_migrator.services.transform import transform_export
from chat_migrator.types import TransformStats
from chat_migrator.utils.logging import log_with_context, setup_logger


def log_transform_stats(stats: TransformStats) -> None:
    """Log the transform summary, one counter per line."""
    log_with_context(logging.INFO, "Transformation summary:")
    log_with_context(logging.INFO, f"   Channels: {stats['channels']} converted")
    log_with_context(logging.INFO, f"   Messages: {stats['messages']} processed")
    log_with_context(logging.INFO, f"   Users: {stats['users']} named")
    for label, count in (
        ("Skipped messages", stats["skipped"]),
        ("Threads", stats["threads"]),
        ("Attachments", stats["attachments"]),
        ("Reactions", stats["reactions"]),
    ):
        if count:
            log_with_context(logging.INFO, f"   {label}: {count}")


# ---------------------------------------------------------------------------
# transform subcommand
# ---------------------------------------------------------------------------


@cli.command()
@common_options
@click.option(
    "--export_path",
    default="chat_export",
    show_default=True,
    help="Directory holding the exported space files",
)
@click.option(
    "--import_file",
    default="import.json",
    show_default=True,
    help="Path of the Slack import file to write",
)
@click.option(
    "--dry_run",
    is_flag=True,
    default=False,
    help="Show transform statistics without writing the import file",
)
def transform(
    export_path: str,
    import_file: str,
    dry_run: bool,
    config: str,
    verbose: bool,
    json_logs: bool,
) -> None:
    """Convert exported Google Chat spaces into a Slack import file.

    Args:
        export_path: Directory holding the exported space files.
        import_file: Path of the import file to write.
        dry_run: Report statistics only.
        config: Path to config YAML.
        verbose: Enable verbose console logging.
        json_logs: Write the main log file as JSON lines.
    """
    setup_logger(verbose)

    try:
        cfg = load_config(Path(config))
        output_dir = create_run_output_directory(cfg.output_dir, "transform")
        setup_logger(verbose, output_dir, json_logs)
        log_with_context(logging.INFO, f"Output directory: {output_dir}")
    except Exception as e:
        handle_exception(e)
        sys.exit(1)

    run_log = RunLog()
    try:
        _, stats = transform_export(export_path, None if dry_run else import_file, run_log)
    except Exception as e:
        handle_exception(e)
        sys.exit(1)
    finally:
        run_log.write(output_dir)

    log_transform_stats(stats)
    if run_log.warning_count:
        log_with_context(
            logging.WARNING,
            f"Transform finished with {run_log.warning_count} warning(s); see {output_dir}",
        )
