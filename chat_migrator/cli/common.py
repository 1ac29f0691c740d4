"""Shared CLI infrastructure: option decorators, error handlers, and the CLI group."""

from __future__ import annotations

import datetime
import logging
import os
from typing import TYPE_CHECKING, Callable

import click

if TYPE_CHECKING:
    from googleapiclient.errors import HttpError

import chat_migrator
from chat_migrator.constants import (
    HTTP_FORBIDDEN,
    HTTP_RATE_LIMIT,
    HTTP_SERVER_ERROR_MIN,
)
from chat_migrator.exceptions import MigratorError, WorkItemFailedError
from chat_migrator.utils.logging import log_with_context

# ---------------------------------------------------------------------------
# Shared option decorator
# ---------------------------------------------------------------------------


def common_options(f: Callable[..., None]) -> Callable[..., None]:
    """Decorator that adds options shared across the run subcommands.

    Args:
        f: The Click command function to decorate.

    Returns:
        The decorated function with common options attached.
    """
    f = click.option(
        "--config",
        default="config.yaml",
        show_default=True,
        help="Path to config YAML",
    )(f)
    f = click.option(
        "--verbose",
        "-v",
        is_flag=True,
        default=False,
        help="Enable verbose console logging (shows DEBUG level messages)",
    )(f)
    f = click.option(
        "--json_logs",
        is_flag=True,
        default=False,
        help="Write the main log file as JSON lines",
    )(f)
    return f


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group(
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.version_option(version=chat_migrator.__version__, prog_name="chat-migrator")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Google Chat to Slack migration tool.

    Args:
        ctx: The Click context (injected by ``@click.pass_context``).
    """
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


def create_run_output_directory(base_dir: str, command: str) -> str:
    """Create ``<base_dir>/<command>_<timestamp>`` for one run's logs."""
    timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    output_dir = os.path.join(base_dir, f"{command}_{timestamp}")
    os.makedirs(output_dir, exist_ok=True)
    return output_dir


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------


def handle_http_error(e: HttpError) -> None:
    """Handle HTTP errors with specific messages.

    Args:
        e: The Google API HTTP error to handle.
    """
    if e.resp.status == HTTP_FORBIDDEN:
        log_with_context(logging.ERROR, f"Permission denied error: {e}")
        log_with_context(
            logging.INFO,
            "\nThe service account doesn't have sufficient permissions. Please ensure:",
        )
        log_with_context(
            logging.INFO,
            "1. Domain-wide delegation is configured in your Google Workspace admin console",
        )
        log_with_context(
            logging.INFO, "2. The read-only Chat scopes are granted to the service account"
        )
    elif e.resp.status == HTTP_RATE_LIMIT:
        log_with_context(logging.ERROR, f"Rate limit exceeded: {e}")
        log_with_context(
            logging.INFO,
            "Lower the refill_rate for the tier in your config and run again.",
        )
    elif e.resp.status >= HTTP_SERVER_ERROR_MIN:
        log_with_context(logging.ERROR, f"Server error from Google API: {e}")
        log_with_context(
            logging.INFO, "This is likely a temporary issue. Please try again later."
        )
    else:
        log_with_context(logging.ERROR, f"API error during migration: {e}")


def handle_exception(e: BaseException) -> None:
    """Handle different types of exceptions.

    Args:
        e: The exception to handle.
    """
    from googleapiclient.errors import HttpError

    if isinstance(e, WorkItemFailedError) and e.is_authentication_failure:
        log_with_context(logging.ERROR, f"Authentication failed, run aborted: {e}")
        log_with_context(
            logging.INFO, "Check your credentials or bot token and try again."
        )
    elif isinstance(e, WorkItemFailedError) and isinstance(e.original, HttpError):
        handle_http_error(e.original)
    elif isinstance(e, MigratorError):
        log_with_context(logging.ERROR, str(e))
    elif isinstance(e, HttpError):
        handle_http_error(e)
    elif isinstance(e, FileNotFoundError):
        log_with_context(logging.ERROR, f"File not found: {e}")
        log_with_context(
            logging.INFO,
            "Please check that all required files exist and paths are correct.",
        )
    elif isinstance(e, KeyboardInterrupt):
        log_with_context(logging.WARNING, "Migration interrupted by user.")
        log_with_context(
            logging.INFO, "Logs recorded so far have been saved to the output directory."
        )
    else:
        log_with_context(logging.ERROR, f"Migration failed: {e}", exc_info=True)
