"""CLI command handlers for inspecting and creating configuration."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from chat_migrator.cli.common import cli, handle_exception
from chat_migrator.core.config import (
    BUILTIN_PROFILES,
    create_default_config,
    load_config,
    merge_with_defaults,
)
from chat_migrator.types import ServiceTier
from chat_migrator.utils.logging import setup_logger

# ---------------------------------------------------------------------------
# limits subcommand
# ---------------------------------------------------------------------------


@cli.command()
@click.option(
    "--profile",
    type=click.Choice(sorted(BUILTIN_PROFILES)),
    default="import",
    show_default=True,
    help="Command profile to show",
)
@click.option(
    "--config",
    default="config.yaml",
    show_default=True,
    help="Path to config YAML",
)
@click.option("--json", "as_json", is_flag=True, help="Print the limits as JSON.")
def limits(profile: str, config: str, as_json: bool) -> None:
    """Show the effective rate limits of a command profile.

    Args:
        profile: Command profile name.
        config: Path to config YAML.
        as_json: Print JSON instead of a table.
    """
    setup_logger(False)

    try:
        effective = load_config(Path(config)).profile(profile)
    except Exception as e:
        handle_exception(e)
        sys.exit(1)

    rows = {}
    for tier in ServiceTier:
        cfg = merge_with_defaults(tier.value, effective.overrides.get(tier.value))
        rows[tier.value] = {
            "capacity": cfg.capacity,
            "refill_rate": cfg.refill_rate,
            "max_retries": cfg.max_retries,
            "base_delay": cfg.base_delay,
            "max_delay": cfg.max_delay,
        }

    if as_json:
        click.echo(
            json.dumps(
                {
                    "profile": effective.name,
                    "max_concurrent_operations": effective.max_concurrent_operations,
                    "tiers": rows,
                },
                indent=2,
            )
        )
        return

    click.echo(
        f"Profile: {effective.name} "
        f"(max concurrent operations: {effective.max_concurrent_operations})"
    )
    click.echo(
        f"{'tier':<18}{'capacity':>10}{'refill/s':>10}{'retries':>9}"
        f"{'base(s)':>9}{'max(s)':>9}"
    )
    for tier, row in rows.items():
        click.echo(
            f"{tier:<18}{row['capacity']:>10}{row['refill_rate']:>10g}"
            f"{row['max_retries']:>9}{row['base_delay']:>9g}{row['max_delay']:>9g}"
        )


# ---------------------------------------------------------------------------
# init-config subcommand
# ---------------------------------------------------------------------------


@cli.command("init-config")
@click.argument("path", default="config.yaml")
def init_config(path: str) -> None:
    """Write a config file listing the built-in profile settings.

    Args:
        path: Where to write the config YAML.
    """
    setup_logger(False)
    if not create_default_config(Path(path)):
        sys.exit(1)
    click.echo(f"Wrote default configuration to {path}")
