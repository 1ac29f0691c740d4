#!/usr/bin/env python3
"""
Click-based CLI entry point for the chat migration tool.

Importing the command modules registers their subcommands on the group.
"""

from chat_migrator.cli import (  # noqa: F401
    config_cmd,
    export_cmd,
    import_cmd,
    migrate_cmd,
    transform_cmd,
)
from chat_migrator.cli.common import cli, handle_exception

__all__ = ["cli", "handle_exception", "main"]


def main() -> None:
    """Main entry point for the chat-migrator command."""
    cli()


if __name__ == "__main__":
    main()
