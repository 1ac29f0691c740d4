"""
Per-run error and warning accumulation for the migration drivers.

Drivers record every item they give up on here instead of aborting, so a
run continues past individual failures and reports them at the end in an
``errors.log`` file next to the main log.
"""

from __future__ import annotations

import datetime
import logging
import os
from collections import Counter
from dataclasses import dataclass

from chat_migrator.constants import ERROR_LOG_FILENAME
from chat_migrator.exceptions import WorkItemFailedError
from chat_migrator.utils.logging import log_with_context

ERROR = "error"
WARNING = "warning"


@dataclass(frozen=True)
class RunLogEntry:
    """One recorded failure or warning."""

    timestamp: str
    kind: str  # ERROR or WARNING
    category: str  # e.g. "message_post", "file_upload", "space_export"
    identifier: str
    message: str
    details: str | None = None


class RunLog:
    """Collects item-level errors and warnings for one run."""

    def __init__(self) -> None:
        self.entries: list[RunLogEntry] = []

    def _add(
        self,
        kind: str,
        category: str,
        identifier: str,
        message: str,
        details: str | None,
    ) -> RunLogEntry:
        entry = RunLogEntry(
            timestamp=datetime.datetime.now(datetime.timezone.utc).isoformat(),
            kind=kind,
            category=category,
            identifier=identifier,
            message=message,
            details=details,
        )
        self.entries.append(entry)
        return entry

    def add_error(
        self, category: str, identifier: str, message: str, details: str | None = None
    ) -> None:
        self._add(ERROR, category, identifier, message, details)
        log_with_context(
            logging.ERROR,
            f"{category}: {identifier}: {message}",
            category=category,
        )

    def add_warning(
        self, category: str, identifier: str, message: str, details: str | None = None
    ) -> None:
        self._add(WARNING, category, identifier, message, details)
        log_with_context(
            logging.WARNING,
            f"{category}: {identifier}: {message}",
            category=category,
        )

    def add_failure(
        self, category: str, identifier: str, error: BaseException, warning: bool = False
    ) -> None:
        """Record a terminal failure, keeping the executor's tier and attempt count."""
        details = None
        if isinstance(error, WorkItemFailedError):
            details = (
                f"tier={error.tier} attempts={error.attempts} "
                f"kind={error.classification.kind.value} "
                f"original={type(error.original).__name__}"
            )
        add = self.add_warning if warning else self.add_error
        add(category, identifier, str(error), details)

    @property
    def errors(self) -> list[RunLogEntry]:
        return [e for e in self.entries if e.kind == ERROR]

    @property
    def warnings(self) -> list[RunLogEntry]:
        return [e for e in self.entries if e.kind == WARNING]

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def warning_count(self) -> int:
        return len(self.warnings)

    def has_errors(self) -> bool:
        return self.error_count > 0

    def counts_by_category(self) -> dict[str, int]:
        return dict(Counter(e.category for e in self.entries))

    def clear(self) -> None:
        self.entries.clear()

    def format(self) -> str:
        """Render all entries as the human-readable errors.log text."""
        generated = datetime.datetime.now(datetime.timezone.utc).isoformat()
        lines = [
            "Chat Migrator Errors",
            f"Generated: {generated}",
            f"Total Errors: {self.error_count}",
            f"Total Warnings: {self.warning_count}",
            "",
            "=" * 80,
            "",
        ]
        for index, entry in enumerate(self.entries, start=1):
            lines.append(f"[{index}] {entry.timestamp}")
            lines.append(
                f"{entry.kind.upper()}: {entry.category.replace('_', ' ').upper()}"
            )
            lines.append(f"Item: {entry.identifier}")
            lines.append(f"Error: {entry.message}")
            if entry.details:
                lines.append(f"Details: {entry.details}")
            lines.append("")
        return "\n".join(lines)

    def write(self, output_dir: str) -> str | None:
        """Write ``errors.log`` into ``output_dir`` if anything was recorded.

        Returns:
            The path written, or None when the log is empty.
        """
        if not self.entries:
            return None
        os.makedirs(output_dir, exist_ok=True)
        path = os.path.join(output_dir, ERROR_LOG_FILENAME)
        with open(path, "w", encoding="utf-8") as f:
            f.write(self.format())
        log_with_context(logging.INFO, f"Error log written to {path}")
        return path
