"""Platform clients and the export/import drivers built on the core."""

__all__ = [
    "chat_adapter",
    "chat_export",
    "slack_client",
    "slack_import",
]
