"""Command-line interface for the chat migration tool."""
