"""Shared test fixtures for the chat_migrator test suite."""

import asyncio
import json

import pytest


class FakeClock:
    """Controllable monotonic clock with a matching awaitable sleep.

    ``sleep`` records the requested delay, advances the clock by it and
    yields to the event loop, so backoff schedules run instantly.
    """

    def __init__(self, start=1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture()
def clock():
    """Return a fresh FakeClock."""
    return FakeClock()


@pytest.fixture()
def sample_import_channels():
    """Return import data for one channel with a two-message thread."""
    return [
        {
            "name": "general",
            "is_private": False,
            "messages": [
                {
                    "text": "Hello",
                    "display_name": "Alice Smith",
                    "timestamp": "2024-01-15T10:00:00Z",
                    "thread_id": "spaces/AAA/threads/T1",
                },
                {
                    "text": "Reply",
                    "display_name": "Bob Jones",
                    "timestamp": "2024-01-15T10:05:00Z",
                    "thread_id": "spaces/AAA/threads/T1",
                    "reactions": [{"name": "thumbsup"}],
                },
                {
                    "text": "Standalone",
                    "display_name": "Alice Smith",
                    "timestamp": "2024-01-15T11:00:00Z",
                },
            ],
        }
    ]


@pytest.fixture()
def import_file(tmp_path, sample_import_channels):
    """Write the sample channels to an import JSON file and return its path."""
    path = tmp_path / "import.json"
    path.write_text(json.dumps({"channels": sample_import_channels}))
    return path
