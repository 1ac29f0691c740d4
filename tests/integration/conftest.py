"""Integration test configuration.

These tests require external service credentials and are skipped by default.
Set GOOGLE_APPLICATION_CREDENTIALS and CHAT_MIGRATOR_ADMIN to a service
account JSON file and the user to impersonate to enable the Google Chat
tests.
"""

import os

import pytest


@pytest.fixture()
def google_credentials():
    """Return ``(creds_path, admin_email)`` or skip the test."""
    creds_path = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
    admin = os.environ.get("CHAT_MIGRATOR_ADMIN")
    if not (creds_path and admin):
        pytest.skip(
            "Integration tests require GOOGLE_APPLICATION_CREDENTIALS and CHAT_MIGRATOR_ADMIN"
        )
    return creds_path, admin
