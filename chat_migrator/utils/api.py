"""
API utilities for the chat migration tool
"""

import logging
from typing import Any, Dict, Optional

from google.oauth2 import service_account
from googleapiclient.discovery import build

from chat_migrator.utils.logging import log_with_context

REQUIRED_SCOPES = [
    "https://www.googleapis.com/auth/chat.spaces.readonly",
    "https://www.googleapis.com/auth/chat.messages.readonly",
    "https://www.googleapis.com/auth/chat.memberships.readonly",
]

# Directory API access for sender display names
DIRECTORY_SCOPES = [
    "https://www.googleapis.com/auth/admin.directory.user.readonly",
]

# Cache for service instances
_service_cache: Dict[str, Any] = {}


def get_gcp_service(
    creds_path: str,
    user_email: str,
    api: str = "chat",
    version: str = "v1",
    scopes: Optional[list] = None,
) -> Any:
    """Get a Google API client service using service account impersonation.

    Calls on the returned service are not retried; callers route them
    through the backoff executor.
    """
    cache_key = f"{creds_path}:{user_email}:{api}:{version}"
    if cache_key in _service_cache:
        log_with_context(logging.DEBUG, f"Using cached service for {api} as {user_email}")
        return _service_cache[cache_key]

    try:
        log_with_context(
            logging.DEBUG,
            f"Creating new service for {api} as {user_email} with required scopes.",
        )

        creds = service_account.Credentials.from_service_account_file(
            creds_path, scopes=scopes or REQUIRED_SCOPES
        )

        # Impersonate the target user
        delegated = creds.with_subject(user_email)

        service = build(api, version, credentials=delegated, cache_discovery=False)
        _service_cache[cache_key] = service
        return service
    except Exception as e:
        log_with_context(
            logging.ERROR,
            f"Failed to create {api} service: {e}",
            user_email=user_email,
            api=api,
            version=version,
        )
        raise


def clear_service_cache() -> None:
    """Forget cached services (used between runs and in tests)."""
    _service_cache.clear()
