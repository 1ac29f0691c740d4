"""Unit tests for the API utilities module."""

from unittest.mock import MagicMock, patch

import pytest

from chat_migrator.utils.api import (
    REQUIRED_SCOPES,
    _service_cache,
    clear_service_cache,
    get_gcp_service,
)

# ---------------------------------------------------------------------------
# get_gcp_service: credential loading and caching
# ---------------------------------------------------------------------------


class TestGetGcpService:
    """Tests for get_gcp_service()."""

    @pytest.fixture(autouse=True)
    def _clear_cache(self):
        """Ensure the service cache is empty before and after each test."""
        _service_cache.clear()
        yield
        _service_cache.clear()

    @patch("chat_migrator.utils.api.build")
    @patch(
        "chat_migrator.utils.api.service_account.Credentials.from_service_account_file"
    )
    def test_creates_delegated_service(self, mock_creds, mock_build):
        mock_cred_instance = MagicMock()
        mock_creds.return_value = mock_cred_instance
        mock_delegated = MagicMock()
        mock_cred_instance.with_subject.return_value = mock_delegated
        service = MagicMock()
        mock_build.return_value = service

        result = get_gcp_service("/path/creds.json", "user@example.com")

        assert result is service
        mock_creds.assert_called_once_with("/path/creds.json", scopes=REQUIRED_SCOPES)
        mock_cred_instance.with_subject.assert_called_once_with("user@example.com")
        mock_build.assert_called_once_with(
            "chat", "v1", credentials=mock_delegated, cache_discovery=False
        )

    @patch("chat_migrator.utils.api.build")
    @patch(
        "chat_migrator.utils.api.service_account.Credentials.from_service_account_file"
    )
    def test_scopes_are_read_only(self, mock_creds, mock_build):
        get_gcp_service("/path/creds.json", "user@example.com")

        scopes = mock_creds.call_args.kwargs["scopes"]
        assert all(scope.endswith(".readonly") for scope in scopes)

    @patch("chat_migrator.utils.api.build")
    @patch(
        "chat_migrator.utils.api.service_account.Credentials.from_service_account_file"
    )
    def test_custom_scopes(self, mock_creds, mock_build):
        get_gcp_service("/path/creds.json", "user@example.com", scopes=["custom"])
        assert mock_creds.call_args.kwargs["scopes"] == ["custom"]

    @patch("chat_migrator.utils.api.build")
    @patch(
        "chat_migrator.utils.api.service_account.Credentials.from_service_account_file"
    )
    def test_returns_cached_service(self, mock_creds, mock_build):
        svc1 = get_gcp_service("/path/creds.json", "user@example.com")
        svc2 = get_gcp_service("/path/creds.json", "user@example.com")

        assert svc1 is svc2
        mock_build.assert_called_once()

    @patch("chat_migrator.utils.api.build")
    @patch(
        "chat_migrator.utils.api.service_account.Credentials.from_service_account_file"
    )
    def test_different_users_get_different_services(self, mock_creds, mock_build):
        mock_build.side_effect = [MagicMock(), MagicMock()]

        svc1 = get_gcp_service("/path/creds.json", "a@example.com")
        svc2 = get_gcp_service("/path/creds.json", "b@example.com")

        assert svc1 is not svc2
        assert mock_build.call_count == 2

    @patch(
        "chat_migrator.utils.api.service_account.Credentials.from_service_account_file"
    )
    def test_credential_errors_propagate(self, mock_creds):
        mock_creds.side_effect = FileNotFoundError("missing.json")

        with pytest.raises(FileNotFoundError):
            get_gcp_service("missing.json", "user@example.com")

        assert _service_cache == {}

    @patch("chat_migrator.utils.api.build")
    @patch(
        "chat_migrator.utils.api.service_account.Credentials.from_service_account_file"
    )
    def test_clear_service_cache(self, mock_creds, mock_build):
        get_gcp_service("/path/creds.json", "user@example.com")
        clear_service_cache()
        get_gcp_service("/path/creds.json", "user@example.com")

        assert mock_build.call_count == 2
