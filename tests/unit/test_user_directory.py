"""Unit tests for the directory user name lookup."""

import asyncio
import json
from unittest.mock import MagicMock

import httplib2
import pytest
from googleapiclient.errors import HttpError

from chat_migrator.exceptions import ExportError, WorkItemFailedError
from chat_migrator.services.directory_adapter import DirectoryAdapter
from chat_migrator.services.user_directory import (
    UserNameCache,
    collect_user_ids,
    display_name_from,
    export_user_names,
    resolve_user_names,
    user_key,
)
from chat_migrator.types import ServiceTier


def _make_http_error(status, reason="error"):
    resp = httplib2.Response({"status": status})
    resp.reason = reason
    return HttpError(resp, b"error body")


def _user(full_name):
    return {"name": {"fullName": full_name}, "primaryEmail": "x@example.com"}


@pytest.fixture()
def directory():
    """DirectoryAdapter double answering from a dict keyed by user id."""
    people = {"1": _user("Alice Smith"), "2": _user("Bob Jones")}
    mock = MagicMock(name="directory_adapter")

    def get_user(key):
        if key not in people:
            raise _make_http_error(404, "Not Found")
        return people[key]

    mock.get_user.side_effect = get_user
    return mock


@pytest.fixture()
def coordinator(make_coordinator):
    return make_coordinator(max_concurrent=2)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def test_user_key_strips_resource_prefix():
    assert user_key("users/123") == "123"
    assert user_key("alice@example.com") == "alice@example.com"


@pytest.mark.parametrize(
    "user, expected",
    [
        ({"name": {"displayName": "Al", "fullName": "Alice Smith"}}, "Al"),
        ({"name": {"fullName": "Alice Smith"}, "primaryEmail": "a@x.com"}, "Alice Smith"),
        ({"name": {}, "primaryEmail": "a@x.com"}, "a@x.com"),
        ({}, None),
    ],
)
def test_display_name_from(user, expected):
    assert display_name_from(user) == expected


def test_collect_user_ids_includes_mentions():
    messages = [
        {"sender": {"name": "users/1"}},
        {
            "sender": {"name": "users/2"},
            "annotations": [
                {"type": "USER_MENTION", "userMention": {"user": {"name": "users/3"}}},
                {"type": "SLASH_COMMAND"},
            ],
        },
        {"text": "no sender"},
    ]

    assert collect_user_ids(messages) == {"users/1", "users/2", "users/3"}


# ---------------------------------------------------------------------------
# UserNameCache
# ---------------------------------------------------------------------------


class TestUserNameCache:
    """Tests for UserNameCache."""

    def test_entries_expire(self, clock):
        cache = UserNameCache(expiry=300.0, clock=clock)
        cache.store("users/1", "Alice")

        clock.advance(300.0)
        assert cache.has("users/1")
        assert cache.get("users/1") == "Alice"

        clock.advance(1.0)
        assert not cache.has("users/1")
        assert len(cache) == 0

    def test_misses_are_cached(self, clock):
        cache = UserNameCache(clock=clock)
        cache.store("users/1", None)

        assert cache.has("users/1")
        assert cache.get("users/1") is None

    def test_failed_user_is_retried_until_max_attempts(self, clock):
        cache = UserNameCache(max_attempts=3, clock=clock)

        cache.record_failure("users/1")
        cache.record_failure("users/1")
        assert not cache.has("users/1")

        cache.record_failure("users/1")
        assert cache.has("users/1")
        assert cache.get("users/1") is None


# ---------------------------------------------------------------------------
# resolve_user_names
# ---------------------------------------------------------------------------


class TestResolveUserNames:
    """Tests for resolve_user_names()."""

    def test_resolves_names_on_the_directory_tier(self, coordinator, directory):
        names = asyncio.run(
            resolve_user_names(coordinator, directory, ["users/1", "users/2", "users/1"])
        )

        assert names == {"users/1": "Alice Smith", "users/2": "Bob Jones"}
        assert sorted(c.args[0] for c in directory.get_user.call_args_list) == ["1", "2"]
        assert coordinator.registry.status(ServiceTier.GOOGLE_DIRECTORY)["available"] == 998

    def test_cached_users_are_not_fetched_again(self, coordinator, directory, clock):
        cache = UserNameCache(clock=clock)
        cache.store("users/1", "Cached Alice")

        names = asyncio.run(
            resolve_user_names(coordinator, directory, ["users/1", "users/2"], cache)
        )

        assert names == {"users/1": "Cached Alice", "users/2": "Bob Jones"}
        directory.get_user.assert_called_once_with("2")
        assert cache.get("users/2") == "Bob Jones"

    def test_unknown_user_is_a_warning(self, coordinator, directory):
        names = asyncio.run(resolve_user_names(coordinator, directory, ["users/9"]))

        assert names == {}
        warnings = coordinator.run_log.warnings
        assert [(w.category, w.identifier, w.message) for w in warnings] == [
            ("user_lookup", "users/9", "User not found in directory")
        ]
        assert not coordinator.run_log.has_errors()

    def test_access_denied_is_a_warning(self, coordinator, directory):
        directory.get_user.side_effect = _make_http_error(403, "Forbidden")

        names = asyncio.run(resolve_user_names(coordinator, directory, ["users/1"]))

        assert names == {}
        assert "domain-wide delegation" in coordinator.run_log.warnings[0].message
        assert not coordinator.run_log.has_errors()

    def test_user_without_name_data_is_a_warning(self, coordinator, directory):
        directory.get_user.side_effect = lambda key: {"name": {}}

        names = asyncio.run(resolve_user_names(coordinator, directory, ["users/1"]))

        assert names == {}
        assert coordinator.run_log.warnings[0].message == "No name data found in directory"

    def test_other_failures_are_recorded_as_errors(self, coordinator, directory, clock):
        directory.get_user.side_effect = _make_http_error(503, "Unavailable")

        names = asyncio.run(resolve_user_names(coordinator, directory, ["users/1"]))

        assert names == {}
        assert [e.category for e in coordinator.run_log.errors] == ["user_lookup"]
        # max_retries + 1 attempts
        assert directory.get_user.call_count == 4

    def test_auth_failure_raises(self, coordinator, directory):
        directory.get_user.side_effect = _make_http_error(401, "Unauthorized")

        with pytest.raises(WorkItemFailedError):
            asyncio.run(resolve_user_names(coordinator, directory, ["users/1"]))


# ---------------------------------------------------------------------------
# export_user_names
# ---------------------------------------------------------------------------


class TestExportUserNames:
    """Tests for export_user_names()."""

    def test_writes_users_file_from_space_files(self, coordinator, directory, tmp_path):
        (tmp_path / "AAA.json").write_text(
            json.dumps({"space": {}, "messages": [{"sender": {"name": "users/1"}}]})
        )
        (tmp_path / "BBB.json").write_text(
            json.dumps({"space": {}, "messages": [{"sender": {"name": "users/2"}}]})
        )
        (tmp_path / "users.json").write_text(json.dumps({"stale": "entry"}))

        names = asyncio.run(export_user_names(coordinator, directory, str(tmp_path)))

        expected = {"users/1": "Alice Smith", "users/2": "Bob Jones"}
        assert names == expected
        assert json.loads((tmp_path / "users.json").read_text()) == expected

    def test_unreadable_export_raises(self, coordinator, directory, tmp_path):
        (tmp_path / "AAA.json").write_text("{broken")

        with pytest.raises(ExportError, match="Cannot read exported spaces"):
            asyncio.run(export_user_names(coordinator, directory, str(tmp_path)))


# ---------------------------------------------------------------------------
# DirectoryAdapter
# ---------------------------------------------------------------------------


def test_directory_adapter_gets_user_by_key():
    service = MagicMock()
    service.users.return_value.get.return_value.execute.return_value = _user("Alice")

    result = DirectoryAdapter(service).get_user("123")

    assert result == _user("Alice")
    service.users.return_value.get.assert_called_once_with(userKey="123")
