import threading
from unittest.mock import MagicMock

import pytest

from git_notesync.errors import AuthError
from git_notesync.identity import RemoteIdentityCache


def test_identity_is_resolved_once() -> None:
    """Verifies the login is looked up on first use and then reused."""
    client = MagicMock()
    client.resolve_identity.return_value = "octocat"
    cache = RemoteIdentityCache(client)

    assert cache.get() == "octocat"
    assert cache.get() == "octocat"
    client.resolve_identity.assert_called_once()


def test_auth_failure_is_not_cached() -> None:
    """Verifies a rejected lookup propagates and is retried on the next call."""
    client = MagicMock()
    client.resolve_identity.side_effect = [AuthError("Bad credentials"), "octocat"]
    cache = RemoteIdentityCache(client)

    with pytest.raises(AuthError):
        cache.get()
    assert cache.get() == "octocat"
    assert client.resolve_identity.call_count == 2


def test_invalidate_forces_lookup() -> None:
    client = MagicMock()
    client.resolve_identity.side_effect = ["old-login", "new-login"]
    cache = RemoteIdentityCache(client)

    assert cache.get() == "old-login"
    cache.invalidate()
    assert cache.get() == "new-login"


def test_concurrent_callers_share_one_lookup() -> None:
    """Verifies parallel publishes trigger a single identity request."""
    client = MagicMock()
    client.resolve_identity.return_value = "octocat"
    cache = RemoteIdentityCache(client)
    results: list[str] = []

    threads = [
        threading.Thread(target=lambda: results.append(cache.get())) for _ in range(8)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results == ["octocat"] * 8
    client.resolve_identity.assert_called_once()
