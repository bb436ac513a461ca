from unittest.mock import MagicMock

from git_notesync import system
from git_notesync.errors import NotFoundError
from git_notesync.models import SyncFailure


def test_get_system_per_platform(mocker: MagicMock) -> None:
    """Verifies the factory picks the strategy for the running platform."""
    mocker.patch("sys.platform", "darwin")
    assert isinstance(system.get_system(), system.MacOSStrategy)

    mocker.patch("sys.platform", "linux")
    assert isinstance(system.get_system(), system.LinuxStrategy)

    mocker.patch("sys.platform", "win32")
    assert type(system.get_system()) is system.SystemStrategy


def test_macos_notify_escapes_quotes(mocker: MagicMock) -> None:
    """Verifies double quotes cannot break out of the AppleScript string.

    Args:
        mocker (MagicMock): Pytest fixture for mocking.
    """
    mock_run = mocker.patch("subprocess.run")

    system.MacOSStrategy().notify("Title", 'file "a.md" failed')

    script = mock_run.call_args[0][0][2]
    assert "file 'a.md' failed" in script


def test_linux_notify_without_notify_send(mocker: MagicMock) -> None:
    mocker.patch("subprocess.run", side_effect=FileNotFoundError)

    system.LinuxStrategy().notify("Title", "body")


def test_notify_failure_formats_path_and_reason() -> None:
    """Verifies a failed path is surfaced with its reason."""
    strategy = MagicMock()
    error = NotFoundError("branch not found")
    failure = SyncFailure("notes/a.md", "NotFoundError: branch not found", error)

    system.notify_failure(failure, strategy)

    strategy.notify.assert_called_once_with(
        "Note Sync Failed", "notes/a.md: NotFoundError: branch not found"
    )
