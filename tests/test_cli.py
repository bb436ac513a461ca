"""Tests for the Command Line Interface (CLI) module."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest
from rich.console import Console

from git_notesync import cli
from git_notesync.config import Config
from git_notesync.errors import AuthError
from git_notesync.models import PublishResult, SyncTask


@pytest.fixture
def config() -> Config:
    conf = Config()
    conf.repository.name = "notes"
    conf.api.access_token = "secret"
    return conf


def test_show_status_stopped(
    tmp_path: Path, capsys: pytest.CaptureFixture, mocker: MagicMock, config: Config
) -> None:
    """Verifies that `show_status` reports a stopped daemon and the target.

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
        capsys (pytest.CaptureFixture): Pytest fixture for capturing stdout.
        mocker (MagicMock): Pytest fixture for mocking.
        config (Config): A valid configuration.
    """
    mocker.patch("git_notesync.cli.PID_FILE", tmp_path / "missing.pid")
    config.watcher.local_dirs = [str(tmp_path)]

    cli.show_status(config)

    captured = capsys.readouterr()
    assert "Stopped" in captured.out
    assert "<authenticated user>/notes @ master" in captured.out
    assert "Configuration Problems" not in captured.out


def test_show_status_active_with_problems(
    tmp_path: Path, capsys: pytest.CaptureFixture, mocker: MagicMock
) -> None:
    """Verifies a live PID is detected and config problems are listed."""
    pid_file = tmp_path / "daemon.pid"
    pid_file.write_text("4242")
    mocker.patch("git_notesync.cli.PID_FILE", pid_file)
    mocker.patch("git_notesync.cli.os.kill")
    mocker.patch.dict("os.environ", {"NOTESYNC_TOKEN": "", "GITHUB_TOKEN": ""})

    cli.show_status(Config())

    captured = capsys.readouterr()
    assert "Active (PID 4242)" in captured.out
    assert "Configuration Problems" in captured.out
    assert "[repository].name is not set" in captured.out


def test_publish_once_success(
    capsys: pytest.CaptureFixture, mocker: MagicMock, config: Config
) -> None:
    task = SyncTask("notes/a.md", Path("a.md"), 0.0)
    mocker.patch(
        "git_notesync.cli.daemon.publish_file",
        return_value=PublishResult(task, commit_sha="abcdef123456", attempts=2),
    )

    assert cli.publish_once(config, Path("a.md")) is True
    assert "notes/a.md -> abcdef1 (2 attempt(s))" in capsys.readouterr().out


def test_publish_once_failure(
    capsys: pytest.CaptureFixture, mocker: MagicMock, config: Config
) -> None:
    """Verifies the failure kind and reason are printed."""
    task = SyncTask("notes/a.md", Path("a.md"), 0.0)
    mocker.patch(
        "git_notesync.cli.daemon.publish_file",
        return_value=PublishResult(task, error=AuthError("Bad credentials")),
    )

    assert cli.publish_once(config, Path("a.md")) is False
    out = capsys.readouterr().out
    assert "FAILED" in out
    assert "AuthError: Bad credentials" in out


def test_run_check_reports_auth_failure(
    capsys: pytest.CaptureFixture, mocker: MagicMock, config: Config
) -> None:
    """Verifies `check` stops at a rejected credential."""
    client = mocker.patch("git_notesync.cli.GitObjectClient").return_value
    client.__enter__.return_value = client
    client.resolve_identity.side_effect = AuthError("Bad credentials")

    assert cli.run_check(config) is False
    assert "AuthError" in capsys.readouterr().out
    client.read_ref.assert_not_called()


def test_run_check_success(
    capsys: pytest.CaptureFixture, mocker: MagicMock, config: Config
) -> None:
    client = mocker.patch("git_notesync.cli.GitObjectClient").return_value
    client.__enter__.return_value = client
    client.resolve_identity.return_value = "octocat"
    client.read_ref.return_value = "0123456789abcdef"

    assert cli.run_check(config) is True
    out = capsys.readouterr().out
    assert "Authenticated as octocat" in out
    assert "octocat/notes heads/master at 0123456" in out


def test_config_command_opens_editor(mocker: MagicMock) -> None:
    """Verifies that the `config` command attempts to open the editor.

    Args:
        mocker (MagicMock): Pytest fixture for mocking.
    """
    mocker.patch.dict("os.environ", {"EDITOR": "nano"})
    mock_run = mocker.patch("subprocess.run")

    # Mock the CONFIG_FILE object entirely to support .exists() and str()
    mock_config_path = mocker.MagicMock(spec=Path)
    mock_config_path.exists.return_value = True
    mock_config_path.__str__.return_value = "/mock/config.toml"
    mocker.patch("git_notesync.cli.CONFIG_FILE", mock_config_path)

    cli.open_config()

    args = mock_run.call_args[0][0]
    assert args[0] == "nano"
    assert "/mock/config.toml" in str(args[1])


def test_main_config_list(capsys: pytest.CaptureFixture, mocker: MagicMock) -> None:
    """Verifies `config --list` prints the schema without opening an editor."""
    mocker.patch("sys.argv", ["git-notesync", "config", "--list"])
    mocker.patch("git_notesync.cli.console", Console(width=200))
    mock_open = mocker.patch("git_notesync.cli.open_config")

    cli.main()

    mock_open.assert_not_called()
    out = capsys.readouterr().out
    assert "max_attempts" in out
    assert "Configuration Schema" in out


def test_main_publish_exit_code(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies `publish` exits non-zero when the publish failed."""
    mocker.patch(
        "sys.argv", ["git-notesync", "--config-dir", str(tmp_path), "publish", "a.md"]
    )
    mocker.patch("git_notesync.cli.Config.load", return_value=Config())
    mock_publish = mocker.patch("git_notesync.cli.publish_once", return_value=False)

    with pytest.raises(SystemExit) as exc_info:
        cli.main()

    assert exc_info.value.code == 1
    assert mock_publish.call_args[0][1] == Path("a.md")


def test_main_runs_daemon_command(mocker: MagicMock) -> None:
    """Verifies that the `run` command sets up logging and enters the loop.

    Args:
        mocker (MagicMock): Pytest fixture for mocking.
    """
    mocker.patch("sys.argv", ["git-notesync", "run", "-v"])
    mocker.patch("git_notesync.cli.Config.load", return_value=Config())
    mock_logging = mocker.patch("git_notesync.daemon.setup_logging")
    mock_run = mocker.patch("git_notesync.daemon.run", return_value=0)

    with pytest.raises(SystemExit) as exc_info:
        cli.main()

    assert exc_info.value.code == 0
    mock_logging.assert_called_once_with(True, 5 * 1024 * 1024, verbose=True)
    mock_run.assert_called_once()
