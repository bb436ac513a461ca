import argparse
import logging
import os
import subprocess
import sys
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from . import daemon
from .config import CONFIG_FILE, Config
from .constants import APP_NAME, LOG_FILE, PID_FILE
from .errors import NoteSyncError
from .git_api import GitObjectClient

logger = logging.getLogger(APP_NAME)
console = Console()


def _daemon_pid() -> int | None:
    """Returns the PID of a live daemon, or None."""
    if not PID_FILE.exists():
        return None
    try:
        with open(PID_FILE) as f:
            pid = int(f.read().strip())
        os.kill(pid, 0)
        return pid
    except (ValueError, OSError):
        return None


def open_config() -> None:
    """Opens the global configuration file in the system default editor."""
    if not CONFIG_FILE.exists():
        CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
        with open(CONFIG_FILE, "w") as f:
            f.write(
                "# git-notesync Configuration\n\n"
                "[repository]\n"
                '# name = "notes"\n'
                '# branch = "master"\n\n'
                "[watcher]\n"
                '# local_dirs = ["~/notes"]\n'
            )

    editor = os.environ.get("EDITOR")
    if not editor:
        if sys.platform == "darwin":
            editor = "open"
        else:
            editor = "nano"

    console.print(f"Opening [cyan]{CONFIG_FILE}[/cyan]...")

    try:
        subprocess.run([editor, str(CONFIG_FILE)])
    except OSError as e:
        console.print(f"[red]Could not open editor: {e}[/red]")


def show_status(config: Config) -> None:
    """Displays daemon liveness and the effective sync target."""
    pid = _daemon_pid()

    content = Text()
    content.append("Daemon:  ", style="bold")
    if pid:
        content.append(f"Active (PID {pid})\n", style="bold green")
    else:
        content.append("Stopped\n", style="bold red")

    repo = config.repository
    owner = repo.owner or "<authenticated user>"
    content.append("Target:  ", style="bold")
    content.append(f"{owner}/{repo.name or '<unset>'} @ {repo.branch}\n")
    if repo.base_dir:
        content.append("Prefix:  ", style="bold")
        content.append(f"{repo.base_dir}/\n")

    content.append("Watcher: ", style="bold")
    if config.watcher.enabled:
        content.append("Enabled\n", style="green")
    else:
        content.append("Disabled\n", style="yellow")
    for d in config.watcher.paths():
        style = "" if d.is_dir() else "red"
        content.append(f"  - {d}\n", style=style)

    console.print(Panel(content, title="git-notesync Status", expand=False))

    problems = config.validate()
    if problems:
        console.print(
            Panel(
                Text("\n".join(problems)),
                title="Configuration Problems",
                border_style="red",
                expand=False,
            )
        )


def run_check(config: Config) -> bool:
    """Verifies the credential and that the configured branch exists.

    Returns:
        bool: True if publishing can work with the current configuration.
    """
    problems = config.validate()
    if problems:
        for problem in problems:
            console.print(f"[bold red]CONFIG:[/bold red] {escape(problem)}")
        return False

    repo = config.repository
    with GitObjectClient(
        config.api.resolve_token(), api_url=config.api.url, timeout=config.api.timeout
    ) as client:
        try:
            with console.status("Checking credentials...", spinner="dots"):
                login = client.resolve_identity()
            console.print(f"[bold green]✔[/bold green] Authenticated as {login}")

            owner = repo.owner or login
            with console.status("Checking branch...", spinner="dots"):
                head = client.read_ref(owner, repo.name, repo.branch)
            console.print(
                f"[bold green]✔[/bold green] {owner}/{repo.name} "
                f"heads/{repo.branch} at {head[:7]}"
            )
        except NoteSyncError as e:
            console.print(f"[bold red]✘ {e.kind}:[/bold red] {e}")
            return False
    return True


def publish_once(config: Config, path: Path) -> bool:
    """Publishes one file immediately and reports the commit."""
    problems = config.validate()
    if problems:
        for problem in problems:
            console.print(f"[bold red]CONFIG:[/bold red] {escape(problem)}")
        return False

    with console.status(f"Publishing {path}...", spinner="dots"):
        result = daemon.publish_file(config, path)

    if result.ok:
        console.print(
            f"[bold green]SUCCESS:[/bold green] {result.task.remote_path} -> "
            f"{result.commit_sha[:7]} ({result.attempts} attempt(s))"
        )
        return True

    kind = type(result.error).__name__
    console.print(
        f"[bold red]FAILED:[/bold red] {result.task.remote_path}: {kind}: "
        f"{result.error}"
    )
    return False


def tail_log() -> None:
    """Follows the daemon log file in real-time."""
    if not LOG_FILE.exists():
        console.print(f"[red]No log file found yet at {LOG_FILE}.[/red]")
        return

    console.print(f"Tailing [bold cyan]{LOG_FILE}[/bold cyan] (Ctrl+C to stop)...")
    try:
        subprocess.run(["tail", "-n", "1000", "-f", str(LOG_FILE)])
    except KeyboardInterrupt:
        console.print("\nStopped.", style="dim")


def show_config_reference() -> None:
    """Displays a formatted table of all available configuration options."""
    table = Table(title="git-notesync Configuration Schema", show_lines=True)
    table.add_column("Section", style="cyan", justify="right")
    table.add_column("Key", style="green")
    table.add_column("Type", style="dim")
    table.add_column("Default", style="yellow")
    table.add_column("Description")

    table.add_row(
        "repository",
        "owner",
        "str",
        "None",
        "Repository owner. Defaults to the authenticated user.",
    )
    table.add_row("", "name", "str", '""', "Repository that receives the notes.")
    table.add_row("", "branch", "str", '"master"', "Branch the notes are committed to.")
    table.add_row("", "base_dir", "str", '""', "Directory prefix for published files.")

    table.add_row(
        "api", "url", "str", '"https://api.github.com"', "Git Data API base URL."
    )
    table.add_row(
        "",
        "access_token",
        "str",
        '""',
        "Bearer token. Falls back to $NOTESYNC_TOKEN, then $GITHUB_TOKEN.",
    )
    table.add_row(
        "", "timeout", "float | str", '"30s"', "Deadline for every API request."
    )

    table.add_row(
        "commit", "user_name", "str", '"git-notesync"', "Commit author name."
    )
    table.add_row("", "user_email", "str", '"git-notesync@localhost"', "Author email.")
    table.add_row("", "message", "str", '"Update notes"', "Commit message.")

    table.add_row("watcher", "enabled", "bool", "true", "Watch for live changes.")
    table.add_row(
        "",
        "enumerate_on_startup",
        "bool",
        "false",
        "Publish every existing note when the daemon starts.",
    )
    table.add_row("", "local_dirs", "list", "[]", "Directories to watch.")

    table.add_row(
        "sync", "workers", "int", "4", "Concurrent publishes across distinct files."
    )
    table.add_row(
        "", "max_attempts", "int", "5", "Attempts per change before giving up."
    )
    table.add_row(
        "", "base_delay", "float | str", '"1s"', "First backoff delay between retries."
    )
    table.add_row("", "max_delay", "float | str", '"60s"', "Longest backoff delay.")

    table.add_row(
        "limits",
        "max_log_size",
        "int | str",
        '"5mb"',
        "Max size for log files before rotation (e.g., '5mb', '1gb').",
    )

    console.print(table)


class NotesyncHelpFormatter(argparse.HelpFormatter):
    """Groups the subcommands into logical categories in the help output."""

    def _format_action(self, action: argparse.Action) -> str:
        if isinstance(action, argparse._SubParsersAction):
            parts = []

            groups = {
                "Sync": ["run", "publish"],
                "Inspection": ["status", "check", "log"],
                "Configuration": ["config"],
                "General": ["help"],
            }

            subactions = list(self._iter_indented_subactions(action))

            for group_name, commands in groups.items():
                group_actions = [a for a in subactions if a.dest in commands]
                if not group_actions:
                    continue

                parts.append(f"\n  {group_name}:\n")

                self._indent()
                for subaction in group_actions:
                    parts.append(self._format_action(subaction))
                self._dedent()

            return self._join_parts(parts)

        return super()._format_action(action)


def main() -> None:
    """Main entry point for the git-notesync CLI."""
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        formatter_class=NotesyncHelpFormatter,
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Directory containing a notesync.toml (default: current directory)",
    )

    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser(
        "run", help="Watch and publish in the foreground"
    )
    run_parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )

    publish_parser = subparsers.add_parser("publish", help="Publish one file now")
    publish_parser.add_argument("path", type=Path, help="Path to the note file")

    subparsers.add_parser("status", help="Show daemon and target status")
    subparsers.add_parser("check", help="Verify credentials and branch")
    subparsers.add_parser("log", help="Tail the daemon log file")

    config_parser = subparsers.add_parser(
        "config", help="Open global config file or view options"
    )
    config_parser.add_argument(
        "--list",
        "-l",
        action="store_true",
        help="List all available configuration options and their descriptions",
    )

    subparsers.add_parser("help", help="Show this help message")

    args = parser.parse_args()
    config_dir = args.config_dir or Path.cwd()

    if args.command == "run":
        config = Config.load(config_dir)
        daemon.setup_logging(True, config.limits.max_log_size, verbose=args.verbose)
        sys.exit(daemon.run(config, config_dir=config_dir))
    elif args.command == "publish":
        config = Config.load(config_dir)
        sys.exit(0 if publish_once(config, args.path) else 1)
    elif args.command == "status":
        show_status(Config.load(config_dir))
        return
    elif args.command == "check":
        sys.exit(0 if run_check(Config.load(config_dir)) else 1)
    elif args.command == "log":
        tail_log()
        return
    elif args.command == "config":
        if args.list:
            show_config_reference()
        else:
            open_config()
        return

    parser.print_help()


if __name__ == "__main__":
    main()
