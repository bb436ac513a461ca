import atexit
import logging
import os
import signal
import sys
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from types import FrameType
from typing import Iterator

from .config import Config
from .constants import APP_NAME, LOG_FILE, PID_FILE
from .git_api import GitObjectClient
from .identity import RemoteIdentityCache
from .models import Author, PublishResult, SyncTask
from .pipeline import PublishPipeline, RetryPolicy
from .sync_queue import ErrorCallback, SyncQueue, remote_path_for
from .system import notify_failure
from .watcher import NoteWatcher, enumerate_directory

logger = logging.getLogger(APP_NAME)
logger.setLevel(logging.INFO)


@dataclass
class SyncSession:
    """The wired-up publishing stack for one process lifetime.

    Attributes:
        client (GitObjectClient): The open API client.
        identity (RemoteIdentityCache): Cached login.
        pipeline (PublishPipeline): One-change-one-commit publisher.
        queue (SyncQueue): Event scheduler.
    """

    client: GitObjectClient
    identity: RemoteIdentityCache
    pipeline: PublishPipeline
    queue: SyncQueue


@contextmanager
def sync_session(
    config: Config,
    on_error: ErrorCallback | None = None,
    client: GitObjectClient | None = None,
    stop: threading.Event | None = None,
) -> Iterator[SyncSession]:
    """Builds the publishing stack and guarantees an orderly teardown.

    On exit (normal, exception or fatal auth failure) the queue stops taking
    events and finishes in-flight work before the HTTP client is closed.

    Args:
        config (Config): The merged configuration.
        on_error (ErrorCallback | None, optional): Error channel listener.
        client (GitObjectClient | None, optional): Pre-built client (tests).
        stop (threading.Event | None, optional): Shutdown signal; once set,
            publishes stuck in a backoff wait are abandoned.

    Yields:
        SyncSession: The running session.
    """
    if client is None:
        client = GitObjectClient(
            config.api.resolve_token(),
            api_url=config.api.url,
            timeout=config.api.timeout,
        )

    with client:
        identity = RemoteIdentityCache(client)
        pipeline = PublishPipeline(
            client,
            identity,
            repo=config.repository.name,
            branch=config.repository.branch,
            author=Author(config.commit.user_name, config.commit.user_email),
            base_dir=config.repository.base_dir,
            owner=config.repository.owner,
            message=config.commit.message,
            retry=RetryPolicy(
                max_attempts=config.sync.max_attempts,
                base_delay=config.sync.base_delay,
                max_delay=config.sync.max_delay,
            ),
            stop=stop,
        )
        queue = SyncQueue(
            pipeline.publish,
            roots=config.watcher.paths(),
            workers=config.sync.workers,
            on_error=on_error,
        )
        try:
            yield SyncSession(client, identity, pipeline, queue)
        finally:
            queue.shutdown(wait=True)


def publish_file(config: Config, path: Path) -> PublishResult:
    """Publishes a single file synchronously, bypassing the queue.

    Args:
        config (Config): The merged configuration.
        path (Path): The local file to publish.

    Returns:
        PublishResult: The pipeline outcome.
    """
    path = path.expanduser().resolve()
    with sync_session(config) as session:
        remote_path = remote_path_for(path, config.watcher.paths())
        task = SyncTask(remote_path, path, time.time())
        return session.pipeline.publish(task)


def refresh_credentials(session: SyncSession, config_dir: Path | None = None) -> None:
    """Re-reads the access token and lifts an authentication halt.

    The new token is installed on the open client, the cached login is
    dropped so the next publish resolves it again, and the queue resumes.

    Args:
        session (SyncSession): The running session.
        config_dir (Path | None, optional): Directory holding the local config.
    """
    token = Config.reload(config_dir).api.resolve_token()
    if not token:
        logger.error("REFRESH FAILED: no access token configured. Still halted.")
        return
    session.client.set_token(token)
    session.identity.invalidate()
    session.queue.resume()
    logger.info("Credentials refreshed")


def run(
    config: Config,
    stop: threading.Event | None = None,
    config_dir: Path | None = None,
) -> int:
    """Runs the watcher-driven sync loop until SIGINT/SIGTERM (or `stop` is set).

    SIGHUP re-reads the access token and resumes publishing after an
    authentication failure.

    Args:
        config (Config): The merged configuration.
        stop (threading.Event | None, optional): External stop signal.
        config_dir (Path | None, optional): Directory holding the local config,
            re-read on SIGHUP.

    Returns:
        int: The process exit code.
    """
    problems = config.validate()
    if problems:
        for problem in problems:
            logger.error(f"CONFIG ERROR: {problem}")
        return 1

    stop = stop or threading.Event()
    refresh = threading.Event()

    def shutdown_handler(signum: int, _frame: FrameType | None) -> None:
        logger.info(f"Received signal {signum}, shutting down...")
        stop.set()

    def refresh_handler(signum: int, _frame: FrameType | None) -> None:
        logger.info(f"Received signal {signum}, refreshing credentials...")
        refresh.set()

    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGINT, shutdown_handler)
        signal.signal(signal.SIGTERM, shutdown_handler)
        if hasattr(signal, "SIGHUP"):
            signal.signal(signal.SIGHUP, refresh_handler)

    write_pid_file()
    dirs = config.watcher.paths()

    with sync_session(config, on_error=notify_failure, stop=stop) as session:
        if config.watcher.enumerate_on_startup:
            for d in dirs:
                try:
                    enumerate_directory(d, session.queue.enqueue)
                except OSError as e:
                    logger.error(f"Enumeration failed for {d}: {e}")

        if not config.watcher.enabled:
            logger.info("Watcher is disabled by configuration")
            session.queue.drain()
            return 0

        watcher = NoteWatcher(dirs, session.queue.enqueue)
        watcher.start()
        logger.info("Watcher started")
        try:
            while not stop.wait(1.0):
                if refresh.is_set():
                    refresh.clear()
                    refresh_credentials(session, config_dir)
        finally:
            watcher.stop()
            logger.info("Watcher stopped. Draining publishes...")

    return 0


def write_pid_file() -> None:
    """Records the daemon PID and removes it again at exit."""
    try:
        with open(PID_FILE, "w") as f:
            f.write(str(os.getpid()))

        # Ensure cleanup on exit.
        atexit.register(lambda: PID_FILE.unlink(missing_ok=True))
    except OSError as e:
        logger.warning(f"Could not write PID file: {e}")


def setup_logging(
    interactive: bool, max_log_size: int = 5 * 1024 * 1024, verbose: bool = False
) -> None:
    """Configures the logging subsystem.

    Args:
        interactive (bool): If True, logs to stdout. If False, logs to file/stderr
                            with rotation enabled.
        max_log_size (int, optional): Rotation threshold for the log file.
        verbose (bool, optional): Enables DEBUG output.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Always log to stderr (captured by systemd/launchd).
    stream_handler = logging.StreamHandler(
        sys.stderr if not interactive else sys.stdout
    )
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if not interactive:
        # In daemon mode, rotate logs to file.
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=max_log_size,
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def main() -> None:
    """Entry point of the `git-notesync-daemon` executable."""
    config = Config.load(Path.cwd())
    setup_logging(False, config.limits.max_log_size)
    sys.exit(run(config, config_dir=Path.cwd()))


if __name__ == "__main__":
    main()
