import logging
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from types import TracebackType

from .constants import APP_NAME, DEFAULT_WORKERS
from .errors import AbortedError, AuthError, NoteSyncError, UnsupportedChangeError
from .models import (
    ChangeEvent,
    ChangeKind,
    PathState,
    PublishResult,
    SyncFailure,
    SyncTask,
)

logger = logging.getLogger(APP_NAME)

ErrorCallback = Callable[[SyncFailure], None]


def remote_path_for(local_path: Path, roots: Iterable[Path]) -> str:
    """Maps a local file to its path inside the remote repository.

    Files under a watched root keep their layout, prefixed by the root's own
    directory name (`~/notes/a.md` under root `~/notes` becomes `notes/a.md`).
    Files outside every root are published under their bare file name.

    Args:
        local_path (Path): The changed file.
        roots (Iterable[Path]): The watched directories.

    Returns:
        str: A slash-separated relative path.
    """
    local_path = Path(local_path)
    for root in roots:
        root = Path(root)
        try:
            relative = local_path.relative_to(root)
        except ValueError:
            continue
        return (Path(root.name) / relative).as_posix()
    return local_path.name


class SyncQueue:
    """Turns change events into serialized-per-path publish calls.

    Each remote path moves through `IDLE -> PENDING -> PUBLISHING -> (IDLE |
    PENDING)`. Events for a path that is already pending are coalesced into
    the waiting task (last write wins). An event for a path that is currently
    publishing parks a follow-up task which runs once the in-flight publish
    returns. Distinct paths publish concurrently on a bounded thread pool.

    Attributes:
        roots (list[Path]): Watched directories used to derive remote paths.
    """

    def __init__(
        self,
        publish: Callable[[SyncTask], PublishResult],
        roots: Iterable[Path] = (),
        workers: int = DEFAULT_WORKERS,
        on_error: ErrorCallback | None = None,
    ):
        """Initializes the queue and its worker pool.

        Args:
            publish (Callable[[SyncTask], PublishResult]): Usually
                `PublishPipeline.publish`.
            roots (Iterable[Path], optional): Watched directories.
            workers (int, optional): Maximum concurrent publishes.
            on_error (ErrorCallback | None, optional): Receives one
                `SyncFailure` per permanently failed path.
        """
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.roots = [Path(r) for r in roots]
        self._publish = publish
        self._callbacks: list[ErrorCallback] = [on_error] if on_error else []
        self._executor = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="notesync"
        )
        self._lock = threading.Lock()
        self._settled = threading.Condition(self._lock)
        self._states: dict[str, PathState] = {}
        self._pending: dict[str, SyncTask] = {}
        self._halted: AuthError | None = None
        self._closed = False
        self._notifying = 0

    def __enter__(self) -> "SyncQueue":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.shutdown(wait=True)

    def add_error_callback(self, callback: ErrorCallback) -> None:
        """Registers an additional listener on the error channel."""
        self._callbacks.append(callback)

    @property
    def halted(self) -> bool:
        """Whether publishing stopped because the credential was rejected."""
        return self._halted is not None

    def snapshot(self) -> dict[str, PathState]:
        """Returns the state of every path that is not idle."""
        with self._lock:
            return dict(self._states)

    def enqueue(self, event: ChangeEvent) -> None:
        """Records a change event and schedules a publish if needed.

        Never blocks on network I/O or on error callbacks. Deletions are not
        mirrored; they are reported on the error channel from a worker thread
        and otherwise ignored.

        Args:
            event (ChangeEvent): The observed change.
        """
        remote_path = remote_path_for(event.local_path, self.roots)

        with self._lock:
            if self._closed:
                logger.warning(f"IGNORED {remote_path}: queue is shut down.")
                return
            if event.kind is ChangeKind.DELETED:
                logger.warning(
                    f"UNSUPPORTED {remote_path}: deletions are not mirrored."
                )
                error = UnsupportedChangeError("deletions are not mirrored")
                self._dispatch([SyncFailure(remote_path, _reason(error), error)])
            elif self._halted is not None:
                halted = self._halted
                self._dispatch([SyncFailure(remote_path, _reason(halted), halted)])
            else:
                self._schedule(remote_path, event)

    def _schedule(self, remote_path: str, event: ChangeEvent) -> None:
        """Applies one event to the path's state machine. Caller holds the lock."""
        waiting = self._pending.get(remote_path)
        if waiting is not None:
            waiting.source_local_path = event.local_path
            waiting.enqueued_at = event.detected_at
            logger.debug(f"Coalesced change for {remote_path}")
            return

        self._pending[remote_path] = SyncTask(
            remote_path, event.local_path, event.detected_at
        )
        state = self._states.get(remote_path, PathState.IDLE)
        if state is PathState.IDLE:
            self._states[remote_path] = PathState.PENDING
            self._executor.submit(self._run, remote_path)

    def _run(self, remote_path: str) -> None:
        """Worker body: take the pending task for a path and publish it."""
        with self._lock:
            task = self._pending.pop(remote_path, None)
            if task is None:
                self._states.pop(remote_path, None)
                self._settled.notify_all()
                return
            halted = self._halted
            if halted is None:
                self._states[remote_path] = PathState.PUBLISHING
            else:
                self._states.pop(remote_path, None)
                self._settled.notify_all()

        if halted is not None:
            self._notify(SyncFailure(remote_path, _reason(halted), halted))
            return

        try:
            result = self._publish(task)
        except Exception as e:
            logger.exception(f"PUBLISH ERROR {remote_path}")
            result = PublishResult(task, error=e, attempts=task.attempt)

        self._complete(remote_path, result)

    def _complete(self, remote_path: str, result: PublishResult) -> None:
        """Moves a path out of PUBLISHING and reports terminal failures."""
        failures: list[SyncFailure] = []

        with self._lock:
            error = result.error
            if not result.ok:
                if isinstance(error, AbortedError):
                    logger.info(f"DROPPED {remote_path}: {error}")
                elif isinstance(error, AuthError):
                    failures.append(SyncFailure(remote_path, _reason(error), error))
                    failures.extend(
                        f for f in self._halt(error) if f.remote_path != remote_path
                    )
                elif remote_path in self._pending:
                    logger.info(
                        f"RESCHEDULED {remote_path}: newer content arrived "
                        "during the failed publish."
                    )
                else:
                    failures.append(SyncFailure(remote_path, _reason(error), error))

            if remote_path in self._pending and self._halted is None:
                self._states[remote_path] = PathState.PENDING
                self._executor.submit(self._run, remote_path)
            else:
                self._states.pop(remote_path, None)
            self._settled.notify_all()

        for failure in failures:
            self._notify(failure)

    def _halt(self, error: AuthError) -> list[SyncFailure]:
        """Stops all publishing after a credential rejection. Caller holds the lock."""
        if self._halted is None:
            logger.critical(f"AUTH FAILURE: {error}. Publishing halted.")
        self._halted = error
        reason = _reason(error)
        failures = []
        for path in list(self._pending):
            self._pending.pop(path)
            if self._states.get(path) is PathState.PENDING:
                self._states.pop(path)
            failures.append(SyncFailure(path, reason, error))
        return failures

    def resume(self) -> None:
        """Re-enables publishing after the credential has been refreshed."""
        with self._lock:
            if self._halted is not None:
                logger.info("Publishing resumed.")
            self._halted = None

    def drain(self, timeout: float | None = None) -> bool:
        """Blocks until no path is pending or publishing and no report is in flight.

        Args:
            timeout (float | None, optional): Maximum seconds to wait.

        Returns:
            bool: True if the queue settled, False on timeout.
        """
        with self._settled:
            return self._settled.wait_for(
                lambda: not self._states and not self._notifying, timeout
            )

    def shutdown(self, wait: bool = True) -> None:
        """Stops accepting events and releases the worker pool.

        Args:
            wait (bool, optional): Finish pending and in-flight publishes first.
                When False, queued work is cancelled; in-flight publishes still
                run to completion.
        """
        with self._lock:
            self._closed = True
        if wait:
            self.drain()
        self._executor.shutdown(wait=True, cancel_futures=not wait)

    def _dispatch(self, failures: list[SyncFailure]) -> None:
        """Hands failure reports to the pool. Caller holds the lock."""
        self._notifying += 1
        self._executor.submit(self._deliver, failures)

    def _deliver(self, failures: list[SyncFailure]) -> None:
        try:
            for failure in failures:
                self._notify(failure)
        finally:
            with self._lock:
                self._notifying -= 1
                self._settled.notify_all()

    def _notify(self, failure: SyncFailure) -> None:
        logger.error(f"SYNC FAILED {failure.remote_path}: {failure.reason}")
        for callback in self._callbacks:
            try:
                callback(failure)
            except Exception:
                logger.exception(f"Error callback failed for {failure.remote_path}")


def _reason(error: BaseException | None) -> str:
    if isinstance(error, NoteSyncError):
        return f"{error.kind}: {error}"
    if error is None:
        return "unknown error"
    return f"{type(error).__name__}: {error}"
