"""Exception taxonomy for remote publishing.

The classes split into two groups. Retryable failures (`ConflictError`,
`TransientError`, `RateLimitedError`) are absorbed by the publish pipeline
within its attempt budget. Everything else is terminal for the task and is
reported through the sync queue's error callbacks.
"""


class NoteSyncError(Exception):
    """Base class for all git-notesync failures."""

    retryable = False

    @property
    def kind(self) -> str:
        """A short, stable name for the failure class (used in logs)."""
        return type(self).__name__


class AuthError(NoteSyncError):
    """The access credential was rejected (401/403)."""


class NotFoundError(NoteSyncError):
    """The repository, branch or object does not exist."""


class RemoteError(NoteSyncError):
    """The remote rejected a request for a non-transient reason (other 4xx)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ConflictError(NoteSyncError):
    """The branch reference no longer points at the expected commit."""

    retryable = True

    def __init__(
        self, message: str, expected: str | None = None, actual: str | None = None
    ):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class TransientError(NoteSyncError):
    """Network failure, timeout or 5xx response."""

    retryable = True


class RateLimitedError(TransientError):
    """The remote throttled the request.

    Attributes:
        retry_after (float | None): Seconds the server asked us to wait.
    """

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class ExhaustedRetriesError(NoteSyncError):
    """The attempt budget for a task was spent without a successful publish."""

    def __init__(self, attempts: int, last_error: BaseException | None):
        last = f"{type(last_error).__name__}: {last_error}" if last_error else "none"
        super().__init__(f"Gave up after {attempts} attempts (last error: {last})")
        self.attempts = attempts
        self.last_error = last_error


class UnsupportedChangeError(NoteSyncError):
    """The change cannot be mirrored (deletions are not published)."""


class SourceMissingError(NoteSyncError):
    """The local file vanished or became unreadable before it could be published."""


class AbortedError(NoteSyncError):
    """The publish was abandoned because the process is shutting down."""
