"""Value objects exchanged between the watcher, the sync queue and the pipeline."""

import datetime
import enum
from dataclasses import dataclass, field
from pathlib import Path

from .constants import BLOB_MODE, BLOB_TYPE


class ChangeKind(enum.Enum):
    """The kind of filesystem change observed by the watcher."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


class PathState(enum.Enum):
    """Per remote path scheduling state inside the sync queue."""

    IDLE = "idle"
    PENDING = "pending"
    PUBLISHING = "publishing"


@dataclass(frozen=True)
class ChangeEvent:
    """A single observed change to a local note file.

    Attributes:
        kind (ChangeKind): What happened to the file.
        local_path (Path): The absolute path of the file.
        detected_at (float): Unix timestamp of the observation.
    """

    kind: ChangeKind
    local_path: Path
    detected_at: float


@dataclass
class SyncTask:
    """The unit of work for one remote path, built from coalesced events.

    Attributes:
        remote_path (str): Destination path inside the remote repository.
        source_local_path (Path): The file whose latest content gets published.
        enqueued_at (float): Timestamp of the newest coalesced event.
        attempt (int): Publish attempts made for this task so far.
    """

    remote_path: str
    source_local_path: Path
    enqueued_at: float
    attempt: int = 0


@dataclass(frozen=True)
class PreparedContent:
    """Note content ready to upload as a blob."""

    content: str
    encoding: str


@dataclass(frozen=True)
class Author:
    """Commit authorship metadata."""

    name: str
    email: str
    timestamp: datetime.datetime | None = None

    def as_payload(self) -> dict[str, str]:
        """Serializes the author for the commit creation request."""
        when = self.timestamp or datetime.datetime.now(datetime.timezone.utc)
        if when.tzinfo is None:
            when = when.replace(tzinfo=datetime.timezone.utc)
        date = when.astimezone(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        return {"name": self.name, "email": self.email, "date": date}


@dataclass(frozen=True)
class Blob:
    """Content-addressed file content. Identical content always has the same sha."""

    sha: str
    content: str
    encoding: str


@dataclass(frozen=True)
class TreeEntry:
    """A single path in a tree creation request."""

    path: str
    sha: str
    mode: str = BLOB_MODE
    type: str = BLOB_TYPE

    def as_payload(self) -> dict[str, str]:
        return {
            "path": self.path,
            "mode": self.mode,
            "type": self.type,
            "sha": self.sha,
        }


@dataclass(frozen=True)
class Tree:
    """A directory snapshot, derived by overlaying entries onto a base tree."""

    sha: str
    entries: tuple[TreeEntry, ...] = ()
    base_tree_sha: str | None = None


@dataclass(frozen=True)
class Commit:
    sha: str
    tree_sha: str
    message: str = ""
    parent_shas: tuple[str, ...] = ()
    author: Author | None = None


@dataclass(frozen=True)
class BranchRef:
    """The mutable branch pointer (`heads/<name>`)."""

    name: str
    commit_sha: str

    @property
    def ref_path(self) -> str:
        return f"heads/{self.name}"


@dataclass
class PublishResult:
    """Outcome of one `PublishPipeline.publish` call.

    Attributes:
        task (SyncTask): The task that was published.
        commit_sha (str | None): The commit the branch now points at, on success.
        error (BaseException | None): The terminal error, on failure.
        attempts (int): Number of attempts consumed.
    """

    task: SyncTask
    commit_sha: str | None = None
    error: BaseException | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None and self.commit_sha is not None


@dataclass(frozen=True)
class SyncFailure:
    """Payload delivered on the error channel when a path is given up on."""

    remote_path: str
    reason: str
    error: BaseException | None = field(default=None, compare=False)
