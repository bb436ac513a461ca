"""Landing one local change as one commit on the remote branch.

The only mutable object in the remote graph is the branch reference, so every
publish is an optimistic transaction: build blob, tree and commit on top of
the head we read, then compare-and-swap the ref from that head to the new
commit. Losing the swap means someone else moved the branch; the whole chain
is rebuilt against the new head. The orphaned objects of a lost attempt are
harmless.
"""

import logging
import posixpath
import random
import threading
from collections.abc import Callable
from dataclasses import dataclass

from .constants import APP_NAME, DEFAULT_COMMIT_MESSAGE, DEFAULT_MAX_ATTEMPTS
from .errors import (
    AbortedError,
    ConflictError,
    ExhaustedRetriesError,
    NoteSyncError,
    RateLimitedError,
    TransientError,
)
from .git_api import GitObjectClient
from .identity import RemoteIdentityCache
from .models import Author, PreparedContent, PublishResult, SyncTask, TreeEntry
from .preprocessor import read_note

logger = logging.getLogger(APP_NAME)


class RetryPolicy:
    """Attempt budget and backoff schedule for publishes.

    Attributes:
        max_attempts (int): Attempts per task, conflicts and transient failures alike.
        base_delay (float): Delay in seconds before the first retry.
        multiplier (float): Exponential backoff multiplier.
        max_delay (float): Upper bound for a computed delay.
        jitter_ratio (float): Random variance applied to each delay (0.2 = ±20%).
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = 1.0,
        multiplier: float = 2.0,
        max_delay: float = 60.0,
        jitter_ratio: float = 0.2,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if base_delay < 0:
            raise ValueError("base_delay must be non-negative")
        if multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        if not 0.0 <= jitter_ratio <= 1.0:
            raise ValueError("jitter_ratio must be between 0.0 and 1.0")

        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.jitter_ratio = jitter_ratio

    def delay_for(self, retry: int, error: BaseException | None = None) -> float:
        """Computes the wait before retry number `retry` (0-indexed).

        A server-provided retry-after always wins over the computed backoff.
        """
        if isinstance(error, RateLimitedError) and error.retry_after is not None:
            return error.retry_after

        delay = min(self.base_delay * (self.multiplier**retry), self.max_delay)
        if self.jitter_ratio:
            variance = delay * self.jitter_ratio
            delay += random.uniform(-variance, variance)
        return max(0.0, delay)


@dataclass
class _Progress:
    """Objects built so far in the current attempt.

    Survives transient failures (the failed step is simply redone) and is
    discarded on a conflict so nothing derived from a stale head is reused.
    """

    head_sha: str | None = None
    base_tree_sha: str | None = None
    blob_sha: str | None = None
    tree_sha: str | None = None
    commit_sha: str | None = None


class PublishPipeline:
    """Publishes a `SyncTask` as exactly one commit on the configured branch.

    Attributes:
        client (GitObjectClient): Object-level API access.
        identity (RemoteIdentityCache): Source of the authenticated login.
        repo (str): Repository name.
        branch (str): Branch to advance.
        author (Author): Commit author (the timestamp is filled per commit).
        base_dir (str): Prefix prepended to every remote path.
        owner (str | None): Repository owner; defaults to the authenticated login.
        message (str): The commit message.
        retry (RetryPolicy): Attempt budget and backoff.
        stop (threading.Event): Once set, backoff waits end early and the
            publish in progress is abandoned before its next attempt.
    """

    def __init__(
        self,
        client: GitObjectClient,
        identity: RemoteIdentityCache,
        repo: str,
        branch: str,
        author: Author,
        base_dir: str = "",
        owner: str | None = None,
        message: str = DEFAULT_COMMIT_MESSAGE,
        retry: RetryPolicy | None = None,
        preprocess: Callable[..., PreparedContent] = read_note,
        stop: threading.Event | None = None,
        sleep: Callable[[float], object] | None = None,
    ):
        self.client = client
        self.identity = identity
        self.repo = repo
        self.branch = branch
        self.author = author
        self.base_dir = base_dir
        self.owner = owner
        self.message = message
        self.retry = retry or RetryPolicy()
        self._preprocess = preprocess
        self.stop = stop or threading.Event()
        self._sleep = sleep or self.stop.wait

    def destination(self, remote_path: str) -> str:
        """Joins the base directory and a remote path into a tree entry path."""
        return posixpath.join(self.base_dir, remote_path).strip("/")

    def publish(self, task: SyncTask) -> PublishResult:
        """Lands the latest content of `task` as one commit.

        Retryable failures are absorbed here within the attempt budget; the
        returned result carries either the new commit sha or the terminal
        error. The ref is never force-updated.

        Args:
            task (SyncTask): The task to publish. Its `attempt` counter is
                advanced once per attempt.

        Returns:
            PublishResult: The outcome.
        """
        destination = self.destination(task.remote_path)
        progress = _Progress()
        content: PreparedContent | None = None
        owner: str | None = None
        last_error: BaseException | None = None
        retries = 0
        attempts = 0

        while attempts < self.retry.max_attempts:
            if self.stop.is_set():
                return self._abandon(task, destination, attempts)
            attempts += 1
            task.attempt += 1
            try:
                login = self.identity.get()
                owner = owner or self.owner or login
                if content is None:
                    content = self._preprocess(task.source_local_path)
                commit_sha = self._advance(owner, destination, content, progress)
            except ConflictError as e:
                last_error = e
                logger.info(f"CONFLICT {destination}: {e}. Rebuilding on new head.")
                progress = _Progress()
                continue
            except TransientError as e:
                last_error = e
                if attempts >= self.retry.max_attempts:
                    break
                delay = self.retry.delay_for(retries, e)
                retries += 1
                logger.warning(
                    f"RETRY {destination}: {e.kind}: {e}. Waiting {delay:.1f}s."
                )
                self._sleep(delay)
                continue
            except NoteSyncError as e:
                logger.error(f"FAILED {destination}: {e.kind}: {e}")
                return PublishResult(task, error=e, attempts=attempts)

            logger.info(
                f"PUBLISHED {destination}: {commit_sha[:7]} "
                f"({attempts} attempt{'s' if attempts != 1 else ''})"
            )
            return PublishResult(task, commit_sha=commit_sha, attempts=attempts)

        error = ExhaustedRetriesError(attempts, last_error)
        logger.error(f"FAILED {destination}: {error}")
        return PublishResult(task, error=error, attempts=attempts)

    def _abandon(
        self, task: SyncTask, destination: str, attempts: int
    ) -> PublishResult:
        logger.info(f"ABANDONED {destination}: shutting down after {attempts} tries.")
        error = AbortedError(f"Publish of {destination} abandoned on shutdown")
        return PublishResult(task, error=error, attempts=attempts)

    def _advance(
        self,
        owner: str,
        destination: str,
        content: PreparedContent,
        progress: _Progress,
    ) -> str:
        """Runs the remaining steps of one attempt and swaps the ref.

        Each completed step is recorded on `progress`, so a retry after a
        transient failure resumes at the step that failed.
        """
        if progress.head_sha is None:
            progress.head_sha = self.client.read_ref(owner, self.repo, self.branch)
        if progress.base_tree_sha is None:
            head = self.client.read_commit(owner, self.repo, progress.head_sha)
            progress.base_tree_sha = head.tree_sha
        if progress.blob_sha is None:
            progress.blob_sha = self.client.create_blob(
                owner, self.repo, content.content, content.encoding
            )
        if progress.tree_sha is None:
            progress.tree_sha = self.client.create_tree(
                owner,
                self.repo,
                progress.base_tree_sha,
                [TreeEntry(destination, progress.blob_sha)],
            )
            logger.debug(f"Published blob. Updated tree hash: {progress.tree_sha}")
        if progress.commit_sha is None:
            progress.commit_sha = self.client.create_commit(
                owner,
                self.repo,
                self.message,
                self.author,
                [progress.head_sha],
                progress.tree_sha,
            )
            logger.debug(f"Commit {progress.commit_sha} created")

        self.client.update_ref(
            owner,
            self.repo,
            self.branch,
            progress.commit_sha,
            expected_previous_sha=progress.head_sha,
        )
        return progress.commit_sha
