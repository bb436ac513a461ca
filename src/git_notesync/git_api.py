import logging
import time
from types import TracebackType
from typing import Any

import httpx

from .constants import APP_NAME, DEFAULT_API_URL, USER_AGENT
from .errors import (
    AuthError,
    ConflictError,
    NotFoundError,
    RateLimitedError,
    RemoteError,
    TransientError,
)
from .models import Author, BranchRef, Commit, TreeEntry

logger = logging.getLogger(APP_NAME)


class GitObjectClient:
    """A thin wrapper around the Git Data API of a GitHub-compatible host.

    Each method maps to exactly one object-level operation (or, for
    `update_ref`, a read followed by a conditional write). The client does not
    retry, sequence or cache anything: failures are translated into the
    `errors` taxonomy and raised to the caller.

    Attributes:
        api_url (str): The API base URL.
        timeout (float): Per-request deadline in seconds.
    """

    def __init__(
        self,
        access_token: str,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initializes the client and opens the underlying HTTP session.

        Args:
            access_token (str): The bearer token used for every request.
            api_url (str, optional): The API base URL. Defaults to GitHub.
            timeout (float, optional): Per-request deadline in seconds.
            transport (httpx.BaseTransport | None, optional): Custom transport,
                used by tests to inject canned responses.
        """
        self.api_url = api_url
        self.timeout = timeout
        self._http = httpx.Client(
            base_url=api_url,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/vnd.github+json",
                "User-Agent": USER_AGENT,
            },
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    def __enter__(self) -> "GitObjectClient":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def set_token(self, access_token: str) -> None:
        """Swaps the bearer token used by subsequent requests."""
        self._http.headers["Authorization"] = f"Bearer {access_token}"

    def close(self) -> None:
        """Releases pooled connections."""
        self._http.close()

    def _request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
        conflict_statuses: tuple[int, ...] = (),
    ) -> dict[str, Any]:
        """Executes one API call and classifies its failure modes.

        Args:
            method (str): The HTTP verb.
            path (str): The path relative to the API base URL.
            body (dict | None, optional): JSON payload.
            conflict_statuses (tuple[int, ...], optional): Status codes that
                mean "the ref moved" for this call.

        Returns:
            dict[str, Any]: The decoded JSON response body.

        Raises:
            TransientError: On timeouts, transport errors and 5xx responses.
            RateLimitedError: When the server throttles the request.
            AuthError: When the credential is rejected.
            NotFoundError: On 404.
            ConflictError: On one of `conflict_statuses`.
            RemoteError: On any other non-success response.
        """
        try:
            response = self._http.request(method, path, json=body)
        except httpx.TimeoutException as e:
            raise TransientError(f"{method} {path} timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientError(f"{method} {path} failed: {e}") from e

        status = response.status_code
        if status < 400:
            try:
                return response.json()
            except ValueError as e:
                raise TransientError(f"{method} {path}: malformed response") from e

        message = _error_message(response)
        retry_after = _retry_after(response)
        if status == 429 or (status == 403 and retry_after is not None):
            raise RateLimitedError(
                f"{method} {path} rate limited: {message}", retry_after=retry_after
            )
        if status in (401, 403):
            raise AuthError(f"{method} {path} rejected credentials: {message}")
        if status == 404:
            raise NotFoundError(f"{method} {path} not found: {message}")
        if status in conflict_statuses:
            raise ConflictError(f"{method} {path} conflict: {message}")
        if status >= 500:
            raise TransientError(f"{method} {path} server error {status}: {message}")
        raise RemoteError(f"{method} {path} failed ({status}): {message}", status)

    def resolve_identity(self) -> str:
        """Returns the login of the authenticated user."""
        data = self._request("GET", "/user")
        return data["login"]

    def read_ref(self, owner: str, repo: str, branch: str) -> str:
        """Resolves the commit the branch currently points at.

        Raises:
            NotFoundError: If the repository or branch does not exist.
        """
        ref = BranchRef(branch, "")
        # The plural `refs` endpoint prefix-matches and may list sibling branches.
        data = self._request("GET", f"/repos/{owner}/{repo}/git/ref/{ref.ref_path}")
        target = data.get("object") if isinstance(data, dict) else None
        if not isinstance(target, dict) or "sha" not in target:
            raise NotFoundError(f"{ref.ref_path} not found in {owner}/{repo}")
        return target["sha"]

    def read_commit(self, owner: str, repo: str, sha: str) -> Commit:
        """Fetches a commit object (its tree and message)."""
        data = self._request("GET", f"/repos/{owner}/{repo}/git/commits/{sha}")
        commit = Commit(
            sha=data.get("sha", sha),
            tree_sha=data["tree"]["sha"],
            message=data.get("message", ""),
            parent_shas=tuple(p["sha"] for p in data.get("parents", [])),
        )
        logger.debug(f"Fetched HEAD at: {commit.message} ({sha})")
        return commit

    def create_blob(self, owner: str, repo: str, content: str, encoding: str) -> str:
        """Uploads content as a blob. Identical content yields the same sha."""
        data = self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/blobs",
            {"content": content, "encoding": encoding},
        )
        return data["sha"]

    def create_tree(
        self, owner: str, repo: str, base_tree_sha: str, entries: list[TreeEntry]
    ) -> str:
        """Creates a tree by overlaying a single entry onto a base tree.

        Raises:
            ValueError: If `entries` does not hold exactly one entry.
        """
        if len(entries) != 1:
            raise ValueError(f"Expected exactly one tree entry, got {len(entries)}")
        payload = [
            {**e.as_payload(), "path": e.path.strip("/")} for e in entries
        ]
        data = self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/trees",
            {"base_tree": base_tree_sha, "tree": payload},
        )
        return data["sha"]

    def create_commit(
        self,
        owner: str,
        repo: str,
        message: str,
        author: Author,
        parent_shas: list[str],
        tree_sha: str,
    ) -> str:
        """Creates a commit object pointing at `tree_sha`."""
        data = self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/commits",
            {
                "message": message,
                "author": author.as_payload(),
                "parents": list(parent_shas),
                "tree": tree_sha,
            },
        )
        return data["sha"]

    def update_ref(
        self,
        owner: str,
        repo: str,
        branch: str,
        new_sha: str,
        expected_previous_sha: str,
    ) -> None:
        """Moves the branch to `new_sha` only if it still points at the expected commit.

        The remote PATCH is not conditional on a named previous value, so the
        ref is re-read immediately before the write. The write never sets
        `force`, which makes the server reject anything that is not a fast
        forward as a second line of defence.

        Raises:
            ConflictError: If the branch points elsewhere than `expected_previous_sha`
                (or `new_sha` itself, which counts as success).
        """
        current = self.read_ref(owner, repo, branch)
        if current == new_sha:
            # An earlier write landed even though its response was lost.
            logger.debug(f"heads/{branch} already at {new_sha[:7]}")
            return
        if current != expected_previous_sha:
            raise ConflictError(
                f"heads/{branch} moved to {current[:7]} "
                f"(expected {expected_previous_sha[:7]})",
                expected=expected_previous_sha,
                actual=current,
            )

        ref = BranchRef(branch, new_sha)
        self._request(
            "PATCH",
            f"/repos/{owner}/{repo}/git/refs/{ref.ref_path}",
            {"sha": ref.commit_sha, "force": False},
            conflict_statuses=(409, 422),
        )


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(data, dict) and "message" in data:
        return str(data["message"])
    return str(data)[:200]


def _retry_after(response: httpx.Response) -> float | None:
    """Extracts the server-requested wait time from throttling headers."""
    header = response.headers.get("Retry-After")
    if header is not None:
        try:
            return max(0.0, float(header))
        except ValueError:
            return None

    if response.headers.get("X-RateLimit-Remaining") == "0":
        reset = response.headers.get("X-RateLimit-Reset")
        try:
            return max(0.0, float(reset) - time.time()) if reset else 0.0
        except ValueError:
            return 0.0
    return None
