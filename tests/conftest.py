"""Shared fixtures: an in-memory Git Data API and polling helpers."""

import hashlib
import time
from collections.abc import Callable
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from git_notesync.errors import ConflictError
from git_notesync.models import (
    Author,
    Blob,
    Commit,
    PreparedContent,
    Tree,
    TreeEntry,
)


def _sha(*parts: object) -> str:
    return hashlib.sha1(repr(parts).encode()).hexdigest()


class FakeRemote:
    """A content-addressed object store with a single branch ref.

    Implements the `GitObjectClient` surface used by the pipeline. Trees are
    stored flat (every entry carries its full path) so tests can inspect the
    final snapshot. `before_update` hooks run inside `update_ref` before the
    compare, which is where concurrent actors get to move the branch.
    """

    def __init__(self, login: str = "octocat", head: str = "H1", tree: str = "T0"):
        self.login = login
        self.ref = head
        self.trees: dict[str, Tree] = {tree: Tree(tree)}
        self.commits: dict[str, Commit] = {head: Commit(head, tree)}
        self.blobs: dict[str, Blob] = {}
        self.calls: list[tuple[str, tuple]] = []
        self.ref_updates: list[tuple[str, str]] = []
        self.before_update: list[Callable[[], None]] = []

    def resolve_identity(self) -> str:
        self.calls.append(("resolve_identity", ()))
        return self.login

    def read_ref(self, owner: str, repo: str, branch: str) -> str:
        self.calls.append(("read_ref", (branch,)))
        return self.ref

    def read_commit(self, owner: str, repo: str, sha: str) -> Commit:
        self.calls.append(("read_commit", (sha,)))
        return self.commits[sha]

    def create_blob(self, owner: str, repo: str, content: str, encoding: str) -> str:
        self.calls.append(("create_blob", (content, encoding)))
        sha = _sha("blob", content, encoding)
        self.blobs[sha] = Blob(sha, content, encoding)
        return sha

    def create_tree(
        self, owner: str, repo: str, base_tree_sha: str, entries: list[TreeEntry]
    ) -> str:
        self.calls.append(("create_tree", (base_tree_sha, tuple(entries))))
        snapshot = {e.path: e for e in self.trees[base_tree_sha].entries}
        for entry in entries:
            snapshot[entry.path] = entry
        merged = tuple(sorted(snapshot.values(), key=lambda e: e.path))
        sha = _sha("tree", merged)
        self.trees[sha] = Tree(sha, merged, base_tree_sha)
        return sha

    def create_commit(
        self,
        owner: str,
        repo: str,
        message: str,
        author: Author,
        parent_shas: list[str],
        tree_sha: str,
    ) -> str:
        self.calls.append(("create_commit", (tuple(parent_shas), tree_sha)))
        sha = _sha("commit", tree_sha, tuple(parent_shas), message)
        self.commits[sha] = Commit(sha, tree_sha, message, tuple(parent_shas), author)
        return sha

    def update_ref(
        self,
        owner: str,
        repo: str,
        branch: str,
        new_sha: str,
        expected_previous_sha: str,
    ) -> None:
        self.calls.append(("update_ref", (new_sha, expected_previous_sha)))
        while self.before_update:
            self.before_update.pop(0)()
        if self.ref != expected_previous_sha:
            raise ConflictError(
                "ref moved", expected=expected_previous_sha, actual=self.ref
            )
        self.ref = new_sha
        self.ref_updates.append((expected_previous_sha, new_sha))

    def external_commit(self, path: str, content: str) -> str:
        """Advances the branch as another actor would (outside the pipeline)."""
        head = self.commits[self.ref]
        blob = self.create_blob("x", "x", content, "utf-8")
        tree = self.create_tree("x", "x", head.tree_sha, [TreeEntry(path, blob)])
        sha = self.create_commit(
            "x", "x", "external", Author("x", "x"), [head.sha], tree
        )
        self.ref = sha
        return sha

    def head_snapshot(self) -> dict[str, str]:
        tree = self.trees[self.commits[self.ref].tree_sha]
        return {e.path: e.sha for e in tree.entries}

    def count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)


def static_content(text: str = "content") -> Callable[[Path], PreparedContent]:
    """A preprocessor stand-in returning fixed content for any path."""

    def preprocess(_path: Path) -> PreparedContent:
        return PreparedContent(text, "utf-8")

    return preprocess


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Polls `predicate` until it holds or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def fake_remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def no_sleep() -> MagicMock:
    return MagicMock(name="sleep")
