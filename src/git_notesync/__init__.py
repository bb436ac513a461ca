"""git-notesync: Mirror local note files into a remote Git repository.

This package drives the Git Data API (blobs, trees, commits and refs) of a
GitHub-compatible host to publish each changed note as a single commit,
serializing branch updates through a compare-and-swap on the branch ref.
"""

from . import (
    cli,
    config,
    constants,
    daemon,
    errors,
    git_api,
    identity,
    models,
    pipeline,
    preprocessor,
    sync_queue,
    system,
    watcher,
)

__all__ = [
    "cli",
    "config",
    "constants",
    "daemon",
    "errors",
    "git_api",
    "identity",
    "models",
    "pipeline",
    "preprocessor",
    "sync_queue",
    "system",
    "watcher",
]
