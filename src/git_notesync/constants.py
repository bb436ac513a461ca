import os
from pathlib import Path

"""Global constants and configuration path definitions for git-notesync.

This module defines the filesystem layout (adhering to XDG standards where applicable),
application identifiers, and the Git Data API defaults used across the application.
"""

# --- Identity ---
APP_NAME = "git-notesync"
"""str: The human-readable application name."""

USER_AGENT = "git-notesync"
"""str: The User-Agent header sent with every API request."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "git-notesync"
"""Path: The directory for runtime state data (logs, pid file)."""

# Ensure state directory exists immediately upon module import.
STATE_DIR.mkdir(parents=True, exist_ok=True)

LOG_FILE = STATE_DIR / "daemon.log"
"""Path: The file path for the daemon process logs."""

PID_FILE = STATE_DIR / "daemon.pid"
"""Path: The file path storing the daemon's process ID."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".config/git-notesync"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The main configuration file path."""

LOCAL_CONFIG_NAME = "notesync.toml"
"""str: The per-directory configuration file name."""

TOKEN_ENV_VARS = ("NOTESYNC_TOKEN", "GITHUB_TOKEN")
"""tuple[str, ...]: Environment variables consulted, in order, for the access token."""

# --- Git Data API ---
DEFAULT_API_URL = "https://api.github.com"
"""str: The default API base URL."""

DEFAULT_BRANCH = "master"
"""str: The default notes branch."""

BLOB_MODE = "100644"
"""str: Tree entry mode for a regular (non-executable) file."""

BLOB_TYPE = "blob"
"""str: Tree entry type for file content."""

DEFAULT_ENCODING = "base64"
"""str: Encoding used when uploading note content as a blob."""

DEFAULT_COMMIT_MESSAGE = "Update notes"
"""str: The fixed commit message used for every published change."""

# --- Sync Defaults ---
DEFAULT_MAX_ATTEMPTS = 5
"""int: Publish attempts per task before giving up."""

DEFAULT_WORKERS = 4
"""int: Concurrent publishes across distinct remote paths."""

IGNORED_SUFFIXES = (".swp", ".swo", ".tmp", "~")
"""tuple[str, ...]: Editor scratch files that are never published."""
