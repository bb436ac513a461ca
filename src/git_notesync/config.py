import logging
import os
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_API_URL,
    DEFAULT_BRANCH,
    DEFAULT_COMMIT_MESSAGE,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_WORKERS,
    LOCAL_CONFIG_NAME,
    TOKEN_ENV_VARS,
)

logger = logging.getLogger(APP_NAME)


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_time(value: int | float | str) -> float:
    """Converts human-readable time strings (e.g., '30s', '1.5m') to seconds."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(ms|s|sec|m|min|h|hr)s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "ms": 0.001,
        "s": 1,
        "sec": 1,
        "m": 60,
        "min": 60,
        "h": 3600,
        "hr": 3600,
    }
    return num * multiplier[unit]


@dataclass
class RepositoryConfig:
    """Remote repository addressing.

    Attributes:
        owner (str | None): Repository owner. Defaults to the authenticated login.
        name (str): Repository name.
        branch (str): Branch the notes are committed to.
        base_dir (str): Directory prefix for every published path.
    """

    owner: str | None = None
    name: str = ""
    branch: str = DEFAULT_BRANCH
    base_dir: str = ""


@dataclass
class ApiConfig:
    """Remote API access.

    Attributes:
        url (str): API base URL.
        access_token (str): Bearer token. Falls back to the environment.
        timeout (float): Per-request deadline in seconds.
    """

    url: str = DEFAULT_API_URL
    access_token: str = ""
    timeout: float = 30.0

    def resolve_token(self) -> str:
        """Returns the configured token, or the first one found in the environment."""
        if self.access_token:
            return self.access_token
        for var in TOKEN_ENV_VARS:
            if token := os.environ.get(var):
                return token
        return ""


@dataclass
class CommitConfig:
    """Commit authorship.

    Attributes:
        user_name (str): Author name recorded on every commit.
        user_email (str): Author email recorded on every commit.
        message (str): The fixed commit message.
    """

    user_name: str = APP_NAME
    user_email: str = "git-notesync@localhost"
    message: str = DEFAULT_COMMIT_MESSAGE


@dataclass
class WatcherConfig:
    """Filesystem watching.

    Attributes:
        enabled (bool): Whether to watch for live changes.
        enumerate_on_startup (bool): Whether to publish every existing file at start.
        local_dirs (list[str]): Directories to watch.
    """

    enabled: bool = True
    enumerate_on_startup: bool = False
    local_dirs: list[str] = field(default_factory=list)

    def paths(self) -> list[Path]:
        """Returns the watched directories as absolute paths."""
        return [Path(d).expanduser().resolve() for d in self.local_dirs]


@dataclass
class SyncConfig:
    """Publish scheduling.

    Attributes:
        workers (int): Maximum concurrent publishes across distinct paths.
        max_attempts (int): Attempt budget per task.
        base_delay (float): First backoff delay in seconds.
        max_delay (float): Upper bound for a backoff delay in seconds.
    """

    workers: int = DEFAULT_WORKERS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = 1.0
    max_delay: float = 60.0


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for log files before rotation.
    """

    max_log_size: int = 5 * 1024 * 1024


_SIZE_KEYS = {"max_log_size"}
_TIME_KEYS = {"timeout", "base_delay", "max_delay"}


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        repository (RepositoryConfig): Remote repository addressing.
        api (ApiConfig): API access.
        commit (CommitConfig): Commit authorship.
        watcher (WatcherConfig): Filesystem watching.
        sync (SyncConfig): Publish scheduling.
        limits (LimitsConfig): Resource limits.
    """

    repository: RepositoryConfig = field(default_factory=RepositoryConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    commit: CommitConfig = field(default_factory=CommitConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)

    # Cache for the base global configuration
    _global_cache: "Config | None" = None

    @classmethod
    def load(cls, config_dir: Path | None = None) -> "Config":
        """Loads and merges configuration from defaults, global, and local sources.

        Args:
            config_dir (Path | None): A directory to search for `notesync.toml`.

        Returns:
            Config: The fully merged configuration object.
        """
        # 1. Load or Retrieve Global Config
        if cls._global_cache is None:
            instance = cls()
            if CONFIG_FILE.exists():
                instance._merge_from_file(CONFIG_FILE)
            cls._global_cache = instance

        # Start with a copy of the cached global config
        instance = replace(cls._global_cache)

        # 2. Load Local Config (if applicable)
        if config_dir:
            local_toml = config_dir / LOCAL_CONFIG_NAME
            if local_toml.exists():
                instance._merge_from_file(local_toml)

        return instance

    @classmethod
    def reload(cls, config_dir: Path | None = None) -> "Config":
        """Re-reads the global file as well as the local one (used on SIGHUP)."""
        cls._global_cache = None
        return cls.load(config_dir)

    def validate(self) -> list[str]:
        """Lists the settings that must be fixed before publishing can start."""
        problems = []
        if not self.repository.name:
            problems.append("[repository].name is not set")
        if not self.api.resolve_token():
            problems.append(
                "[api].access_token is not set (or export "
                f"{' / '.join(TOKEN_ENV_VARS)})"
            )
        if self.sync.workers < 1:
            problems.append("[sync].workers must be at least 1")
        if self.sync.max_attempts < 1:
            problems.append("[sync].max_attempts must be at least 1")
        return problems

    def _merge_from_file(self, path: Path) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            if not data:
                return

            for section in (
                "repository",
                "api",
                "commit",
                "watcher",
                "sync",
                "limits",
            ):
                if section in data:
                    setattr(
                        self,
                        section,
                        self._update_dataclass(
                            section, getattr(self, section), data[section]
                        ),
                    )

        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
        except Exception as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        # 1. Catch and warn about typos / unknown keys
        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: "
                f"{', '.join(sorted(invalid_keys))}. Ignoring."
            )

        # 2. Process valid keys
        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                # Route specific keys through our parsers
                if k in _SIZE_KEYS:
                    filtered_updates[k] = parse_size(v)
                elif k in _TIME_KEYS:
                    filtered_updates[k] = parse_time(v)
                else:
                    filtered_updates[k] = v
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)
