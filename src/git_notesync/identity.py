import logging
import threading

from .constants import APP_NAME
from .git_api import GitObjectClient

logger = logging.getLogger(APP_NAME)


class RemoteIdentityCache:
    """Resolves the authenticated login once and reuses it for the process lifetime.

    The first `get()` call validates the credential against the remote; an
    `AuthError` from that call propagates and nothing is cached, so the next
    call retries the lookup.

    Attributes:
        client (GitObjectClient): The client used for the lookup.
    """

    def __init__(self, client: GitObjectClient):
        self.client = client
        self._identity: str | None = None
        self._lock = threading.Lock()

    def get(self) -> str:
        """Returns the cached login, resolving it on first use."""
        with self._lock:
            if self._identity is None:
                self._identity = self.client.resolve_identity()
                logger.info(f"Authenticated as {self._identity}")
            return self._identity

    def invalidate(self) -> None:
        """Forgets the cached login (e.g. after the token was rotated)."""
        with self._lock:
            self._identity = None
