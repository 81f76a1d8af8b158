"""In-process worker gate and cancellation registry.

Nothing here is persisted. A fresh ``CoordinatorState`` is created per
process by the application root, so every launch starts idle with no
registered downloads.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from bookshelf.exceptions import WorkerBusyError

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation flag for a single download.

    Safe to set from any thread; the executor polls ``cancelled`` at its
    suspension points.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class CoordinatorState:
    """Single-worker gate plus ``remote_file_id -> CancellationToken`` registry."""

    def __init__(self):
        # Guards _busy and _tokens; held only for dict/bool updates
        self._lock = threading.Lock()
        self._busy = False
        self._tokens: dict[str, CancellationToken] = {}

    # Worker gate

    def try_acquire(self) -> bool:
        """Take the worker slot. Returns False immediately if it is held."""
        with self._lock:
            if self._busy:
                return False
            self._busy = True
            return True

    def release(self) -> None:
        with self._lock:
            self._busy = False

    @property
    def is_busy(self) -> bool:
        with self._lock:
            return self._busy

    @contextmanager
    def worker(self) -> Iterator[None]:
        """Hold the worker slot for one job; always released on exit."""
        if not self.try_acquire():
            raise WorkerBusyError("A download is already running")
        try:
            yield
        finally:
            self.release()

    # Cancellation registry

    def register(self, remote_file_id: str) -> CancellationToken:
        """Create the token for a download about to start.

        Must be called before the first network call so an early cancel
        is never lost.
        """
        token = CancellationToken()
        with self._lock:
            self._tokens[remote_file_id] = token
        return token

    def unregister(self, remote_file_id: str) -> None:
        with self._lock:
            self._tokens.pop(remote_file_id, None)

    def finish(self, remote_file_id: str) -> bool:
        """Unregister a download whose transfer has ended.

        Returns whether it was cancelled. Once this returns, ``cancel``
        reports no active download, so the outcome can no longer change.
        """
        with self._lock:
            token = self._tokens.pop(remote_file_id, None)
            return token is not None and token.cancelled

    def cancel(self, remote_file_id: str) -> bool:
        """Flag an active download for cancellation. False if none is active."""
        with self._lock:
            token = self._tokens.get(remote_file_id)
            if token is None:
                return False
            token.cancel()
        logger.info(f"Cancellation requested for {remote_file_id}")
        return True

    def lookup(self, remote_file_id: str) -> Optional[CancellationToken]:
        with self._lock:
            return self._tokens.get(remote_file_id)

    def active_ids(self) -> list[str]:
        with self._lock:
            return list(self._tokens)
