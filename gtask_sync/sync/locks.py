"""
Per-task operation locks.

Auto-sync on edit, a full sync run and cleanup can all touch the same task.
A lock is keyed by (task id, operation) and expires after a timeout so a
crashed holder cannot block a task forever.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 30.0  # seconds


class TaskLockManager:
    """
    Expiring mutual exclusion keyed by ``(task_id, operation)``.

    Attributes:
        timeout: Default lifetime of a lock in seconds

    Usage:
        locks = TaskLockManager()
        with locks.hold("t1", "sync") as acquired:
            if acquired:
                ...
    """

    def __init__(
        self,
        timeout: float = DEFAULT_LOCK_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.timeout = timeout
        self._clock = clock
        self._locks: dict[tuple[str, str], float] = {}
        self._mutex = threading.Lock()

    def acquire(self, task_id: str, operation: str, timeout: float | None = None) -> bool:
        """
        Try to take the lock without blocking.

        Returns:
            True if acquired; False if another holder's lock is still live
        """
        key = (task_id, operation)
        now = self._clock()
        with self._mutex:
            expires_at = self._locks.get(key)
            if expires_at is not None and expires_at > now:
                return False
            if expires_at is not None:
                logger.debug(f"Taking over expired lock {task_id}/{operation}")
            self._locks[key] = now + (self.timeout if timeout is None else timeout)
            return True

    def release(self, task_id: str, operation: str) -> None:
        with self._mutex:
            self._locks.pop((task_id, operation), None)

    def is_locked(self, task_id: str, operation: str) -> bool:
        with self._mutex:
            expires_at = self._locks.get((task_id, operation))
            return expires_at is not None and expires_at > self._clock()

    def purge_expired(self) -> int:
        """Drop expired entries; returns how many were removed."""
        now = self._clock()
        with self._mutex:
            expired = [key for key, expires in self._locks.items() if expires <= now]
            for key in expired:
                del self._locks[key]
        return len(expired)

    def __len__(self) -> int:
        with self._mutex:
            return len(self._locks)

    @contextmanager
    def hold(
        self, task_id: str, operation: str, timeout: float | None = None
    ) -> Iterator[bool]:
        """Acquire for the duration of a block; yields whether it was acquired."""
        acquired = self.acquire(task_id, operation, timeout)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(task_id, operation)
