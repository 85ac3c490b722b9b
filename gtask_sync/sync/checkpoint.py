"""
Periodic persistence of account state during long operations.

A crash mid-run must not lose the mappings of tasks that were already
created remotely, otherwise the next run would create them again. The
writer persists a snapshot every N completions and once more at the end.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_CHECKPOINT_INTERVAL = 10


class CheckpointWriter:
    """
    Writes a state snapshot every ``interval`` completions.

    Taking the snapshot and writing it happen under one lock, so
    checkpoints are strictly ordered and a later snapshot is never
    overwritten by an earlier one. Pass ``lock`` to share that ordering
    with other writers of the same record. Write failures are logged and the
    operation carries on; the next checkpoint retries implicitly.

    Attributes:
        interval: Completions between checkpoints
        checkpoints_written: Successful writes so far
        failures: Failed writes so far
    """

    def __init__(
        self,
        snapshot: Callable[[], Any],
        persist: Callable[[Any], None],
        interval: int = DEFAULT_CHECKPOINT_INTERVAL,
        lock: Any = None,
    ):
        if interval < 1:
            raise ValueError("interval must be at least 1")
        self._snapshot = snapshot
        self._persist = persist
        self.interval = interval
        self.completions = 0
        self.checkpoints_written = 0
        self.failures = 0
        self._counter_lock = threading.Lock()
        self._writer_lock = lock if lock is not None else threading.Lock()

    def record_completion(self) -> bool:
        """
        Count one finished item and checkpoint when the interval is reached.

        Returns:
            True if a checkpoint was written by this call
        """
        with self._counter_lock:
            self.completions += 1
            due = self.completions % self.interval == 0
        if not due:
            return False
        return self.flush()

    def flush(self) -> bool:
        """Write a checkpoint now; returns False if the write failed."""
        with self._writer_lock:
            try:
                self._persist(self._snapshot())
            except Exception as e:
                self.failures += 1
                logger.warning(f"Checkpoint failed after {self.completions} items: {e}")
                return False
            self.checkpoints_written += 1
            logger.debug(f"Checkpoint written after {self.completions} items")
            return True
