"""
In-process background job tracking.

Long maintenance operations (the duplicate sweep) run on their own thread.
Callers get an immediate acknowledgement and poll a status object keyed by
account id. Finished records are kept for a retention window and then
purged, either lazily on lookup or by a periodic cleanup thread.
"""

from __future__ import annotations

import copy
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from gtask_sync.sync.models import JobStatus

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 300.0
DEFAULT_CLEANUP_INTERVAL = 60.0


@dataclass
class _JobRecord:
    state: Any
    thread: threading.Thread | None = None
    cancel: threading.Event = field(default_factory=threading.Event)
    finished_at: float | None = None


class JobHandle:
    """
    Given to a running job to publish progress.

    All mutations go through the tracker lock so pollers never observe a
    half-updated state.
    """

    def __init__(self, tracker: BackgroundJobTracker, key: str, record: _JobRecord):
        self._tracker = tracker
        self._key = key
        self._record = record

    @property
    def key(self) -> str:
        return self._key

    @property
    def cancelled(self) -> bool:
        return self._record.cancel.is_set()

    def update(self, **fields: Any) -> None:
        with self._tracker._lock:
            for name, value in fields.items():
                setattr(self._record.state, name, value)

    def increment(self, name: str, amount: int = 1) -> None:
        with self._tracker._lock:
            setattr(self._record.state, name, getattr(self._record.state, name) + amount)

    def snapshot(self) -> Any:
        with self._tracker._lock:
            return copy.deepcopy(self._record.state)


class BackgroundJobTracker:
    """
    Runs at most one job per key and keeps its state pollable.

    The state object must expose ``status``, ``message`` and ``finished_at``
    attributes (see DedupJobState).

    Usage:
        tracker = BackgroundJobTracker(retention_seconds=300)
        tracker.start_cleanup()
        tracker.start("work", sweep_job, DedupJobState())
        tracker.get("work")
    """

    def __init__(
        self,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._lock = threading.RLock()
        self._jobs: dict[str, _JobRecord] = {}
        self._stop = threading.Event()
        self._cleanup_thread: threading.Thread | None = None

    def is_running(self, key: str) -> bool:
        with self._lock:
            record = self._jobs.get(key)
            return record is not None and record.finished_at is None

    def start(
        self, key: str, job: Callable[[JobHandle], None], initial_state: Any
    ) -> bool:
        """
        Launch ``job(handle)`` on a daemon thread.

        Returns:
            False if a job for ``key`` is still running
        """
        with self._lock:
            if self.is_running(key):
                logger.debug(f"Job {key} already running")
                return False
            record = _JobRecord(state=initial_state)
            self._jobs[key] = record
            handle = JobHandle(self, key, record)
            record.thread = threading.Thread(
                target=self._run,
                args=(job, handle, record),
                name=f"job-{key}",
                daemon=True,
            )
            record.thread.start()
        return True

    def _run(self, job: Callable[[JobHandle], None], handle: JobHandle, record: _JobRecord) -> None:
        try:
            job(handle)
        except Exception as e:
            logger.error(f"Background job {handle.key} failed: {e}")
            handle.update(status=JobStatus.ERROR, message=str(e))
        finally:
            with self._lock:
                if record.state.status == JobStatus.RUNNING:
                    record.state.status = JobStatus.COMPLETED
                record.state.finished_at = datetime.now(timezone.utc)
                record.finished_at = self._clock()

    def get(self, key: str) -> Any:
        """Return a copy of the job state, or None if unknown or expired."""
        self.purge_expired()
        with self._lock:
            record = self._jobs.get(key)
            return copy.deepcopy(record.state) if record else None

    def purge_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [
                key
                for key, record in self._jobs.items()
                if record.finished_at is not None
                and now - record.finished_at >= self.retention_seconds
            ]
            for key in expired:
                del self._jobs[key]
        if expired:
            logger.debug(f"Purged {len(expired)} finished job(s)")
        return len(expired)

    def wait(self, key: str, timeout: float | None = None) -> bool:
        """Join the job thread; returns True when the job has finished."""
        with self._lock:
            record = self._jobs.get(key)
        if record is None or record.thread is None:
            return True
        record.thread.join(timeout)
        return not record.thread.is_alive()

    def start_cleanup(self, interval: float = DEFAULT_CLEANUP_INTERVAL) -> None:
        """Purge expired records every ``interval`` seconds in the background."""
        if self._cleanup_thread is not None and self._cleanup_thread.is_alive():
            return
        self._stop.clear()

        def loop() -> None:
            while not self._stop.wait(interval):
                self.purge_expired()

        self._cleanup_thread = threading.Thread(
            target=loop, name="job-cleanup", daemon=True
        )
        self._cleanup_thread.start()

    def shutdown(self, timeout: float | None = None) -> None:
        """Ask running jobs to stop and stop the cleanup thread."""
        self._stop.set()
        with self._lock:
            records = list(self._jobs.values())
        for record in records:
            record.cancel.set()
        for record in records:
            if record.thread is not None:
                record.thread.join(timeout)
        if self._cleanup_thread is not None:
            self._cleanup_thread.join(timeout)
