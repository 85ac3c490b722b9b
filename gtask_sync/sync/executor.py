"""
Upsert executor.

Pushes sync candidates to Google Tasks with a fixed pool of worker threads.
Each worker takes the next candidate from a shared queue, so a slow or
throttled item never holds back a whole batch. Before every new item the
caller's ``should_continue`` predicate is consulted (deadline, quota), and
whatever was never started is handed back to the caller.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from enum import Enum
from typing import Any

from gtask_sync.api.tasks_api import NotFoundError, RateLimitError, TasksAPI
from gtask_sync.sync.locks import TaskLockManager
from gtask_sync.sync.models import (
    REMOTE_STATUS_COMPLETED,
    REMOTE_STATUS_NEEDS_ACTION,
    SyncCandidate,
)
from gtask_sync.sync.retry import RetryPolicy, SharedBackoff
from gtask_sync.utils.dates import end_of_day_rfc3339

logger = logging.getLogger(__name__)

LOCK_OPERATION = "sync"


@dataclass
class ExecutorConfig:
    """Tuning knobs for the executor."""

    concurrency: int = 5
    max_retries: int = 3
    base_backoff_ms: int = 1000
    max_backoff_ms: int = 32000


class UpsertAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    RECREATED = "recreated"


class FailureKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    ERROR = "error"
    LOCKED = "locked"


@dataclass
class UpsertOutcome:
    """Result of pushing one candidate."""

    candidate: SyncCandidate
    action: UpsertAction | None = None
    remote_id: str | None = None
    failure: FailureKind | None = None
    message: str | None = None
    api_calls: int = 0

    @property
    def succeeded(self) -> bool:
        return self.action is not None

    @property
    def fingerprint(self) -> str:
        return self.candidate.content_hash


def build_remote_task(candidate: SyncCandidate) -> dict[str, Any]:
    """
    Build the Google Tasks resource for a candidate.

    The linked contact is appended to the notes; the due date is sent as the
    last millisecond of the day (Google keeps only the date part).
    """
    notes = candidate.notes or ""
    if candidate.contact_name:
        contact_line = f"Contact: {candidate.contact_name}"
        notes = f"{notes}\n\n{contact_line}" if notes else contact_line

    return {
        "title": candidate.title,
        "notes": notes,
        "due": end_of_day_rfc3339(candidate.due_date),
        "status": (
            REMOTE_STATUS_COMPLETED
            if candidate.completed
            else REMOTE_STATUS_NEEDS_ACTION
        ),
    }


class UpsertExecutor:
    """
    Creates or updates remote tasks for a list of candidates.

    Attributes:
        api: Tasks API client
        list_id: Remote task list receiving the tasks
        config: ExecutorConfig
        retry_policy: Policy applied to each API call

    Usage:
        executor = UpsertExecutor(api, list_id, ExecutorConfig(concurrency=5))
        remainder = executor.run(changes.prioritized(), on_result=fold)
    """

    def __init__(
        self,
        api: TasksAPI,
        list_id: str,
        config: ExecutorConfig | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self.api = api
        self.list_id = list_id
        self.config = config or ExecutorConfig()
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.config)

    def upsert(
        self, candidate: SyncCandidate, shared: SharedBackoff | None = None
    ) -> UpsertOutcome:
        """
        Push a single candidate.

        An update against a task deleted remotely falls back to a create and
        is reported as ``recreated``. Failures are returned, not raised.
        """
        body = build_remote_task(candidate)
        task_id = candidate.local_task_id
        outcome = UpsertOutcome(candidate=candidate)

        try:
            if candidate.existing_remote_id:
                remote_id = candidate.existing_remote_id
                try:
                    self.retry_policy.call(
                        lambda: self.api.update_task(self.list_id, remote_id, body),
                        f"update_task({task_id})",
                        shared,
                    )
                    outcome.action = UpsertAction.UPDATED
                    outcome.remote_id = remote_id
                    outcome.api_calls = 1
                except NotFoundError:
                    logger.info(
                        f"Remote task {remote_id} for {task_id} is gone, recreating"
                    )
                    created = self.retry_policy.call(
                        lambda: self.api.create_task(self.list_id, body),
                        f"create_task({task_id})",
                        shared,
                    )
                    outcome.action = UpsertAction.RECREATED
                    outcome.remote_id = created["id"]
                    outcome.api_calls = 2
            else:
                created = self.retry_policy.call(
                    lambda: self.api.create_task(self.list_id, body),
                    f"create_task({task_id})",
                    shared,
                )
                outcome.action = UpsertAction.CREATED
                outcome.remote_id = created["id"]
                outcome.api_calls = 1

        except RateLimitError as e:
            logger.warning(f"Giving up on {task_id} after repeated rate limiting")
            outcome.failure = FailureKind.RATE_LIMITED
            outcome.message = str(e)
        except Exception as e:
            logger.error(f"Failed to sync task {task_id}: {e}")
            outcome.failure = FailureKind.ERROR
            outcome.message = str(e)

        return outcome

    def run(
        self,
        candidates: Iterable[SyncCandidate],
        on_result: Callable[[UpsertOutcome], None],
        should_continue: Callable[[], bool] | None = None,
        locks: TaskLockManager | None = None,
    ) -> list[SyncCandidate]:
        """
        Push candidates with a bounded worker pool.

        Args:
            candidates: Work in priority order
            on_result: Called from the worker thread for every finished item
            should_continue: Checked before taking each new item
            locks: When given, items whose task lock is held are skipped with
                a LOCKED outcome

        Returns:
            Candidates that were never started
        """
        queue: deque[SyncCandidate] = deque(candidates)
        queue_lock = threading.Lock()
        shared = SharedBackoff()

        def next_candidate() -> SyncCandidate | None:
            with queue_lock:
                if not queue:
                    return None
                if should_continue is not None and not should_continue():
                    return None
                return queue.popleft()

        def process(candidate: SyncCandidate) -> UpsertOutcome:
            if locks is None:
                return self.upsert(candidate, shared)
            with locks.hold(candidate.local_task_id, LOCK_OPERATION) as acquired:
                if not acquired:
                    logger.debug(f"Task {candidate.local_task_id} is locked, skipping")
                    return UpsertOutcome(
                        candidate=candidate,
                        failure=FailureKind.LOCKED,
                        message="task is locked by another operation",
                    )
                return self.upsert(candidate, shared)

        def worker() -> int:
            handled = 0
            while True:
                candidate = next_candidate()
                if candidate is None:
                    return handled
                on_result(process(candidate))
                handled += 1

        workers = max(1, min(self.config.concurrency, len(queue)))
        if not queue:
            return []

        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="upsert"
        ) as pool:
            futures = [pool.submit(worker) for _ in range(workers)]
            handled = sum(future.result() for future in as_completed(futures))

        with queue_lock:
            remainder = list(queue)
        logger.debug(f"Executor handled {handled} items, {len(remainder)} not started")
        return remainder
