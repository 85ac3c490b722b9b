"""
Duplicate sweep for a remote task list.

Interrupted runs and out-of-band edits can leave several remote tasks with
the same title. The sweep keeps one task per title (the one tracked locally
if possible, otherwise the most recently updated) and deletes the rest.
It runs as a background job and reports progress through a JobHandle.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone

from gtask_sync.api.tasks_api import TasksAPI
from gtask_sync.daemon.jobs import JobHandle
from gtask_sync.sync.checkpoint import DEFAULT_CHECKPOINT_INTERVAL, CheckpointWriter
from gtask_sync.sync.models import (
    AccountContext,
    JobStatus,
    RemoteTaskSnapshot,
    SweepPhase,
    SyncAccountState,
)
from gtask_sync.sync.retry import RetryPolicy, SharedBackoff

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class SweepError(Exception):
    """Raised when the sweep cannot start (e.g. no remote list)."""

    pass


def find_duplicate_groups(
    remote_tasks: list[RemoteTaskSnapshot],
) -> list[list[RemoteTaskSnapshot]]:
    """
    Group remote tasks by exact title.

    Returns:
        Groups with more than one member, in first-seen order. Untitled
        tasks are never grouped.
    """
    by_title: dict[str, list[RemoteTaskSnapshot]] = {}
    for task in remote_tasks:
        if not task.title:
            continue
        by_title.setdefault(task.title, []).append(task)
    return [group for group in by_title.values() if len(group) > 1]


def choose_keeper(
    group: list[RemoteTaskSnapshot], tracked_ids: set[str]
) -> RemoteTaskSnapshot:
    """
    Pick the task that survives in a duplicate group.

    A tracked member wins over untracked ones; among the remaining choices
    the most recently updated one is kept (first in list order on ties).
    """
    tracked = [task for task in group if task.remote_id in tracked_ids]
    pool = tracked or group
    return max(pool, key=lambda task: task.updated or _EPOCH)


class DuplicateSweep:
    """
    Deletes duplicate remote tasks of one account.

    Attributes:
        api: Tasks API client for the account
        concurrency: Number of parallel delete workers
        retry_policy: Policy for each API call
        checkpoint_interval: Deletions between state checkpoints

    Usage:
        sweep = DuplicateSweep(api, concurrency=3)
        tracker.start(account_id, lambda h: sweep.run(context, h, persist), state)
    """

    def __init__(
        self,
        api: TasksAPI,
        concurrency: int = 3,
        retry_policy: RetryPolicy | None = None,
        checkpoint_interval: int = DEFAULT_CHECKPOINT_INTERVAL,
    ):
        self.api = api
        self.concurrency = max(1, concurrency)
        self.retry_policy = retry_policy or RetryPolicy()
        self.checkpoint_interval = checkpoint_interval

    def scan(self, list_id: str) -> list[RemoteTaskSnapshot]:
        items = self.retry_policy.call(
            lambda: self.api.list_tasks(list_id, show_completed=True),
            "list_tasks",
        )
        return [
            RemoteTaskSnapshot.from_api_response(item) for item in items if item.get("id")
        ]

    def run(
        self,
        context: AccountContext,
        handle: JobHandle,
        persist: Callable[[SyncAccountState], None],
    ) -> None:
        """
        Execute the sweep: scan, group, delete, checkpoint.

        Raises:
            SweepError: If the account has no remote list
        """
        with context.lock:
            list_id = context.state.remote_list_id
            tracked_ids = context.state.tracked_remote_ids()
        if not list_id:
            raise SweepError("Account has no remote task list")

        handle.update(phase=SweepPhase.SCANNING)
        remote_tasks = self.scan(list_id)

        to_delete: list[RemoteTaskSnapshot] = []
        groups = find_duplicate_groups(remote_tasks)
        for group in groups:
            keeper = choose_keeper(group, tracked_ids)
            to_delete.extend(task for task in group if task is not keeper)

        logger.info(
            f"Sweep of {handle.key}: {len(remote_tasks)} remote tasks, "
            f"{len(groups)} duplicate groups, {len(to_delete)} to delete"
        )
        handle.update(
            phase=SweepPhase.DELETING,
            duplicate_groups=len(groups),
            total=len(to_delete),
        )

        checkpoint = CheckpointWriter(
            context.snapshot,
            persist,
            interval=self.checkpoint_interval,
            lock=context.persist_lock,
        )
        self._delete_all(list_id, to_delete, context, handle, checkpoint)
        if to_delete:
            checkpoint.flush()

        final = handle.snapshot()
        if handle.cancelled:
            message = f"Cancelled after deleting {final.deleted} of {final.total}"
        else:
            message = f"Removed {final.deleted} duplicates ({final.errors} errors)"
        handle.update(
            phase=SweepPhase.DONE, status=JobStatus.COMPLETED, message=message
        )

    def _delete_all(
        self,
        list_id: str,
        to_delete: list[RemoteTaskSnapshot],
        context: AccountContext,
        handle: JobHandle,
        checkpoint: CheckpointWriter,
    ) -> None:
        if not to_delete:
            return

        shared = SharedBackoff()
        pending = iter(to_delete)
        pending_lock = threading.Lock()

        def worker() -> None:
            while not handle.cancelled:
                with pending_lock:
                    task = next(pending, None)
                if task is None:
                    return
                try:
                    self.retry_policy.call(
                        lambda t=task: self.api.delete_task(list_id, t.remote_id),
                        f"delete_task({task.remote_id})",
                        shared,
                    )
                except Exception as e:
                    logger.warning(f"Could not delete duplicate {task.remote_id}: {e}")
                    handle.increment("errors")
                    continue

                with context.lock:
                    context.state.forget_remote(task.remote_id)
                handle.increment("deleted")
                checkpoint.record_completion()

        workers = min(self.concurrency, len(to_delete))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="dedup") as pool:
            for future in as_completed([pool.submit(worker) for _ in range(workers)]):
                future.result()
