"""
Sync orchestration between the local task store and Google Tasks.

SyncEngine is the public surface of the package: full sync runs, single
task auto-sync and auto-delete, completion pull, orphan cleanup, status and
the duplicate sweep. All of them share one AccountContext per account so
map mutations are serialized, and every run persists its state through the
SyncDatabase.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from gtask_sync.api.tasks_api import NotFoundError, TasksAPI, TasksAPIError
from gtask_sync.config.sync_config import SyncSettings
from gtask_sync.daemon.jobs import BackgroundJobTracker, JobHandle
from gtask_sync.storage.db import SyncDatabase
from gtask_sync.storage.task_store import TaskStore
from gtask_sync.sync.checkpoint import CheckpointWriter
from gtask_sync.sync.dedup import DuplicateSweep
from gtask_sync.sync.executor import (
    FailureKind,
    UpsertAction,
    UpsertExecutor,
    UpsertOutcome,
)
from gtask_sync.sync.fingerprint import analyze, build_candidate, classify
from gtask_sync.sync.locks import TaskLockManager
from gtask_sync.sync.models import (
    AccountContext,
    ChangeKind,
    DedupJobState,
    LocalTask,
    SyncAccountState,
    SyncCandidate,
    SyncPhase,
    SyncSummary,
)
from gtask_sync.sync.quota import QuotaLedger
from gtask_sync.sync.retry import RetryPolicy
from gtask_sync.utils.dates import format_timestamp
from gtask_sync.utils.logging import get_logger

logger = logging.getLogger(__name__)

RUN_LOCK_OPERATION = "full_sync"
TASK_SYNC_OPERATION = "sync"
TASK_DELETE_OPERATION = "delete"

# An update that falls back to a create costs two calls
MAX_CALLS_PER_ITEM = 2


class SyncSetupError(Exception):
    """Raised when a run cannot start: no usable remote list or account."""

    pass


class AccountNotConnectedError(SyncSetupError):
    """Raised when an operation targets an account that is not connected."""

    pass


class SyncInProgressError(SyncSetupError):
    """Raised when a full sync is already running for the account."""

    pass


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SyncEngine:
    """
    Pushes local tasks to Google Tasks for one or more accounts.

    Features:
    - Incremental sync driven by content fingerprints
    - Daily quota ledger checked before any network call
    - Bounded worker pool with shared backoff on rate limits
    - Checkpoints every N completions so crashes lose little work
    - Self-healing of deleted remote tasks and task lists
    - Background duplicate sweep with pollable status

    Usage:
        engine = SyncEngine(
            database=SyncDatabase('/path/to/sync.db'),
            task_store=JsonTaskStore('/path/to/tasks.json'),
            client_factory=auth.get_authenticated_client,
        )
        engine.connect_account('work')
        summary = engine.start_sync('work')
        print(summary.message)
    """

    def __init__(
        self,
        database: SyncDatabase,
        task_store: TaskStore,
        client_factory: Callable[[str], TasksAPI],
        settings: SyncSettings | None = None,
        lock_manager: TaskLockManager | None = None,
        job_tracker: BackgroundJobTracker | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Args:
            database: Persistence for account state
            task_store: Local record store
            client_factory: Returns an authenticated TasksAPI for an account;
                raises ReconnectRequiredError when the grant is gone
            settings: Engine settings (defaults when None)
            lock_manager: Shared task locks
            job_tracker: Tracker for background sweeps
            clock: Returns the current UTC datetime
        """
        self.database = database
        self.task_store = task_store
        self.client_factory = client_factory
        self.settings = settings or SyncSettings()
        self.lock_manager = lock_manager or TaskLockManager(
            timeout=self.settings.lock_timeout_seconds
        )
        self.job_tracker = job_tracker or BackgroundJobTracker(
            retention_seconds=self.settings.job_retention_seconds
        )
        self.clock = clock or _utc_now
        self.retry_policy = RetryPolicy.from_settings(self.settings)
        self._contexts: dict[str, AccountContext] = {}
        self._contexts_lock = threading.Lock()

    # =========================================================================
    # Account state
    # =========================================================================

    def _context(self, account_id: str) -> AccountContext:
        with self._contexts_lock:
            context = self._contexts.get(account_id)
            if context is None:
                context = AccountContext(self.database.load_account_state(account_id))
                self._contexts[account_id] = context
            return context

    def _connected_context(self, account_id: str) -> AccountContext:
        context = self._context(account_id)
        with context.lock:
            if not context.state.enabled:
                raise AccountNotConnectedError(
                    f"Account {account_id} is not connected to Google Tasks"
                )
        return context

    def _ledger(self, context: AccountContext) -> QuotaLedger:
        return QuotaLedger(
            context.state,
            limit=self.settings.daily_quota_limit,
            lock=context.lock,
            clock=self.clock,
        )

    def _persist(self, context: AccountContext) -> None:
        context.persist(self.database.save_account_state)

    def _enter(self, summary: SyncSummary, phase: SyncPhase, log: Any) -> None:
        log.debug(f"Phase {summary.phase.value} -> {phase.value}")
        summary.phase = phase

    def connect_account(
        self, account_id: str, list_title: str | None = None
    ) -> SyncAccountState:
        """
        Find or create the remote task list and mark the account connected.

        Raises:
            ReconnectRequiredError: If the account has no usable credentials
            SyncSetupError: If the task list cannot be found or created
        """
        title = list_title or self.settings.task_list_title
        api = self.client_factory(account_id)
        context = self._context(account_id)
        ledger = self._ledger(context)

        try:
            task_list = api.find_task_list(title)
            ledger.spend(1)
            if task_list is None:
                task_list = api.create_task_list(title)
                ledger.spend(1)
        except TasksAPIError as e:
            raise SyncSetupError(f"Could not prepare task list '{title}': {e}") from e

        with context.lock:
            if context.state.remote_list_id != task_list["id"]:
                context.state.clear_tracking()
            context.state.remote_list_id = task_list["id"]
            context.state.enabled = True
            context.state.connected_at = self.clock()
        self._persist(context)
        logger.info(f"Connected {account_id} to task list '{title}'")
        return context.snapshot()

    def disconnect_account(self, account_id: str) -> None:
        """Forget everything stored for the account."""
        with self._contexts_lock:
            self._contexts.pop(account_id, None)
        self.database.delete_account_state(account_id)
        logger.info(f"Disconnected {account_id}")

    # =========================================================================
    # Full sync
    # =========================================================================

    def start_sync(self, account_id: str, force: bool = False) -> SyncSummary:
        """
        Run a full sync for an account.

        Args:
            account_id: Connected account
            force: Clear tracking first so every eligible task is created anew

        Returns:
            SyncSummary; ``phase`` is FAILED with ``quota_exceeded`` when the
            daily budget is exhausted

        Raises:
            AccountNotConnectedError: If the account is not connected
            SyncInProgressError: If a full sync is already running
            SyncSetupError: If the remote list is unrecoverable
            ReconnectRequiredError: If the credentials were revoked
        """
        context = self._connected_context(account_id)
        lock_timeout = self.settings.run_deadline_seconds + self.settings.lock_timeout_seconds
        if not self.lock_manager.acquire(account_id, RUN_LOCK_OPERATION, lock_timeout):
            raise SyncInProgressError(f"A sync is already running for {account_id}")
        try:
            return self._run_sync(context, force)
        finally:
            self.lock_manager.release(account_id, RUN_LOCK_OPERATION)

    def _run_sync(self, context: AccountContext, force: bool) -> SyncSummary:
        account_id = context.state.account_id
        log = get_logger(__name__, account_id)
        summary = SyncSummary()
        ledger = self._ledger(context)

        self._enter(summary, SyncPhase.QUOTA_CHECK, log)
        if not ledger.has_budget(self.settings.quota_safety_margin):
            summary.phase = SyncPhase.FAILED
            summary.quota_exceeded = True
            summary.retry_after = ledger.next_reset()
            summary.quota = ledger.snapshot()
            summary.message = summary.build_message()
            log.warning(summary.message)
            return summary

        if force:
            with context.lock:
                context.state.clear_tracking()
            log.info("Forced sync: tracking cleared")

        api = self.client_factory(account_id)
        list_id = self._ensure_remote_list(context, api, ledger, log)

        self._enter(summary, SyncPhase.ANALYZING, log)
        tasks = self.task_store.list_candidate_tasks(account_id)
        with context.lock:
            changes = analyze(tasks, context.state)
        summary.unchanged = changes.unchanged
        summary.skipped = changes.skipped
        log.info(
            f"{len(tasks)} tasks: {len(changes.updates)} to update, "
            f"{len(changes.creates)} to create, {changes.unchanged} unchanged"
        )

        if changes.pending:
            self._enter(summary, SyncPhase.EXECUTING, log)
            self._execute(context, api, list_id, changes.prioritized(), summary, ledger, log)

        return self._finalize(context, summary, ledger, log)

    def _ensure_remote_list(
        self, context: AccountContext, api: TasksAPI, ledger: QuotaLedger, log: Any
    ) -> str:
        """Return the account's list id, recreating the list once if it vanished."""
        with context.lock:
            list_id = context.state.remote_list_id

        if list_id:
            try:
                self.retry_policy.call(lambda: api.get_task_list(list_id), "get_task_list")
                ledger.spend(1)
                return list_id
            except NotFoundError:
                ledger.spend(1)
                log.warning(f"Task list {list_id} no longer exists, recreating it")
            except TasksAPIError as e:
                raise SyncSetupError(f"Could not read task list: {e}") from e

        title = self.settings.task_list_title
        try:
            created = self.retry_policy.call(
                lambda: api.create_task_list(title), "create_task_list"
            )
        except TasksAPIError as e:
            raise SyncSetupError(f"Task list could not be recreated: {e}") from e
        ledger.spend(1)

        with context.lock:
            context.state.remote_list_id = created["id"]
            # Remote ids from the old list are meaningless now
            context.state.clear_tracking()
        self._persist(context)
        return created["id"]

    def _execute(
        self,
        context: AccountContext,
        api: TasksAPI,
        list_id: str,
        candidates: list[SyncCandidate],
        summary: SyncSummary,
        ledger: QuotaLedger,
        log: Any,
    ) -> None:
        deadline = time.monotonic() + self.settings.run_deadline_seconds
        checkpoint = CheckpointWriter(
            context.snapshot,
            self.database.save_account_state,
            interval=self.settings.checkpoint_interval,
            lock=context.persist_lock,
        )
        # Worst-case calls of items dequeued but not yet folded.
        reserved = 0

        def should_continue() -> bool:
            nonlocal reserved
            if time.monotonic() >= deadline:
                summary.deadline_reached = True
                return False
            with context.lock:
                if ledger.remaining() - reserved < MAX_CALLS_PER_ITEM:
                    summary.quota_exceeded = True
                    return False
                reserved += MAX_CALLS_PER_ITEM
            return True

        def on_result(outcome: UpsertOutcome) -> None:
            nonlocal reserved
            with context.lock:
                reserved -= MAX_CALLS_PER_ITEM
                self._fold(context, outcome, summary, ledger)
            checkpoint.record_completion()

        executor = UpsertExecutor(
            api, list_id, self.settings.executor_config(), self.retry_policy
        )
        remainder = executor.run(candidates, on_result, should_continue, self.lock_manager)

        if remainder:
            with context.lock:
                summary.skipped += len(remainder)
            reason = "deadline reached" if summary.deadline_reached else "quota exhausted"
            log.warning(f"Stopped early ({reason}); {len(remainder)} tasks deferred")
        log.debug(
            f"{checkpoint.checkpoints_written} checkpoints written, "
            f"{checkpoint.failures} failed"
        )

    def _fold(
        self,
        context: AccountContext,
        outcome: UpsertOutcome,
        summary: SyncSummary,
        ledger: QuotaLedger,
    ) -> None:
        """Apply one outcome to the maps, the ledger and the summary."""
        task_id = outcome.candidate.local_task_id
        with context.lock:
            if outcome.succeeded:
                context.state.record(task_id, outcome.remote_id, outcome.fingerprint)
                ledger.spend(outcome.api_calls)
                if outcome.action == UpsertAction.UPDATED:
                    summary.updated += 1
                else:
                    summary.created += 1
                    if outcome.action == UpsertAction.RECREATED:
                        summary.recreated += 1
            elif outcome.failure == FailureKind.RATE_LIMITED:
                summary.rate_limited += 1
                summary.skipped += 1
            elif outcome.failure == FailureKind.LOCKED:
                summary.skipped += 1
            else:
                summary.errors += 1

    def _finalize(
        self,
        context: AccountContext,
        summary: SyncSummary,
        ledger: QuotaLedger,
        log: Any,
    ) -> SyncSummary:
        self._enter(summary, SyncPhase.FINALIZING, log)
        with context.lock:
            context.state.last_sync_at = self.clock()
        self._persist(context)

        summary.quota = ledger.snapshot()
        if summary.quota_exceeded:
            summary.retry_after = ledger.next_reset()
        self._enter(summary, SyncPhase.DONE, log)
        summary.message = summary.build_message()
        log.info(summary.message)
        return summary

    # =========================================================================
    # Single-task operations
    # =========================================================================

    def sync_task(self, account_id: str, task: LocalTask) -> UpsertOutcome | None:
        """
        Push one task right after it was edited locally.

        Returns:
            The outcome, or None when nothing was sent (locked, unchanged,
            not syncable or out of quota)
        """
        context = self._connected_context(account_id)

        with self.lock_manager.hold(task.id, TASK_SYNC_OPERATION) as acquired:
            if not acquired:
                logger.debug(f"Auto-sync of {task.id} already in progress")
                return None

            ledger = self._ledger(context)
            if not ledger.has_budget(self.settings.quota_safety_margin):
                logger.warning(f"Quota exhausted, not syncing {task.id}")
                return None

            with context.lock:
                candidate = build_candidate(task, context.state)
                if candidate is None:
                    return None
                kind = classify(
                    candidate.content_hash,
                    context.state.fingerprint_map.get(task.id),
                    candidate.existing_remote_id,
                )
                list_id = context.state.remote_list_id
            if kind == ChangeKind.UNCHANGED:
                return None
            if not list_id:
                raise SyncSetupError(f"Account {account_id} has no remote task list")

            api = self.client_factory(account_id)
            executor = UpsertExecutor(
                api, list_id, self.settings.executor_config(), self.retry_policy
            )
            outcome = executor.upsert(candidate)
            self._fold(context, outcome, SyncSummary(), ledger)
            if outcome.succeeded:
                self._persist(context)
            return outcome

    def delete_task(self, account_id: str, local_task_id: str) -> bool:
        """
        Remove the remote copy of a task deleted locally.

        Returns:
            True if a remote task was deleted (or was already gone)
        """
        context = self._connected_context(account_id)
        with context.lock:
            remote_id = context.state.valid_remote_id(local_task_id)
            list_id = context.state.remote_list_id
            if remote_id is None:
                context.state.forget(local_task_id)
                return False

        with self.lock_manager.hold(local_task_id, TASK_DELETE_OPERATION) as acquired:
            if not acquired:
                return False
            api = self.client_factory(account_id)
            self.retry_policy.call(
                lambda: api.delete_task(list_id, remote_id),
                f"delete_task({local_task_id})",
            )
            with context.lock:
                self._ledger(context).spend(1)
                context.state.forget(local_task_id)
            self._persist(context)
        return True

    # =========================================================================
    # Maintenance
    # =========================================================================

    def cleanup_orphans(self, account_id: str) -> dict[str, int]:
        """
        Delete remote tasks whose local task no longer exists.

        Returns:
            ``{"deleted": n, "errors": n}``
        """
        context = self._connected_context(account_id)
        local_ids = self.task_store.list_all_task_ids(account_id)
        with context.lock:
            list_id = context.state.remote_list_id
            orphans = [
                (task_id, remote_id)
                for task_id, remote_id in context.state.id_map.items()
                if task_id not in local_ids
            ]
        if not orphans:
            return {"deleted": 0, "errors": 0}

        api = self.client_factory(account_id)
        ledger = self._ledger(context)
        deleted = errors = 0
        for task_id, remote_id in orphans:
            try:
                if remote_id:
                    self.retry_policy.call(
                        lambda r=remote_id: api.delete_task(list_id, r),
                        f"delete_task({task_id})",
                    )
                    ledger.spend(1)
                deleted += 1
            except TasksAPIError as e:
                logger.warning(f"Failed to delete orphan {remote_id}: {e}")
                errors += 1
            with context.lock:
                context.state.forget(task_id)

        self._persist(context)
        logger.info(f"Cleanup for {account_id}: {deleted} deleted, {errors} errors")
        return {"deleted": deleted, "errors": errors}

    def pull_completions(self, account_id: str) -> dict[str, int]:
        """
        Mark local tasks completed when their remote twin was completed.

        Returns:
            ``{"updated": n, "alreadyCompleted": n, "notFound": n}``
        """
        context = self._connected_context(account_id)
        with context.lock:
            list_id = context.state.remote_list_id
            tracked = {
                remote_id: task_id
                for task_id, remote_id in context.state.id_map.items()
                if context.state.valid_remote_id(task_id)
            }
        result = {"updated": 0, "alreadyCompleted": 0, "notFound": 0}
        if not tracked or not list_id:
            return result

        api = self.client_factory(account_id)
        ledger = self._ledger(context)
        pages = 0

        def count_page(_: int) -> None:
            nonlocal pages
            pages += 1

        def list_all() -> list[dict[str, Any]]:
            # Only the attempt that succeeds is charged.
            nonlocal pages
            pages = 0
            return api.list_tasks(
                list_id, show_completed=True, show_hidden=True, on_page=count_page
            )

        items = self.retry_policy.call(list_all, "list_tasks")
        ledger.spend(max(pages, 1))

        remote_status = {item.get("id"): item.get("status") for item in items}
        for remote_id, task_id in tracked.items():
            status = remote_status.get(remote_id)
            if status is None:
                result["notFound"] += 1
                continue
            if status != "completed":
                continue
            try:
                changed = self.task_store.mark_task_completed(task_id)
            except KeyError:
                result["notFound"] += 1
                continue
            if changed:
                result["updated"] += 1
            else:
                result["alreadyCompleted"] += 1

        self._persist(context)
        logger.info(
            f"Pulled completions for {account_id}: {result['updated']} updated, "
            f"{result['alreadyCompleted']} already completed, "
            f"{result['notFound']} not found"
        )
        return result

    def reset_sync_state(self, account_id: str) -> None:
        """Clear tracking maps and zero today's quota usage."""
        context = self._connected_context(account_id)
        with context.lock:
            context.state.clear_tracking()
            context.state.quota_used_today = 0
        self._persist(context)
        logger.info(f"Reset sync state for {account_id}")

    def get_sync_status(self, account_id: str) -> dict[str, Any]:
        context = self._context(account_id)
        ledger = self._ledger(context)
        with context.lock:
            connected = context.state.enabled
            connected_at = context.state.connected_at
            last_sync_at = context.state.last_sync_at

        total = synced = 0
        if connected:
            task_ids = [task.id for task in self.task_store.list_candidate_tasks(account_id)]
            total = len(task_ids)
            with context.lock:
                synced = context.state.synced_count(task_ids)

        return {
            "connected": connected,
            "connectedAt": format_timestamp(connected_at),
            "lastSyncAt": format_timestamp(last_sync_at),
            "pending": {"total": total, "synced": synced, "pending": total - synced},
            "quota": ledger.snapshot(),
        }

    # =========================================================================
    # Duplicate sweep
    # =========================================================================

    def start_duplicate_sweep(self, account_id: str) -> dict[str, bool]:
        """
        Launch the duplicate sweep in the background.

        Returns:
            ``{"accepted": True}``, or ``{"accepted": False}`` when a sweep
            is already running for the account
        """
        context = self._connected_context(account_id)
        api = self.client_factory(account_id)
        sweep = DuplicateSweep(
            api,
            concurrency=self.settings.dedup_concurrency,
            retry_policy=self.retry_policy,
            checkpoint_interval=self.settings.checkpoint_interval,
        )
        ledger = self._ledger(context)

        def job(handle: JobHandle) -> None:
            try:
                sweep.run(context, handle, self.database.save_account_state)
            finally:
                # The scan plus every delete attempted, even on failure.
                state = handle.snapshot()
                ledger.spend(1 + state.deleted + state.errors)
                self._persist(context)

        accepted = self.job_tracker.start(
            account_id, job, DedupJobState(started_at=self.clock())
        )
        return {"accepted": accepted}

    def get_duplicate_sweep_status(self, account_id: str) -> dict[str, Any] | None:
        state = self.job_tracker.get(account_id)
        return state.to_dict() if state is not None else None

    def __repr__(self) -> str:
        return f"SyncEngine(db={self.database.db_path})"
