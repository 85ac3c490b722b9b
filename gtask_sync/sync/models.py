"""
Data model for the task synchronization engine.

- LocalTask: read-only snapshot of a task from the local record store
- SyncAccountState: per-account tracking state (id map, fingerprints, quota)
- AccountContext: an account's state together with its mutex
- RemoteTaskSnapshot: a task as returned by the Google Tasks API
- SyncCandidate: a task prepared for one sync run
- SyncSummary: result of a sync run
- DedupJobState: progress of a duplicate sweep
"""

from __future__ import annotations

import copy
import threading
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable

from gtask_sync.utils.dates import format_timestamp, parse_timestamp

REMOTE_STATUS_NEEDS_ACTION = "needsAction"
REMOTE_STATUS_COMPLETED = "completed"


class ChangeKind(str, Enum):
    """Classification of a task against the stored tracking state."""

    CREATE = "create"
    UPDATE = "update"
    UNCHANGED = "unchanged"


class SyncPhase(str, Enum):
    """Phases of a sync run."""

    IDLE = "idle"
    QUOTA_CHECK = "quota_check"
    ANALYZING = "analyzing"
    EXECUTING = "executing"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


class JobStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class SweepPhase(str, Enum):
    SCANNING = "scanning"
    DELETING = "deleting"
    DONE = "done"


@dataclass
class LocalTask:
    """
    A task from the local record store.

    ``due_date`` is kept as stored (date, datetime, ISO string or None) so
    that unparseable values can be detected and skipped during analysis.
    """

    id: str
    title: str
    notes: str = ""
    due_date: Any = None
    completed: bool = False
    related_contact_id: str | None = None
    contact_name: str | None = None
    modified_at: datetime | None = None


@dataclass
class SyncAccountState:
    """
    Tracking state for one connected account.

    ``id_map`` maps local task ids to remote task ids and ``fingerprint_map``
    maps local task ids to the fingerprint that was last pushed. Both maps
    are always changed together through ``record`` and ``forget``.
    """

    account_id: str
    remote_list_id: str | None = None
    enabled: bool = False
    id_map: dict[str, str] = field(default_factory=dict)
    fingerprint_map: dict[str, str] = field(default_factory=dict)
    quota_used_today: int = 0
    quota_reset_date: date | None = None
    last_sync_at: datetime | None = None
    connected_at: datetime | None = None

    def valid_remote_id(self, task_id: str) -> str | None:
        """Return the tracked remote id, or None for missing/empty entries."""
        remote_id = self.id_map.get(task_id)
        if isinstance(remote_id, str) and remote_id.strip():
            return remote_id
        return None

    def record(self, task_id: str, remote_id: str, fingerprint: str) -> None:
        """Record a successful upsert."""
        self.id_map[task_id] = remote_id
        self.fingerprint_map[task_id] = fingerprint

    def forget(self, task_id: str) -> None:
        """Drop all tracking for a local task."""
        self.id_map.pop(task_id, None)
        self.fingerprint_map.pop(task_id, None)

    def clear_tracking(self) -> None:
        self.id_map.clear()
        self.fingerprint_map.clear()

    def forget_remote(self, remote_id: str) -> list[str]:
        """Drop tracking for every local task mapped to ``remote_id``."""
        task_ids = [tid for tid, rid in self.id_map.items() if rid == remote_id]
        for task_id in task_ids:
            self.forget(task_id)
        return task_ids

    def tracked_remote_ids(self) -> set[str]:
        return {rid for rid in self.id_map.values() if isinstance(rid, str) and rid}

    def synced_count(self, task_ids: list[str] | None = None) -> int:
        """Count tasks with a valid remote id (optionally among ``task_ids``)."""
        ids = task_ids if task_ids is not None else list(self.id_map)
        return sum(1 for task_id in ids if self.valid_remote_id(task_id))

    def snapshot(self) -> SyncAccountState:
        """Deep copy suitable for persisting outside the account lock."""
        return copy.deepcopy(self)


@dataclass
class AccountContext:
    """
    The live state of one account plus the mutex guarding it.

    Sync runs, auto-sync and the duplicate sweep of the same account share
    one context, so every map mutation is serialized. ``persist_lock``
    orders writes to storage: a snapshot is taken and saved under it, so an
    older snapshot never lands after a newer one. It is always acquired
    before ``lock``, never while holding it.
    """

    state: SyncAccountState
    lock: threading.RLock = field(default_factory=threading.RLock)
    persist_lock: threading.RLock = field(default_factory=threading.RLock)

    def snapshot(self) -> SyncAccountState:
        with self.lock:
            return self.state.snapshot()

    def persist(self, save: Callable[[SyncAccountState], None]) -> None:
        """Snapshot the state and hand it to ``save`` as one step."""
        with self.persist_lock:
            save(self.snapshot())


@dataclass
class RemoteTaskSnapshot:
    """A task as seen in Google Tasks."""

    remote_id: str
    title: str = ""
    status: str = REMOTE_STATUS_NEEDS_ACTION
    updated: datetime | None = None
    notes: str | None = None
    due: str | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == REMOTE_STATUS_COMPLETED

    @classmethod
    def from_api_response(cls, item: dict[str, Any]) -> RemoteTaskSnapshot:
        """
        Create a snapshot from a Google Tasks API task resource.

        Example API response structure::

            {
                'id': 'MTIzNDU2',
                'title': 'Call client',
                'status': 'needsAction',
                'updated': '2024-06-01T10:00:00.000Z',
                'due': '2024-06-01T00:00:00.000Z',
                'notes': '...'
            }
        """
        return cls(
            remote_id=item.get("id", ""),
            title=item.get("title") or "",
            status=item.get("status") or REMOTE_STATUS_NEEDS_ACTION,
            updated=parse_timestamp(item.get("updated")),
            notes=item.get("notes"),
            due=item.get("due"),
        )


@dataclass
class SyncCandidate:
    """A local task prepared for a sync run."""

    local_task_id: str
    title: str
    notes: str
    due_date: date
    completed: bool
    content_hash: str
    contact_name: str | None = None
    existing_remote_id: str | None = None

    @property
    def kind(self) -> ChangeKind:
        return ChangeKind.UPDATE if self.existing_remote_id else ChangeKind.CREATE


@dataclass
class SyncSummary:
    """
    Result of a sync run.

    ``recreated`` items are also counted in ``created``; the separate counter
    tracks drift (remote items deleted out-of-band).
    """

    created: int = 0
    updated: int = 0
    recreated: int = 0
    unchanged: int = 0
    skipped: int = 0
    errors: int = 0
    rate_limited: int = 0
    quota_exceeded: bool = False
    deadline_reached: bool = False
    phase: SyncPhase = SyncPhase.IDLE
    message: str = ""
    quota: dict[str, Any] = field(default_factory=dict)
    retry_after: datetime | None = None

    @property
    def succeeded(self) -> bool:
        return self.phase == SyncPhase.DONE

    def build_message(self) -> str:
        """Generate a human-readable one-line summary."""
        if self.phase == SyncPhase.FAILED and self.quota_exceeded:
            return (
                "Daily API quota exhausted; retry after "
                f"{format_timestamp(self.retry_after)}"
            )
        if not self.created and not self.updated and not self.skipped:
            message = f"All tasks up to date ({self.unchanged} unchanged)"
        else:
            message = (
                f"Synced: {self.created} new, {self.updated} updated, "
                f"{self.unchanged} unchanged"
            )
        if self.recreated:
            message += f", {self.recreated} recreated"
        if self.skipped:
            message += f", {self.skipped} skipped"
        if self.errors:
            message += f", {self.errors} errors"
        if self.deadline_reached:
            message += " (time limit reached, run again to continue)"
        if self.quota_exceeded:
            message += " (daily API quota reached, try again tomorrow)"
        return message

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": self.created,
            "updated": self.updated,
            "recreated": self.recreated,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "errors": self.errors,
            "rateLimited": self.rate_limited,
            "quotaExceeded": self.quota_exceeded,
            "deadlineReached": self.deadline_reached,
            "phase": self.phase.value,
            "message": self.message,
            "quota": dict(self.quota),
            "retryAfter": format_timestamp(self.retry_after),
        }


@dataclass
class DedupJobState:
    """Progress of a duplicate sweep, as reported to pollers."""

    status: JobStatus = JobStatus.RUNNING
    phase: SweepPhase = SweepPhase.SCANNING
    total: int = 0
    deleted: int = 0
    errors: int = 0
    duplicate_groups: int = 0
    message: str | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def is_finished(self) -> bool:
        return self.status != JobStatus.RUNNING

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "phase": self.phase.value,
            "total": self.total,
            "deleted": self.deleted,
            "errors": self.errors,
            "duplicateGroups": self.duplicate_groups,
            "message": self.message,
            "startedAt": format_timestamp(self.started_at),
            "finishedAt": format_timestamp(self.finished_at),
        }
