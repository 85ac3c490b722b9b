"""
Change detection for local tasks.

Each task is reduced to a fingerprint over the fields that are pushed to
Google Tasks. Comparing it with the fingerprint recorded after the last
successful push tells us whether the remote copy must be created, updated,
or can be left alone.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable

from gtask_sync.sync.models import ChangeKind, LocalTask, SyncAccountState, SyncCandidate
from gtask_sync.utils.dates import parse_due_date

logger = logging.getLogger(__name__)

FIELD_SEPARATOR = "|"


def task_fingerprint(
    title: str,
    due_date: date,
    completed: bool,
    notes: str | None = None,
    contact_name: str | None = None,
) -> str:
    """
    Compute the fingerprint of a task's synced content.

    The payload is ``title|YYYY-MM-DD|true/false|notes|contact`` hashed with
    a 32-bit polynomial rolling hash (multiplier 31) and rendered as eight
    hex digits. It only needs to be stable and cheap, not cryptographic.

    Args:
        title: Task title
        due_date: Calendar due date
        completed: Completion flag
        notes: Task notes (None is treated as empty)
        contact_name: Linked contact label (None is treated as empty)

    Returns:
        Eight lowercase hex characters
    """
    payload = FIELD_SEPARATOR.join(
        [
            title or "",
            due_date.isoformat(),
            "true" if completed else "false",
            notes or "",
            contact_name or "",
        ]
    )
    value = 0
    for char in payload:
        value = (value * 31 + ord(char)) & 0xFFFFFFFF
    return f"{value:08x}"


def classify(
    fingerprint: str, stored_fingerprint: str | None, remote_id: str | None
) -> ChangeKind:
    """
    Decide what a sync run has to do with a task.

    A task without a usable remote id is always created, even when a stale
    fingerprint is still around. A tracked task is updated unless its stored
    fingerprint matches exactly.
    """
    if not remote_id:
        return ChangeKind.CREATE
    if stored_fingerprint != fingerprint:
        return ChangeKind.UPDATE
    return ChangeKind.UNCHANGED


def build_candidate(task: LocalTask, state: SyncAccountState) -> SyncCandidate | None:
    """
    Prepare a local task for syncing.

    Returns:
        The candidate, or None when the task cannot be synced (empty id or a
        missing/unparseable due date)
    """
    if not task.id:
        logger.debug("Skipping task without id")
        return None

    due = parse_due_date(task.due_date)
    if due is None:
        logger.debug(f"Skipping task {task.id}: invalid due date {task.due_date!r}")
        return None

    return SyncCandidate(
        local_task_id=task.id,
        title=task.title or "",
        notes=task.notes or "",
        due_date=due,
        completed=bool(task.completed),
        contact_name=task.contact_name,
        content_hash=task_fingerprint(
            task.title, due, bool(task.completed), task.notes, task.contact_name
        ),
        existing_remote_id=state.valid_remote_id(task.id),
    )


@dataclass
class ChangeSet:
    """Result of analysing the local tasks against the tracking state."""

    creates: list[SyncCandidate] = field(default_factory=list)
    updates: list[SyncCandidate] = field(default_factory=list)
    unchanged: int = 0
    skipped: int = 0

    @property
    def pending(self) -> int:
        return len(self.creates) + len(self.updates)

    def prioritized(self) -> list[SyncCandidate]:
        """Updates first, then creates, each in input order."""
        return [*self.updates, *self.creates]


def analyze(tasks: Iterable[LocalTask], state: SyncAccountState) -> ChangeSet:
    """
    Partition tasks into creates, updates, unchanged and skipped.

    Args:
        tasks: Local tasks eligible for syncing
        state: Tracking state of the account (read only)

    Returns:
        ChangeSet with the work to perform
    """
    changes = ChangeSet()
    for task in tasks:
        candidate = build_candidate(task, state)
        if candidate is None:
            changes.skipped += 1
            continue

        kind = classify(
            candidate.content_hash,
            state.fingerprint_map.get(candidate.local_task_id),
            candidate.existing_remote_id,
        )
        if kind == ChangeKind.CREATE:
            changes.creates.append(candidate)
        elif kind == ChangeKind.UPDATE:
            changes.updates.append(candidate)
        else:
            changes.unchanged += 1

    logger.debug(
        f"Analysis: {len(changes.creates)} to create, {len(changes.updates)} "
        f"to update, {changes.unchanged} unchanged, {changes.skipped} skipped"
    )
    return changes
