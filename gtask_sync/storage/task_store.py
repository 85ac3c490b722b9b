"""
Local record store access.

The sync engine only needs three things from the local side: the tasks
eligible for syncing, the ids of all tasks (to detect orphans), and a way to
mark a task completed. TaskStore captures that; JsonTaskStore implements it
over a JSON file so the engine can be driven from the command line.

JSON layout::

    {
      "tasks": [
        {"id": "t1", "title": "Call client", "description": "...",
         "dueDate": "2024-06-01", "completed": false,
         "relatedContactId": "c1", "subtasks": [...]}
      ],
      "contacts": [
        {"id": "c1", "name": "Alice", "tasks": [ ...same task shape... ]}
      ]
    }
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator

from gtask_sync.sync.models import LocalTask
from gtask_sync.utils.dates import parse_timestamp

logger = logging.getLogger(__name__)


class TaskStoreError(Exception):
    """Raised when the local task file cannot be read or written."""

    pass


class TaskStore(ABC):
    """Interface to the local record store."""

    @abstractmethod
    def list_candidate_tasks(self, owner_id: str) -> list[LocalTask]:
        """Tasks that should exist remotely: not completed, with a due date."""

    @abstractmethod
    def list_all_task_ids(self, owner_id: str) -> set[str]:
        """Ids of every task currently stored, synced or not."""

    @abstractmethod
    def get_task(self, local_task_id: str) -> LocalTask | None:
        """Return a single task (even if completed or undated), or None."""

    @abstractmethod
    def mark_task_completed(self, local_task_id: str) -> bool:
        """
        Mark a task completed.

        Returns:
            True if it changed, False if it was already completed

        Raises:
            KeyError: If the task does not exist
        """


@dataclass
class _TaskRef:
    """A task dict inside the loaded document, with its flattening context."""

    raw: dict[str, Any]
    ancestry: list[str]
    contact_id: str | None
    contact_name: str | None


def _subtask_title(title: str, ancestry: list[str]) -> str:
    if not ancestry:
        return title
    return f"{title} ({' / '.join(ancestry)})"


class JsonTaskStore(TaskStore):
    """
    Task store backed by a JSON file.

    The file is re-read on every call so edits made by other tools are picked
    up; writes go through a temp file and os.replace.

    Usage:
        store = JsonTaskStore(Path("~/.gtask-sync/tasks.json").expanduser())
        tasks = store.list_candidate_tasks("work")
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._lock = threading.RLock()

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {"tasks": [], "contacts": []}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise TaskStoreError(f"Cannot read task file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise TaskStoreError(f"Task file {self.path} must contain an object")
        data.setdefault("tasks", [])
        data.setdefault("contacts", [])
        return data

    def _save(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise TaskStoreError(f"Cannot write task file {self.path}: {e}") from e

    def _walk(self, data: dict[str, Any]) -> Iterator[_TaskRef]:
        contact_names = {
            contact.get("id"): contact.get("name")
            for contact in data.get("contacts", [])
            if contact.get("id")
        }

        def visit(
            items: list[dict[str, Any]],
            ancestry: list[str],
            contact_id: str | None,
            contact_name: str | None,
        ) -> Iterator[_TaskRef]:
            for item in items or []:
                linked_id = item.get("relatedContactId") or contact_id
                linked_name = contact_name or contact_names.get(linked_id)
                yield _TaskRef(item, ancestry, linked_id, linked_name)
                yield from visit(
                    item.get("subtasks", []),
                    [*ancestry, item.get("title") or ""],
                    linked_id,
                    linked_name,
                )

        yield from visit(data.get("tasks", []), [], None, None)
        for contact in data.get("contacts", []):
            yield from visit(
                contact.get("tasks", []), [], contact.get("id"), contact.get("name")
            )

    def list_candidate_tasks(self, owner_id: str) -> list[LocalTask]:
        with self._lock:
            data = self._load()

        tasks = []
        for ref in self._walk(data):
            raw = ref.raw
            if raw.get("completed") or not raw.get("dueDate"):
                continue
            tasks.append(
                LocalTask(
                    id=str(raw.get("id") or ""),
                    title=_subtask_title(raw.get("title") or "", ref.ancestry),
                    notes=raw.get("description") or "",
                    due_date=raw.get("dueDate"),
                    completed=False,
                    related_contact_id=ref.contact_id,
                    contact_name=ref.contact_name,
                    modified_at=parse_timestamp(raw.get("modifiedAt")),
                )
            )
        logger.debug(f"Loaded {len(tasks)} candidate tasks for {owner_id}")
        return tasks

    def list_all_task_ids(self, owner_id: str) -> set[str]:
        with self._lock:
            data = self._load()
        return {str(ref.raw["id"]) for ref in self._walk(data) if ref.raw.get("id")}

    def get_task(self, local_task_id: str) -> LocalTask | None:
        with self._lock:
            data = self._load()
        for ref in self._walk(data):
            if str(ref.raw.get("id")) == local_task_id:
                return LocalTask(
                    id=local_task_id,
                    title=_subtask_title(ref.raw.get("title") or "", ref.ancestry),
                    notes=ref.raw.get("description") or "",
                    due_date=ref.raw.get("dueDate"),
                    completed=bool(ref.raw.get("completed")),
                    related_contact_id=ref.contact_id,
                    contact_name=ref.contact_name,
                    modified_at=parse_timestamp(ref.raw.get("modifiedAt")),
                )
        return None

    def mark_task_completed(self, local_task_id: str) -> bool:
        with self._lock:
            data = self._load()
            for ref in self._walk(data):
                if str(ref.raw.get("id")) != local_task_id:
                    continue
                if ref.raw.get("completed"):
                    return False
                ref.raw["completed"] = True
                self._save(data)
                logger.info(f"Marked task {local_task_id} completed")
                return True
        raise KeyError(local_task_id)
