"""
Shared fixtures for the test suite.

FakeTasksAPI is an in-memory stand-in for the Google Tasks API wrapper
with call counting and failure injection.
"""

import itertools
import threading
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from gtask_sync.api.tasks_api import NotFoundError
from gtask_sync.config.sync_config import SyncSettings
from gtask_sync.daemon.jobs import BackgroundJobTracker
from gtask_sync.storage.db import SyncDatabase
from gtask_sync.storage.task_store import TaskStore
from gtask_sync.sync.engine import SyncEngine
from gtask_sync.sync.models import LocalTask


class FakeTasksAPI:
    """In-memory Tasks API with the same surface as TasksAPI."""

    def __init__(self, page_size=100):
        self.page_size = page_size
        self.lists = {}
        self.tasks = {}
        self.calls = {}
        self.failures = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def _call(self, name):
        with self._lock:
            self.calls[name] = self.calls.get(name, 0) + 1
            queue = self.failures.get(name)
            error = queue.pop(0) if queue else None
        if error is not None:
            raise error

    def fail(self, name, *errors):
        """Make the next calls of ``name`` raise ``errors`` in order."""
        self.failures.setdefault(name, []).extend(errors)

    @property
    def total_calls(self):
        return sum(self.calls.values())

    def add_list(self, title="Task Sync"):
        list_id = f"list-{next(self._ids)}"
        self.lists[list_id] = {"id": list_id, "title": title}
        self.tasks[list_id] = {}
        return list_id

    def add_task(self, list_id, title, status="needsAction", updated=None):
        task_id = f"remote-{next(self._ids)}"
        self.tasks[list_id][task_id] = {
            "id": task_id,
            "title": title,
            "status": status,
            "updated": updated or "2024-06-01T10:00:00.000Z",
        }
        return task_id

    # TasksAPI surface

    def list_task_lists(self):
        self._call("list_task_lists")
        return list(self.lists.values())

    def find_task_list(self, title):
        for task_list in self.list_task_lists():
            if task_list["title"] == title:
                return task_list
        return None

    def get_task_list(self, list_id):
        self._call("get_task_list")
        if list_id not in self.lists:
            raise NotFoundError(f"get_task_list({list_id}): not found (404)", 404)
        return self.lists[list_id]

    def create_task_list(self, title):
        self._call("create_task_list")
        list_id = self.add_list(title)
        return self.lists[list_id]

    def list_tasks(self, list_id, show_completed=True, show_hidden=False, on_page=None):
        self._call("list_tasks")
        if list_id not in self.lists:
            raise NotFoundError("list_tasks: not found (404)", 404)
        with self._lock:
            items = [
                dict(t)
                for t in self.tasks[list_id].values()
                if show_completed or t.get("status") != "completed"
            ]
        pages = [items[i : i + self.page_size] for i in range(0, len(items), self.page_size)]
        for page in pages or [[]]:
            if on_page is not None:
                on_page(len(page))
        return items

    def get_task(self, list_id, task_id):
        self._call("get_task")
        try:
            return dict(self.tasks[list_id][task_id])
        except KeyError:
            raise NotFoundError(f"get_task({task_id}): not found (404)", 404) from None

    def create_task(self, list_id, body):
        self._call("create_task")
        task_id = f"remote-{next(self._ids)}"
        with self._lock:
            self.tasks[list_id][task_id] = dict(
                body,
                id=task_id,
                updated=datetime.now(timezone.utc).isoformat(),
            )
        return dict(self.tasks[list_id][task_id])

    def update_task(self, list_id, task_id, body):
        self._call("update_task")
        with self._lock:
            if task_id not in self.tasks.get(list_id, {}):
                raise NotFoundError(f"update_task({task_id}): not found (404)", 404)
            self.tasks[list_id][task_id] = dict(body, id=task_id)
        return dict(self.tasks[list_id][task_id])

    def delete_task(self, list_id, task_id):
        self._call("delete_task")
        with self._lock:
            self.tasks.get(list_id, {}).pop(task_id, None)
        return True


class MemoryTaskStore(TaskStore):
    """Task store backed by a dict of LocalTask."""

    def __init__(self, tasks=None):
        self.tasks = {task.id: task for task in tasks or []}

    def put(self, task):
        self.tasks[task.id] = task

    def list_candidate_tasks(self, owner_id):
        return [t for t in self.tasks.values() if not t.completed and t.due_date]

    def list_all_task_ids(self, owner_id):
        return set(self.tasks)

    def get_task(self, local_task_id):
        return self.tasks.get(local_task_id)

    def mark_task_completed(self, local_task_id):
        task = self.tasks[local_task_id]
        if task.completed:
            return False
        task.completed = True
        return True


def make_task(task_id, title=None, due="2024-06-01", **kwargs):
    return LocalTask(id=task_id, title=title or f"Task {task_id}", due_date=due, **kwargs)


@pytest.fixture
def fake_api():
    return FakeTasksAPI()


@pytest.fixture
def task_store():
    return MemoryTaskStore()


@pytest.fixture
def database():
    db = SyncDatabase(":memory:")
    db.initialize()
    return db


@pytest.fixture
def settings():
    return SyncSettings(concurrency=3, base_backoff_ms=1, max_backoff_ms=2)


@pytest.fixture
def engine(database, task_store, fake_api, settings):
    tracker = BackgroundJobTracker(retention_seconds=300)
    engine = SyncEngine(
        database=database,
        task_store=task_store,
        client_factory=MagicMock(return_value=fake_api),
        settings=settings,
        job_tracker=tracker,
    )
    yield engine
    tracker.shutdown(timeout=5)
