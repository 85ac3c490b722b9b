"""
Tests for the duplicate sweep.
"""

from datetime import datetime, timezone

import pytest
from conftest import FakeTasksAPI

from gtask_sync.api.tasks_api import TasksAPIError
from gtask_sync.daemon.jobs import BackgroundJobTracker
from gtask_sync.sync.dedup import (
    DuplicateSweep,
    SweepError,
    choose_keeper,
    find_duplicate_groups,
)
from gtask_sync.sync.models import (
    AccountContext,
    DedupJobState,
    JobStatus,
    RemoteTaskSnapshot,
    SweepPhase,
    SyncAccountState,
)
from gtask_sync.sync.retry import RetryPolicy


def snap(remote_id, title, hour=10):
    return RemoteTaskSnapshot(
        remote_id=remote_id,
        title=title,
        updated=datetime(2024, 6, 1, hour, tzinfo=timezone.utc),
    )


class TestFindDuplicateGroups:
    """Tests for find_duplicate_groups."""

    def test_groups_by_exact_title(self):
        """Test that only exact title matches are grouped."""
        tasks = [snap("a", "Call"), snap("b", "Call"), snap("c", "call"), snap("d", "Mail")]
        groups = find_duplicate_groups(tasks)
        assert [[t.remote_id for t in g] for g in groups] == [["a", "b"]]

    def test_untitled_tasks_not_grouped(self):
        """Test that empty titles are ignored."""
        assert find_duplicate_groups([snap("a", ""), snap("b", "")]) == []


class TestChooseKeeper:
    """Tests for choose_keeper."""

    def test_most_recent_wins(self):
        """Test that the most recently updated task is kept."""
        group = [snap("a", "Call", 9), snap("b", "Call", 12), snap("c", "Call", 11)]
        assert choose_keeper(group, set()).remote_id == "b"

    def test_tracked_wins_over_recent(self):
        """Test that a tracked task is preferred."""
        group = [snap("a", "Call", 9), snap("b", "Call", 12)]
        assert choose_keeper(group, {"a"}).remote_id == "a"

    def test_tie_keeps_first(self):
        """Test that equal timestamps keep the first in list order."""
        group = [snap("a", "Call", 10), snap("b", "Call", 10)]
        assert choose_keeper(group, set()).remote_id == "a"


class TestDuplicateSweep:
    """Tests for DuplicateSweep.run inside a job tracker."""

    def setup_method(self):
        self.api = FakeTasksAPI()
        self.list_id = self.api.add_list()
        self.state = SyncAccountState(account_id="work", remote_list_id=self.list_id, enabled=True)
        self.context = AccountContext(self.state)
        self.persisted = []
        self.tracker = BackgroundJobTracker()

    def teardown_method(self):
        self.tracker.shutdown(timeout=5)

    def run_sweep(self, concurrency=3):
        sweep = DuplicateSweep(
            self.api,
            concurrency=concurrency,
            retry_policy=RetryPolicy(base_delay=0.0, max_delay=0.0),
            checkpoint_interval=2,
        )
        assert self.tracker.start(
            "work",
            lambda handle: sweep.run(self.context, handle, self.persisted.append),
            DedupJobState(),
        )
        assert self.tracker.wait("work", timeout=10)
        return self.tracker.get("work")

    def test_three_identical_titles(self):
        """Test one group of three: two deletions, one survivor."""
        for hour in (9, 10, 11):
            self.api.add_task(self.list_id, "Call client", updated=f"2024-06-01T{hour:02d}:00:00Z")

        state = self.run_sweep()

        assert state.status == JobStatus.COMPLETED
        assert state.phase == SweepPhase.DONE
        assert state.duplicate_groups == 1
        assert state.total == 2
        assert state.deleted == 2
        assert state.errors == 0
        assert len(self.api.tasks[self.list_id]) == 1
        assert self.persisted, "final checkpoint expected"

    def test_tracked_duplicates_keep_mapping(self):
        """Test that the tracked copy survives and stale mappings are dropped."""
        keep = self.api.add_task(self.list_id, "Call", updated="2024-06-01T09:00:00Z")
        drop = self.api.add_task(self.list_id, "Call", updated="2024-06-01T12:00:00Z")
        self.state.record("t1", keep, "fp1")

        self.run_sweep()

        assert keep in self.api.tasks[self.list_id]
        assert drop not in self.api.tasks[self.list_id]
        assert self.state.id_map == {"t1": keep}

    def test_deleted_remote_ids_are_forgotten(self):
        """Test that mappings pointing at deleted tasks are removed."""
        a = self.api.add_task(self.list_id, "Call", updated="2024-06-01T09:00:00Z")
        b = self.api.add_task(self.list_id, "Call", updated="2024-06-01T10:00:00Z")
        self.state.record("t1", a, "fp1")
        self.state.record("t2", b, "fp2")

        self.run_sweep()

        # Both tracked: the newer one survives
        assert self.state.id_map == {"t2": b}
        assert "t1" not in self.state.fingerprint_map

    def test_no_duplicates(self):
        """Test a clean list."""
        self.api.add_task(self.list_id, "A")
        self.api.add_task(self.list_id, "B")

        state = self.run_sweep()

        assert state.total == 0
        assert state.deleted == 0
        assert state.status == JobStatus.COMPLETED
        assert self.api.calls.get("delete_task") is None

    def test_delete_errors_are_counted(self):
        """Test that failing deletes count as errors and the sweep finishes."""
        for _ in range(3):
            self.api.add_task(self.list_id, "Call")
        self.api.fail("delete_task", TasksAPIError("boom", 500))

        state = self.run_sweep(concurrency=1)

        assert state.status == JobStatus.COMPLETED
        assert state.deleted + state.errors == 2
        assert state.errors == 1

    def test_missing_list_marks_job_error(self):
        """Test that a sweep without remote list ends in error."""
        self.state.remote_list_id = None

        state = self.run_sweep()

        assert state.status == JobStatus.ERROR
        assert "no remote task list" in state.message

    def test_sweep_error_raised_directly(self):
        """Test the exception type outside a tracker."""
        self.state.remote_list_id = None
        sweep = DuplicateSweep(self.api)
        with pytest.raises(SweepError):
            sweep.run(self.context, handle=None, persist=lambda _: None)
