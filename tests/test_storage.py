"""
Unit tests for the storage module.

Tests the SyncDatabase class for account state and task mapping operations.
"""

from datetime import date, datetime, timezone

import pytest

from gtask_sync.storage.db import SyncDatabase
from gtask_sync.sync.models import SyncAccountState


@pytest.fixture
def db():
    database = SyncDatabase(":memory:")
    database.initialize()
    return database


class TestSyncDatabaseInitialization:
    """Tests for database initialization."""

    def test_initialize_creates_tables(self, db):
        """Test that initialize creates the required tables."""
        with db.connection() as conn:
            names = {
                row["name"]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            }
        assert {"sync_account_state", "task_mapping"} <= names

    def test_initialize_is_idempotent(self, db):
        """Test that initialize can be called repeatedly."""
        db.initialize()
        db.initialize()
        assert db.list_account_ids() == []

    def test_file_database(self, tmp_path):
        """Test that a file database persists between instances."""
        path = tmp_path / "sync.db"
        first = SyncDatabase(str(path))
        first.initialize()
        first.save_account_state(SyncAccountState(account_id="work", enabled=True))

        second = SyncDatabase(str(path))
        assert second.load_account_state("work").enabled is True


class TestConnectionContextManager:
    """Tests for the connection context manager."""

    def test_connection_rollback_on_error(self, db):
        """Test that a failing block leaves no partial writes."""
        with pytest.raises(RuntimeError):
            with db.connection() as conn:
                conn.execute(
                    "INSERT INTO sync_account_state (account_id) VALUES ('work')"
                )
                raise RuntimeError("boom")

        assert db.list_account_ids() == []


class TestAccountStateOperations:
    """Tests for account state load/save."""

    def test_unknown_account_is_fresh_and_disabled(self, db):
        """Test the default state for unknown accounts."""
        state = db.load_account_state("nobody")
        assert state.account_id == "nobody"
        assert state.enabled is False
        assert state.remote_list_id is None
        assert state.id_map == {}

    def test_round_trip(self, db):
        """Test that all fields survive a save and load."""
        state = SyncAccountState(
            account_id="work",
            remote_list_id="list-1",
            enabled=True,
            quota_used_today=42,
            quota_reset_date=date(2024, 6, 1),
            last_sync_at=datetime(2024, 6, 1, 12, 30, tzinfo=timezone.utc),
            connected_at=datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc),
        )
        state.record("t1", "r1", "aaaa0001")
        state.record("t2", "r2", "aaaa0002")
        db.save_account_state(state)

        loaded = db.load_account_state("work")

        assert loaded.remote_list_id == "list-1"
        assert loaded.enabled is True
        assert loaded.quota_used_today == 42
        assert loaded.quota_reset_date == date(2024, 6, 1)
        assert loaded.last_sync_at == state.last_sync_at
        assert loaded.connected_at == state.connected_at
        assert loaded.id_map == {"t1": "r1", "t2": "r2"}
        assert loaded.fingerprint_map == {"t1": "aaaa0001", "t2": "aaaa0002"}

    def test_save_replaces_mappings(self, db):
        """Test that forgotten mappings disappear on the next save."""
        state = SyncAccountState(account_id="work")
        state.record("t1", "r1", "f1")
        state.record("t2", "r2", "f2")
        db.save_account_state(state)

        state.forget("t1")
        db.save_account_state(state)

        assert db.load_account_state("work").id_map == {"t2": "r2"}

    def test_accounts_are_isolated(self, db):
        """Test that mappings do not leak between accounts."""
        work = SyncAccountState(account_id="work")
        work.record("t1", "r1", "f1")
        home = SyncAccountState(account_id="home")
        home.record("t1", "other", "f9")
        db.save_account_state(work)
        db.save_account_state(home)

        assert db.load_account_state("work").id_map == {"t1": "r1"}
        assert db.load_account_state("home").id_map == {"t1": "other"}
        assert db.list_account_ids() == ["home", "work"]

    def test_delete_account_state(self, db):
        """Test that deleting removes header and mappings."""
        state = SyncAccountState(account_id="work", enabled=True)
        state.record("t1", "r1", "f1")
        db.save_account_state(state)

        db.delete_account_state("work")

        assert db.list_account_ids() == []
        assert db.get_mapping_count("work") == 0

    def test_mapping_count_ignores_empty_remote_ids(self, db):
        """Test that blank remote ids are not counted as synced."""
        state = SyncAccountState(account_id="work")
        state.record("t1", "r1", "f1")
        state.record("t2", "", "f2")
        db.save_account_state(state)

        assert db.get_mapping_count("work") == 1
