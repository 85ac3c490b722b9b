"""
SQLite database module for sync state persistence.

Stores one SyncAccountState per account: the header row (remote list id,
quota usage, timestamps) and the task mappings (local id -> remote id and
last pushed fingerprint).
"""

import sqlite3
import threading
from collections.abc import Generator
from contextlib import contextmanager
from datetime import date
from typing import Optional

from gtask_sync.sync.models import SyncAccountState
from gtask_sync.utils.dates import format_timestamp, parse_timestamp

SCHEMA = """
CREATE TABLE IF NOT EXISTS sync_account_state (
    account_id TEXT PRIMARY KEY,
    remote_list_id TEXT,
    enabled INTEGER NOT NULL DEFAULT 0,
    quota_used_today INTEGER NOT NULL DEFAULT 0,
    quota_reset_date TEXT,
    last_sync_at TEXT,
    connected_at TEXT,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS task_mapping (
    id INTEGER PRIMARY KEY,
    account_id TEXT NOT NULL,
    local_task_id TEXT NOT NULL,
    remote_task_id TEXT,
    fingerprint TEXT,
    UNIQUE(account_id, local_task_id)
);

CREATE INDEX IF NOT EXISTS idx_task_mapping_account ON task_mapping(account_id);
CREATE INDEX IF NOT EXISTS idx_task_mapping_remote ON task_mapping(remote_task_id);
"""


class DatabaseError(Exception):
    """Raised when the state database cannot be read or written."""

    pass


class SyncDatabase:
    """
    SQLite database manager for per-account sync state.

    Usage:
        db = SyncDatabase('/path/to/sync.db')
        db.initialize()

        state = db.load_account_state('work')
        state.record('t1', 'remote-1', 'a1b2c3d4')
        db.save_account_state(state)

        # Or use in-memory for testing:
        db = SyncDatabase(':memory:')
        db.initialize()
    """

    def __init__(self, db_path: str):
        """
        Args:
            db_path: Path to SQLite database file, or ':memory:'
        """
        self.db_path = str(db_path)
        self._shared_connection: Optional[sqlite3.Connection] = None
        # Checkpoints are written from worker threads
        self._write_lock = threading.RLock()

    def _get_connection(self) -> sqlite3.Connection:
        """
        In-memory databases share a single connection so the schema
        persists; file databases get a fresh connection per use.
        """
        if self.db_path == ":memory:":
            if self._shared_connection is None:
                self._shared_connection = sqlite3.connect(
                    ":memory:", check_same_thread=False
                )
                self._shared_connection.row_factory = sqlite3.Row
            return self._shared_connection

        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Context manager for a transaction: commits on success, rolls back
        on error.
        """
        with self._write_lock:
            conn = self._get_connection()
            is_shared = self.db_path == ":memory:"
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                if not is_shared:
                    conn.close()

    def initialize(self) -> None:
        with self.connection() as conn:
            conn.executescript(SCHEMA)

    # =========================================================================
    # Account State Operations
    # =========================================================================

    def load_account_state(self, account_id: str) -> SyncAccountState:
        """
        Load the full state of an account.

        Returns:
            The stored state, or a fresh disabled state if none exists
        """
        state = SyncAccountState(account_id=account_id)
        with self.connection() as conn:
            row = conn.execute(
                "SELECT * FROM sync_account_state WHERE account_id = ?",
                (account_id,),
            ).fetchone()
            if row is None:
                return state

            state.remote_list_id = row["remote_list_id"]
            state.enabled = bool(row["enabled"])
            state.quota_used_today = int(row["quota_used_today"] or 0)
            if row["quota_reset_date"]:
                state.quota_reset_date = date.fromisoformat(row["quota_reset_date"])
            state.last_sync_at = parse_timestamp(row["last_sync_at"])
            state.connected_at = parse_timestamp(row["connected_at"])

            for mapping in conn.execute(
                """
                SELECT local_task_id, remote_task_id, fingerprint
                FROM task_mapping WHERE account_id = ?
                """,
                (account_id,),
            ):
                if mapping["remote_task_id"] is not None:
                    state.id_map[mapping["local_task_id"]] = mapping["remote_task_id"]
                if mapping["fingerprint"] is not None:
                    state.fingerprint_map[mapping["local_task_id"]] = mapping[
                        "fingerprint"
                    ]
        return state

    def save_account_state(self, state: SyncAccountState) -> None:
        """
        Replace the stored state of an account in one transaction.

        Raises:
            DatabaseError: If the write fails (nothing is changed)
        """
        task_ids = set(state.id_map) | set(state.fingerprint_map)
        rows = [
            (
                state.account_id,
                task_id,
                state.id_map.get(task_id),
                state.fingerprint_map.get(task_id),
            )
            for task_id in sorted(task_ids)
        ]

        try:
            with self.connection() as conn:
                conn.execute(
                    """
                    INSERT INTO sync_account_state (
                        account_id, remote_list_id, enabled, quota_used_today,
                        quota_reset_date, last_sync_at, connected_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(account_id) DO UPDATE SET
                        remote_list_id = excluded.remote_list_id,
                        enabled = excluded.enabled,
                        quota_used_today = excluded.quota_used_today,
                        quota_reset_date = excluded.quota_reset_date,
                        last_sync_at = excluded.last_sync_at,
                        connected_at = excluded.connected_at,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (
                        state.account_id,
                        state.remote_list_id,
                        int(state.enabled),
                        state.quota_used_today,
                        state.quota_reset_date.isoformat()
                        if state.quota_reset_date
                        else None,
                        format_timestamp(state.last_sync_at),
                        format_timestamp(state.connected_at),
                    ),
                )
                conn.execute(
                    "DELETE FROM task_mapping WHERE account_id = ?",
                    (state.account_id,),
                )
                conn.executemany(
                    """
                    INSERT INTO task_mapping
                        (account_id, local_task_id, remote_task_id, fingerprint)
                    VALUES (?, ?, ?, ?)
                    """,
                    rows,
                )
        except sqlite3.Error as e:
            raise DatabaseError(
                f"Failed to save state for {state.account_id}: {e}"
            ) from e

    def delete_account_state(self, account_id: str) -> None:
        with self.connection() as conn:
            conn.execute("DELETE FROM task_mapping WHERE account_id = ?", (account_id,))
            conn.execute(
                "DELETE FROM sync_account_state WHERE account_id = ?", (account_id,)
            )

    def list_account_ids(self) -> list[str]:
        with self.connection() as conn:
            cursor = conn.execute(
                "SELECT account_id FROM sync_account_state ORDER BY account_id"
            )
            return [row["account_id"] for row in cursor.fetchall()]

    def get_mapping_count(self, account_id: str) -> int:
        """Number of local tasks with a remote id for the account."""
        with self.connection() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS n FROM task_mapping
                WHERE account_id = ? AND remote_task_id IS NOT NULL
                    AND remote_task_id != ''
                """,
                (account_id,),
            ).fetchone()
            return int(row["n"])

