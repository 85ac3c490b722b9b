"""
gtask_sync.storage - Sync state database and local task store
"""

from gtask_sync.storage.db import DatabaseError, SyncDatabase
from gtask_sync.storage.task_store import JsonTaskStore, TaskStore, TaskStoreError

__all__ = [
    "SyncDatabase",
    "DatabaseError",
    "TaskStore",
    "JsonTaskStore",
    "TaskStoreError",
]
