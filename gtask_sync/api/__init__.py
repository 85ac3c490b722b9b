"""
gtask_sync.api - Google Tasks API access
"""

from gtask_sync.api.tasks_api import (
    NotFoundError,
    RateLimitError,
    TasksAPI,
    TasksAPIError,
)

__all__ = ["TasksAPI", "TasksAPIError", "RateLimitError", "NotFoundError"]
