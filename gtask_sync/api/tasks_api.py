"""
Google Tasks API wrapper.

Provides a small interface over the Tasks API (v1) for:
- Finding, reading and creating task lists
- Listing tasks with pagination (optionally including completed/hidden)
- Creating, updating and deleting tasks
- Translating HttpError into RateLimitError / NotFoundError / TasksAPIError

Retries are not performed here; callers wrap calls in a RetryPolicy so that
quota accounting and backoff stay in one place.
"""

import logging
from collections.abc import Callable
from typing import Any

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

# Maximum number of tasks per page when listing (API max is 100)
DEFAULT_PAGE_SIZE = 100

RATE_LIMIT_MARKERS = (
    "ratelimitexceeded",
    "userratelimitexceeded",
    "rate limit",
    "quota",
)

logger = logging.getLogger(__name__)


class TasksAPIError(Exception):
    """Raised when a Tasks API operation fails."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class RateLimitError(TasksAPIError):
    """Raised when Google throttles the request (429 or quota-related 403)."""

    pass


class NotFoundError(TasksAPIError):
    """Raised when the task or task list no longer exists (404/410)."""

    pass


def _error_text(error: HttpError) -> str:
    parts = [str(getattr(error.resp, "reason", "") or "")]
    content = getattr(error, "content", b"")
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    parts.append(str(content or ""))
    details = getattr(error, "error_details", None)
    if details:
        parts.append(str(details))
    return " ".join(parts).lower()


def is_rate_limit_response(status: int, text: str) -> bool:
    """Decide whether an HTTP failure is throttling."""
    if status == 429:
        return True
    if status == 403:
        return any(marker in text for marker in RATE_LIMIT_MARKERS)
    return False


def translate_http_error(error: HttpError, operation_name: str) -> TasksAPIError:
    """Map an HttpError onto the wrapper's exception hierarchy."""
    status = int(getattr(error.resp, "status", 0) or 0)
    text = _error_text(error)

    if is_rate_limit_response(status, text):
        return RateLimitError(f"{operation_name} rate limited ({status})", status)
    if status in (404, 410):
        return NotFoundError(f"{operation_name}: not found ({status})", status)
    return TasksAPIError(f"{operation_name} failed ({status}): {error}", status)


class TasksAPI:
    """
    Google Tasks API wrapper for task and task list operations.

    Attributes:
        credentials: Google OAuth2 credentials
        service: Google API service object (built lazily)

    Usage:
        api = TasksAPI(credentials)

        task_list = api.find_task_list("Task Sync") or api.create_task_list(
            "Task Sync"
        )
        created = api.create_task(task_list["id"], {"title": "Call client"})
        api.update_task(task_list["id"], created["id"], {"title": "Call back"})
        api.delete_task(task_list["id"], created["id"])
    """

    def __init__(self, credentials: Credentials, page_size: int = DEFAULT_PAGE_SIZE):
        """
        Initialize the Tasks API wrapper.

        Args:
            credentials: Valid Google OAuth2 credentials with the tasks scope
            page_size: Number of items per page when listing (max 100)
        """
        self.credentials = credentials
        self.page_size = max(1, min(page_size, 100))
        self._service = None

    @property
    def service(self) -> Any:
        """
        Get or create the Google API service object.

        Raises:
            TasksAPIError: If the service cannot be created
        """
        if self._service is None:
            try:
                self._service = build(
                    "tasks", "v1", credentials=self.credentials, cache_discovery=False
                )
                logger.debug("Created Tasks API service")
            except Exception as e:
                logger.error(f"Failed to create Tasks API service: {e}")
                raise TasksAPIError(f"Failed to create API service: {e}") from e
        return self._service

    def _execute(self, request_fn: Callable[[], Any], operation_name: str) -> Any:
        try:
            return request_fn().execute()
        except HttpError as e:
            error = translate_http_error(e, operation_name)
            if isinstance(error, RateLimitError):
                logger.debug(str(error))
            elif not isinstance(error, NotFoundError):
                logger.error(str(error))
            raise error from e

    # =========================================================================
    # Task lists
    # =========================================================================

    def list_task_lists(self) -> list[dict[str, Any]]:
        """Return every task list of the account."""
        lists: list[dict[str, Any]] = []
        page_token: str | None = None

        while True:
            params: dict[str, Any] = {"maxResults": self.page_size}
            if page_token:
                params["pageToken"] = page_token

            response = self._execute(
                lambda p=params: self.service.tasklists().list(**p),
                "list_task_lists",
            )
            lists.extend(response.get("items", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                break

        return lists

    def find_task_list(self, title: str) -> dict[str, Any] | None:
        """Find a task list by exact title."""
        for task_list in self.list_task_lists():
            if task_list.get("title") == title:
                return task_list
        return None

    def get_task_list(self, list_id: str) -> dict[str, Any]:
        """
        Fetch a task list.

        Raises:
            NotFoundError: If the list was deleted
        """
        return self._execute(
            lambda: self.service.tasklists().get(tasklist=list_id),
            f"get_task_list({list_id})",
        )

    def create_task_list(self, title: str) -> dict[str, Any]:
        response = self._execute(
            lambda: self.service.tasklists().insert(body={"title": title}),
            "create_task_list",
        )
        logger.info(f"Created task list '{title}': {response.get('id')}")
        return response

    # =========================================================================
    # Tasks
    # =========================================================================

    def list_tasks(
        self,
        list_id: str,
        show_completed: bool = True,
        show_hidden: bool = False,
        on_page: Callable[[int], None] | None = None,
    ) -> list[dict[str, Any]]:
        """
        List all tasks of a list, following pagination.

        Args:
            list_id: Task list id
            show_completed: Include completed tasks
            show_hidden: Include hidden (cleared) tasks
            on_page: Called with the number of items after each page

        Returns:
            Raw task resources
        """
        tasks: list[dict[str, Any]] = []
        page_token: str | None = None

        while True:
            params: dict[str, Any] = {
                "tasklist": list_id,
                "maxResults": self.page_size,
                "showCompleted": show_completed,
                "showHidden": show_hidden,
            }
            if page_token:
                params["pageToken"] = page_token

            response = self._execute(
                lambda p=params: self.service.tasks().list(**p), "list_tasks"
            )
            items = response.get("items", [])
            tasks.extend(items)
            if on_page is not None:
                on_page(len(items))

            page_token = response.get("nextPageToken")
            if not page_token:
                break

        logger.debug(f"Listed {len(tasks)} tasks from {list_id}")
        return tasks

    def get_task(self, list_id: str, task_id: str) -> dict[str, Any]:
        return self._execute(
            lambda: self.service.tasks().get(tasklist=list_id, task=task_id),
            f"get_task({task_id})",
        )

    def create_task(self, list_id: str, body: dict[str, Any]) -> dict[str, Any]:
        response = self._execute(
            lambda: self.service.tasks().insert(tasklist=list_id, body=body),
            "create_task",
        )
        logger.debug(f"Created task {response.get('id')}")
        return response

    def update_task(
        self, list_id: str, task_id: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Replace a task's content.

        Raises:
            NotFoundError: If the task no longer exists remotely
        """
        payload = dict(body, id=task_id)
        return self._execute(
            lambda: self.service.tasks().update(
                tasklist=list_id, task=task_id, body=payload
            ),
            f"update_task({task_id})",
        )

    def delete_task(self, list_id: str, task_id: str) -> bool:
        """
        Delete a task.

        Returns:
            True if the task is gone (already missing counts as deleted)
        """
        try:
            self._execute(
                lambda: self.service.tasks().delete(tasklist=list_id, task=task_id),
                f"delete_task({task_id})",
            )
        except NotFoundError:
            logger.debug(f"Task already deleted: {task_id}")
        return True


__all__ = [
    "TasksAPI",
    "TasksAPIError",
    "RateLimitError",
    "NotFoundError",
    "translate_http_error",
    "is_rate_limit_response",
    "DEFAULT_PAGE_SIZE",
]
