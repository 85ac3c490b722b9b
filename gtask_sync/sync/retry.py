"""
Retry with exponential backoff for Google Tasks calls.

RetryPolicy retries only errors it considers transient (rate limits by
default). SharedBackoff lets a pool of workers honour a single pause: when
one worker is throttled, every worker waits before its next call.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

from gtask_sync.api.tasks_api import RateLimitError

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0  # seconds
DEFAULT_MAX_DELAY = 32.0  # seconds


def is_rate_limit(error: BaseException) -> bool:
    return isinstance(error, RateLimitError)


class SharedBackoff:
    """
    A "paused until" timestamp shared between worker threads.

    Usage:
        backoff = SharedBackoff()
        backoff.wait()          # before each call
        backoff.pause(2.0)      # after being throttled
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] | None = None,
    ):
        self._lock = threading.Lock()
        self._paused_until = 0.0
        self._clock = clock
        self._sleep = sleep

    @property
    def paused_until(self) -> float:
        with self._lock:
            return self._paused_until

    def pause(self, delay: float) -> None:
        """Extend the shared pause so it lasts at least ``delay`` from now."""
        with self._lock:
            self._paused_until = max(self._paused_until, self._clock() + delay)

    def wait(self) -> None:
        """Block until the shared pause has elapsed."""
        sleep = self._sleep or time.sleep
        while True:
            with self._lock:
                remaining = self._paused_until - self._clock()
            if remaining <= 0:
                return
            sleep(remaining)


class RetryPolicy:
    """
    Exponential backoff retry policy.

    The delay before retry ``n`` (0-based) is ``min(base_delay * 2**n,
    max_delay)``. Errors rejected by ``is_retriable`` propagate immediately.

    Attributes:
        max_attempts: Total attempts including the first one
        base_delay: First backoff delay in seconds
        max_delay: Cap on a single delay in seconds
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        is_retriable: Callable[[BaseException], bool] = is_rate_limit,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.is_retriable = is_retriable

    @classmethod
    def from_settings(cls, settings: Any) -> RetryPolicy:
        """Build a policy from an object with max_retries/backoff_ms fields."""
        return cls(
            max_attempts=max(1, int(settings.max_retries)),
            base_delay=settings.base_backoff_ms / 1000.0,
            max_delay=settings.max_backoff_ms / 1000.0,
        )

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * (2**attempt), self.max_delay)

    def call(
        self,
        operation: Callable[[], Any],
        operation_name: str,
        shared: SharedBackoff | None = None,
    ) -> Any:
        """
        Run ``operation`` under this policy.

        Args:
            operation: Zero-argument callable performing one API request
            operation_name: Name for logging
            shared: Optional pool-wide backoff; delays are applied through it

        Returns:
            The operation's result

        Raises:
            The last error once attempts are exhausted, or the first
            non-retriable error
        """
        for attempt in range(self.max_attempts):
            if shared is not None:
                shared.wait()
            try:
                return operation()
            except Exception as e:
                if not self.is_retriable(e) or attempt >= self.max_attempts - 1:
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    f"{operation_name} rate limited, retrying in {delay:.1f}s "
                    f"(attempt {attempt + 1}/{self.max_attempts})"
                )
                if shared is not None:
                    shared.pause(delay)
                else:
                    time.sleep(delay)
        raise RuntimeError(f"{operation_name} exhausted retries")  # unreachable
