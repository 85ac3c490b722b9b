"""
Daily API quota accounting.

Google Tasks grants a fixed number of requests per day, reset at UTC
midnight. The ledger lives inside SyncAccountState so usage survives
restarts and is persisted with every checkpoint.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, Callable

from gtask_sync.sync.models import SyncAccountState
from gtask_sync.utils.dates import format_timestamp, next_utc_midnight, utc_today

DAILY_QUOTA_LIMIT = 50_000
DEFAULT_SAFETY_MARGIN = 10


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QuotaLedger:
    """
    Tracks API calls spent today for one account.

    Attributes:
        state: The account state holding ``quota_used_today`` and
            ``quota_reset_date``
        limit: Daily allowance

    Usage:
        ledger = QuotaLedger(state)
        if ledger.has_budget():
            ...
            ledger.spend(1)
    """

    def __init__(
        self,
        state: SyncAccountState,
        limit: int = DAILY_QUOTA_LIMIT,
        lock: threading.RLock | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.state = state
        self.limit = limit
        self._lock = lock or threading.RLock()
        self._clock = clock or _utc_now

    def _roll_over(self) -> None:
        today = utc_today(self._clock())
        if self.state.quota_reset_date is None or self.state.quota_reset_date < today:
            self.state.quota_used_today = 0
            self.state.quota_reset_date = today

    @property
    def used(self) -> int:
        with self._lock:
            self._roll_over()
            return self.state.quota_used_today

    def remaining(self) -> int:
        with self._lock:
            self._roll_over()
            return max(0, self.limit - self.state.quota_used_today)

    def has_budget(self, margin: int = DEFAULT_SAFETY_MARGIN) -> bool:
        """True when at least ``margin`` calls are left today."""
        return self.remaining() >= max(margin, 1)

    def spend(self, calls: int = 1) -> int:
        """
        Charge ``calls`` API calls to today's usage.

        Returns:
            Calls remaining after the charge
        """
        if calls < 0:
            raise ValueError("calls must be non-negative")
        with self._lock:
            self._roll_over()
            self.state.quota_used_today += calls
            return max(0, self.limit - self.state.quota_used_today)

    def next_reset(self) -> datetime:
        return next_utc_midnight(self._clock())

    def snapshot(self) -> dict[str, Any]:
        """Quota report in the shape exposed by status endpoints."""
        with self._lock:
            self._roll_over()
            used = self.state.quota_used_today
        return {
            "used": used,
            "limit": self.limit,
            "remaining": max(0, self.limit - used),
            "percentUsed": round(used / self.limit * 100) if self.limit else 100,
            "resetsAt": format_timestamp(self.next_reset()),
        }
