"""
gtask_sync.daemon - Scheduled work and background jobs

Periodic daemon loop with PID file handling, plus the in-process tracker
for background maintenance jobs.
"""

import re

_INTERVAL_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_interval(interval: str | int) -> int:
    """Parse an interval such as "30s", "15m", "1h", "1d" or 900 into seconds.

    Raises:
        ValueError: If the interval is malformed or not positive.
    """
    if isinstance(interval, bool):
        raise ValueError("Invalid interval type: bool")

    if isinstance(interval, int):
        seconds = interval
    elif isinstance(interval, str):
        text = interval.strip().lower()
        if text.isdigit():
            seconds = int(text)
        else:
            match = re.match(r"^(\d+)\s*([smhd])$", text)
            if not match:
                raise ValueError(
                    f"Invalid interval format: '{interval}'. "
                    "Use format like '30s', '5m', '1h', or '1d'."
                )
            seconds = int(match.group(1)) * _INTERVAL_UNITS[match.group(2)]
    else:
        raise ValueError(
            f"Invalid interval type: {type(interval).__name__}. Expected str or int."
        )

    if seconds <= 0:
        raise ValueError(f"Interval must be positive, got {interval!r}")
    return seconds


from gtask_sync.daemon.jobs import BackgroundJobTracker, JobHandle  # noqa: E402
from gtask_sync.daemon.scheduler import (  # noqa: E402
    DEFAULT_PID_FILE,
    DaemonAlreadyRunningError,
    DaemonError,
    DaemonScheduler,
    DaemonStats,
    JobStats,
    PIDFileError,
    PIDFileManager,
)

__all__ = [
    "parse_interval",
    "BackgroundJobTracker",
    "JobHandle",
    "DaemonScheduler",
    "DaemonStats",
    "JobStats",
    "DaemonError",
    "PIDFileError",
    "DaemonAlreadyRunningError",
    "PIDFileManager",
    "DEFAULT_PID_FILE",
]
