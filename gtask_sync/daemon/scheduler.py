"""
Daemon scheduler for periodic task sync work.

The daemon repeatedly runs a set of named jobs (typically "pull completions"
and optionally "full sync" per account) every interval. It provides:
- A PID file so only one daemon runs per configuration directory
- Graceful shutdown on SIGTERM/SIGINT
- Per-job statistics
"""

from __future__ import annotations

import logging
import os
import signal
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from gtask_sync.utils.paths import DEFAULT_CONFIG_DIR, PID_FILE_NAME

logger = logging.getLogger(__name__)

DEFAULT_PID_FILE = DEFAULT_CONFIG_DIR / PID_FILE_NAME


class DaemonError(Exception):
    """Base exception for daemon-related errors."""

    pass


class PIDFileError(DaemonError):
    """Raised when PID file operations fail."""

    pass


class DaemonAlreadyRunningError(DaemonError):
    """Raised when attempting to start a daemon that is already running."""

    pass


@dataclass
class JobStats:
    """Run counters of one scheduled job."""

    runs: int = 0
    successes: int = 0
    failures: int = 0
    last_run_at: datetime | None = None
    last_error: str | None = None


@dataclass
class DaemonStats:
    started_at: datetime = field(default_factory=datetime.now)
    cycles: int = 0
    jobs: dict[str, JobStats] = field(default_factory=dict)


def is_process_running(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else
        return True
    return True


class PIDFileManager:
    """
    Creates, reads and removes the daemon PID file.

    A PID file pointing at a dead process is treated as stale and replaced.
    """

    def __init__(self, pid_file: Path | None = None):
        self.pid_file = pid_file or DEFAULT_PID_FILE

    def read(self) -> int | None:
        """
        Raises:
            PIDFileError: If the file exists but does not hold a PID
        """
        if not self.pid_file.exists():
            return None
        try:
            content = self.pid_file.read_text().strip()
        except OSError as e:
            raise PIDFileError(f"Failed to read PID file {self.pid_file}: {e}") from e
        try:
            return int(content)
        except ValueError as e:
            raise PIDFileError(f"Invalid PID in file {self.pid_file}: {content}") from e

    def running_pid(self) -> int | None:
        """PID of a live daemon, or None."""
        try:
            pid = self.read()
        except PIDFileError:
            return None
        if pid is not None and is_process_running(pid):
            return pid
        return None

    def create(self) -> None:
        """
        Write the current PID.

        Raises:
            DaemonAlreadyRunningError: If another live daemon owns the file
            PIDFileError: If the file cannot be written
        """
        pid = self.running_pid()
        if pid is not None and pid != os.getpid():
            raise DaemonAlreadyRunningError(f"Daemon already running with PID {pid}")
        if self.pid_file.exists():
            logger.warning(f"Replacing stale PID file {self.pid_file}")

        try:
            self.pid_file.parent.mkdir(parents=True, exist_ok=True)
            self.pid_file.write_text(str(os.getpid()))
        except OSError as e:
            raise PIDFileError(f"Failed to create PID file {self.pid_file}: {e}") from e

    def remove(self) -> None:
        try:
            self.pid_file.unlink(missing_ok=True)
        except OSError as e:
            raise PIDFileError(f"Failed to remove PID file {self.pid_file}: {e}") from e


class DaemonScheduler:
    """
    Runs registered jobs every ``interval`` seconds until stopped.

    Usage:
        scheduler = DaemonScheduler(interval=900, pid_file=config_dir / "daemon.pid")
        scheduler.add_job("pull:work", lambda: engine.pull_completions("work"))
        scheduler.run()   # blocks until SIGTERM/SIGINT or stop()

    Attributes:
        interval: Seconds between cycles
        stats: Daemon statistics
    """

    def __init__(
        self,
        interval: int = 900,
        pid_file: Path | None = None,
        run_immediately: bool = True,
    ):
        if interval < 1:
            raise ValueError("interval must be at least 1 second")
        self.interval = interval
        self.run_immediately = run_immediately
        self._pid_manager = PIDFileManager(pid_file)
        self._jobs: list[tuple[str, Callable[[], object]]] = []
        self._stop_event = threading.Event()
        self._running = False
        self._previous_handlers: dict[int, object] = {}
        self.stats = DaemonStats()

    @property
    def pid_file(self) -> Path:
        return self._pid_manager.pid_file

    def add_job(self, name: str, job: Callable[[], object]) -> None:
        """
        Register a job. A job fails by raising; its return value is ignored.
        """
        self._jobs.append((name, job))
        self.stats.jobs.setdefault(name, JobStats())

    def run_cycle(self) -> bool:
        """
        Run every job once, isolating failures.

        Returns:
            True if all jobs succeeded
        """
        self.stats.cycles += 1
        ok = True
        for name, job in self._jobs:
            if self._stop_event.is_set():
                break
            job_stats = self.stats.jobs.setdefault(name, JobStats())
            job_stats.runs += 1
            job_stats.last_run_at = datetime.now()
            try:
                job()
            except Exception as e:
                ok = False
                job_stats.failures += 1
                job_stats.last_error = str(e)
                logger.error(f"Job {name} failed: {e}")
            else:
                job_stats.successes += 1
                job_stats.last_error = None
        logger.debug(f"Cycle {self.stats.cycles} finished (ok={ok})")
        return ok

    def _handle_signal(self, signum: int, frame: object) -> None:
        logger.info(f"Received {signal.Signals(signum).name}, shutting down")
        self._stop_event.set()

    def _install_signal_handlers(self) -> None:
        for signum in (signal.SIGTERM, signal.SIGINT):
            self._previous_handlers[signum] = signal.signal(signum, self._handle_signal)

    def _restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)  # type: ignore[arg-type]
        self._previous_handlers.clear()

    def run(self) -> None:
        """
        Block running cycles until a shutdown signal or ``stop()``.

        Raises:
            DaemonAlreadyRunningError: If another daemon is already running
            PIDFileError: If the PID file cannot be written
        """
        if not self._jobs:
            logger.warning("Daemon started without jobs")

        self._pid_manager.create()
        self._install_signal_handlers()
        self._stop_event.clear()
        self._running = True
        self.stats = DaemonStats(jobs={name: JobStats() for name, _ in self._jobs})
        logger.info(
            f"Daemon started (PID {os.getpid()}, interval {self.interval}s, "
            f"{len(self._jobs)} jobs)"
        )

        try:
            if self.run_immediately:
                self.run_cycle()
            while not self._stop_event.wait(self.interval):
                self.run_cycle()
        finally:
            self._running = False
            self._restore_signal_handlers()
            self._pid_manager.remove()
            logger.info("Daemon stopped")

    def stop(self) -> None:
        self._stop_event.set()

    def is_running(self) -> bool:
        return self._running

    @staticmethod
    def get_running_pid(pid_file: Path | None = None) -> int | None:
        return PIDFileManager(pid_file).running_pid()

    @staticmethod
    def stop_running_daemon(pid_file: Path | None = None) -> bool:
        """
        Send SIGTERM to the running daemon.

        Returns:
            True if a signal was sent
        """
        pid = DaemonScheduler.get_running_pid(pid_file)
        if pid is None:
            logger.info("No running daemon found")
            return False
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            logger.warning(f"Daemon process {pid} not found")
            return False
        except PermissionError:
            logger.error(f"Permission denied sending signal to PID {pid}")
            return False
        logger.info(f"Sent SIGTERM to daemon (PID {pid})")
        return True


__all__ = [
    "DaemonScheduler",
    "DaemonStats",
    "JobStats",
    "DaemonError",
    "PIDFileError",
    "DaemonAlreadyRunningError",
    "PIDFileManager",
    "DEFAULT_PID_FILE",
    "is_process_running",
]
