"""Interval scheduler for recurring sync passes.

Each job runs on its own daemon thread and sleeps on a stop event
between runs, so ``shutdown()`` wakes it immediately.  A job never
overlaps itself: the next wait starts only after the previous run
returns.  Exceptions from a run are logged and the job keeps its
schedule.

Intervals are whole minutes.  ``minutes_to_cron()`` renders the
equivalent cron expression for status output.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from .errors import PassInProgressError

logger = logging.getLogger(__name__)


def minutes_to_cron(minutes: int) -> str:
    """Convert an interval in minutes to a cron expression.

    * under an hour: ``*/M * * * *``
    * under a day: ``R */H * * *`` (every H hours at minute R)
    * one day: ``R H * * *`` (daily at H:R)
    * more: ``R H */D * *`` (every D days at H:R)

    Raises:
        ValueError: If *minutes* is less than 1.
    """
    if minutes < 1:
        raise ValueError("Minutes must be at least 1")

    if minutes < 60:
        return f"*/{minutes} * * * *"

    hours, remaining_minutes = divmod(minutes, 60)
    if hours < 24:
        return f"{remaining_minutes} */{hours} * * *"

    days, remaining_hours = divmod(hours, 24)
    if days == 1:
        return f"{remaining_minutes} {remaining_hours} * * *"
    return f"{remaining_minutes} {remaining_hours} */{days} * *"


class IntervalJob:
    """A function called every *interval_minutes* on a background thread."""

    def __init__(
        self,
        name: str,
        interval_minutes: int,
        func: Callable[[], Any],
        run_on_start: bool = False,
    ) -> None:
        self.name = name
        self.interval_minutes = interval_minutes
        self.cron = minutes_to_cron(interval_minutes)
        self.func = func
        self.run_on_start = run_on_start
        self.next_run_at: datetime | None = None
        self.last_run_at: datetime | None = None
        self.run_count = 0
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def interval_seconds(self) -> float:
        return self.interval_minutes * 60.0

    @property
    def alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.alive:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, name=f"job-{self.name}", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        """Signal the job to stop and wait for a running call to finish."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning(
                    "Task %s still running after %.0fs", self.name, timeout or 0
                )
        self.next_run_at = None

    def _schedule_next(self) -> float:
        self.next_run_at = datetime.now(timezone.utc) + timedelta(
            seconds=self.interval_seconds
        )
        return self.interval_seconds

    def _loop(self) -> None:
        if not self.run_on_start:
            if self._stop.wait(self._schedule_next()):
                return
        while not self._stop.is_set():
            self.run_once()
            if self._stop.wait(self._schedule_next()):
                return

    def run_once(self) -> None:
        """Call the job function, logging instead of propagating errors."""
        logger.info("Executing scheduled task: %s", self.name)
        self.last_run_at = datetime.now(timezone.utc)
        self.run_count += 1
        try:
            self.func()
        except PassInProgressError:
            logger.warning("Task %s skipped: a pass is already running", self.name)
        except Exception:
            logger.exception("Error executing task %s", self.name)
        else:
            logger.info("Task %s executed successfully", self.name)

    def describe(self) -> dict[str, Any]:
        return {
            "intervalMinutes": self.interval_minutes,
            "cron": self.cron,
            "nextRunAt": self.next_run_at.isoformat() if self.next_run_at else None,
            "lastRunAt": self.last_run_at.isoformat() if self.last_run_at else None,
            "runCount": self.run_count,
        }


class Scheduler:
    """Registry of named interval jobs."""

    def __init__(self) -> None:
        self._jobs: dict[str, IntervalJob] = {}
        self._lock = threading.Lock()

    def schedule(
        self,
        name: str,
        interval_minutes: int,
        func: Callable[[], Any],
        run_on_start: bool = False,
    ) -> IntervalJob:
        """Start running *func* every *interval_minutes*.

        Replaces (and stops) an existing job with the same name.

        Raises:
            ValueError: If the interval is less than one minute.
        """
        job = IntervalJob(name, interval_minutes, func, run_on_start)
        with self._lock:
            previous = self._jobs.pop(name, None)
            self._jobs[name] = job
        if previous is not None:
            previous.stop()
        logger.info(
            "Scheduling task: %s every %d minutes (%s)",
            name,
            interval_minutes,
            job.cron,
        )
        job.start()
        return job

    def stop_task(self, name: str, timeout: float | None = None) -> bool:
        with self._lock:
            job = self._jobs.pop(name, None)
        if job is None:
            logger.warning("Task %s not found", name)
            return False
        job.stop(timeout)
        logger.info("Task %s stopped successfully", name)
        return True

    def get(self, name: str) -> IntervalJob | None:
        return self._jobs.get(name)

    def next_run_time(self, name: str) -> datetime | None:
        job = self._jobs.get(name)
        return job.next_run_at if job else None

    def next_scheduled_run(self) -> datetime | None:
        """Earliest next run across all jobs."""
        times = [j.next_run_at for j in self._jobs.values() if j.next_run_at]
        return min(times) if times else None

    def list_scheduled(self) -> dict[str, dict[str, Any]]:
        return {name: job.describe() for name, job in self._jobs.items()}

    def shutdown(self, timeout: float | None = None) -> None:
        """Stop every job, letting running calls finish."""
        with self._lock:
            jobs = list(self._jobs.values())
            self._jobs.clear()
        for job in jobs:
            job.stop(timeout)
        if jobs:
            logger.info("Scheduler stopped (%d tasks)", len(jobs))
