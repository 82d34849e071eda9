"""
Scheduler: runs aggregation and pruning at calendar-aligned cadences.

Each job owns one worker thread and a non-blocking lock, so a cadence
never overlaps itself (a fire that finds the previous run still going is
skipped and logged) while different cadences may run concurrently. A
failed run is logged and the job waits for its next natural fire; there
is no immediate retry. stop() sets the shared cancel event, which also
stops in-flight aggregation passes between windows.
"""

import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Sequence

import structlog
from pydantic import BaseModel, ConfigDict, Field

from dashcore.models.enums import TimeGranularity
from dashcore.utils.clock import utcnow
from dashcore.utils.logging import log_context

from .aggregator import Aggregator
from .bucketer import previous_period
from .pruner import RetentionPruner


JobCallback = Callable[[datetime, threading.Event], Any]

# Leap-year span plus slack; every supported cadence fires within it.
_MAX_SEARCH_DAYS = 366 * 4 + 2


class Cadence(BaseModel):
    """
    Calendar-aligned firing rule.

    Fires at `minute` past the hour, restricted to `hour` (None = every
    hour), `weekday` (0 = Monday), day of month `day`, and `months`.
    """

    model_config = ConfigDict(frozen=True)

    minute: int = Field(default=0, ge=0, le=59)
    hour: Optional[int] = Field(default=None, ge=0, le=23)
    weekday: Optional[int] = Field(default=None, ge=0, le=6)
    day: Optional[int] = Field(default=None, ge=1, le=31)
    months: Optional[tuple[int, ...]] = None

    def _day_matches(self, candidate: datetime) -> bool:
        if self.months is not None and candidate.month not in self.months:
            return False
        if self.day is not None and candidate.day != self.day:
            return False
        if self.weekday is not None and candidate.weekday() != self.weekday:
            return False
        return True

    def next_fire(self, after: datetime) -> datetime:
        """First fire time strictly after `after`."""
        midnight = after.replace(hour=0, minute=0, second=0, microsecond=0)
        hours = range(24) if self.hour is None else (self.hour,)
        for offset in range(_MAX_SEARCH_DAYS):
            day = midnight + timedelta(days=offset)
            if not self._day_matches(day):
                continue
            for hour in hours:
                fire = day.replace(hour=hour, minute=self.minute)
                if fire > after:
                    return fire
        raise ValueError(f"Cadence {self!r} never fires")


HOURLY = Cadence(minute=10)
DAILY = Cadence(hour=0, minute=20)
WEEKLY = Cadence(weekday=0, hour=0, minute=30)
MONTHLY = Cadence(day=1, hour=0, minute=40)
QUARTERLY = Cadence(months=(1, 4, 7, 10), day=1, hour=0, minute=50)
PRUNE_DAILY = Cadence(hour=2, minute=0)


class ScheduledJob:
    """
    A named callback bound to a cadence.

    The callback receives the fire time and the scheduler's cancel event.
    """

    def __init__(self, name: str, cadence: Cadence, callback: JobCallback):
        self.name = name
        self.cadence = cadence
        self.callback = callback
        self.lock = threading.Lock()
        self.next_fire: Optional[datetime] = None
        self.last_run: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.run_count = 0
        self.error_count = 0
        self.skipped_count = 0

    def status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "running": self.lock.locked(),
            "next_fire": self.next_fire.isoformat() if self.next_fire else None,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_error": self.last_error,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "skipped_count": self.skipped_count,
        }


class Scheduler:
    """
    Runs ScheduledJobs on background threads.

    Args:
        jobs: Jobs to run; names must be unique
        clock: Returns the current naive-UTC time
        poll_seconds: Upper bound on a worker's sleep between checks
    """

    def __init__(
        self,
        jobs: Sequence[ScheduledJob],
        clock: Callable[[], datetime] = utcnow,
        poll_seconds: float = 1.0,
    ):
        names = [job.name for job in jobs]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate job names: {names}")
        self.jobs = {job.name: job for job in jobs}
        self.clock = clock
        self.poll_seconds = poll_seconds
        self.cancel_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self._running = False
        self.logger = structlog.get_logger()

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start one worker thread per job."""
        if self._running:
            return
        self._running = True
        self.cancel_event.clear()
        for job in self.jobs.values():
            thread = threading.Thread(
                target=self._run_loop, args=(job,), name=f"dashcore-{job.name}", daemon=True
            )
            thread.start()
            self._threads.append(thread)
        self.logger.info("scheduler_started", jobs=list(self.jobs))

    def stop(self, timeout: float = 10.0) -> None:
        """Signal cancellation and wait for workers to exit."""
        if not self._running:
            return
        self._running = False
        self.cancel_event.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []
        self.logger.info("scheduler_stopped")

    def run_now(self, name: str, fire_time: Optional[datetime] = None) -> bool:
        """
        Run a job immediately in the calling thread.

        Returns:
            False if the job was already running and the trigger was skipped

        Raises:
            KeyError: If no job has that name
        """
        return self._execute(self.jobs[name], fire_time or self.clock())

    def status(self) -> dict[str, Any]:
        return {
            "running": self._running,
            "jobs": [job.status() for job in self.jobs.values()],
        }

    def _run_loop(self, job: ScheduledJob) -> None:
        job.next_fire = job.cadence.next_fire(self.clock())
        while not self.cancel_event.is_set():
            now = self.clock()
            if now >= job.next_fire:
                fire_time = job.next_fire
                self._execute(job, fire_time)
                job.next_fire = job.cadence.next_fire(max(self.clock(), fire_time))
                continue
            wait = min(self.poll_seconds, (job.next_fire - now).total_seconds())
            self.cancel_event.wait(max(wait, 0.0))

    def _execute(self, job: ScheduledJob, fire_time: datetime) -> bool:
        if not job.lock.acquire(blocking=False):
            job.skipped_count += 1
            self.logger.warning(
                "cadence_run_skipped", job=job.name, fire_time=fire_time.isoformat()
            )
            return False

        try:
            with log_context(job=job.name, fire_time=fire_time.isoformat()):
                self._invoke(job, fire_time)
        finally:
            job.last_run = self.clock()
            job.lock.release()
        return True

    def _invoke(self, job: ScheduledJob, fire_time: datetime) -> None:
        try:
            self.logger.info("cadence_run_started")
            job.callback(fire_time, self.cancel_event)
            job.run_count += 1
            job.last_error = None
            self.logger.info("cadence_run_finished")
        except Exception as e:
            job.error_count += 1
            job.last_error = str(e)
            self.logger.error("cadence_run_failed", error=str(e), exc_info=True)


def aggregation_job(
    name: str, cadence: Cadence, granularity: TimeGranularity, aggregator: Aggregator
) -> ScheduledJob:
    """Job that aggregates the complete period preceding each fire."""

    def run(fire_time: datetime, cancel_event: threading.Event) -> None:
        window = previous_period(fire_time, granularity)
        aggregator.aggregate(window.start, window.end, granularity, cancel_event=cancel_event)

    return ScheduledJob(name, cadence, run)


def prune_job(cadence: Cadence, pruner: RetentionPruner) -> ScheduledJob:
    """Job that prunes rows older than the pruner's retention."""

    def run(fire_time: datetime, cancel_event: threading.Event) -> None:
        pruner.prune_expired(now=fire_time)

    return ScheduledJob("prune", cadence, run)


def build_default_jobs(aggregator: Aggregator, pruner: RetentionPruner) -> list[ScheduledJob]:
    """
    The standard cadences: hourly at :10, daily 00:20, weekly Monday 00:30,
    monthly on the 1st 00:40, quarterly 00:50, and pruning daily at 02:00.
    """
    return [
        aggregation_job("hourly", HOURLY, TimeGranularity.HOUR, aggregator),
        aggregation_job("daily", DAILY, TimeGranularity.DAY, aggregator),
        aggregation_job("weekly", WEEKLY, TimeGranularity.WEEK, aggregator),
        aggregation_job("monthly", MONTHLY, TimeGranularity.MONTH, aggregator),
        aggregation_job("quarterly", QUARTERLY, TimeGranularity.QUARTER, aggregator),
        prune_job(PRUNE_DAILY, pruner),
    ]
