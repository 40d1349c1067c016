#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Population Scheduler

Binds cron triggers to the population and stats jobs. Uses APScheduler for
job scheduling. Each job runs under its own deadline and never overlaps
itself: a trigger that finds the previous run still going is skipped.
"""

import time
import logging
import datetime
import threading
from concurrent.futures import Future
from enum import Enum
from typing import Dict, Any, Callable, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.events import EVENT_JOB_EXECUTED, EVENT_JOB_ERROR, EVENT_JOB_MAX_INSTANCES
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.pool import ThreadPoolExecutor as APThreadPoolExecutor
from pytz import timezone as pytz_timezone, utc
from pytz.exceptions import UnknownTimeZoneError

from lead_coverage.config import AppConfig, JobConfig, config
from lead_coverage.errors import ConfigurationError
from lead_coverage.orchestration.background import BackgroundTaskPool
from lead_coverage.orchestration.orchestrator import CoverageOrchestrator
from lead_coverage.utils.timeout import Deadline
from lead_coverage.utils.logger import get_logger, log_job_event

# Configure logger
logger = get_logger(__name__)

# Default settings
DEFAULT_MISFIRE_GRACE_SECONDS = 300

# Cron shorthands
CRON_DESCRIPTORS = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}

# APScheduler numbers weekdays from Monday
_APS_WEEKDAYS = ["mon", "tue", "wed", "thu", "fri", "sat", "sun"]


def _cron_weekday(token: str) -> int:
    """Convert a cron weekday (0 or 7 = Sunday) to an APScheduler index."""
    if token.lower() in _APS_WEEKDAYS:
        return _APS_WEEKDAYS.index(token.lower())
    value = int(token)
    if not 0 <= value <= 7:
        raise ValueError(f"day of week out of range: {token}")
    return (value - 1) % 7


def _cron_day_number(token: str) -> int:
    """Cron weekday number (0-7, 0 and 7 = Sunday) for a number or day name."""
    if token.lower() in _APS_WEEKDAYS:
        return (_APS_WEEKDAYS.index(token.lower()) + 1) % 7
    value = int(token)
    if not 0 <= value <= 7:
        raise ValueError(f"day of week out of range: {token}")
    return value


def _expand_weekday_step(base: str, step: str) -> List[str]:
    """
    Expand a stepped weekday field against cron numbering.

    APScheduler would apply the step to its own Monday-first indexes, so
    ``*/2`` has to become ``sun,tue,thu,sat`` explicitly.
    """
    every = int(step)
    if every < 1:
        raise ValueError(f"day of week step must be >= 1: {step}")

    if base in ("*", "?"):
        first, last = 0, 6
    else:
        start_token, dash, end_token = base.partition("-")
        first = _cron_day_number(start_token)
        last = _cron_day_number(end_token) if dash else 6
        if last < first:
            raise ValueError(f"unsupported wrapping day of week range with step: {base}/{step}")

    days = []
    for number in range(first, last + 1, every):
        name = _APS_WEEKDAYS[(number - 1) % 7]
        if name not in days:
            days.append(name)
    return days


def _translate_day_of_week(field: str) -> str:
    parts = []
    for item in field.split(","):
        base, slash, step = item.partition("/")
        if slash:
            parts.extend(_expand_weekday_step(base, step))
            continue
        if base in ("*", "?"):
            parts.append("*")
            continue

        start_token, dash, end_token = base.partition("-")
        start = _cron_weekday(start_token)
        if not dash:
            parts.append(_APS_WEEKDAYS[start])
            continue

        end = _cron_weekday(end_token)
        if start <= end:
            parts.append(f"{_APS_WEEKDAYS[start]}-{_APS_WEEKDAYS[end]}")
        else:
            # e.g. cron 0-2 (sun-tue) wraps past APScheduler's last weekday
            parts.append("sun" if start == 6 else f"{_APS_WEEKDAYS[start]}-sun")
            parts.append(f"mon-{_APS_WEEKDAYS[end]}" if end > 0 else "mon")
    return ",".join(parts)


def parse_cron_expression(expression: str, timezone=utc) -> CronTrigger:
    """
    Build a CronTrigger from five-field or six-field cron syntax.

    Five fields are ``minute hour day month day_of_week``; six fields put
    seconds first. Weekdays follow cron numbering (0 and 7 are Sunday).

    Args:
        expression: Cron expression or descriptor such as ``@daily``
        timezone: Timezone the expression is evaluated in

    Returns:
        CronTrigger: Trigger for the expression

    Raises:
        ConfigurationError: If the expression is invalid
    """
    if not expression or not expression.strip():
        raise ConfigurationError(["empty cron expression"])

    text = CRON_DESCRIPTORS.get(expression.strip().lower(), expression.strip())
    fields = text.split()

    if len(fields) == 5:
        second = "0"
        minute, hour, day, month, day_of_week = fields
    elif len(fields) == 6:
        second, minute, hour, day, month, day_of_week = fields
    else:
        raise ConfigurationError([f"cron expression must have 5 or 6 fields, got {len(fields)}: {expression!r}"])

    if day == "?":
        day = "*"

    try:
        return CronTrigger(
            second=second,
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=_translate_day_of_week(day_of_week),
            timezone=timezone,
        )
    except (ValueError, TypeError) as e:
        raise ConfigurationError([f"invalid cron expression {expression!r}: {e}"]) from e


class JobState(str, Enum):
    """Per-job state; a job is never Running twice."""
    IDLE = "idle"
    RUNNING = "running"


class PopulationScheduler:
    """
    Scheduler for the lead population and stats jobs.

    Constructed explicitly and owned by its caller; there is no
    process-wide scheduler instance.
    """

    def __init__(self,
                 orchestrator: CoverageOrchestrator,
                 app_config: Optional[AppConfig] = None,
                 background: Optional[BackgroundTaskPool] = None):
        """
        Initialize the population scheduler.

        Args:
            orchestrator: Orchestrator that runs the jobs' work
            app_config: Application configuration (or None to use default)
            background: Pool for manual async runs (or None to create one)
        """
        self.config = app_config or config
        self.orchestrator = orchestrator
        self.background = background or BackgroundTaskPool(
            max_workers=self.config.background_workers,
            max_queued=self.config.background_queue_size,
            name="manual-jobs",
        )

        self._jobs: Dict[str, JobConfig] = {job.name: job for job in self.config.jobs}
        self._runners: Dict[str, Callable[[JobConfig, Deadline], Any]] = {
            self.config.low_data_job.name: lambda job, deadline: self.orchestrator.populate_low_data(job, deadline),
            self.config.missing_job.name: lambda job, deadline: self.orchestrator.populate_missing(job, deadline),
            self.config.stats_job.name: lambda job, deadline: self.orchestrator.report_stats(deadline),
        }
        self._job_locks: Dict[str, threading.Lock] = {name: threading.Lock() for name in self._jobs}
        self._deadlines: Dict[str, Deadline] = {}
        self._state_lock = threading.Lock()

        self.scheduler: Optional[BackgroundScheduler] = None
        self._configured = False
        self._started = False
        self._stopped = False

        # Statistics
        self.stats: Dict[str, Any] = {
            "runs_started": 0,
            "runs_completed": 0,
            "runs_failed": 0,
            "runs_skipped": 0,
            "last_run": {},
            "scheduler_status": "initialized",
        }

    def _resolve_timezone(self):
        try:
            return pytz_timezone(self.config.scheduler_timezone)
        except UnknownTimeZoneError as e:
            raise ConfigurationError([f"unknown scheduler timezone: {self.config.scheduler_timezone}"]) from e

    def setup_jobs(self) -> None:
        """
        Validate configuration and register all jobs.

        Raises:
            ConfigurationError: If any schedule or parameter is invalid;
                nothing is scheduled in that case
        """
        if self._configured:
            return

        logger.info("Setting up population jobs...")

        errors = list(self.config.validate())
        timezone = utc
        try:
            timezone = self._resolve_timezone()
        except ConfigurationError as e:
            errors.extend(e.errors)

        triggers: Dict[str, CronTrigger] = {}
        for name, job in self._jobs.items():
            try:
                triggers[name] = parse_cron_expression(job.cron, timezone)
            except ConfigurationError as e:
                errors.extend(f"Job '{name}': {error}" for error in e.errors)

        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ConfigurationError(errors)

        self.scheduler = BackgroundScheduler(
            jobstores={'default': MemoryJobStore()},
            executors={'default': APThreadPoolExecutor(len(self._jobs))},
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': DEFAULT_MISFIRE_GRACE_SECONDS,
            },
            timezone=timezone,
        )
        self.scheduler.add_listener(
            self._job_execution_listener,
            EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MAX_INSTANCES
        )

        for name, job in self._jobs.items():
            self.scheduler.add_job(
                func=self._execute,
                args=[name],
                trigger=triggers[name],
                id=name,
                name=name,
                replace_existing=True,
            )
            logger.info(f"  - {name}: '{job.cron}' (timeout {job.timeout_seconds:.0f}s)")

        self._configured = True
        logger.info("Population jobs configured successfully")

    def _job_execution_listener(self, event) -> None:
        """
        Listen for job execution events.

        Args:
            event: Job execution event
        """
        if event.code == EVENT_JOB_MAX_INSTANCES:
            log_job_event(event.job_id, "skip", "Previous run still in progress, trigger skipped",
                          level=logging.WARNING)
            with self._state_lock:
                self.stats["runs_skipped"] += 1
        elif getattr(event, 'exception', None):
            logger.error(f"Job {event.job_id} failed with exception: {event.exception}")
        else:
            logger.debug(f"Job {event.job_id} executed successfully")

    def _execute(self, name: str) -> Any:
        """
        Run one job invocation under its own deadline.

        Returns:
            The job's result, or None if the job was already running
        """
        job = self._jobs[name]
        lock = self._job_locks[name]

        if not lock.acquire(blocking=False):
            log_job_event(name, "skip", "Previous run still in progress, skipping", level=logging.WARNING)
            with self._state_lock:
                self.stats["runs_skipped"] += 1
            return None

        deadline = Deadline(job.timeout_seconds)
        start = time.monotonic()
        with self._state_lock:
            self._deadlines[name] = deadline
            self.stats["runs_started"] += 1

        try:
            log_job_event(name, "start", f"Running {name} job (timeout {job.timeout_seconds:.0f}s)")
            result = self._runners[name](job, deadline)
            duration = time.monotonic() - start

            with self._state_lock:
                self.stats["runs_completed"] += 1
                self.stats["last_run"][name] = {
                    "finished_at": datetime.datetime.now().isoformat(),
                    "duration_seconds": round(duration, 3),
                    "status": "completed",
                }
            log_job_event(name, "complete", f"{name} job completed in {duration:.2f}s",
                          duration_seconds=round(duration, 3))
            return result

        except Exception as e:
            duration = time.monotonic() - start
            with self._state_lock:
                self.stats["runs_failed"] += 1
                self.stats["last_run"][name] = {
                    "finished_at": datetime.datetime.now().isoformat(),
                    "duration_seconds": round(duration, 3),
                    "status": "failed",
                    "error": str(e),
                }
            log_job_event(name, "error", f"{name} job failed: {e} (parameters: {job.to_dict()})",
                          level=logging.ERROR)
            raise

        finally:
            with self._state_lock:
                self._deadlines.pop(name, None)
            lock.release()

    def job_state(self, name: str) -> JobState:
        if name not in self._job_locks:
            raise KeyError(f"Unknown job: {name}")
        return JobState.RUNNING if self._job_locks[name].locked() else JobState.IDLE

    def run_job_now(self, name: str) -> Any:
        """
        Run a job immediately in the calling thread.

        Returns:
            The job's result, or None if the job was already running
        """
        if name not in self._jobs:
            raise KeyError(f"Unknown job: {name}")
        logger.info(f"Running {name} job immediately")
        return self._execute(name)

    def trigger_job_async(self, name: str) -> Future:
        """
        Run a job in the background task pool.

        Returns:
            Future: Resolves to the job's result (None if it was skipped)
        """
        if name not in self._jobs:
            raise KeyError(f"Unknown job: {name}")
        return self.background.submit(f"manual:{name}", self._execute, name)

    def start(self) -> None:
        """
        Start the scheduler. Calling start on a running scheduler is a no-op.

        Raises:
            ConfigurationError: If the jobs' configuration is invalid
            RuntimeError: If the scheduler has already been stopped
        """
        with self._state_lock:
            if self._stopped:
                raise RuntimeError("Scheduler has been stopped and cannot be restarted")
            if self._started:
                logger.info("Scheduler already running")
                return

        self.setup_jobs()

        logger.info("Starting population scheduler...")
        self.scheduler.start()
        with self._state_lock:
            self._started = True
            self.stats["scheduler_status"] = "running"

        for job in self.scheduler.get_jobs():
            logger.info(f"  - {job.id}: next run at {job.next_run_time}")

    def stop(self, wait: bool = True, cancel_running: bool = False) -> None:
        """
        Stop the scheduler. Calling stop again is a no-op.

        Args:
            wait: Block until running jobs and queued manual runs finish
            cancel_running: Also cancel the deadlines of running jobs so
                their batches skip tasks that have not started

        Raises:
            RuntimeError: If called before start
        """
        with self._state_lock:
            if not self._started:
                raise RuntimeError("Scheduler stop() called before start()")
            if self._stopped:
                return
            self._stopped = True
            deadlines = list(self._deadlines.values())

        logger.info("Stopping population scheduler...")

        if cancel_running:
            for deadline in deadlines:
                deadline.cancel("scheduler stopping")

        self.scheduler.shutdown(wait=wait)
        self.background.shutdown(wait=wait)

        with self._state_lock:
            self.stats["scheduler_status"] = "stopped"
        logger.info("Population scheduler stopped")

    @property
    def running(self) -> bool:
        return self._started and not self._stopped

    def get_scheduler_status(self) -> Dict[str, Any]:
        """
        Get the current status of the scheduler.

        Returns:
            Dict: Scheduler status information
        """
        with self._state_lock:
            status = dict(self.stats)
            status["last_run"] = dict(self.stats["last_run"])

        jobs: List[Dict[str, Any]] = []
        for name, job in self._jobs.items():
            next_run = None
            if self.scheduler is not None and self.running:
                scheduled = self.scheduler.get_job(name)
                next_run_time = getattr(scheduled, "next_run_time", None) if scheduled else None
                next_run = next_run_time.isoformat() if next_run_time else None
            jobs.append({
                "name": name,
                "cron": job.cron,
                "state": self.job_state(name).value,
                "next_run": next_run,
            })
        status["jobs"] = jobs
        return status
