#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Batch Fetch Executor

Drives the lead source for a list of partitions with a concurrency ceiling.
At most ``max_concurrent`` fetch calls are outstanding at any instant; one
task's failure never stops its siblings; a single deadline cancels tasks
that have not started yet.
"""

import time
import logging
import threading
import concurrent.futures
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional

from lead_coverage.errors import CancellationError, FetchTaskError
from lead_coverage.fetching.fetch_tracker import FetchTracker
from lead_coverage.fetching.lead_source import LeadSource
from lead_coverage.models.partition import (
    BatchResult,
    FetchOutcome,
    FetchTask,
    OutcomeStatus,
    cancelled_outcome,
)
from lead_coverage.utils.timeout import Deadline, DeadlineExceeded
from lead_coverage.utils.logger import get_logger, log_batch_event

# Configure logger
logger = get_logger(__name__)

# Poll interval while waiting for an admission slot
ADMISSION_POLL_SECONDS = 0.1


class BatchFetchExecutor:
    """
    Bounded-concurrency executor for fetch tasks.

    The executor holds no state between batches apart from the optional
    shared FetchTracker.
    """

    def __init__(self,
                 lead_source: LeadSource,
                 request_spacing_seconds: float = 0.0,
                 tracker: Optional[FetchTracker] = None):
        """
        Initialize the executor.

        Args:
            lead_source: Collaborator that fetches and persists leads
            request_spacing_seconds: Pause after each fetch before its
                admission slot is released
            tracker: Optional registry of in-progress partitions shared
                across batches
        """
        if request_spacing_seconds < 0:
            raise ValueError("request_spacing_seconds must be >= 0")
        self.lead_source = lead_source
        self.request_spacing_seconds = request_spacing_seconds
        self.tracker = tracker

    def run_batch(self,
                  deadline: Optional[Deadline],
                  tasks: Iterable[FetchTask],
                  max_concurrent: int,
                  label: str = "batch") -> BatchResult:
        """
        Run every task and return once each one has an outcome.

        Args:
            deadline: Cancellation signal for the whole batch (None for unbounded)
            tasks: Tasks to run
            max_concurrent: Maximum fetch calls in flight at once
            label: Name used in log lines (usually the job name)

        Returns:
            BatchResult: One outcome per task, in submission order
        """
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")

        tasks = list(tasks)
        for task in tasks:
            if not isinstance(task, FetchTask):
                raise TypeError(f"Expected FetchTask, got {type(task).__name__}")

        if not tasks:
            return BatchResult()

        deadline = deadline or Deadline()
        gate = threading.BoundedSemaphore(max_concurrent)
        outcomes: List[Optional[FetchOutcome]] = [None] * len(tasks)
        start = time.monotonic()

        log_batch_event(label, "start",
                        f"Triggering batch fetch for {len(tasks)} partitions (max concurrent: {max_concurrent})")

        with ThreadPoolExecutor(max_workers=min(max_concurrent, len(tasks)),
                                thread_name_prefix=f"fetch-{label}") as executor:
            future_to_index = {
                executor.submit(self._run_task, deadline, gate, task, label): index
                for index, task in enumerate(tasks)
            }

            for future in concurrent.futures.as_completed(future_to_index):
                index = future_to_index[future]
                task = tasks[index]
                try:
                    outcomes[index] = future.result()
                except Exception as e:
                    logger.exception(f"Fetch worker for {task.partition} raised: {str(e)}")
                    outcomes[index] = FetchOutcome(
                        task=task,
                        status=OutcomeStatus.FAILED,
                        error=FetchTaskError(task.partition, f"worker error: {e}", cause=e),
                    )

        result = BatchResult(outcomes=list(outcomes), duration_seconds=time.monotonic() - start)

        level = logging.INFO if result.ok else logging.WARNING
        log_batch_event(label, "complete", f"Batch fetch completed: {result.summary()}", level=level,
                        succeeded=result.succeeded, failed=result.failed, cancelled=result.cancelled,
                        duration_seconds=round(result.duration_seconds, 3))
        if not result.ok:
            failing = ", ".join(str(p) for p in result.failing_partitions)
            log_batch_event(label, "errors", f"Failing partitions: {failing}", level=logging.WARNING)

        return result

    def _acquire_slot(self, gate: threading.BoundedSemaphore, deadline: Deadline) -> bool:
        while not deadline.done:
            remaining = deadline.remaining()
            wait = ADMISSION_POLL_SECONDS if remaining is None else min(ADMISSION_POLL_SECONDS, remaining)
            if gate.acquire(timeout=max(wait, 0.001)):
                return True
        return False

    def _run_task(self, deadline: Deadline, gate: threading.BoundedSemaphore,
                  task: FetchTask, label: str) -> FetchOutcome:
        partition = task.partition

        if deadline.done or not self._acquire_slot(gate, deadline):
            log_batch_event(label, "skipped", f"Skipping {partition}: {deadline.describe()}",
                            level=logging.DEBUG)
            return cancelled_outcome(task, f"not started: {deadline.describe()}")

        try:
            if deadline.done:
                return cancelled_outcome(task, f"not started: {deadline.describe()}")

            if self.tracker is not None and not self.tracker.try_mark(partition):
                log_batch_event(label, "skipped", f"Fetch already in progress for {partition}, skipping")
                return cancelled_outcome(task, "fetch already in progress")

            try:
                outcome = self._fetch(deadline, task, label)
            finally:
                if self.tracker is not None:
                    self.tracker.clear(partition)

            if self.request_spacing_seconds > 0:
                deadline.wait(self.request_spacing_seconds)

            return outcome
        finally:
            gate.release()

    def _fetch(self, deadline: Deadline, task: FetchTask, label: str) -> FetchOutcome:
        partition = task.partition
        start = time.monotonic()

        try:
            fetched = self.lead_source.fetch_and_store(
                deadline, partition.industry, partition.country, task.target_count
            )
        except DeadlineExceeded as e:
            return FetchOutcome(
                task=task,
                status=OutcomeStatus.CANCELLED,
                error=CancellationError(partition, f"interrupted: {e}", cause=e),
                duration_seconds=time.monotonic() - start,
            )
        except Exception as e:
            duration = time.monotonic() - start
            log_batch_event(label, "task_failed",
                            f"Data fetch failed for {partition}: {str(e)} (duration: {duration:.2f}s)",
                            level=logging.ERROR, industry=partition.industry, country=partition.country)
            return FetchOutcome(
                task=task,
                status=OutcomeStatus.FAILED,
                error=FetchTaskError(partition, str(e), cause=e),
                duration_seconds=duration,
            )

        duration = time.monotonic() - start

        if not isinstance(fetched, int) or fetched < 0:
            return FetchOutcome(
                task=task,
                status=OutcomeStatus.FAILED,
                error=FetchTaskError(partition, f"lead source returned invalid count {fetched!r}"),
                duration_seconds=duration,
            )

        if fetched == 0:
            log_batch_event(label, "task_failed", f"Data fetch for {partition} obtained no leads",
                            level=logging.WARNING, industry=partition.industry, country=partition.country)
            return FetchOutcome(
                task=task,
                status=OutcomeStatus.FAILED,
                error=FetchTaskError(partition, "no leads obtained"),
                duration_seconds=duration,
            )

        outcome = FetchOutcome(task=task, status=OutcomeStatus.SUCCEEDED, fetched=fetched,
                               duration_seconds=duration)
        if outcome.partial:
            log_batch_event(label, "task_partial",
                            f"Data fetch for {partition} obtained {fetched} of {task.target_count} leads",
                            level=logging.WARNING, industry=partition.industry, country=partition.country)
        else:
            log_batch_event(label, "task_complete",
                            f"Data fetch completed for {partition}: {fetched} leads (duration: {duration:.2f}s)",
                            industry=partition.industry, country=partition.country)
        return outcome
