#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Lead Coverage Orchestrator

Central coordination for lead population: detects scarce partitions,
reduces them to a priority slice, and drives the batch executor. The
orchestrator keeps no state between cycles; the store reflects outcomes
because lead sources persist as they go.
"""

import time
import logging
import datetime
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional, Sequence

from lead_coverage.config import AppConfig, JobConfig, config
from lead_coverage.fetching.batch_executor import BatchFetchExecutor
from lead_coverage.fetching.fetch_tracker import FetchTracker
from lead_coverage.fetching.lead_source import LeadSource
from lead_coverage.models.partition import BatchResult, FetchTask, Partition, PartitionCount
from lead_coverage.monitoring.partition_index import PartitionIndex
from lead_coverage.monitoring.population_stats import PopulationStats, PopulationSummary
from lead_coverage.monitoring.scarcity import ScarcityDetector, select_top
from lead_coverage.utils.storage import LeadStore
from lead_coverage.utils.timeout import Deadline
from lead_coverage.utils.logger import get_logger, log_job_event

# Configure logger
logger = get_logger(__name__)


@dataclass
class JobReport:
    """What one population run detected, selected and fetched."""
    job: str
    detected: int = 0
    selected: List[PartitionCount] = field(default_factory=list)
    batch: Optional[BatchResult] = None
    started_at: str = field(default_factory=lambda: datetime.datetime.now().isoformat())
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.batch is None or self.batch.ok

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job": self.job,
            "started_at": self.started_at,
            "detected": self.detected,
            "selected": [entry.to_dict() for entry in self.selected],
            "batch": self.batch.to_dict() if self.batch else None,
            "duration_seconds": round(self.duration_seconds, 3),
        }


class CoverageOrchestrator:
    """
    Binds detection, priority selection and batch fetching.

    Detection failures (StoreReadError) propagate so the job skips the
    cycle; batch failures are logged and reported, never raised.
    """

    def __init__(self,
                 store: LeadStore,
                 lead_source: LeadSource,
                 app_config: Optional[AppConfig] = None,
                 index: Optional[PartitionIndex] = None,
                 tracker: Optional[FetchTracker] = None):
        """
        Initialize the orchestrator.

        Args:
            store: Lead store to read counts from
            lead_source: Collaborator that fetches and persists leads
            app_config: Application configuration (or None to use default)
            index: Partition universe (or None to build from the catalog)
            tracker: In-progress registry (or None to create one)
        """
        self.config = app_config or config
        self.store = store
        self.index = index or PartitionIndex.from_config(self.config)
        self.detector = ScarcityDetector(store, self.index)
        self.stats = PopulationStats(store, top_n=self.config.stats_top_n)
        self.tracker = tracker or FetchTracker(ttl_seconds=self.config.fetch_tracker_ttl_secs)
        self.executor = BatchFetchExecutor(
            lead_source,
            request_spacing_seconds=self.config.fetch_spacing_secs,
            tracker=self.tracker,
        )
        self._metrics_lock = threading.Lock()
        self.metrics: Dict[str, Any] = {
            "runs": 0,
            "partitions_fetched": 0,
            "partitions_failed": 0,
            "leads_fetched": 0,
            "last_run": None,
        }
        logger.info(f"Coverage orchestrator initialized ({len(self.index)} partitions in catalog)")

    def populate_low_data(self, job: Optional[JobConfig] = None,
                          deadline: Optional[Deadline] = None) -> JobReport:
        """
        Detect under-populated partitions and fetch the top-K of them.

        Args:
            job: Job parameters (defaults to the configured low-data job)
            deadline: Cancellation signal for the whole run

        Returns:
            JobReport: Detection and batch outcome
        """
        job = job or self.config.low_data_job
        deadline = deadline or Deadline(job.timeout_seconds)
        start = time.monotonic()

        pairs = self.detector.detect_low_data(job.threshold)
        report = JobReport(job=job.name, detected=len(pairs))

        if not pairs:
            log_job_event(job.name, "idle", f"No industries with < {job.threshold} leads found")
            report.duration_seconds = time.monotonic() - start
            return report

        log_job_event(job.name, "detected", f"Found {len(pairs)} industry/country pairs with < {job.threshold} leads")
        return self._populate(job, pairs, deadline, report, start)

    def populate_missing(self, job: Optional[JobConfig] = None,
                         deadline: Optional[Deadline] = None) -> JobReport:
        """
        Detect catalog partitions with no data and fetch the top-K of them.

        Args:
            job: Job parameters (defaults to the configured missing job)
            deadline: Cancellation signal for the whole run

        Returns:
            JobReport: Detection and batch outcome
        """
        job = job or self.config.missing_job
        deadline = deadline or Deadline(job.timeout_seconds)
        start = time.monotonic()

        pairs = self.detector.detect_missing(floor=job.floor)
        report = JobReport(job=job.name, detected=len(pairs))

        if not pairs:
            log_job_event(job.name, "idle", "No missing combinations found")
            report.duration_seconds = time.monotonic() - start
            return report

        log_job_event(job.name, "detected", f"Found {len(pairs)} missing combinations")
        return self._populate(job, pairs, deadline, report, start)

    def _populate(self, job: JobConfig, pairs: Sequence[PartitionCount], deadline: Deadline,
                  report: JobReport, start: float) -> JobReport:
        report.selected = select_top(pairs, job.top_k)
        log_job_event(job.name, "selected", f"Populating top {len(report.selected)} pairs...")

        if report.selected:
            tasks = [FetchTask(entry.partition, job.target_count) for entry in report.selected]
            report.batch = self.executor.run_batch(deadline, tasks, job.max_concurrent, label=job.name)
            self._record(report.batch)

            if not report.batch.ok:
                log_job_event(job.name, "warning", f"Batch fetch completed with errors: {report.batch.error}",
                              level=logging.WARNING)

        report.duration_seconds = time.monotonic() - start
        return report

    def populate_partitions(self, partitions: Sequence[Partition], target_count: int,
                            max_concurrent: int, deadline: Optional[Deadline] = None,
                            label: str = "manual") -> BatchResult:
        """
        Operator entry point: fetch the given partitions outside the schedule.

        Args:
            partitions: Partitions to fetch, in order
            target_count: Leads to request per partition
            max_concurrent: Maximum fetch calls in flight
            deadline: Cancellation signal (None for unbounded)
            label: Name used in log lines

        Returns:
            BatchResult: Outcome of the batch
        """
        tasks = [FetchTask(partition, target_count) for partition in partitions]
        log_job_event(label, "start", f"Manual population of {len(tasks)} partitions")
        result = self.executor.run_batch(deadline, tasks, max_concurrent, label=label)
        self._record(result)
        return result

    def report_stats(self, deadline: Optional[Deadline] = None) -> PopulationSummary:
        """
        Log a population statistics snapshot.

        Returns:
            PopulationSummary: The snapshot that was logged
        """
        if deadline is not None:
            deadline.check()

        summary = self.stats.summarize()

        log_job_event(self.config.stats_job.name, "stats", "Population Statistics:")
        log_job_event(self.config.stats_job.name, "stats", f"  Total leads: {summary.total_leads}")
        log_job_event(self.config.stats_job.name, "stats", f"  Total combinations: {summary.total_partitions}")
        log_job_event(self.config.stats_job.name, "stats", f"  Top industries: {dict(summary.top_industries)}")
        log_job_event(self.config.stats_job.name, "stats", f"  Top countries: {dict(summary.top_countries)}")
        return summary

    def _record(self, result: BatchResult) -> None:
        with self._metrics_lock:
            self.metrics["runs"] += 1
            self.metrics["partitions_fetched"] += result.succeeded
            self.metrics["partitions_failed"] += result.failed
            self.metrics["leads_fetched"] += result.total_fetched
            self.metrics["last_run"] = datetime.datetime.now().isoformat()

    def get_metrics(self) -> Dict[str, Any]:
        with self._metrics_lock:
            metrics = self.metrics.copy()
        metrics["fetches_in_progress"] = [p.key for p in self.tracker.active()]
        return metrics
