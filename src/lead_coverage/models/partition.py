#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Partition Model - units of work for lead population.

A partition is one (industry, country) slice of the lead directory. All of
the types here are transient and live for a single orchestration cycle.
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Dict, List, Any, Optional

from lead_coverage.errors import BatchFetchError, CancellationError, FetchTaskError

# Priority assigned to partitions that have no stored leads at all
MISSING_PRIORITY = 100


@dataclass(frozen=True, order=True)
class Partition:
    """One industry/country combination."""
    industry: str
    country: str

    @property
    def key(self) -> str:
        return f"{self.industry}:{self.country}"

    @classmethod
    def parse(cls, value: str) -> "Partition":
        """
        Parse an ``industry:country`` string.

        Args:
            value: String such as ``"tattoo:US"``

        Returns:
            Partition: Parsed partition (country upper-cased)
        """
        industry, sep, country = value.partition(":")
        if not sep or not industry.strip() or not country.strip():
            raise ValueError(f"Expected 'industry:country', got {value!r}")
        return cls(industry.strip(), country.strip().upper())

    def __str__(self) -> str:
        return f"{self.industry}/{self.country}"


@dataclass(frozen=True)
class PartitionCount:
    """Stored lead count for a partition, as read at detection time."""
    partition: Partition
    lead_count: int
    priority: int = 0

    def __post_init__(self):
        if self.lead_count < 0:
            raise ValueError(f"lead_count must be >= 0, got {self.lead_count}")

    @property
    def industry(self) -> str:
        return self.partition.industry

    @property
    def country(self) -> str:
        return self.partition.country

    def to_dict(self) -> Dict[str, Any]:
        return {
            "industry": self.industry,
            "country": self.country,
            "count": self.lead_count,
            "priority": self.priority,
        }


@dataclass(frozen=True)
class FetchTask:
    """One partition to fetch, with the number of leads to request."""
    partition: Partition
    target_count: int

    def __post_init__(self):
        if self.target_count <= 0:
            raise ValueError(
                f"target_count must be positive for {self.partition}, got {self.target_count}"
            )


class OutcomeStatus(str, Enum):
    """Final state of a fetch task."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class FetchOutcome:
    """Result of a single fetch task. Written once, by the task's worker."""
    task: FetchTask
    status: OutcomeStatus
    fetched: int = 0
    error: Optional[FetchTaskError] = None
    duration_seconds: float = 0.0

    @property
    def partition(self) -> Partition:
        return self.task.partition

    @property
    def succeeded(self) -> bool:
        return self.status == OutcomeStatus.SUCCEEDED

    @property
    def partial(self) -> bool:
        return self.succeeded and self.fetched < self.task.target_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "industry": self.partition.industry,
            "country": self.partition.country,
            "status": self.status.value,
            "target": self.task.target_count,
            "fetched": self.fetched,
            "partial": self.partial,
            "error": str(self.error) if self.error else None,
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass
class BatchResult:
    """
    Aggregate of all outcomes for one batch.

    A batch with failures is still complete; tasks are independent and
    there is no rollback.
    """
    outcomes: List[FetchOutcome] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.status == OutcomeStatus.SUCCEEDED)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == OutcomeStatus.FAILED)

    @property
    def cancelled(self) -> int:
        return sum(1 for o in self.outcomes if o.status == OutcomeStatus.CANCELLED)

    @property
    def total_fetched(self) -> int:
        return sum(o.fetched for o in self.outcomes)

    @property
    def errors(self) -> List[FetchTaskError]:
        return [o.error for o in self.outcomes if o.error is not None]

    @property
    def failing_partitions(self) -> List[Partition]:
        return [o.partition for o in self.outcomes if not o.succeeded]

    @property
    def ok(self) -> bool:
        return self.succeeded == self.total

    @property
    def error(self) -> Optional[BatchFetchError]:
        """Aggregate error listing every failed or skipped partition, or None."""
        errors = self.errors
        if not errors:
            return None
        return BatchFetchError(errors)

    def outcome_for(self, partition: Partition) -> Optional[FetchOutcome]:
        for outcome in self.outcomes:
            if outcome.partition == partition:
                return outcome
        return None

    def summary(self) -> str:
        return (
            f"{self.succeeded} succeeded, {self.failed} failed, "
            f"{self.cancelled} cancelled ({self.total_fetched} leads fetched "
            f"in {self.duration_seconds:.2f}s)"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "total_fetched": self.total_fetched,
            "duration_seconds": round(self.duration_seconds, 3),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


def cancelled_outcome(task: FetchTask, reason: str) -> FetchOutcome:
    """Build the outcome for a task that was skipped without being attempted."""
    return FetchOutcome(
        task=task,
        status=OutcomeStatus.CANCELLED,
        error=CancellationError(task.partition, reason),
    )
