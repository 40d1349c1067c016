#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Error taxonomy for the Lead Coverage Monitor.

Store and configuration errors fail a whole job. Fetch errors are scoped to
a single partition and are collected into the batch result instead of being
raised.
"""

from typing import Any, Iterable, List, Optional


class LeadCoverageError(Exception):
    """Base class for all Lead Coverage Monitor errors."""
    pass


class StoreReadError(LeadCoverageError):
    """Raised when an aggregate query against the lead store fails."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class LeadSourceError(LeadCoverageError):
    """Raised by a lead data source when a fetch cannot be completed."""
    pass


class FetchTaskError(LeadCoverageError):
    """
    Failure of a single partition's fetch.

    Args:
        partition: Partition the task was fetching
        message: Human-readable reason
        cause: Underlying exception, if any
    """

    def __init__(self, partition: Any, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"{partition}: {message}")
        self.partition = partition
        self.reason = message
        self.cause = cause


class CancellationError(FetchTaskError):
    """A task was skipped because its batch was cancelled or ran out of time."""
    pass


class BatchFetchError(LeadCoverageError):
    """
    Aggregate error for a batch with at least one failed or skipped task.

    Every failing partition is listed, not just the first one.
    """

    def __init__(self, errors: Iterable[FetchTaskError]):
        self.errors: List[FetchTaskError] = list(errors)
        failed = sum(1 for e in self.errors if not isinstance(e, CancellationError))
        cancelled = len(self.errors) - failed
        details = "; ".join(str(e) for e in self.errors)
        super().__init__(
            f"batch fetch had {len(self.errors)} errors "
            f"({failed} failed, {cancelled} cancelled): {details}"
        )

    @property
    def partitions(self) -> List[Any]:
        return [e.partition for e in self.errors]


class ConfigurationError(LeadCoverageError):
    """Invalid schedule expression or job parameters. Fatal at startup."""

    def __init__(self, errors: Iterable[str]):
        self.errors: List[str] = list(errors)
        super().__init__("Invalid configuration: " + "; ".join(self.errors))
