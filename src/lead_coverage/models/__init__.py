#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Models Package

Value types shared by detection, batch fetching and orchestration.
"""

from lead_coverage.models.partition import (
    MISSING_PRIORITY,
    BatchResult,
    FetchOutcome,
    FetchTask,
    OutcomeStatus,
    Partition,
    PartitionCount,
    cancelled_outcome,
)

__all__ = [
    "MISSING_PRIORITY",
    "BatchResult",
    "FetchOutcome",
    "FetchTask",
    "OutcomeStatus",
    "Partition",
    "PartitionCount",
    "cancelled_outcome",
]
