#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Scarcity Detector

Ranks partitions by how badly they need more leads. Every call re-reads
the store; nothing is cached between detection passes.
"""

import time
from typing import List, Sequence, TypeVar

from lead_coverage.errors import ConfigurationError
from lead_coverage.models.partition import MISSING_PRIORITY, Partition, PartitionCount
from lead_coverage.monitoring.partition_index import PartitionIndex
from lead_coverage.utils.storage import LeadStore
from lead_coverage.utils.logger import get_logger

# Configure logger
logger = get_logger(__name__)

T = TypeVar("T")


class ScarcityDetector:
    """
    Read-only detection of low-data and missing partitions.

    Store errors propagate as StoreReadError; retrying is left to the
    next scheduled cycle.
    """

    def __init__(self, store: LeadStore, index: PartitionIndex):
        """
        Args:
            store: Lead store to read aggregate counts from
            index: Universe of valid partitions
        """
        self.store = store
        self.index = index

    def detect_low_data(self, threshold: int) -> List[PartitionCount]:
        """
        Find stored partitions with fewer than ``threshold`` leads.

        Partitions with no rows at all are not included; see detect_missing.

        Args:
            threshold: Exclusive upper bound on lead count

        Returns:
            List[PartitionCount]: Ascending by lead count, ties broken by
            (industry, country)
        """
        if threshold <= 0:
            raise ConfigurationError([f"threshold must be positive, got {threshold}"])

        logger.info(f"Detecting partitions with < {threshold} leads...")
        start = time.monotonic()

        counts = self.store.count_by_partition()

        low = [
            PartitionCount(partition, count, priority=threshold - count)
            for partition, count in counts.items()
            if 0 < count < threshold
        ]
        low.sort(key=lambda pc: (pc.lead_count, pc.partition))

        logger.info(
            f"Found {len(low)} of {len(counts)} stored partitions with < {threshold} leads "
            f"({time.monotonic() - start:.2f}s)"
        )
        return low

    def detect_missing(self, floor: int = 0) -> List[PartitionCount]:
        """
        Find catalog partitions absent from the store.

        Args:
            floor: When positive, also report stored partitions with fewer
                than ``floor`` leads

        Returns:
            List[PartitionCount]: In catalog order, no duplicates
        """
        if floor < 0:
            raise ConfigurationError([f"floor must be >= 0, got {floor}"])

        logger.info("Detecting missing industry/country combinations...")

        counts = self.store.count_by_partition()
        universe = self.index.all_partitions()

        missing = []
        for partition in universe:
            count = counts.get(partition, 0)
            if count == 0 or count < floor:
                missing.append(PartitionCount(partition, count, priority=MISSING_PRIORITY))

        logger.info(f"Found {len(missing)} missing combinations out of {len(universe)}")
        return missing


def select_top(entries: Sequence[T], k: int) -> List[T]:
    """
    Priority reduction: the first ``k`` entries of an already ranked sequence.

    Args:
        entries: Detection result, already in priority order
        k: Maximum number of entries to keep

    Returns:
        List: A new list of at most ``k`` entries, order preserved
    """
    if k < 0:
        raise ConfigurationError([f"k must be >= 0, got {k}"])
    return list(entries[:k])


def partitions_of(entries: Sequence[PartitionCount]) -> List[Partition]:
    return [entry.partition for entry in entries]
