#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Population Statistics

Aggregate reporting over the lead store, for observability only.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Any, Tuple

from lead_coverage.utils.storage import LeadStore
from lead_coverage.utils.logger import get_logger

# Configure logger
logger = get_logger(__name__)

DEFAULT_TOP_N = 10


def _top(counts: Dict[str, int], n: int) -> List[Tuple[str, int]]:
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:n]


@dataclass
class PopulationSummary:
    """Snapshot of lead population."""
    total_leads: int
    total_partitions: int
    top_industries: List[Tuple[str, int]] = field(default_factory=list)
    top_countries: List[Tuple[str, int]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_leads": self.total_leads,
            "total_combinations": self.total_partitions,
            "top_industries": dict(self.top_industries),
            "top_countries": dict(self.top_countries),
        }


class PopulationStats:
    """Builds PopulationSummary snapshots from the lead store."""

    def __init__(self, store: LeadStore, top_n: int = DEFAULT_TOP_N):
        if top_n <= 0:
            raise ValueError("top_n must be positive")
        self.store = store
        self.top_n = top_n

    def summarize(self) -> PopulationSummary:
        """
        Summarize the current lead population.

        Returns:
            PopulationSummary: Totals and top-N industries/countries by volume

        Raises:
            StoreReadError: If any of the underlying queries fails
        """
        total_leads = self.store.total_leads()
        partitions = self.store.count_by_partition()
        by_industry = self.store.count_by_industry()
        by_country = self.store.count_by_country()

        return PopulationSummary(
            total_leads=total_leads,
            total_partitions=len(partitions),
            top_industries=_top(by_industry, self.top_n),
            top_countries=_top(by_country, self.top_n),
        )
