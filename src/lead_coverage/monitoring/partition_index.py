#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Partition Index

The universe of valid industry/country partitions, computed from the
configured catalog on every call.
"""

from typing import Iterable, List, Optional, Tuple

from lead_coverage.config import AppConfig, config
from lead_coverage.models.partition import Partition


def _unique(values: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


class PartitionIndex:
    """Cross product of the industry catalog and the country set."""

    def __init__(self, industries: Iterable[str], countries: Iterable[str]):
        self.industries: Tuple[str, ...] = tuple(_unique(industries))
        self.countries: Tuple[str, ...] = tuple(_unique(countries))

    @classmethod
    def from_config(cls, app_config: Optional[AppConfig] = None) -> "PartitionIndex":
        industries, countries = (app_config or config).load_catalog()
        return cls(industries, countries)

    def all_partitions(self) -> Tuple[Partition, ...]:
        """
        Every valid partition, industry-major in catalog order.

        Returns:
            Tuple[Partition, ...]: Ordered partitions without duplicates
        """
        return tuple(
            Partition(industry, country)
            for industry in self.industries
            for country in self.countries
        )

    def __contains__(self, partition: Partition) -> bool:
        return partition.industry in self.industries and partition.country in self.countries

    def __len__(self) -> int:
        return len(self.industries) * len(self.countries)
