#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Pytest configuration file for the Lead Coverage Monitor test suite.
"""

import sys
import time
import threading
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

import pytest

# Add the src directory to Python path for accessing lead_coverage
project_root = Path(__file__).parent.parent
src_path = str(project_root / "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from lead_coverage.config import AppConfig, JobConfig
from lead_coverage.fetching.lead_source import LeadSource
from lead_coverage.models.partition import Partition
from lead_coverage.utils.storage import LeadStore


class FakeLeadSource(LeadSource):
    """
    Instrumented lead source.

    Records every call and the highest number of calls in flight at once.
    Partitions in ``failing`` raise; ``counts`` overrides the number of
    leads returned; ``delay`` keeps each call outstanding for a while.
    """

    name = "fake"

    def __init__(self, store: Optional[LeadStore] = None, delay: float = 0.0,
                 failing: Optional[Set[Partition]] = None,
                 counts: Optional[Dict[Partition, int]] = None,
                 respect_deadline: bool = True):
        self.store = store
        self.delay = delay
        self.failing = failing or set()
        self.counts = counts or {}
        self.respect_deadline = respect_deadline
        self.calls: List[Tuple[str, str, int]] = []
        self.in_flight = 0
        self.high_water = 0
        self._lock = threading.Lock()

    def fetch_and_store(self, deadline, industry, country, target_count):
        partition = Partition(industry, country)
        with self._lock:
            self.calls.append((industry, country, target_count))
            self.in_flight += 1
            self.high_water = max(self.high_water, self.in_flight)
        try:
            if self.delay:
                if self.respect_deadline:
                    deadline.wait(self.delay)
                    deadline.check()
                else:
                    time.sleep(self.delay)
            if partition in self.failing:
                raise RuntimeError(f"upstream error for {industry}/{country}")
            fetched = self.counts.get(partition, target_count)
            if self.store is not None and fetched > 0:
                self.store.save_leads(industry, country,
                                      [{"name": f"{industry}-{i}"} for i in range(fetched)])
            return fetched
        finally:
            with self._lock:
                self.in_flight -= 1


def seed(store: LeadStore, counts: Dict[Tuple[str, str], int]) -> None:
    """Insert ``count`` placeholder leads for each (industry, country)."""
    for (industry, country), count in counts.items():
        store.save_leads(industry, country, [{"name": f"{industry} {i}"} for i in range(count)])


@pytest.fixture
def store(tmp_path: Path) -> LeadStore:
    """Lead store backed by a temporary SQLite file."""
    lead_store = LeadStore(f"sqlite:///{tmp_path / 'leads.db'}")
    yield lead_store
    lead_store.dispose()


@pytest.fixture
def fake_source() -> FakeLeadSource:
    return FakeLeadSource()


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Configuration with a small catalog and no pauses between fetches."""
    catalog = tmp_path / "catalog.json"
    catalog.write_text('{"industries": ["tattoo", "gym", "spa"], "countries": ["US", "GB"]}')

    config = AppConfig()
    config.db_url = f"sqlite:///{tmp_path / 'leads.db'}"
    config.catalog_path = catalog
    config.fetch_spacing_secs = 0.0
    config.scheduler_timezone = "UTC"
    config.low_data_job = JobConfig(
        name="low_data_population", cron="0 2 * * *", timeout_seconds=30,
        threshold=100, top_k=10, target_count=1000, max_concurrent=3,
    )
    config.missing_job = JobConfig(
        name="missing_population", cron="0 3 * * 0", timeout_seconds=30,
        top_k=20, target_count=500, max_concurrent=5,
    )
    config.stats_job = JobConfig(name="stats_report", cron="0 4 * * *", timeout_seconds=5)
    return config


@pytest.fixture
def mock_env_vars(monkeypatch, tmp_path: Path):
    """
    Set up environment variables for testing.

    Args:
        monkeypatch: Pytest monkeypatch fixture
        tmp_path: Temporary directory
    """
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("LEAD_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("LOW_DATA_THRESHOLD", "50")
    monkeypatch.setenv("LOW_DATA_TOP_K", "4")
    monkeypatch.setenv("LOW_DATA_MAX_CONCURRENT", "2")
    monkeypatch.setenv("MISSING_CRON", "30 5 * * 1")
    monkeypatch.setenv("STATS_TIMEOUT_SECS", "15")
    monkeypatch.setenv("LEAD_SOURCE_URL", "https://leads.example.com/api")
    monkeypatch.setenv("FETCH_SPACING_SECS", "0")
