#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Fetch Tracker

Marks partitions whose fetch is in progress so that overlapping batches
do not request the same partition twice. Marks expire after a TTL in case
a worker dies without clearing its mark.
"""

import time
import threading
from typing import Callable, Dict, List

from lead_coverage.models.partition import Partition

DEFAULT_TTL_SECONDS = 60 * 60


class FetchTracker:
    """Thread-safe, in-process registry of in-progress fetches."""

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._started: Dict[Partition, float] = {}
        self._lock = threading.Lock()

    def _expired(self, started_at: float) -> bool:
        return self._clock() - started_at >= self.ttl_seconds

    def try_mark(self, partition: Partition) -> bool:
        """
        Mark a partition as in progress.

        Returns:
            bool: True if the mark was set, False if an unexpired mark exists
        """
        with self._lock:
            started_at = self._started.get(partition)
            if started_at is not None and not self._expired(started_at):
                return False
            self._started[partition] = self._clock()
            return True

    def clear(self, partition: Partition) -> None:
        with self._lock:
            self._started.pop(partition, None)

    def is_in_progress(self, partition: Partition) -> bool:
        with self._lock:
            started_at = self._started.get(partition)
            return started_at is not None and not self._expired(started_at)

    def active(self) -> List[Partition]:
        with self._lock:
            return sorted(p for p, started_at in self._started.items() if not self._expired(started_at))
