#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Background Task Pool

Bounded pool for detached work such as operator-requested population
runs. Every task's failure is logged, and shutdown drains queued and
running tasks instead of dropping them.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict

from lead_coverage.utils.logger import get_logger

# Configure logger
logger = get_logger(__name__)


class BackgroundQueueFull(RuntimeError):
    """Raised when the pool's backlog is exhausted."""
    pass


class BackgroundTaskPool:
    """
    Detached task pool with a bounded backlog.

    Args:
        max_workers: Tasks executed at once
        max_queued: Tasks allowed to wait for a worker
    """

    def __init__(self, max_workers: int = 2, max_queued: int = 8, name: str = "background"):
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if max_queued < 0:
            raise ValueError("max_queued must be >= 0")
        self.name = name
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
        self._slots = threading.BoundedSemaphore(max_workers + max_queued)
        self._lock = threading.Lock()
        self._closed = False
        self.stats: Dict[str, int] = {"submitted": 0, "succeeded": 0, "failed": 0, "rejected": 0}

    @property
    def closed(self) -> bool:
        return self._closed

    def submit(self, task_name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        """
        Submit a detached task.

        Raises:
            RuntimeError: If the pool has been shut down
            BackgroundQueueFull: If the backlog is full
        """
        with self._lock:
            if self._closed:
                raise RuntimeError(f"Background pool '{self.name}' is shut down")
            if not self._slots.acquire(blocking=False):
                self.stats["rejected"] += 1
                raise BackgroundQueueFull(f"Background pool '{self.name}' is full, rejected {task_name}")
            self.stats["submitted"] += 1
            future = self._executor.submit(fn, *args, **kwargs)

        future.add_done_callback(lambda f: self._on_done(task_name, f))
        logger.debug(f"Submitted background task {task_name}")
        return future

    def _on_done(self, task_name: str, future: Future) -> None:
        self._slots.release()
        if future.cancelled():
            logger.warning(f"Background task {task_name} was cancelled")
            return
        error = future.exception()
        with self._lock:
            if error is None:
                self.stats["succeeded"] += 1
            else:
                self.stats["failed"] += 1
        if error is not None:
            logger.error(f"Background task {task_name} failed: {error}", exc_info=error)
        else:
            logger.debug(f"Background task {task_name} completed")

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting tasks; with ``wait`` block until queued and running tasks finish."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        logger.info(f"Shutting down background pool '{self.name}' (wait={wait})")
        self._executor.shutdown(wait=wait)
