"""Timeout utilities for the Lead Coverage Monitor.

This module provides a thread-safe deadline object that carries a job's
time budget and its cancellation signal to every worker of that job.
"""

import time
import threading
from typing import Optional


class DeadlineExceeded(Exception):
    """Exception raised when work continues past its deadline or after cancellation."""
    pass


class Deadline:
    """Time budget plus explicit cancellation, shared by all tasks of one job.

    Args:
        timeout_seconds: Seconds until expiry, or None for no time limit
        parent: Optional enclosing deadline; cancelling or expiring the parent
            also ends this one

    Example:
        deadline = Deadline(30 * 60)
        while not deadline.done:
            do_some_work(deadline)
    """

    def __init__(self, timeout_seconds: Optional[float] = None, parent: Optional["Deadline"] = None):
        if timeout_seconds is not None and timeout_seconds < 0:
            raise ValueError("timeout_seconds must be >= 0")
        self.timeout_seconds = timeout_seconds
        self._expires_at = None if timeout_seconds is None else time.monotonic() + timeout_seconds
        self._cancelled = threading.Event()
        self._parent = parent
        self.reason: Optional[str] = None

    def child(self, timeout_seconds: Optional[float] = None) -> "Deadline":
        """Create a deadline that ends no later than this one."""
        return Deadline(timeout_seconds, parent=self)

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._cancelled.is_set():
            self.reason = reason
            self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        if self._cancelled.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    @property
    def expired(self) -> bool:
        if self._expires_at is not None and time.monotonic() >= self._expires_at:
            return True
        return self._parent is not None and self._parent.expired

    @property
    def done(self) -> bool:
        return self.cancelled or self.expired

    def remaining(self) -> Optional[float]:
        """Seconds left before expiry (0 when done), or None if unbounded."""
        if self.cancelled:
            return 0.0
        candidates = []
        if self._expires_at is not None:
            candidates.append(max(0.0, self._expires_at - time.monotonic()))
        if self._parent is not None:
            parent_remaining = self._parent.remaining()
            if parent_remaining is not None:
                candidates.append(parent_remaining)
        return min(candidates) if candidates else None

    def describe(self) -> str:
        if self.cancelled:
            return self.reason or (self._parent.describe() if self._parent else "cancelled")
        if self.expired:
            return f"deadline of {self.timeout_seconds}s exceeded" if self.timeout_seconds is not None else self._parent.describe()
        return "active"

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``, waking early if cancelled.

        Returns:
            True if the deadline is done when the wait ends
        """
        limit = seconds
        remaining = self.remaining()
        if remaining is not None:
            limit = min(limit, remaining)
        if limit > 0:
            if self._parent is None:
                self._cancelled.wait(limit)
            else:
                # Parent cancellation is only observed by polling
                end = time.monotonic() + limit
                while not self.done:
                    step = min(0.05, end - time.monotonic())
                    if step <= 0:
                        break
                    self._cancelled.wait(step)
        return self.done

    def check(self) -> None:
        """Raise DeadlineExceeded if the deadline is done."""
        if self.done:
            raise DeadlineExceeded(self.describe())

    def __repr__(self) -> str:
        return f"Deadline(timeout={self.timeout_seconds}, remaining={self.remaining()}, state={self.describe()!r})"
