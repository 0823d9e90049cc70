"""
Request context: cancellation flag + optional deadline for one convergence cycle.

Every external call checks the context first and sizes its timeout from what is
left of the deadline; a deadline that runs out in between raises ContextCancelled
instead of handing out a zero timeout.

Cancellation is cooperative: `cancel()` only sets a flag that the next `check()`
sees. A request already on the wire runs until it completes or hits its timeout.
"""

from __future__ import annotations

import threading
import time
from typing import Optional


class ContextCancelled(Exception):
    """Raised by `RequestContext.check` when the cycle must stop."""


class RequestContext:
    def __init__(self, *, timeout_sec: Optional[float] = None, deadline: Optional[float] = None) -> None:
        if timeout_sec is not None and deadline is None:
            deadline = time.monotonic() + float(timeout_sec)
        self.deadline = deadline
        self._cancelled = threading.Event()

    @classmethod
    def background(cls) -> "RequestContext":
        """A context that is never cancelled and has no deadline."""
        return cls()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline (None if unbounded, never negative)."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self) -> None:
        if self._cancelled.is_set():
            raise ContextCancelled("context cancelled")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise ContextCancelled("context deadline exceeded")

    def timeout(self, default: float) -> float:
        """Per-request timeout: the configured default, capped by the deadline."""
        left = self.remaining()
        if left is None:
            return float(default)
        if left <= 0:
            raise ContextCancelled("context deadline exceeded")
        return min(float(default), left)
