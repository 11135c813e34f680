"""
Time and cancellation primitives shared by the classifier and the pool.

The clock is injectable so polling and rate-limit waits can be tested
without sleeping.
"""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING, Iterator, Protocol

from .errors import Cancelled

if TYPE_CHECKING:
    from .config import MergeabilityPolicy


class Clock(Protocol):
    def monotonic(self) -> float: ...

    def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall clock backed by the time module."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


class Backoff:
    """
    Exponential delays bounded by an attempt count and a deadline.

    The first attempt is free; each later attempt is preceded by a delay
    from `delays()`. Iteration stops once `max_attempts` is reached or the
    next delay would cross the deadline.
    """

    def __init__(self, policy: "MergeabilityPolicy", clock: Clock):
        self.policy = policy
        self.clock = clock

    def delays(self) -> Iterator[float]:
        started = self.clock.monotonic()
        delay = self.policy.initial_delay
        for _ in range(self.policy.max_attempts - 1):
            elapsed = self.clock.monotonic() - started
            if elapsed + delay > self.policy.deadline:
                return
            yield delay
            delay = min(delay * self.policy.multiplier, self.policy.max_delay)


class CancelToken:
    """Thread-safe cancellation flag. Children observe their parent."""

    def __init__(self, parent: CancelToken | None = None):
        self._event = threading.Event()
        self._parent = parent
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    def child(self) -> CancelToken:
        return CancelToken(parent=self)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled(self.reason)
        if self._parent is not None:
            self._parent.raise_if_cancelled()
