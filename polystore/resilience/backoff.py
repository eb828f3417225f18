"""
Delay strategies for retry loops.

Exponential backoff with a cap, and a fixed delay. Both are pure: they
compute durations and never sleep.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Protocol


class DelayStrategy(Protocol):
    """Computes the wait after a failed attempt (zero-based index)."""

    def next_interval(self, attempt: int) -> float:
        ...


@dataclass(frozen=True)
class FixedDelay:
    """Same delay after every failed attempt."""

    delay: float = 0.1

    def next_interval(self, attempt: int) -> float:
        if attempt < 0:
            raise ValueError(f"attempt must be non-negative, got {attempt}")
        return self.delay


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Exponential backoff.

    ``next_interval(n) = initial_interval * multiplier ** n``, never more
    than ``max_interval``. Durations are in seconds.
    """

    initial_interval: float = 0.1
    multiplier: float = 2.0
    max_interval: float = 30.0
    max_elapsed_time: float = 300.0

    def __post_init__(self) -> None:
        if self.initial_interval < 0 or self.max_interval < 0:
            raise ValueError("intervals must be non-negative")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    def next_interval(self, attempt: int) -> float:
        if attempt < 0:
            raise ValueError(f"attempt must be non-negative, got {attempt}")
        try:
            interval = self.initial_interval * self.multiplier ** attempt
        except OverflowError:
            return self.max_interval
        return min(interval, self.max_interval)

    def is_elapsed(self, start: float) -> bool:
        """True once ``max_elapsed_time`` has passed since ``start`` (a ``time.monotonic()`` value)."""
        return time.monotonic() - start >= self.max_elapsed_time
