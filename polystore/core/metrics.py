# ==============================================================================
# METRICS - Connection and Query Counters
# ==============================================================================
# Minimal metrics sink consumed by pools and backends. Export to a real
# metrics system belongs to the hosting application.
# ==============================================================================

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Protocol, Tuple


class MetricsSink(Protocol):
    """Anything that can count named events."""

    def incr(self, name: str, value: int = 1, **labels: str) -> None:
        ...


class NullMetrics:
    """Sink that drops every event."""

    def incr(self, name: str, value: int = 1, **labels: str) -> None:
        return None


# Event names emitted by the package
CONNECTION_OPENED = "connection_opened"
CONNECTION_FAILED = "connection_failed"
CONNECTION_ACQUIRED = "connection_acquired"
CONNECTION_TIMEOUT = "connection_timeout"
QUERY_EXECUTED = "query_executed"
QUERY_FAILED = "query_failed"


@dataclass
class MetricsCollector:
    """
    In-process counter store.

    Thread Safety:
        Counters are guarded by a lock; the collector may be shared by
        pools running on different threads.
    """

    _counters: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], int] = field(default_factory=dict)
    _started: float = field(default_factory=time.monotonic)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def incr(self, name: str, value: int = 1, **labels: str) -> None:
        key = (name, tuple(sorted(labels.items())))
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + value

    def value(self, name: str, **labels: str) -> int:
        """Current count for one name/label combination."""
        key = (name, tuple(sorted(labels.items())))
        with self._lock:
            return self._counters.get(key, 0)

    def total(self, name: str) -> int:
        """Sum of a counter across all label combinations."""
        with self._lock:
            return sum(v for (n, _), v in self._counters.items() if n == name)

    @property
    def uptime(self) -> float:
        return time.monotonic() - self._started

    def snapshot(self) -> Dict[str, int]:
        """Flatten counters to ``name{label="value"}`` keys."""
        with self._lock:
            items = list(self._counters.items())
        result: Dict[str, int] = {}
        for (name, labels), value in items:
            labels_str = ",".join(f'{k}="{v}"' for k, v in labels)
            result[f"{name}{{{labels_str}}}" if labels_str else name] = value
        return result

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._started = time.monotonic()
