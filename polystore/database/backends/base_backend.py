# ==============================================================================
# BASE BACKEND - Capability Interface
# ==============================================================================
# Defines the contract every backend variant implements.
# A BackendClient owns the driver-level pool; a BackendConnection is the
# scoped handle callers use while they hold a pool slot.
# ==============================================================================

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from polystore.core.config import BackendKind
from polystore.core.metrics import MetricsSink, NullMetrics, QUERY_EXECUTED, QUERY_FAILED

# Connections older than this are recycled by the driver pool.
CONN_MAX_LIFETIME = 300.0

# Share of the pool kept open while idle.
IDLE_FRACTION = 0.5


@dataclass(frozen=True)
class PoolSizing:
    """
    Pool sizing derived from a descriptor.

    Attributes:
        max_size: Concurrent connections allowed
        max_idle: Connections kept open while idle
        max_lifetime: Seconds before a connection is recycled
        timeout: Default seconds a caller waits for a free slot
    """

    max_size: int
    max_idle: int
    max_lifetime: float = CONN_MAX_LIFETIME
    timeout: float = 30.0

    @classmethod
    def from_max_size(cls, max_size: int, timeout: float = 30.0) -> "PoolSizing":
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        return cls(
            max_size=max_size,
            max_idle=max(1, int(max_size * IDLE_FRACTION)),
            timeout=timeout,
        )


class BackendConnection(ABC):
    """
    Scoped handle on one backend.

    Valid only inside the ``pool.acquire()`` block that produced it.

    The meaning of ``statement`` depends on the backend: SQL text for
    relational stores, a collection name for the document store and a
    command or key for the cache.
    """

    kind: BackendKind
    supports_transactions: bool = False

    def __init__(self, kind: BackendKind, metrics: Optional[MetricsSink] = None) -> None:
        self.kind = kind
        self._metrics = metrics or NullMetrics()

    def _count(self, ok: bool) -> None:
        self._metrics.incr(QUERY_EXECUTED if ok else QUERY_FAILED, backend=self.kind.value)

    @abstractmethod
    async def execute(self, script: str) -> None:
        """
        Run an opaque script (DDL, command document, command list).

        Raises:
            Exception: Driver error, unchanged
        """
        pass

    @abstractmethod
    async def query(self, statement: str, params: Any = None) -> Any:
        """Read data; returns rows, documents or a raw value."""
        pass

    @abstractmethod
    async def insert(self, statement: str, params: Any = None) -> int:
        """Write new data; returns the number of affected records."""
        pass

    @abstractmethod
    async def update(self, statement: str, params: Any = None) -> int:
        """Modify existing data; returns the number of affected records."""
        pass

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["BackendConnection"]:
        """
        Group statements atomically.

        Raises:
            NotImplementedError: If the backend has no transactions
        """
        raise NotImplementedError(f"{self.kind.value} does not support transactions")
        yield self  # pragma: no cover


class BackendClient(ABC):
    """
    Abstract base class for backend variants.

    Lifecycle: ``connect()`` dials and verifies, ``connection()`` hands
    out scoped handles, ``close()`` releases everything.
    """

    kind: BackendKind

    def __init__(self, kind: BackendKind, metrics: Optional[MetricsSink] = None) -> None:
        self.kind = kind
        self._metrics = metrics or NullMetrics()

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        pass

    @abstractmethod
    async def connect(self) -> None:
        """
        Establish the driver pool and verify connectivity.

        Raises:
            ConnectionError: DIAL_FAILED if the backend is unreachable
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release every driver resource. Safe to call twice."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Lightweight liveness probe."""
        pass

    @abstractmethod
    @asynccontextmanager
    async def connection(self) -> AsyncIterator[BackendConnection]:
        """
        Provide a scoped connection.

        Raises:
            RuntimeError: If the backend is not connected
        """
        pass
