# ==============================================================================
# CONNECTION POOL - Scoped Acquisition & Lifecycle
# ==============================================================================
# Wraps one backend, bounds concurrent checkouts to the configured pool
# size and guarantees every slot is released on every exit path.
# ==============================================================================

from __future__ import annotations

import asyncio
import logging
import threading
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from polystore.core.config import BackendKind
from polystore.core.exceptions import ConnectionError, ConnectionErrorKind
from polystore.core.metrics import (
    CONNECTION_ACQUIRED,
    CONNECTION_FAILED,
    CONNECTION_OPENED,
    CONNECTION_TIMEOUT,
    MetricsSink,
    NullMetrics,
)
from polystore.database.backends import (
    BackendClient,
    BackendConnection,
    Descriptor,
    PoolSizing,
    create_backend,
    pool_sizing,
)
from polystore.resilience.retry import RetryExecutor, RetryPolicy

logger = logging.getLogger(__name__)


class ConnectionPool:
    """
    Pooled handle on one backend.

    Features:
        - At most ``max_size`` concurrent checkouts; further callers wait
        - Waits end with ConnectionError(TIMEOUT) after ``timeout``
        - Release is guaranteed on success, error and cancellation
        - ``close()`` is idempotent

    Thread Safety:
        Counters are guarded by a lock. Slots are an asyncio.Semaphore, so
        use the pool from the event loop that opened it.

    Example:
        >>> pool = await ConnectionPool.open(config.database)
        >>> async with pool.acquire() as conn:
        ...     rows = await conn.query("SELECT 1 AS one")
        >>> await pool.close()
    """

    def __init__(
        self,
        backend: BackendClient,
        sizing: PoolSizing,
        metrics: Optional[MetricsSink] = None,
    ) -> None:
        self._backend = backend
        self._sizing = sizing
        self._metrics = metrics or NullMetrics()
        self._slots = asyncio.Semaphore(sizing.max_size)
        self._lock = threading.Lock()
        self._in_use = 0
        self._waiting = 0
        self._acquired_total = 0
        self._closed = False

    # ==========================================================================
    # LIFECYCLE
    # ==========================================================================

    @classmethod
    async def open(
        cls,
        descriptor: Descriptor,
        *,
        retry: Optional[RetryExecutor] = None,
        retry_policy: Optional[RetryPolicy] = None,
        metrics: Optional[MetricsSink] = None,
        backend: Optional[BackendClient] = None,
    ) -> "ConnectionPool":
        """
        Build and dial the backend for ``descriptor``.

        The dial is attempted once unless a RetryExecutor is passed; the
        default retry policy then allows ``descriptor.max_retries``
        attempts and retries only dial failures.

        Args:
            descriptor: Backend descriptor from the resolved Config
            retry: Optional executor to retry the dial
            retry_policy: Policy overriding the default dial policy
            metrics: Sink for connection events
            backend: Pre-built backend (skips variant selection)

        Raises:
            ConnectionError: DIAL_FAILED when the backend is unreachable
            RetryExhausted: When retrying and every dial failed
        """
        sizing = pool_sizing(descriptor)
        backend = backend or create_backend(descriptor, sizing, metrics)
        pool = cls(backend, sizing, metrics)
        await pool._dial(descriptor, retry, retry_policy)
        return pool

    async def _dial(
        self,
        descriptor: Descriptor,
        retry: Optional[RetryExecutor],
        retry_policy: Optional[RetryPolicy],
    ) -> None:
        labels = {"backend": self.kind.value}
        try:
            if retry is None:
                await self._backend.connect()
            else:
                policy = retry_policy or RetryPolicy(
                    max_attempts=getattr(descriptor, "max_retries", 3),
                    retry_on=(ConnectionError,),
                )
                await retry.execute(self._backend.connect, policy)
        except Exception:
            self._metrics.incr(CONNECTION_FAILED, **labels)
            raise
        self._metrics.incr(CONNECTION_OPENED, **labels)
        logger.info(
            f"Opened {self.kind.value} pool "
            f"(max_size={self._sizing.max_size}, max_idle={self._sizing.max_idle})"
        )

    async def close(self) -> None:
        """Release every pooled resource. Calling it again does nothing."""
        if self._closed:
            return
        self._closed = True
        await self._backend.close()
        logger.info(f"Closed {self.kind.value} pool")

    async def __aenter__(self) -> "ConnectionPool":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ==========================================================================
    # ACQUISITION
    # ==========================================================================

    async def _take_slot(self, timeout: Optional[float], block: bool) -> None:
        labels = {"backend": self.kind.value}
        if not block:
            if self._slots.locked():
                raise ConnectionError(
                    ConnectionErrorKind.POOL_EXHAUSTED,
                    f"{self.kind.value} pool exhausted ({self._sizing.max_size} in use)",
                    details=labels,
                )
            await self._slots.acquire()
        else:
            wait = self._sizing.timeout if timeout is None else timeout
            with self._lock:
                self._waiting += 1
            try:
                await asyncio.wait_for(self._slots.acquire(), timeout=wait)
            except asyncio.TimeoutError:
                self._metrics.incr(CONNECTION_TIMEOUT, **labels)
                raise ConnectionError(
                    ConnectionErrorKind.TIMEOUT,
                    f"Timed out after {wait}s waiting for a {self.kind.value} connection",
                    details=labels,
                ) from None
            finally:
                with self._lock:
                    self._waiting -= 1

        with self._lock:
            self._in_use += 1
            self._acquired_total += 1
        self._metrics.incr(CONNECTION_ACQUIRED, **labels)

    def _release_slot(self) -> None:
        with self._lock:
            self._in_use -= 1
        self._slots.release()

    @asynccontextmanager
    async def acquire(
        self,
        timeout: Optional[float] = None,
        *,
        block: bool = True,
    ) -> AsyncIterator[BackendConnection]:
        """
        Provide a scoped connection.

        Args:
            timeout: Seconds to wait for a free slot (defaults to the
                descriptor's pool timeout)
            block: When False, fail at once instead of waiting

        Yields:
            BackendConnection valid until the block exits

        Raises:
            ConnectionError: TIMEOUT, POOL_EXHAUSTED or DIAL_FAILED
            RuntimeError: If the pool is closed
        """
        if self._closed:
            raise RuntimeError(f"{self.kind.value} pool is closed")

        await self._take_slot(timeout, block)
        try:
            async with AsyncExitStack() as stack:
                try:
                    conn = await stack.enter_async_context(self._backend.connection())
                except Exception as e:
                    raise ConnectionError(
                        ConnectionErrorKind.DIAL_FAILED,
                        f"Could not check out a {self.kind.value} connection: {e}",
                        details={"backend": self.kind.value},
                    ) from e
                yield conn
        finally:
            self._release_slot()

    # ==========================================================================
    # INTROSPECTION
    # ==========================================================================

    @property
    def kind(self) -> BackendKind:
        return self._backend.kind

    @property
    def backend(self) -> BackendClient:
        return self._backend

    @property
    def sizing(self) -> PoolSizing:
        return self._sizing

    @property
    def closed(self) -> bool:
        return self._closed

    async def health_check(self) -> bool:
        if self._closed:
            return False
        return await self._backend.health_check()

    def stats(self) -> Dict[str, int]:
        """
        Snapshot of pool bookkeeping.

        Returns:
            Dict with max_size, max_idle, in_use, available, waiting and
            acquired_total
        """
        return {
            "max_size": self._sizing.max_size,
            "max_idle": self._sizing.max_idle,
            "in_use": self._in_use,
            "available": self._sizing.max_size - self._in_use,
            "waiting": self._waiting,
            "acquired_total": self._acquired_total,
        }
