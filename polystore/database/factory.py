# ==============================================================================
# DATABASE FACTORY - Pool Instantiation & Lifecycle Management
# ==============================================================================
# Opens one ConnectionPool per backend declared in a resolved Config.
# Instances are explicit: build one per Config, no class-level singletons.
# ==============================================================================

from __future__ import annotations

import logging
from typing import Dict, Optional, Union

from polystore.core.config import (
    BackendKind,
    Config,
    MongoDescriptor,
    RELATIONAL_KINDS,
)
from polystore.core.metrics import MetricsSink
from polystore.database.backends import Descriptor
from polystore.database.pool import ConnectionPool
from polystore.resilience.retry import RetryExecutor

logger = logging.getLogger(__name__)


class DatabaseFactory:
    """
    Manages the pools for one Config.

    Features:
        - Backend selection from the Config's kind tags
        - One pool per backend, cached on the instance
        - Independent failure: one unreachable backend does not stop the others
        - Lifecycle management (open_all / close_all)

    Example:
        >>> factory = DatabaseFactory(resolve_config("config.yaml"))
        >>> await factory.open_all()
        >>> async with factory.get_pool().acquire() as conn:
        ...     await conn.query("SELECT 1")
        >>> await factory.close_all()
    """

    def __init__(
        self,
        config: Config,
        *,
        retry: Optional[RetryExecutor] = None,
        metrics: Optional[MetricsSink] = None,
    ) -> None:
        self._config = config
        self._retry = retry
        self._metrics = metrics
        self._pools: Dict[BackendKind, ConnectionPool] = {}
        self.failures: Dict[BackendKind, Exception] = {}

    @property
    def config(self) -> Config:
        return self._config

    def _kind(self, kind: Union[BackendKind, str, None]) -> BackendKind:
        return BackendKind(kind) if kind is not None else self._config.database.type

    def descriptor_for(self, kind: Union[BackendKind, str, None] = None) -> Descriptor:
        """
        Pick the descriptor that configures ``kind``.

        Args:
            kind: Backend kind (defaults to the relational kind tag)

        Raises:
            ValueError: If the Config does not declare that backend
        """
        kind = self._kind(kind)
        database = self._config.database

        if kind in RELATIONAL_KINDS:
            if database.type != kind:
                raise ValueError(f"Config declares {database.type.value}, not {kind.value}")
            return database
        if kind == BackendKind.MONGODB:
            if self._config.mongodb.declared:
                return self._config.mongodb
            if database.type == BackendKind.MONGODB:
                return MongoDescriptor(
                    uri=database.url,
                    max_pool_size=database.max_pool_size,
                    pool_timeout=database.pool_timeout,
                )
        if kind == BackendKind.REDIS and self._config.redis.declared:
            return self._config.redis
        raise ValueError(f"Config does not declare a {kind.value} backend")

    async def open(self, kind: Union[BackendKind, str, None] = None) -> ConnectionPool:
        """
        Open (or return the already open) pool for ``kind``.

        Raises:
            ConnectionError: If the backend cannot be dialed
            ValueError: If the backend is not declared
        """
        kind = self._kind(kind)
        if kind in self._pools:
            return self._pools[kind]

        pool = await ConnectionPool.open(
            self.descriptor_for(kind),
            retry=self._retry,
            metrics=self._metrics,
        )
        self._pools[kind] = pool
        self.failures.pop(kind, None)
        return pool

    async def open_all(self) -> Dict[BackendKind, ConnectionPool]:
        """
        Open every declared backend.

        A backend that fails is logged and recorded in ``failures``; the
        remaining backends are still opened.

        Returns:
            Pools that opened successfully, by kind
        """
        for kind, _ in self._config.declared_backends():
            try:
                await self.open(kind)
            except Exception as e:
                logger.error(f"Failed to open {kind.value} backend: {e}")
                self.failures[kind] = e
        return dict(self._pools)

    def get_pool(self, kind: Union[BackendKind, str, None] = None) -> ConnectionPool:
        """
        Get an open pool.

        Raises:
            RuntimeError: If the pool has not been opened
        """
        kind = self._kind(kind)
        if kind not in self._pools:
            raise RuntimeError(
                f"Pool for {kind.value} not opened. "
                f"Call DatabaseFactory.open() first."
            )
        return self._pools[kind]

    def is_open(self, kind: Union[BackendKind, str, None] = None) -> bool:
        return self._kind(kind) in self._pools

    async def health_check(self, kind: Union[BackendKind, str, None] = None) -> bool:
        try:
            return await self.get_pool(kind).health_check()
        except RuntimeError:
            return False

    async def close_all(self) -> None:
        """Close every open pool and forget them."""
        for kind, pool in self._pools.items():
            try:
                await pool.close()
            except Exception as e:
                logger.error(f"Error closing {kind.value} pool: {e}")
        self._pools.clear()
        logger.info("All pools closed")

    async def __aenter__(self) -> "DatabaseFactory":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close_all()
