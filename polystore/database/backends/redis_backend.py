# ==============================================================================
# REDIS BACKEND - redis-py Async Client
# ==============================================================================
# Key-value cache backend with a bounded redis-py connection pool.
# ==============================================================================

from __future__ import annotations

import logging
import shlex
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Optional, Sequence

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from polystore.core.config import BackendKind, CacheDescriptor
from polystore.core.exceptions import ConnectionError, ConnectionErrorKind
from polystore.core.metrics import MetricsSink
from polystore.database.backends.base_backend import BackendClient, BackendConnection, PoolSizing

logger = logging.getLogger(__name__)


class RedisConnection(BackendConnection):
    """
    Scoped cache handle.

    ``execute`` runs one command per non-empty line. ``insert`` only
    creates missing keys and ``update`` only touches existing ones.
    """

    def __init__(self, client: Redis, metrics: Optional[MetricsSink] = None) -> None:
        super().__init__(BackendKind.REDIS, metrics)
        self._client = client

    @property
    def client(self) -> Redis:
        return self._client

    async def execute(self, script: str) -> None:
        try:
            for line in script.splitlines():
                args = shlex.split(line, comments=True)
                if args:
                    await self._client.execute_command(*args)
        except Exception:
            self._count(False)
            raise
        self._count(True)

    async def query(self, statement: str, params: Optional[Sequence[Any]] = None) -> Any:
        """Run command ``statement`` with positional ``params``, e.g. ``query("GET", ["k"])``."""
        try:
            result = await self._client.execute_command(statement, *(params or ()))
        except Exception:
            self._count(False)
            raise
        self._count(True)
        return result

    async def _set(self, key: str, params: Mapping[str, Any], **flags: bool) -> int:
        try:
            done = await self._client.set(key, params["value"], ex=params.get("ttl"), **flags)
        except Exception:
            self._count(False)
            raise
        self._count(True)
        return 1 if done else 0

    async def insert(self, statement: str, params: Optional[Mapping[str, Any]] = None) -> int:
        """SET ``statement`` to ``params["value"]`` if absent (optional ``ttl`` seconds)."""
        return await self._set(statement, params or {}, nx=True)

    async def update(self, statement: str, params: Optional[Mapping[str, Any]] = None) -> int:
        """SET ``statement`` to ``params["value"]`` only if it already exists."""
        return await self._set(statement, params or {}, xx=True)


def _split_addr(addr: str) -> tuple:
    host, sep, port = addr.rpartition(":")
    if not sep:
        return addr, 6379
    return host or "localhost", int(port)


class RedisBackend(BackendClient):
    """
    Redis backend.

    URL wins over the address tuple. A pre-built ``client`` (e.g. a
    fakeredis instance) skips pool creation.
    """

    def __init__(
        self,
        descriptor: CacheDescriptor,
        sizing: Optional[PoolSizing] = None,
        metrics: Optional[MetricsSink] = None,
        client: Optional[Redis] = None,
    ) -> None:
        super().__init__(BackendKind.REDIS, metrics)
        self._descriptor = descriptor
        self._sizing = sizing or PoolSizing.from_max_size(descriptor.max_pool_size)
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = client
        self._owns_client = client is None
        self._is_connected = False

    def _make_pool(self) -> ConnectionPool:
        options = {
            "max_connections": self._sizing.max_size,
            "socket_connect_timeout": self._sizing.timeout,
            "decode_responses": True,
        }
        if self._descriptor.url:
            return ConnectionPool.from_url(self._descriptor.url, **options)
        host, port = _split_addr(self._descriptor.addr)
        return ConnectionPool(
            host=host,
            port=port,
            password=self._descriptor.password or None,
            db=self._descriptor.db,
            **options,
        )

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    async def connect(self) -> None:
        if self._is_connected:
            return
        try:
            if self._client is None:
                self._pool = self._make_pool()
                self._client = Redis(connection_pool=self._pool)
            await self._client.ping()
        except (RedisError, OSError, ValueError) as e:
            await self._release()
            logger.error(f"Failed to connect to Redis: {e}")
            raise ConnectionError(
                ConnectionErrorKind.DIAL_FAILED,
                f"Redis connection failed: {e}",
                details={"backend": self.kind.value},
            ) from e
        self._is_connected = True
        logger.info("Redis backend connected")

    async def _release(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
        if self._pool is not None:
            await self._pool.disconnect()
            self._pool = None

    async def close(self) -> None:
        if not self._is_connected:
            return
        await self._release()
        self._is_connected = False
        logger.info("Redis backend disconnected")

    async def health_check(self) -> bool:
        if not self._is_connected or self._client is None:
            return False
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            logger.warning(f"Redis health check failed: {e}")
            return False

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[RedisConnection]:
        if not self._is_connected or self._client is None:
            raise RuntimeError("Redis not connected. Call connect() first.")
        yield RedisConnection(self._client, self._metrics)
