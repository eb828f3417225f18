# ==============================================================================
# BACKENDS PACKAGE - Variant Selection
# ==============================================================================
# One BackendClient variant per backend kind, chosen from the descriptor.
# ==============================================================================

from __future__ import annotations

from typing import Optional, Union

from polystore.core.config import (
    RELATIONAL_KINDS,
    BackendKind,
    CacheDescriptor,
    DatabaseDescriptor,
    MongoDescriptor,
)
from polystore.core.metrics import MetricsSink
from polystore.database.backends.base_backend import (
    CONN_MAX_LIFETIME,
    IDLE_FRACTION,
    BackendClient,
    BackendConnection,
    PoolSizing,
)
from polystore.database.backends.mongodb_backend import MongoBackend, MongoConnection
from polystore.database.backends.redis_backend import RedisBackend, RedisConnection
from polystore.database.backends.sql_backend import SQLBackend, SQLConnection, build_url

Descriptor = Union[DatabaseDescriptor, MongoDescriptor, CacheDescriptor]


def descriptor_kind(descriptor: Descriptor) -> BackendKind:
    """Kind tag a descriptor selects."""
    if isinstance(descriptor, DatabaseDescriptor):
        return descriptor.type
    if isinstance(descriptor, MongoDescriptor):
        return BackendKind.MONGODB
    if isinstance(descriptor, CacheDescriptor):
        return BackendKind.REDIS
    raise TypeError(f"Unsupported descriptor: {type(descriptor).__name__}")


def pool_sizing(descriptor: Descriptor) -> PoolSizing:
    """Derive pool sizing from a descriptor's max pool size."""
    timeout = getattr(descriptor, "pool_timeout", 30.0)
    return PoolSizing.from_max_size(descriptor.max_pool_size, timeout=timeout)


def create_backend(
    descriptor: Descriptor,
    sizing: Optional[PoolSizing] = None,
    metrics: Optional[MetricsSink] = None,
) -> BackendClient:
    """
    Create the backend variant for a descriptor.

    A relational descriptor tagged ``mongodb`` (backfilled from a
    document store URI) yields a MongoBackend on its URL.

    Raises:
        ValueError: If the kind has no backend variant
    """
    kind = descriptor_kind(descriptor)
    sizing = sizing or pool_sizing(descriptor)

    if kind in RELATIONAL_KINDS:
        return SQLBackend(build_url(descriptor), kind, sizing=sizing, metrics=metrics)

    if kind == BackendKind.MONGODB:
        if isinstance(descriptor, MongoDescriptor):
            return MongoBackend(
                descriptor.uri,
                descriptor.database,
                timeout=descriptor.timeout,
                sizing=sizing,
                metrics=metrics,
            )
        return MongoBackend(descriptor.url, sizing=sizing, metrics=metrics)

    if kind == BackendKind.REDIS:
        return RedisBackend(descriptor, sizing=sizing, metrics=metrics)

    raise ValueError(f"Unsupported backend kind: {kind}")


__all__ = [
    "CONN_MAX_LIFETIME",
    "IDLE_FRACTION",
    "BackendClient",
    "BackendConnection",
    "Descriptor",
    "MongoBackend",
    "MongoConnection",
    "PoolSizing",
    "RedisBackend",
    "RedisConnection",
    "SQLBackend",
    "SQLConnection",
    "build_url",
    "create_backend",
    "descriptor_kind",
    "pool_sizing",
]
