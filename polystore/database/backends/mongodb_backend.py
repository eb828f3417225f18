# ==============================================================================
# MONGODB BACKEND - Motor Async Driver
# ==============================================================================
# Document store backend. Motor keeps its own connection pool; a scoped
# connection is a handle on the target database.
# ==============================================================================

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

from bson import json_util
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from polystore.core.config import BackendKind
from polystore.core.exceptions import ConnectionError, ConnectionErrorKind
from polystore.core.metrics import MetricsSink
from polystore.database.backends.base_backend import BackendClient, BackendConnection, PoolSizing

logger = logging.getLogger(__name__)

DEFAULT_DATABASE = "app_db"


def _serialize_id(document: Dict[str, Any]) -> Dict[str, Any]:
    """Expose ``_id`` as a string ``id``."""
    if document and "_id" in document:
        document["id"] = str(document.pop("_id"))
    return document


class MongoConnection(BackendConnection):
    """
    Scoped document store handle.

    ``statement`` names a collection. ``execute`` takes one command
    document, or a list of them, in MongoDB extended JSON.
    """

    def __init__(
        self,
        database: AsyncIOMotorDatabase,
        metrics: Optional[MetricsSink] = None,
    ) -> None:
        super().__init__(BackendKind.MONGODB, metrics)
        self._database = database

    @property
    def database(self) -> AsyncIOMotorDatabase:
        return self._database

    async def execute(self, script: str) -> None:
        try:
            commands = json_util.loads(script)
            if isinstance(commands, dict):
                commands = [commands]
            for command in commands:
                await self._database.command(command)
        except Exception:
            self._count(False)
            raise
        self._count(True)

    async def query(
        self,
        statement: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        try:
            cursor = self._database[statement].find(dict(params or {}))
            documents = await cursor.to_list(length=None)
        except Exception:
            self._count(False)
            raise
        self._count(True)
        return [_serialize_id(doc) for doc in documents]

    async def insert(self, statement: str, params: Any = None) -> int:
        """Insert one document (mapping) or many (list of mappings)."""
        try:
            collection = self._database[statement]
            if isinstance(params, list):
                result = await collection.insert_many(params)
                count = len(result.inserted_ids)
            else:
                await collection.insert_one(dict(params or {}))
                count = 1
        except Exception:
            self._count(False)
            raise
        self._count(True)
        return count

    async def update(self, statement: str, params: Optional[Mapping[str, Any]] = None) -> int:
        """Apply ``params["update"]`` to documents matching ``params["filter"]``."""
        params = params or {}
        try:
            result = await self._database[statement].update_many(
                dict(params.get("filter") or {}),
                params["update"],
            )
        except Exception:
            self._count(False)
            raise
        self._count(True)
        return result.modified_count


class MongoBackend(BackendClient):
    """
    MongoDB backend using the Motor async driver.

    When no database name is configured the one named in the URI is
    used, falling back to ``app_db``.
    """

    def __init__(
        self,
        uri: str,
        database: str = "",
        timeout: float = 10.0,
        sizing: Optional[PoolSizing] = None,
        metrics: Optional[MetricsSink] = None,
    ) -> None:
        super().__init__(BackendKind.MONGODB, metrics)
        self._uri = uri
        self._database_name = database
        self._timeout = timeout
        self._sizing = sizing or PoolSizing.from_max_size(10)
        self._client: Optional[AsyncIOMotorClient] = None
        self._database: Optional[AsyncIOMotorDatabase] = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        if self._client is not None:
            return
        client: Optional[AsyncIOMotorClient] = None
        try:
            client = AsyncIOMotorClient(
                self._uri,
                serverSelectionTimeoutMS=int(self._timeout * 1000),
                maxPoolSize=self._sizing.max_size,
                maxIdleTimeMS=int(self._sizing.max_lifetime * 1000),
                waitQueueTimeoutMS=int(self._sizing.timeout * 1000),
            )
            await client.admin.command("ping")
        except Exception as e:
            if client is not None:
                client.close()
            logger.error(f"Failed to connect to MongoDB: {e}")
            raise ConnectionError(
                ConnectionErrorKind.DIAL_FAILED,
                f"MongoDB connection failed: {e}",
                details={"backend": self.kind.value},
            ) from e

        self._client = client
        if self._database_name:
            self._database = client[self._database_name]
        else:
            self._database = client.get_default_database(default=DEFAULT_DATABASE)
        logger.info(f"MongoDB backend connected: {self._database.name}")

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            self._database = None
            logger.info("MongoDB backend disconnected")

    async def health_check(self) -> bool:
        if self._client is None:
            return False
        try:
            await self._client.admin.command("ping")
            return True
        except Exception as e:
            logger.warning(f"MongoDB health check failed: {e}")
            return False

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[MongoConnection]:
        if self._database is None:
            raise RuntimeError("MongoDB not connected. Call connect() first.")
        yield MongoConnection(self._database, self._metrics)
