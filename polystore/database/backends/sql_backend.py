# ==============================================================================
# SQL BACKEND - SQLAlchemy Async Engine
# ==============================================================================
# Relational backend for PostgreSQL (asyncpg), MySQL (aiomysql) and
# SQLite (aiosqlite). SQLAlchemy owns the driver pool; polystore bounds
# checkouts on top of it.
# ==============================================================================

from __future__ import annotations

import logging
import re
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from polystore.core.config import BackendKind, DatabaseDescriptor
from polystore.core.exceptions import ConnectionError, ConnectionErrorKind
from polystore.core.metrics import MetricsSink
from polystore.database.backends.base_backend import BackendClient, BackendConnection, PoolSizing

logger = logging.getLogger(__name__)

_ASYNC_DRIVERS = {
    "postgres": "postgresql+asyncpg",
    "postgresql": "postgresql+asyncpg",
    "mysql": "mysql+aiomysql",
    "sqlite": "sqlite+aiosqlite",
}

_DOLLAR_TAG = re.compile(r"\$[A-Za-z_0-9]*\$")


def to_async_url(url: str) -> str:
    """
    Upgrade a plain connection URL to its async driver.

    Example:
        >>> to_async_url("postgres://u:p@db:5432/app")
        'postgresql+asyncpg://u:p@db:5432/app'
    """
    scheme, sep, rest = url.partition("://")
    if not sep or "+" in scheme:
        return url
    driver = _ASYNC_DRIVERS.get(scheme.lower())
    return f"{driver}://{rest}" if driver else url


def build_url(descriptor: DatabaseDescriptor) -> str:
    """Render the async SQLAlchemy URL for a relational descriptor."""
    if descriptor.url:
        return to_async_url(descriptor.url)

    if descriptor.type == BackendKind.SQLITE:
        return f"sqlite+aiosqlite:///{descriptor.name}"

    query: Dict[str, str] = {}
    if descriptor.type == BackendKind.POSTGRES and descriptor.sslmode not in ("", "disable"):
        query["ssl"] = descriptor.sslmode

    url = URL.create(
        _ASYNC_DRIVERS[descriptor.type.value],
        username=descriptor.user or None,
        password=descriptor.password or None,
        host=descriptor.host,
        port=descriptor.port,
        database=descriptor.name,
        query=query,
    )
    return url.render_as_string(hide_password=False)


def split_statements(script: str) -> List[str]:
    """
    Split a SQL script on top-level semicolons.

    Quoted strings, dollar-quoted bodies and comments are respected;
    comments are dropped from the output.
    """
    statements: List[str] = []
    current: List[str] = []
    i, n = 0, len(script)

    while i < n:
        ch = script[i]

        if ch == "-" and script.startswith("--", i):
            end = script.find("\n", i)
            i = n if end == -1 else end
            continue

        if ch == "/" and script.startswith("/*", i):
            end = script.find("*/", i + 2)
            i = n if end == -1 else end + 2
            current.append(" ")
            continue

        if ch in ("'", '"'):
            end = i + 1
            while end < n:
                if script[end] == ch:
                    # Doubled quote is an escaped quote
                    if end + 1 < n and script[end + 1] == ch:
                        end += 2
                        continue
                    break
                end += 1
            current.append(script[i:end + 1])
            i = end + 1
            continue

        if ch == "$":
            match = _DOLLAR_TAG.match(script, i)
            if match:
                tag = match.group(0)
                end = script.find(tag, match.end())
                end = n if end == -1 else end + len(tag)
                current.append(script[i:end])
                i = end
                continue

        if ch == ";":
            statement = "".join(current).strip()
            if statement:
                statements.append(statement)
            current = []
            i += 1
            continue

        current.append(ch)
        i += 1

    statement = "".join(current).strip()
    if statement:
        statements.append(statement)
    return statements


class SQLConnection(BackendConnection):
    """
    Scoped SQL connection.

    Outside ``transaction()`` every call commits on success and rolls
    back on failure.
    """

    supports_transactions = True

    def __init__(
        self,
        conn: AsyncConnection,
        kind: BackendKind,
        metrics: Optional[MetricsSink] = None,
    ) -> None:
        super().__init__(kind, metrics)
        self._conn = conn
        self._in_transaction = False

    @property
    def raw(self) -> AsyncConnection:
        """Underlying SQLAlchemy connection."""
        return self._conn

    async def _finish(self, ok: bool) -> None:
        self._count(ok)
        if self._in_transaction or not self._conn.in_transaction():
            return
        if ok:
            await self._conn.commit()
        else:
            await self._conn.rollback()

    async def execute(self, script: str) -> None:
        try:
            for statement in split_statements(script):
                await self._conn.exec_driver_sql(statement)
        except Exception:
            await self._finish(False)
            raise
        await self._finish(True)

    async def query(
        self,
        statement: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        try:
            result = await self._conn.execute(text(statement), dict(params or {}))
            rows = [dict(row._mapping) for row in result]
        except Exception:
            await self._finish(False)
            raise
        await self._finish(True)
        return rows

    async def _write(self, statement: str, params: Optional[Mapping[str, Any]]) -> int:
        try:
            result = await self._conn.execute(text(statement), dict(params or {}))
        except Exception:
            await self._finish(False)
            raise
        await self._finish(True)
        return max(result.rowcount, 0)

    async def insert(self, statement: str, params: Optional[Mapping[str, Any]] = None) -> int:
        return await self._write(statement, params)

    async def update(self, statement: str, params: Optional[Mapping[str, Any]] = None) -> int:
        return await self._write(statement, params)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["SQLConnection"]:
        """Commit on successful exit, roll back on exception."""
        if self._conn.in_transaction():
            await self._conn.commit()
        self._in_transaction = True
        try:
            async with self._conn.begin():
                yield self
        finally:
            self._in_transaction = False


class SQLBackend(BackendClient):
    """
    Relational backend on a SQLAlchemy async engine.

    Pool sizing maps onto the engine: ``pool_size`` is the idle share,
    ``max_overflow`` the rest of ``max_size``, ``pool_recycle`` the
    connection lifetime. SQLite keeps SQLAlchemy's default pool.

    Example:
        >>> backend = SQLBackend("sqlite+aiosqlite:///./app.db", BackendKind.SQLITE)
        >>> await backend.connect()
        >>> async with backend.connection() as conn:
        ...     await conn.query("SELECT 1 AS one")
        [{'one': 1}]
    """

    def __init__(
        self,
        url: str,
        kind: BackendKind,
        sizing: Optional[PoolSizing] = None,
        metrics: Optional[MetricsSink] = None,
        echo: bool = False,
    ) -> None:
        super().__init__(kind, metrics)
        self._url = to_async_url(url)
        self._sizing = sizing or PoolSizing.from_max_size(10)
        self._echo = echo
        self._engine: Optional[AsyncEngine] = None

    def _engine_options(self) -> Dict[str, Any]:
        if self.kind == BackendKind.SQLITE:
            return {
                "echo": self._echo,
                "connect_args": {"check_same_thread": False},
            }
        return {
            "echo": self._echo,
            "pool_size": self._sizing.max_idle,
            "max_overflow": self._sizing.max_size - self._sizing.max_idle,
            "pool_timeout": self._sizing.timeout,
            "pool_recycle": int(self._sizing.max_lifetime),
            "pool_pre_ping": True,
        }

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._engine

    async def connect(self) -> None:
        if self._engine is not None:
            return
        engine: Optional[AsyncEngine] = None
        try:
            engine = create_async_engine(self._url, **self._engine_options())
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as e:
            if engine is not None:
                await engine.dispose()
            logger.error(f"Failed to connect to {self.kind.value}: {e}")
            raise ConnectionError(
                ConnectionErrorKind.DIAL_FAILED,
                f"{self.kind.value} connection failed: {e}",
                details={"backend": self.kind.value},
            ) from e
        self._engine = engine
        logger.info(f"{self.kind.value} backend connected")

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            logger.info(f"{self.kind.value} backend disconnected")

    async def health_check(self) -> bool:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning(f"{self.kind.value} health check failed: {e}")
            return False

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[SQLConnection]:
        async with self.engine.connect() as conn:
            yield SQLConnection(conn, self.kind, self._metrics)
