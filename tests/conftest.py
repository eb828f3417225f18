# ==============================================================================
# CONFTEST - Pytest Fixtures and Configuration
# ==============================================================================
# Shared fixtures: spy backend, recording sleep, SQLite pools
# ==============================================================================

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, AsyncIterator, List, Optional, Set

import pytest
import pytest_asyncio

from polystore.core.config import BackendKind, DatabaseDescriptor
from polystore.core.exceptions import ConnectionError, ConnectionErrorKind
from polystore.database.backends import BackendClient, BackendConnection, PoolSizing
from polystore.database.pool import ConnectionPool


# ==============================================================================
# SPY BACKEND
# ==============================================================================

class SpyConnection(BackendConnection):
    """Records every script; fails on scripts listed in ``fail_on``."""

    def __init__(self, backend: "SpyBackend") -> None:
        super().__init__(backend.kind)
        self._backend = backend

    async def execute(self, script: str) -> None:
        self._backend.executed.append(script)
        if script in self._backend.fail_on:
            raise RuntimeError(f"boom: {script}")

    async def query(self, statement: str, params: Any = None) -> Any:
        self._backend.executed.append(statement)
        return []

    async def insert(self, statement: str, params: Any = None) -> int:
        return 1

    async def update(self, statement: str, params: Any = None) -> int:
        return 1


class SpyBackend(BackendClient):
    """In-memory backend that counts dials and open connections."""

    def __init__(self, dial_failures: int = 0, checkout_error: Optional[Exception] = None) -> None:
        super().__init__(BackendKind.SQLITE)
        self.executed: List[str] = []
        self.fail_on: Set[str] = set()
        self.dial_failures = dial_failures
        self.checkout_error = checkout_error
        self.dials = 0
        self.open_connections = 0
        self.closed = 0
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self.dials += 1
        if self.dials <= self.dial_failures:
            raise ConnectionError(ConnectionErrorKind.DIAL_FAILED, "spy refused")
        self._connected = True

    async def close(self) -> None:
        self.closed += 1
        self._connected = False

    async def health_check(self) -> bool:
        return self._connected

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[SpyConnection]:
        if self.checkout_error is not None:
            raise self.checkout_error
        self.open_connections += 1
        try:
            yield SpyConnection(self)
        finally:
            self.open_connections -= 1


@pytest.fixture
def spy_backend() -> SpyBackend:
    return SpyBackend()


@pytest_asyncio.fixture
async def spy_pool(spy_backend: SpyBackend) -> AsyncGenerator[ConnectionPool, None]:
    """Pool of two slots over the spy backend."""
    pool = ConnectionPool(spy_backend, PoolSizing.from_max_size(2, timeout=0.2))
    await spy_backend.connect()
    yield pool
    await pool.close()


# ==============================================================================
# RETRY HELPERS
# ==============================================================================

class RecordingSleep:
    """Sleep substitute that records requested delays and returns at once."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


# ==============================================================================
# SQLITE FIXTURES
# ==============================================================================

@pytest.fixture
def sqlite_descriptor(tmp_path) -> DatabaseDescriptor:
    return DatabaseDescriptor(
        type="sqlite",
        url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        max_pool_size=4,
        pool_timeout=2.0,
    )


@pytest_asyncio.fixture
async def sqlite_pool(sqlite_descriptor: DatabaseDescriptor) -> AsyncGenerator[ConnectionPool, None]:
    pool = await ConnectionPool.open(sqlite_descriptor)
    yield pool
    await pool.close()


@pytest.fixture
def migrations_dir(tmp_path):
    """Directory with three migrations, written out of version order."""
    directory = tmp_path / "migrations"
    directory.mkdir()
    (directory / "2__add_email.sql").write_text(
        "ALTER TABLE users ADD COLUMN email TEXT;", encoding="utf-8"
    )
    (directory / "10__create_posts.sql").write_text(
        "CREATE TABLE posts (id INTEGER PRIMARY KEY, user_id INTEGER, body TEXT);",
        encoding="utf-8",
    )
    (directory / "1__create_users.sql").write_text(
        "CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT NOT NULL);",
        encoding="utf-8",
    )
    return directory
