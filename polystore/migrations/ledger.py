"""
Applied-version ledgers.

A ledger remembers which migration versions have already run so a batch
can be re-applied without re-executing old scripts. TableLedger keeps
the record in the migrated database itself, written on the same
connection and inside the same transaction as the migration.
"""
from __future__ import annotations

import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Set

from polystore.database.backends import BackendConnection
from polystore.migrations.discovery import Migration

DEFAULT_TABLE = "schema_migrations"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class MigrationLedger(ABC):
    """Record of applied migration versions."""

    @abstractmethod
    async def ensure(self, conn: BackendConnection) -> None:
        """Create the backing storage if it does not exist."""
        pass

    @abstractmethod
    async def applied_versions(self, conn: BackendConnection) -> Set[int]:
        pass

    @abstractmethod
    async def record(self, conn: BackendConnection, migration: Migration) -> None:
        """Mark ``migration`` as applied."""
        pass


class TableLedger(MigrationLedger):
    """
    Ledger stored in a relational table.

    Columns: ``version`` (primary key), ``description`` and
    ``applied_at`` (ISO-8601, UTC).
    """

    def __init__(self, table: str = DEFAULT_TABLE) -> None:
        if not _IDENTIFIER.match(table):
            raise ValueError(f"Invalid ledger table name: {table!r}")
        self.table = table

    async def ensure(self, conn: BackendConnection) -> None:
        await conn.execute(
            f"CREATE TABLE IF NOT EXISTS {self.table} ("
            "version BIGINT PRIMARY KEY, "
            "description VARCHAR(255) NOT NULL, "
            "applied_at VARCHAR(64) NOT NULL)"
        )

    async def applied_versions(self, conn: BackendConnection) -> Set[int]:
        rows = await conn.query(f"SELECT version FROM {self.table}")
        return {int(row["version"]) for row in rows}

    async def record(self, conn: BackendConnection, migration: Migration) -> None:
        await conn.insert(
            f"INSERT INTO {self.table} (version, description, applied_at) "
            "VALUES (:version, :description, :applied_at)",
            {
                "version": migration.version,
                "description": migration.description[:255],
                "applied_at": datetime.now(timezone.utc).isoformat(),
            },
        )


class NullLedger(MigrationLedger):
    """
    Ledger that remembers nothing.

    Every apply re-executes the whole batch.
    """

    async def ensure(self, conn: BackendConnection) -> None:
        return None

    async def applied_versions(self, conn: BackendConnection) -> Set[int]:
        return set()

    async def record(self, conn: BackendConnection, migration: Migration) -> None:
        return None
