# ==============================================================================
# MIGRATION ENGINE - Discover, Order, Apply
# ==============================================================================
# Lifecycle of one run:
#
#   IDLE → DISCOVERING → ORDERED → APPLYING → COMPLETED | ABORTED
#
# Migrations are applied strictly one after another on a single connection.
# The first failure aborts the batch; earlier migrations stay applied.
# ==============================================================================

from __future__ import annotations

import logging
from contextlib import nullcontext
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Set, Union

from polystore.core.exceptions import MigrationApplyError
from polystore.database.backends import BackendConnection
from polystore.database.pool import ConnectionPool
from polystore.migrations import discovery
from polystore.migrations.discovery import DEFAULT_EXTENSIONS, Migration
from polystore.migrations.ledger import MigrationLedger, TableLedger
from polystore.resilience.retry import RetryExecutor, RetryPolicy

logger = logging.getLogger(__name__)


class MigrationState(str, Enum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    ORDERED = "ordered"
    APPLYING = "applying"
    COMPLETED = "completed"
    ABORTED = "aborted"


class MigrationEngine:
    """
    Versioned schema migrations against one pool.

    Features:
        - Filename-based discovery (``<version>__<description>.sql``)
        - Duplicate version detection
        - Fail-fast apply with the partial count on the error
        - Applied-version ledger written in the migration's transaction
        - Optional retry of each migration for transient failures

    Example:
        >>> engine = MigrationEngine()
        >>> applied = await engine.migrate(pool, "migrations/")
        >>> engine.state
        <MigrationState.COMPLETED: 'completed'>
    """

    def __init__(
        self,
        ledger: Optional[MigrationLedger] = None,
        *,
        extensions: Iterable[str] = DEFAULT_EXTENSIONS,
        retry: Optional[RetryExecutor] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        self.ledger = ledger if ledger is not None else TableLedger()
        self.extensions = tuple(extensions)
        self._retry = retry
        self._retry_policy = retry_policy
        self.state = MigrationState.IDLE

    # ==========================================================================
    # DISCOVERY
    # ==========================================================================

    def discover(self, directory: Union[str, Path]) -> List[Migration]:
        """
        Scan ``directory`` and return its migrations in version order.

        Raises:
            DiscoveryError: On an unreadable directory, a malformed
                filename or a duplicate version
        """
        self.state = MigrationState.DISCOVERING
        try:
            migrations = discovery.discover(directory, self.extensions)
        except Exception:
            self.state = MigrationState.ABORTED
            raise
        self.state = MigrationState.ORDERED
        return migrations

    def order(self, migrations: Sequence[Migration]) -> List[Migration]:
        """
        Sort ascending by version.

        Raises:
            DiscoveryError: DUPLICATE_VERSION
        """
        try:
            ordered = discovery.order(migrations)
        except Exception:
            self.state = MigrationState.ABORTED
            raise
        self.state = MigrationState.ORDERED
        return ordered

    # ==========================================================================
    # APPLY
    # ==========================================================================

    async def _apply_one(self, conn: BackendConnection, migration: Migration) -> None:
        scope = conn.transaction() if conn.supports_transactions else nullcontext(conn)
        async with scope as tx:
            await tx.execute(migration.script)
            await self.ledger.record(tx, migration)

    async def apply(self, pool: ConnectionPool, migrations: Sequence[Migration]) -> int:
        """
        Apply ``migrations`` in version order, skipping recorded versions.

        Returns:
            Number of migrations applied by this call

        Raises:
            DiscoveryError: DUPLICATE_VERSION
            MigrationApplyError: On the first failing migration; carries
                its version, the cause and the count applied before it
        """
        ordered = self.order(migrations)
        self.state = MigrationState.APPLYING
        applied = 0

        try:
            async with pool.acquire() as conn:
                await self.ledger.ensure(conn)
                done = await self.ledger.applied_versions(conn)

                for migration in ordered:
                    if migration.version in done:
                        logger.debug(f"Skipping already applied migration {migration.name}")
                        continue
                    try:
                        if self._retry is None:
                            await self._apply_one(conn, migration)
                        else:
                            await self._retry.execute(
                                partial(self._apply_one, conn, migration),
                                self._retry_policy,
                            )
                    except Exception as e:
                        logger.error(f"Migration {migration.name} failed: {e}")
                        raise MigrationApplyError(migration.version, e, applied) from e
                    applied += 1
                    logger.info(f"Applied migration {migration.name}")
        except BaseException:
            self.state = MigrationState.ABORTED
            raise

        self.state = MigrationState.COMPLETED
        logger.info(f"Migrations complete: {applied} applied")
        return applied

    async def migrate(self, pool: ConnectionPool, directory: Union[str, Path]) -> int:
        """Discover the scripts in ``directory`` and apply them."""
        return await self.apply(pool, self.discover(directory))

    # ==========================================================================
    # INTROSPECTION
    # ==========================================================================

    async def applied_versions(self, pool: ConnectionPool) -> Set[int]:
        async with pool.acquire() as conn:
            await self.ledger.ensure(conn)
            return await self.ledger.applied_versions(conn)

    async def pending(
        self,
        pool: ConnectionPool,
        migrations: Sequence[Migration],
    ) -> List[Migration]:
        """Migrations from ``migrations`` not yet recorded in the ledger."""
        done = await self.applied_versions(pool)
        return [m for m in discovery.order(migrations) if m.version not in done]
