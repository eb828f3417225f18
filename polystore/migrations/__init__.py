"""
Versioned schema migrations.

Scripts named ``<version>__<description>.sql`` are discovered, ordered
and applied one by one; the first failure stops the batch.
"""

from polystore.migrations.discovery import Migration, discover, order
from polystore.migrations.engine import MigrationEngine, MigrationState
from polystore.migrations.ledger import MigrationLedger, NullLedger, TableLedger

__all__ = [
    "Migration",
    "MigrationEngine",
    "MigrationLedger",
    "MigrationState",
    "NullLedger",
    "TableLedger",
    "discover",
    "order",
]
