# ==============================================================================
# POLYSTORE PACKAGE INITIALIZATION
# ==============================================================================
# Unified data-access layer
# Supports: PostgreSQL, MySQL, SQLite, MongoDB, Redis
# Architecture: Resolved Config, Pooled Backends, Retry, Versioned Migrations
# ==============================================================================

"""
Polystore
=========

Configured, pooled, retry-aware connections to relational, document and
key-value backends from one configuration surface, plus versioned schema
migrations for the relational backend.

Features:
---------
- Config resolution from YAML/JSON files with environment overrides
- One pool per declared backend with scoped acquisition
- Retry with fixed or exponential backoff, cancellable waits
- Ordered, fail-fast migrations with an applied-version ledger

Usage:
------
    from polystore.core.config import resolve_config
    from polystore.database import DatabaseFactory
    from polystore.migrations import MigrationEngine

    config = resolve_config("config.yaml")
    async with DatabaseFactory(config) as factory:
        pool = await factory.open()
        await MigrationEngine().migrate(pool, "migrations/")
"""

__version__ = "1.0.0"
__all__ = ["__version__"]
