# ==============================================================================
# DATABASE PACKAGE INITIALIZATION
# ==============================================================================
# Pooled access to every declared backend
# ==============================================================================

"""
Database Module
===============

Key Components:
- Backends: One variant per backend kind (SQL, MongoDB, Redis)
- Pool: Bounded, scoped connection acquisition
- Factory: One pool per backend declared in a Config
"""

from polystore.database.backends import BackendClient, BackendConnection, create_backend
from polystore.database.factory import DatabaseFactory
from polystore.database.pool import ConnectionPool

__all__ = [
    "BackendClient",
    "BackendConnection",
    "ConnectionPool",
    "DatabaseFactory",
    "create_backend",
]
