"""
Database utilities for gexwatch

Components:
- Thread-safe connection pooling
- Password providers (pgpass, AWS Secrets Manager, environment variables)
- Snapshot store (option chains, expiry dates, GEX history)

Usage:
    from gexwatch.config import load_config
    from gexwatch.database import ConnectionPool, PostgresSnapshotStore

    config = load_config()
    db_pool = ConnectionPool(config.database)
    store = PostgresSnapshotStore.from_config(db_pool, config.collector)
    store.initialize_schema()
"""

from gexwatch.database.connection import ConnectionPool
from gexwatch.database.password_providers import get_db_password
from gexwatch.database.snapshot_store import SnapshotStore, PostgresSnapshotStore

__all__ = [
    "ConnectionPool",
    "get_db_password",
    "SnapshotStore",
    "PostgresSnapshotStore",
]
