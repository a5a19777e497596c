"""
Storage Services Package

Provides the abstract store interface and its SQLite implementation,
plus the legacy-location migration used at startup.
"""

from moneytalk.services.storage.interface import (
    DatabaseUnavailableError,
    NotFoundError,
    StorageError,
    TransactionStoreInterface,
)
from moneytalk.services.storage.migration import (
    MigrationReport,
    migrate_legacy_databases,
)
from moneytalk.services.storage.sqlite_store import SQLiteTransactionStore

__all__ = [
    # Interfaces
    "TransactionStoreInterface",
    # Exceptions
    "DatabaseUnavailableError",
    "NotFoundError",
    "StorageError",
    # SQLite implementation
    "MigrationReport",
    "SQLiteTransactionStore",
    "migrate_legacy_databases",
]
