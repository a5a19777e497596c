"""
Remote Replica Interface

DESIGN DECISION: The cloud copy is a replica, never the source of truth.
The reconciliation service only needs five table operations, so any
backend that can filter rows by column equality can serve as the replica.

All values cross this boundary as strings.
"""

from abc import ABC, abstractmethod
from typing import Optional


# Remote tables and their columns, in sheet/header order
REMOTE_TABLE_COLUMNS: dict[str, list[str]] = {
    "transactions": [
        "id",
        "user_id",
        "amount",
        "category",
        "type",
        "description",
        "date",
        "image_url",
        "created_at",
        "updated_at",
    ],
    "user_profiles": [
        "user_id",
        "created_at",
        "timezone",
        "last_sync",
    ],
    "ai_suggestions": [
        "user_id",
        "suggestion",
        "timestamp",
        "created_at",
    ],
    "daily_refresh_count": [
        "user_id",
        "date",
        "count",
    ],
    "settings": [
        "user_id",
        "key",
        "value",
        "updated_at",
    ],
}

# Columns that identify a row; inserts that repeat a key are rejected
REMOTE_TABLE_KEYS: dict[str, list[str]] = {
    "transactions": ["user_id", "id"],
    "user_profiles": ["user_id"],
    "ai_suggestions": ["user_id"],
    "daily_refresh_count": ["user_id", "date"],
    "settings": ["user_id", "key"],
}


class RemoteReplicaInterface(ABC):
    """
    Abstract interface for the remote replica.

    Filters are column -> value equality tests, combined with AND.
    """

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: dict[str, str],
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[dict[str, str]]:
        """
        Fetch matching rows.

        Raises:
            RemoteReplicaError: If the replica cannot be read
        """
        pass

    @abstractmethod
    async def insert(self, table: str, rows: list[dict[str, str]]) -> int:
        """
        Append rows.

        Raises:
            DuplicateKeyError: If a row repeats an existing key
            RemoteReplicaError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, table: str, filters: dict[str, str]) -> int:
        """Delete matching rows. Returns how many were removed."""
        pass

    @abstractmethod
    async def upsert(
        self,
        table: str,
        row: dict[str, str],
        key_columns: list[str],
    ) -> None:
        """Insert a row, or overwrite the row with the same key columns."""
        pass

    @abstractmethod
    async def count(self, table: str, filters: dict[str, str]) -> int:
        pass


class RemoteReplicaError(Exception):
    """Base exception for replica operations."""
    pass


class ReplicaConnectionError(RemoteReplicaError):
    """Could not connect to the replica backend."""
    pass


class DuplicateKeyError(RemoteReplicaError):
    """An insert repeated an existing key."""
    pass


def to_cell(value) -> str:
    """Render a value as the string stored in the replica."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def row_key(row: dict[str, str], key_columns: list[str]) -> tuple:
    return tuple(row.get(column, "") for column in key_columns)


def matches(row: dict[str, str], filters: dict[str, str]) -> bool:
    return all(row.get(column, "") == to_cell(value) for column, value in filters.items())
