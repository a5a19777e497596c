"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Keep business logic decoupled from SQLite
2. Use in-memory storage for testing
3. Let the cloud and backup services depend on operations, not files

The interface is intentionally simple - we're not building a full ORM.
Just the operations the app needs.

CRITICAL: The store is the single source of truth for amount signs.
Whatever sign a caller hands in, a persisted expense is negative and a
persisted income is positive.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Union

from moneytalk.models.transaction import (
    AISuggestion,
    Balance,
    CategoryTotal,
    Period,
    Transaction,
)


class TransactionStoreInterface(ABC):
    """
    Abstract interface for local persistence.

    Any storage implementation must implement these methods.
    """

    @property
    @abstractmethod
    def is_ready(self) -> bool:
        """True once initialize() has succeeded."""
        pass

    @abstractmethod
    async def initialize(self) -> None:
        """
        Prepare storage for use.

        Raises:
            DatabaseUnavailableError: If storage cannot be opened or recreated
        """
        pass

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def insert(self, transaction: Transaction) -> int:
        """
        Persist a new transaction.

        Any id on the input is ignored.

        Returns:
            The id assigned by storage

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def update(self, transaction: Transaction) -> None:
        """
        Overwrite every field of an existing transaction.

        Raises:
            NotFoundError: If transaction.id is unknown
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def get(self, transaction_id: int) -> Optional[Transaction]:
        """Retrieve a transaction by id, None if absent."""
        pass

    @abstractmethod
    async def recent(self, limit: int = 10) -> list[Transaction]:
        """The newest transactions by date."""
        pass

    @abstractmethod
    async def all(self) -> list[Transaction]:
        """Every transaction, newest first."""
        pass

    @abstractmethod
    async def by_period(
        self,
        period: Union[Period, str],
        tz: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> list[Transaction]:
        """Transactions inside the period window, newest first."""
        pass

    @abstractmethod
    async def by_category(
        self,
        period: Union[Period, str],
        tz: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> list[CategoryTotal]:
        """Expense magnitudes per category, largest first. Income is excluded."""
        pass

    @abstractmethod
    async def balance(self) -> Balance:
        """Income and expense magnitudes over all transactions."""
        pass

    @abstractmethod
    async def delete(self, transaction_id: int) -> bool:
        """Delete by id. Returns False if nothing was deleted."""
        pass

    @abstractmethod
    async def clear_all(self) -> int:
        """Delete every transaction. Returns the number removed."""
        pass

    @abstractmethod
    async def replace_all(self, transactions: list[Transaction]) -> int:
        """
        Replace all transactions with the given snapshot, keeping ids.

        Returns:
            Number of rows written
        """
        pass

    @abstractmethod
    async def count(self) -> int:
        pass

    # -------------------------------------------------------------------------
    # Settings, suggestion cache, refresh counters
    # -------------------------------------------------------------------------

    @abstractmethod
    async def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        pass

    @abstractmethod
    async def set_setting(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    async def delete_setting(self, key: str) -> None:
        pass

    @abstractmethod
    async def settings_count(self) -> int:
        pass

    @abstractmethod
    async def save_ai_suggestion(
        self,
        suggestion: str,
        timestamp: Optional[int] = None,
    ) -> AISuggestion:
        """Replace the cached suggestion."""
        pass

    @abstractmethod
    async def get_ai_suggestion(self) -> Optional[AISuggestion]:
        pass

    @abstractmethod
    async def clear_ai_suggestion(self) -> None:
        pass

    @abstractmethod
    async def get_daily_refresh_count(self, day: Optional[str] = None) -> int:
        """Refreshes used on a UTC day (YYYY-MM-DD, default today)."""
        pass

    @abstractmethod
    async def increment_daily_refresh_count(self, day: Optional[str] = None) -> int:
        """Record one refresh. Returns the new count."""
        pass

    @abstractmethod
    async def set_daily_refresh_count(self, count: int, day: Optional[str] = None) -> None:
        """Overwrite a day's counter."""
        pass

    @abstractmethod
    async def remaining_refreshes(self, day: Optional[str] = None) -> int:
        pass

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    @abstractmethod
    async def database_info(self) -> dict:
        """Paths, counts and readiness, for diagnostics."""
        pass

    @abstractmethod
    def dispose(self) -> None:
        """Release open file handles. Connections reopen on next use."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DatabaseUnavailableError(StorageError):
    """Storage could not be opened, even after recreating it."""
    pass
