"""Services package: local storage, cloud replica, backups and receipt images."""

from moneytalk.services.backup import BackupFileManager
from moneytalk.services.cloud import (
    CloudReconciliationService,
    DeviceIdentityManager,
    RemoteReplicaError,
    RemoteReplicaInterface,
)
from moneytalk.services.image import ImageServiceError, ReceiptImageService
from moneytalk.services.storage import (
    DatabaseUnavailableError,
    NotFoundError,
    SQLiteTransactionStore,
    StorageError,
    TransactionStoreInterface,
)

__all__ = [
    # Backup
    "BackupFileManager",
    # Cloud
    "CloudReconciliationService",
    "DeviceIdentityManager",
    "RemoteReplicaError",
    "RemoteReplicaInterface",
    # Images
    "ImageServiceError",
    "ReceiptImageService",
    # Storage
    "DatabaseUnavailableError",
    "NotFoundError",
    "SQLiteTransactionStore",
    "StorageError",
    "TransactionStoreInterface",
]
