"""Data models package."""

from moneytalk.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from moneytalk.models.transaction import (
    AISuggestion,
    Balance,
    BackupListing,
    CategoryTotal,
    DeviceIdentity,
    ImageUploadResult,
    OperationResult,
    Period,
    ReceiptItem,
    SyncStatus,
    Transaction,
    TransactionCandidate,
    TransactionCategory,
    TransactionType,
    ValidationIssue,
    ValidationResult,
    category_names,
    coerce_category,
    coerce_type,
    to_utc,
    utc_now,
)

__all__ = [
    "AISuggestion",
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    "Balance",
    "BackupListing",
    "CategoryTotal",
    "DeviceIdentity",
    "ImageUploadResult",
    "OperationResult",
    "Period",
    "ReceiptItem",
    "SyncStatus",
    "Transaction",
    "TransactionCandidate",
    "TransactionCategory",
    "TransactionType",
    "ValidationIssue",
    "ValidationResult",
    "category_names",
    "coerce_category",
    "coerce_type",
    "to_utc",
    "utc_now",
]
