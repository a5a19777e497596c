"""
Audit Models for MoneyTalk

Every significant action in the system is logged for audit purposes.
This provides:
1. Traceability of every write to the local store
2. Debugging information when a provider or the cloud replica fails
3. A record of which provider produced each candidate

DESIGN DECISION: Audit events describe what happened; they never carry
full transaction payloads or API keys.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step of capture, persistence and sync has its own event type.
    """
    # Extraction
    TRANSACTION_EXTRACTED = "transaction_extracted"
    PROVIDER_FAILED = "provider_failed"
    PROVIDER_FALLBACK = "provider_fallback"
    KEYWORD_FALLBACK_USED = "keyword_fallback_used"

    # Persistence
    TRANSACTION_SAVED = "transaction_saved"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    TRANSACTIONS_CLEARED = "transactions_cleared"
    DATABASE_MIGRATED = "database_migrated"
    DATABASE_RECOVERED = "database_recovered"

    # Cloud reconciliation
    CLOUD_BACKUP_COMPLETED = "cloud_backup_completed"
    CLOUD_BACKUP_FAILED = "cloud_backup_failed"
    CLOUD_RESTORE_COMPLETED = "cloud_restore_completed"
    SYNC_SKIPPED = "sync_skipped"

    # File backups
    LOCAL_BACKUP_CREATED = "local_backup_created"
    LOCAL_BACKUP_FAILED = "local_backup_failed"
    LOCAL_BACKUP_RESTORED = "local_backup_restored"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'backup', 'provider')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one voice capture)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_saved(tx_id, "Groceries", "-50")
        event = AuditEventBuilder.provider_failed("gemini", "timeout", correlation_id)
    """

    @staticmethod
    def transaction_extracted(
        extraction_id: UUID,
        provider: str,
        used_backup_provider: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_EXTRACTED,
            entity_type="extraction",
            entity_id=str(extraction_id),
            correlation_id=correlation_id,
            description=f"Transaction candidate produced by {provider}",
            details={
                "provider": provider,
                "used_backup_provider": used_backup_provider,
            },
        )

    @staticmethod
    def provider_failed(
        provider: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROVIDER_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="provider",
            entity_id=provider,
            correlation_id=correlation_id,
            description=f"AI provider failed: {provider}",
            error_message=error_message,
        )

    @staticmethod
    def provider_fallback(
        from_provider: str,
        to_provider: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROVIDER_FALLBACK,
            severity=AuditSeverity.WARNING,
            entity_type="provider",
            entity_id=to_provider,
            correlation_id=correlation_id,
            description=f"Falling back from {from_provider} to {to_provider}",
            details={"from": from_provider, "to": to_provider},
        )

    @staticmethod
    def keyword_fallback_used(
        extraction_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.KEYWORD_FALLBACK_USED,
            severity=AuditSeverity.WARNING,
            entity_type="extraction",
            entity_id=str(extraction_id),
            correlation_id=correlation_id,
            description="All AI providers failed; keyword matcher used",
        )

    @staticmethod
    def transaction_saved(
        transaction_id: int,
        category: str,
        amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_SAVED,
            entity_type="transaction",
            entity_id=str(transaction_id),
            correlation_id=correlation_id,
            description=f"Transaction saved: {category} {amount}",
            details={"category": category, "amount": amount},
            is_user_action=True,
        )

    @staticmethod
    def transaction_updated(
        transaction_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            entity_type="transaction",
            entity_id=str(transaction_id),
            correlation_id=correlation_id,
            description=f"Transaction {transaction_id} updated",
            is_user_action=True,
        )

    @staticmethod
    def transaction_deleted(
        transaction_id: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=str(transaction_id),
            correlation_id=correlation_id,
            description=f"Transaction {transaction_id} deleted",
            is_user_action=True,
        )

    @staticmethod
    def transactions_cleared(count: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTIONS_CLEARED,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            description=f"All transactions cleared ({count} removed)",
            details={"removed": count},
            is_user_action=True,
        )

    @staticmethod
    def cloud_backup_completed(
        user_id: str,
        count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CLOUD_BACKUP_COMPLETED,
            entity_type="device",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Backed up {count} transactions to cloud",
            details={"count": count},
        )

    @staticmethod
    def cloud_backup_failed(
        user_id: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CLOUD_BACKUP_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="device",
            entity_id=user_id,
            correlation_id=correlation_id,
            description="Cloud backup failed",
            error_message=error_message,
        )

    @staticmethod
    def cloud_restore_completed(
        user_id: str,
        count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CLOUD_RESTORE_COMPLETED,
            entity_type="device",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Restored {count} transactions from cloud",
            details={"count": count},
        )

    @staticmethod
    def sync_skipped(user_id: str, minutes_since_last: float) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYNC_SKIPPED,
            severity=AuditSeverity.DEBUG,
            entity_type="device",
            entity_id=user_id,
            description="Automatic sync skipped, last sync too recent",
            details={"minutes_since_last": round(minutes_since_last, 1)},
        )

    @staticmethod
    def local_backup_created(files: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOCAL_BACKUP_CREATED,
            entity_type="backup",
            description=f"Local backup created ({len(files)} files)",
            details={"files": files},
            is_user_action=True,
        )

    @staticmethod
    def local_backup_failed(error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOCAL_BACKUP_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="backup",
            description="Local backup failed",
            error_message=error_message,
        )

    @staticmethod
    def local_backup_restored(files: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LOCAL_BACKUP_RESTORED,
            severity=AuditSeverity.WARNING,
            entity_type="backup",
            description=f"Restored {len(files)} database files from backup",
            details={"files": files},
            is_user_action=True,
        )

    @staticmethod
    def database_migrated(source: str, rows: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DATABASE_MIGRATED,
            entity_type="database",
            entity_id=source,
            description=f"Migrated {rows} rows from legacy location",
            details={"source": source, "rows": rows},
        )

    @staticmethod
    def database_recovered(name: str, moved_to: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DATABASE_RECOVERED,
            severity=AuditSeverity.WARNING,
            entity_type="database",
            entity_id=name,
            description=f"Recreated unusable database {name}",
            details={"moved_to": moved_to},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
