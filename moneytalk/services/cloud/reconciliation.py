"""
Cloud Reconciliation Service

Keeps a full copy of the local transactions in the remote replica,
partitioned by the device identity.

DESIGN DECISION: Backup is full-replace, not a merge.
The replica is wiped for the device and re-filled from the local snapshot.
With a single device per identity there are no conflicts to resolve, and a
full replace is the only strategy that also propagates local deletions.

CRITICAL: Within backup_all the delete completes before the insert starts.
A failure between them leaves the replica empty for the device, never
half-old and half-new.

Every remote failure comes back as OperationResult(success=False).
Nothing in this module raises into callers.
"""

from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional

import structlog

from moneytalk.audit import AuditLogger
from moneytalk.models.audit import AuditEventBuilder
from moneytalk.models.transaction import (
    AISuggestion,
    DeviceIdentity,
    OperationResult,
    SyncStatus,
    Transaction,
    coerce_type,
)
from moneytalk.periods import format_utc, parse_stored_date, timezone_name, utc_now
from moneytalk.services.cloud.identity import DeviceIdentityManager
from moneytalk.services.cloud.interface import (
    DuplicateKeyError,
    RemoteReplicaError,
    RemoteReplicaInterface,
    to_cell,
)
from moneytalk.services.storage.interface import (
    StorageError,
    TransactionStoreInterface,
)


logger = structlog.get_logger(__name__)

LAST_CLOUD_SYNC_KEY = "last_cloud_sync"
AUTO_SYNC_ENABLED_KEY = "auto_sync_enabled"


class CloudReconciliationService:
    """
    Backup, restore and automatic sync against the remote replica.

    Local settings (last sync time, auto-sync flag, device id) live in the
    settings store; the replica only ever receives copies.
    """

    def __init__(
        self,
        replica: RemoteReplicaInterface,
        settings_store: TransactionStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        auto_sync_interval: timedelta = timedelta(hours=1),
        user_timezone: Optional[str] = None,
        identity_manager: Optional[DeviceIdentityManager] = None,
    ):
        self._replica = replica
        self._store = settings_store
        self._audit = audit_logger or AuditLogger()
        self._interval = auto_sync_interval
        self._timezone = user_timezone
        self._identity_manager = identity_manager or DeviceIdentityManager(settings_store)

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    async def initialize(self) -> DeviceIdentity:
        """
        Load the device identity and make sure the remote profile exists.

        Remote problems are logged; the identity is returned regardless.

        Raises:
            StorageError: If the identity cannot be read or persisted locally
        """
        identity = await self._identity_manager.load_or_create()
        user_id = str(identity.user_id)

        try:
            profiles = await self._replica.select("user_profiles", {"user_id": user_id})
            if not profiles:
                await self._replica.insert("user_profiles", [{
                    "user_id": user_id,
                    "created_at": format_utc(utc_now()),
                    "timezone": timezone_name(self._timezone),
                    "last_sync": "",
                }])
                logger.info("remote_profile_created", user_id=user_id)
        except DuplicateKeyError:
            # Created concurrently; the profile exists
            pass
        except RemoteReplicaError as e:
            logger.warning("remote_profile_unavailable", user_id=user_id, error=str(e))
            await self._audit.log_external_service_error("cloud_replica", str(e))

        return identity

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @staticmethod
    def _to_remote_row(user_id: str, transaction: Transaction, stamp: str) -> dict[str, str]:
        return {
            "id": to_cell(transaction.id),
            "user_id": user_id,
            "amount": to_cell(transaction.signed_amount),
            "category": transaction.category.value,
            "type": transaction.type.value,
            "description": transaction.description,
            "date": format_utc(transaction.date),
            "image_url": to_cell(transaction.image_url),
            "created_at": stamp,
            "updated_at": stamp,
        }

    @staticmethod
    def _from_remote_row(row: dict[str, str]) -> Optional[Transaction]:
        """Parse a replica row, or None when it is not a usable transaction."""
        transaction_type = coerce_type(row.get("type"))
        date = parse_stored_date(row.get("date"))
        if transaction_type is None or date is None:
            logger.warning("skipping_remote_row", row_id=row.get("id"))
            return None

        try:
            return Transaction(
                id=int(row.get("id") or 0),
                amount=Decimal(row.get("amount") or "0"),
                category=row.get("category"),
                type=transaction_type,
                description=row.get("description") or "",
                date=date,
                image_url=row.get("image_url") or None,
            ).with_normalized_sign()
        except (ValueError, InvalidOperation) as e:
            logger.warning("skipping_remote_row", row_id=row.get("id"), error=str(e))
            return None

    async def backup_all(
        self,
        identity: DeviceIdentity,
        transactions: list[Transaction],
        now: Optional[datetime] = None,
    ) -> OperationResult:
        """
        Replace the device's remote transactions with the given snapshot.

        On success the local last_cloud_sync setting is updated.
        """
        user_id = str(identity.user_id)
        now = now or utc_now()
        stamp = format_utc(now)

        try:
            await self._replica.delete("transactions", {"user_id": user_id})
            rows = [self._to_remote_row(user_id, tx, stamp) for tx in transactions]
            if rows:
                await self._replica.insert("transactions", rows)
        except Exception as e:
            logger.error("cloud_backup_failed", user_id=user_id, error=str(e))
            await self._audit.log(AuditEventBuilder.cloud_backup_failed(user_id, str(e)))
            return OperationResult.failed(f"Backup failed: {e}", error=str(e))

        await self._touch_profile(user_id, stamp)
        await self._record_sync(stamp)
        await self._audit.log(
            AuditEventBuilder.cloud_backup_completed(user_id, len(transactions))
        )
        return OperationResult.ok(
            f"Successfully backed up {len(transactions)} transactions",
            count=len(transactions),
        )

    async def _record_sync(self, stamp: str) -> None:
        try:
            await self._store.set_setting(LAST_CLOUD_SYNC_KEY, stamp)
        except StorageError as e:
            logger.warning("last_sync_not_recorded", error=str(e))

    async def _touch_profile(self, user_id: str, stamp: str) -> None:
        """Record last_sync on the remote profile. Failures are only logged."""
        try:
            existing = await self._replica.select("user_profiles", {"user_id": user_id})
            profile = existing[0] if existing else {
                "user_id": user_id,
                "created_at": stamp,
                "timezone": timezone_name(self._timezone),
            }
            profile = {**profile, "last_sync": stamp}
            await self._replica.upsert("user_profiles", profile, ["user_id"])
        except RemoteReplicaError as e:
            logger.warning("profile_update_failed", user_id=user_id, error=str(e))

    async def restore_all(
        self,
        identity: DeviceIdentity,
    ) -> tuple[OperationResult, list[Transaction]]:
        """
        Fetch the device's remote snapshot, newest first.

        Local storage is not touched; the caller decides what to do with it.
        """
        user_id = str(identity.user_id)
        try:
            rows = await self._replica.select(
                "transactions",
                {"user_id": user_id},
                order_by="date",
                descending=True,
            )
        except Exception as e:
            logger.error("cloud_restore_failed", user_id=user_id, error=str(e))
            await self._audit.log_external_service_error("cloud_replica", str(e))
            return OperationResult.failed(f"Restore failed: {e}", error=str(e)), []

        transactions = [tx for tx in map(self._from_remote_row, rows) if tx is not None]
        transactions.sort(key=lambda tx: tx.date, reverse=True)

        await self._audit.log(
            AuditEventBuilder.cloud_restore_completed(user_id, len(transactions))
        )
        return (
            OperationResult.ok(
                f"Successfully restored {len(transactions)} transactions",
                count=len(transactions),
            ),
            transactions,
        )

    async def auto_sync(
        self,
        identity: DeviceIdentity,
        transactions: list[Transaction],
        now: Optional[datetime] = None,
    ) -> OperationResult:
        """Back up unless the last successful sync is more recent than the interval."""
        now = now or utc_now()
        user_id = str(identity.user_id)

        try:
            last_sync = parse_stored_date(await self._store.get_setting(LAST_CLOUD_SYNC_KEY))
        except StorageError as e:
            return OperationResult.failed("Sync failed: local settings unavailable", error=str(e))

        if last_sync is not None and now - last_sync < self._interval:
            minutes = (now - last_sync).total_seconds() / 60
            await self._audit.log(AuditEventBuilder.sync_skipped(user_id, minutes))
            return OperationResult.ok("Sync skipped - too recent", skipped=True)

        return await self.backup_all(identity, transactions, now=now)

    async def sync_status(self, identity: DeviceIdentity) -> Optional[SyncStatus]:
        """Last sync time and remote row counts, or None if never synced or unreachable."""
        try:
            last_sync = parse_stored_date(await self._store.get_setting(LAST_CLOUD_SYNC_KEY))
        except StorageError as e:
            logger.warning("sync_status_unavailable", error=str(e))
            return None
        if last_sync is None:
            return None

        user_id = str(identity.user_id)
        try:
            transaction_count = await self._replica.count("transactions", {"user_id": user_id})
            settings_count = await self._replica.count("settings", {"user_id": user_id})
        except RemoteReplicaError as e:
            logger.warning("sync_status_unavailable", user_id=user_id, error=str(e))
            return None

        return SyncStatus(
            last_sync_time=last_sync,
            transaction_count=transaction_count,
            settings_count=settings_count,
        )

    # -------------------------------------------------------------------------
    # Suggestion cache and refresh counter
    # -------------------------------------------------------------------------

    async def backup_ai_suggestion(
        self,
        identity: DeviceIdentity,
        suggestion: AISuggestion,
    ) -> OperationResult:
        user_id = str(identity.user_id)
        try:
            await self._replica.upsert(
                "ai_suggestions",
                {
                    "user_id": user_id,
                    "suggestion": suggestion.suggestion,
                    "timestamp": to_cell(suggestion.timestamp),
                    "created_at": format_utc(utc_now()),
                },
                ["user_id"],
            )
        except RemoteReplicaError as e:
            logger.warning("suggestion_backup_failed", user_id=user_id, error=str(e))
            return OperationResult.failed("Failed to back up suggestion", error=str(e))
        return OperationResult.ok("Suggestion backed up")

    async def restore_ai_suggestion(
        self,
        identity: DeviceIdentity,
    ) -> tuple[OperationResult, Optional[AISuggestion]]:
        user_id = str(identity.user_id)
        try:
            rows = await self._replica.select("ai_suggestions", {"user_id": user_id})
        except RemoteReplicaError as e:
            logger.warning("suggestion_restore_failed", user_id=user_id, error=str(e))
            return OperationResult.failed("Failed to restore suggestion", error=str(e)), None

        if not rows:
            return OperationResult.ok("No suggestion in cloud"), None

        try:
            suggestion = AISuggestion(
                suggestion=rows[0].get("suggestion", ""),
                timestamp=int(rows[0].get("timestamp") or 0),
            )
        except ValueError as e:
            return OperationResult.failed("Cloud suggestion is unreadable", error=str(e)), None
        return OperationResult.ok("Suggestion restored"), suggestion

    async def sync_daily_refresh_count(
        self,
        identity: DeviceIdentity,
        day: str,
        count: int,
    ) -> OperationResult:
        user_id = str(identity.user_id)
        try:
            await self._replica.upsert(
                "daily_refresh_count",
                {"user_id": user_id, "date": day, "count": to_cell(count)},
                ["user_id", "date"],
            )
        except RemoteReplicaError as e:
            logger.warning("refresh_count_sync_failed", user_id=user_id, error=str(e))
            return OperationResult.failed("Failed to sync refresh count", error=str(e))
        return OperationResult.ok("Refresh count synced", count=count)

    async def get_daily_refresh_count(
        self,
        identity: DeviceIdentity,
        day: str,
    ) -> Optional[int]:
        """Remote counter for a UTC day; 0 if absent, None if unreachable."""
        user_id = str(identity.user_id)
        try:
            rows = await self._replica.select(
                "daily_refresh_count",
                {"user_id": user_id, "date": day},
            )
        except RemoteReplicaError as e:
            logger.warning("refresh_count_unavailable", user_id=user_id, error=str(e))
            return None

        if not rows:
            return 0
        try:
            return int(rows[0].get("count") or 0)
        except ValueError:
            return 0

    # -------------------------------------------------------------------------
    # Auto-sync flag
    # -------------------------------------------------------------------------

    async def set_auto_sync_enabled(
        self,
        identity: DeviceIdentity,
        enabled: bool,
    ) -> OperationResult:
        """Persist the flag locally, then mirror it to the replica best-effort."""
        value = to_cell(enabled)
        try:
            await self._store.set_setting(AUTO_SYNC_ENABLED_KEY, value)
        except StorageError as e:
            return OperationResult.failed("Failed to save auto-sync setting", error=str(e))

        user_id = str(identity.user_id)
        try:
            await self._replica.upsert(
                "settings",
                {
                    "user_id": user_id,
                    "key": AUTO_SYNC_ENABLED_KEY,
                    "value": value,
                    "updated_at": format_utc(utc_now()),
                },
                ["user_id", "key"],
            )
        except RemoteReplicaError as e:
            logger.warning("setting_mirror_failed", key=AUTO_SYNC_ENABLED_KEY, error=str(e))

        state = "enabled" if enabled else "disabled"
        return OperationResult.ok(f"Auto-sync {state}", enabled=enabled)

    async def is_auto_sync_enabled(self) -> bool:
        try:
            return await self._store.get_setting(AUTO_SYNC_ENABLED_KEY) == "true"
        except StorageError as e:
            logger.warning("auto_sync_flag_unavailable", error=str(e))
            return False
