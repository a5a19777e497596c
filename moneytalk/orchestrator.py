"""
Main Orchestrator for MoneyTalk

This module ties together all the components and defines the
caller-facing flows:
1. Capture (voice/receipt → candidate → review → confirm → save)
2. Sync (local backups, cloud backup/restore, auto-sync)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing is saved until the caller confirms a candidate
- Every action resolves to an OperationResult the UI can show as-is
- Remote failures never lose a local write

Destructive operations (delete, clear, restore) run immediately;
asking the user for confirmation is the caller's job.
"""

from datetime import timedelta
from typing import Optional, Union
from uuid import UUID

import structlog

from moneytalk.agents import (
    SpendingAdvisor,
    TransactionExtractor,
    TranscriptionError,
    build_default_providers,
)
from moneytalk.audit import AuditLogger, configure_logging, create_correlation_id
from moneytalk.config import get_settings
from moneytalk.models.transaction import (
    BackupListing,
    DeviceIdentity,
    OperationResult,
    SyncStatus,
    Transaction,
    TransactionCandidate,
    ValidationResult,
)
from moneytalk.services.backup import BackupFileManager
from moneytalk.services.cloud import CloudReconciliationService, DeviceIdentityManager
from moneytalk.services.cloud.google_sheets import GoogleSheetsClient, GoogleSheetsReplica
from moneytalk.services.image import ReceiptImageService
from moneytalk.services.storage import (
    NotFoundError,
    SQLiteTransactionStore,
    StorageError,
    TransactionStoreInterface,
)
from moneytalk.services.storage.sqlite_store import utc_day
from moneytalk.validation import TransactionValidator


logger = structlog.get_logger(__name__)

NO_BACKUP_SELECTED_MESSAGE = "Please select at least one backup to restore"
CLOUD_NOT_CONFIGURED_MESSAGE = "Cloud backup is not configured"


class CaptureFlow:
    """
    Orchestrates recording, reviewing and saving transactions.

    Flow:
    1. Transcribe → audio to text (AI only, no fallback)
    2. Analyze → text or receipt image to a TransactionCandidate
    3. Review → non-blocking checks for the confirmation screen
    4. Confirm → caller hands back the (possibly edited) candidate
    5. Save → store normalizes the sign and assigns an id
    6. Sync → automatic cloud backup when enabled and due
    """

    def __init__(
        self,
        store: TransactionStoreInterface,
        extractor: Optional[TransactionExtractor] = None,
        validator: Optional[TransactionValidator] = None,
        advisor: Optional[SpendingAdvisor] = None,
        image_service: Optional[ReceiptImageService] = None,
        cloud: Optional[CloudReconciliationService] = None,
        identity_manager: Optional[DeviceIdentityManager] = None,
        audit_logger: Optional[AuditLogger] = None,
        default_timezone: Optional[str] = None,
        language: str = "en",
    ):
        self._store = store
        self._extractor = extractor or TransactionExtractor(audit_logger=audit_logger)
        self._validator = validator or TransactionValidator()
        self._advisor = advisor
        self._image_service = image_service
        self._cloud = cloud
        self._identity_manager = identity_manager or DeviceIdentityManager(store)
        self._audit_logger = audit_logger or AuditLogger()
        self._timezone = default_timezone
        self._language = language

    async def transcribe_audio(
        self,
        audio: bytes,
        filename: str = "recording.m4a",
        language: Optional[str] = None,
    ) -> OperationResult:
        """On success data["text"] holds the transcript."""
        try:
            text = await self._extractor.transcribe(
                audio,
                filename=filename,
                language=language or self._language,
            )
        except TranscriptionError as e:
            return OperationResult.failed(e.message, error="transcription_failed")
        return OperationResult.ok("Transcription complete", text=text)

    async def analyze_transcript(
        self,
        text: str,
        timezone: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> TransactionCandidate:
        """Candidate for a spoken or typed sentence. Always returns one."""
        return await self._extractor.extract_text(
            text,
            timezone or self._timezone,
            correlation_id or create_correlation_id(),
        )

    async def analyze_receipt(
        self,
        image: bytes,
        timezone: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> TransactionCandidate:
        """Candidate for a receipt photo. Always returns one."""
        return await self._extractor.extract_image(
            image,
            timezone or self._timezone,
            correlation_id or create_correlation_id(),
        )

    def review_candidate(
        self,
        candidate: TransactionCandidate,
    ) -> tuple[ValidationResult, str]:
        """
        Review checks for the confirmation screen.

        Returns:
            (validation_result, user_message)
        """
        result = self._validator.review(candidate)
        return result, self._validator.get_user_friendly_summary(result)

    async def confirm_and_save(
        self,
        confirmed: Union[TransactionCandidate, Transaction],
        original_text: Optional[str] = None,
        image: Optional[bytes] = None,
        correlation_id: Optional[UUID] = None,
    ) -> OperationResult:
        """
        Save a confirmed candidate (or an already-built transaction).

        CRITICAL: This is called ONLY after explicit user confirmation.

        An empty description falls back to original_text. A receipt image is
        stored first; an image failure never blocks the save.
        """
        correlation_id = correlation_id or create_correlation_id()

        if isinstance(confirmed, TransactionCandidate):
            transaction = confirmed.to_transaction()
        else:
            transaction = confirmed
        if not transaction.description and original_text:
            transaction = transaction.model_copy(update={"description": original_text.strip()})

        if image is not None and self._image_service is not None:
            transaction = await self._attach_image(transaction, image, correlation_id)

        try:
            transaction_id = await self._store.insert(transaction)
        except StorageError as e:
            logger.error("save_failed", error=str(e))
            await self._audit_logger.log_error("save_failed", str(e), correlation_id=correlation_id)
            return OperationResult.failed("Failed to save transaction", error=str(e))

        await self._auto_sync()
        return OperationResult.ok("Transaction saved", id=transaction_id)

    async def _attach_image(
        self,
        transaction: Transaction,
        image: bytes,
        correlation_id: UUID,
    ) -> Transaction:
        try:
            identity = await self._identity_manager.load_or_create()
        except StorageError as e:
            logger.warning("image_skipped_no_identity", error=str(e))
            return transaction

        upload = await self._image_service.upload_receipt(image, str(identity.user_id))
        if upload.error and upload.is_local:
            await self._audit_logger.log_external_service_error(
                "cloudinary", upload.error, correlation_id
            )
        if not upload.success:
            return transaction
        return transaction.model_copy(update={"image_url": upload.url})

    async def update_transaction(self, transaction: Transaction) -> OperationResult:
        try:
            await self._store.update(transaction)
        except NotFoundError:
            return OperationResult.failed("Transaction not found", error="not_found")
        except StorageError as e:
            return OperationResult.failed("Failed to update transaction", error=str(e))

        await self._auto_sync()
        return OperationResult.ok("Transaction updated", id=transaction.id)

    async def delete_transaction(self, transaction_id: int) -> OperationResult:
        try:
            deleted = await self._store.delete(transaction_id)
        except StorageError as e:
            return OperationResult.failed("Failed to delete transaction", error=str(e))
        if not deleted:
            return OperationResult.failed("Transaction not found", error="not_found")

        await self._auto_sync()
        return OperationResult.ok("Transaction deleted", id=transaction_id)

    async def clear_all(self) -> OperationResult:
        try:
            removed = await self._store.clear_all()
        except StorageError as e:
            return OperationResult.failed("Failed to clear transactions", error=str(e))

        await self._auto_sync()
        return OperationResult.ok(f"Cleared {removed} transactions", count=removed)

    async def refresh_suggestion(self, tz: Optional[str] = None) -> OperationResult:
        """Generate a new spending suggestion and mirror it to the cloud."""
        if self._advisor is None:
            return OperationResult.failed(
                "AI suggestions are not configured",
                error="not_configured",
            )

        result = await self._advisor.refresh_suggestion(tz or self._timezone)
        if result.success and self._cloud is not None:
            try:
                identity = await self._identity_manager.load_or_create()
                day = utc_day()
                await self._cloud.backup_ai_suggestion(identity, result.data["suggestion"])
                await self._cloud.sync_daily_refresh_count(
                    identity,
                    day,
                    await self._store.get_daily_refresh_count(day),
                )
            except StorageError as e:
                logger.warning("suggestion_mirror_skipped", error=str(e))
        return result

    async def _auto_sync(self) -> Optional[OperationResult]:
        """Back up to the cloud when auto-sync is on and due. Never raises."""
        if self._cloud is None or not await self._cloud.is_auto_sync_enabled():
            return None
        try:
            identity = await self._identity_manager.load_or_create()
            transactions = await self._store.all()
        except StorageError as e:
            logger.warning("auto_sync_skipped", error=str(e))
            return None

        result = await self._cloud.auto_sync(identity, transactions)
        if not result.success:
            logger.warning("auto_sync_failed", message=result.message)
        return result


class SyncFlow:
    """
    Orchestrates local backups and cloud reconciliation.

    The local store stays authoritative: cloud restore is the only path
    that overwrites local data from the replica, and only when asked.
    """

    def __init__(
        self,
        store: TransactionStoreInterface,
        backup_manager: BackupFileManager,
        cloud: Optional[CloudReconciliationService] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._backups = backup_manager
        self._cloud = cloud
        self._audit_logger = audit_logger or AuditLogger()
        self._identity: Optional[DeviceIdentity] = None

    async def _cloud_identity(self) -> DeviceIdentity:
        """Identity with a remote profile ensured once per flow."""
        if self._identity is None:
            self._identity = await self._cloud.initialize()
        return self._identity

    async def backup_now(self) -> OperationResult:
        if await self._backups.manual_backup():
            return OperationResult.ok("Backup created successfully")
        return OperationResult.failed("Backup failed", error="backup_failed")

    def list_backups(self) -> BackupListing:
        return self._backups.list_backups()

    async def restore_selected(
        self,
        transactions_file: Optional[str] = None,
        settings_file: Optional[str] = None,
    ) -> OperationResult:
        if not transactions_file and not settings_file:
            return OperationResult.failed(NO_BACKUP_SELECTED_MESSAGE, error="nothing_selected")

        if await self._backups.restore_backup(transactions_file, settings_file):
            return OperationResult.ok("Backup restored successfully")
        return OperationResult.failed("Failed to restore backup", error="restore_failed")

    async def cloud_backup(self) -> OperationResult:
        if self._cloud is None:
            return OperationResult.failed(CLOUD_NOT_CONFIGURED_MESSAGE, error="not_configured")
        try:
            identity = await self._cloud_identity()
            transactions = await self._store.all()
        except StorageError as e:
            return OperationResult.failed("Backup failed: local data unavailable", error=str(e))
        return await self._cloud.backup_all(identity, transactions)

    async def cloud_restore(self) -> OperationResult:
        """Replace local transactions with the cloud snapshot, ids preserved."""
        if self._cloud is None:
            return OperationResult.failed(CLOUD_NOT_CONFIGURED_MESSAGE, error="not_configured")
        try:
            identity = await self._cloud_identity()
        except StorageError as e:
            return OperationResult.failed("Restore failed: local data unavailable", error=str(e))

        result, transactions = await self._cloud.restore_all(identity)
        if not result.success:
            return result

        try:
            written = await self._store.replace_all(transactions)
        except StorageError as e:
            logger.error("cloud_restore_write_failed", error=str(e))
            return OperationResult.failed("Failed to write restored transactions", error=str(e))

        _, suggestion = await self._cloud.restore_ai_suggestion(identity)
        if suggestion is not None:
            try:
                await self._store.save_ai_suggestion(suggestion.suggestion, suggestion.timestamp)
            except StorageError as e:
                logger.warning("suggestion_restore_skipped", error=str(e))

        await self._restore_refresh_count(identity)

        return OperationResult.ok(
            f"Successfully restored {written} transactions",
            count=written,
        )

    async def _restore_refresh_count(self, identity: DeviceIdentity) -> None:
        """Adopt today's cloud refresh counter when it is ahead of the local one."""
        day = utc_day()
        remote = await self._cloud.get_daily_refresh_count(identity, day)
        if remote is None:
            return
        try:
            if remote > await self._store.get_daily_refresh_count(day):
                await self._store.set_daily_refresh_count(remote, day)
        except StorageError as e:
            logger.warning("refresh_count_restore_skipped", error=str(e))

    async def toggle_auto_sync(self, enabled: bool) -> OperationResult:
        if self._cloud is None:
            return OperationResult.failed(CLOUD_NOT_CONFIGURED_MESSAGE, error="not_configured")
        try:
            identity = await self._cloud_identity()
        except StorageError as e:
            return OperationResult.failed("Failed to save auto-sync setting", error=str(e))
        return await self._cloud.set_auto_sync_enabled(identity, enabled)

    async def sync_status(self) -> Optional[SyncStatus]:
        if self._cloud is None:
            return None
        try:
            identity = await self._cloud_identity()
        except StorageError as e:
            logger.warning("sync_status_unavailable", error=str(e))
            return None
        return await self._cloud.sync_status(identity)


def create_app_components(
    settings=None,
) -> tuple[CaptureFlow, SyncFlow, SQLiteTransactionStore]:
    """
    Factory function to create all application components.

    Optional services (AI providers, cloud replica, Cloudinary) are left out
    when their configuration is missing. Call `await store.initialize()`
    before using the flows.

    Returns:
        (capture_flow, sync_flow, store)
    """
    settings = settings or get_settings()
    app_settings = settings.app
    storage_settings = settings.storage
    configure_logging(app_settings.debug_mode)
    audit_logger = AuditLogger()

    store = SQLiteTransactionStore(
        data_dir=storage_settings.data_dir,
        legacy_dir=storage_settings.legacy_dir,
        daily_refresh_limit=app_settings.daily_refresh_limit,
        audit_logger=audit_logger,
    )
    identity_manager = DeviceIdentityManager(store)

    providers = build_default_providers(settings)
    extractor = TransactionExtractor(
        providers=providers,
        audit_logger=audit_logger,
        default_timezone=app_settings.timezone,
        max_image_kb=app_settings.max_receipt_image_kb,
    )
    advisor = SpendingAdvisor(providers, store) if providers else None

    cloud = None
    try:
        replica = GoogleSheetsReplica(GoogleSheetsClient(settings.google_sheets))
        cloud = CloudReconciliationService(
            replica,
            store,
            audit_logger=audit_logger,
            auto_sync_interval=timedelta(minutes=app_settings.auto_sync_interval_minutes),
            user_timezone=app_settings.timezone,
            identity_manager=identity_manager,
        )
    except Exception as e:
        logger.info("cloud_not_configured", reason=str(e))

    try:
        cloudinary_settings = settings.cloudinary
    except Exception as e:
        logger.info("cloudinary_not_configured", reason=str(e))
        cloudinary_settings = None
    image_service = ReceiptImageService(
        local_dir=storage_settings.data_dir / "receipts",
        settings=cloudinary_settings,
        max_kb=app_settings.max_receipt_image_kb,
    )

    capture_flow = CaptureFlow(
        store,
        extractor=extractor,
        advisor=advisor,
        image_service=image_service,
        cloud=cloud,
        identity_manager=identity_manager,
        audit_logger=audit_logger,
        default_timezone=app_settings.timezone,
        language=app_settings.language,
    )
    sync_flow = SyncFlow(
        store,
        BackupFileManager(store, audit_logger=audit_logger),
        cloud=cloud,
        audit_logger=audit_logger,
    )

    return capture_flow, sync_flow, store
