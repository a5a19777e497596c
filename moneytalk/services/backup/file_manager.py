"""
Local Backup File Manager

Point-in-time copies of the two live database files, kept in
<data_dir>/backups/ and named after the UTC moment they were taken:

    transactions_backup_2025-01-31T10-15-00.123Z.db
    settings_backup_2025-01-31T10-15-00.123Z.db

CRITICAL: Restores only ever read from the backups directory. A filename
containing a path component is rejected, not resolved.
"""

import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import structlog

from moneytalk.audit import AuditLogger
from moneytalk.models.audit import AuditEventBuilder
from moneytalk.models.transaction import BackupListing
from moneytalk.periods import format_utc, resolve_timezone, utc_now
from moneytalk.services.storage.sqlite_store import SQLiteTransactionStore


logger = structlog.get_logger(__name__)

TRANSACTIONS_PREFIX = "transactions_backup_"
SETTINGS_PREFIX = "settings_backup_"
BACKUP_SUFFIX = ".db"

BACKUP_TIMESTAMP = re.compile(
    r"(\d{4}-\d{2}-\d{2})T(\d{2})-(\d{2})-(\d{2})(?:\.(\d{3}))?Z"
)


def backup_timestamp(now: Optional[datetime] = None) -> str:
    """UTC ISO timestamp made filename-safe (':' becomes '-')."""
    return format_utc(now or utc_now()).replace(":", "-")


def parse_backup_timestamp(filename: str) -> Optional[datetime]:
    match = BACKUP_TIMESTAMP.search(filename)
    if not match:
        return None
    day, hour, minute, second, millis = match.groups()
    try:
        parsed = datetime.strptime(f"{day} {hour}:{minute}:{second}", "%Y-%m-%d %H:%M:%S")
    except ValueError:
        return None
    return parsed.replace(
        microsecond=int(millis or 0) * 1000,
        tzinfo=timezone.utc,
    )


class BackupFileManager:
    """Creates, lists and restores local database backups."""

    def __init__(
        self,
        store: SQLiteTransactionStore,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._audit = audit_logger or AuditLogger()

    @property
    def backups_dir(self) -> Path:
        return self._store.backups_dir

    async def manual_backup(self, now: Optional[datetime] = None) -> bool:
        """Copy both live databases into the backups directory. Never raises."""
        stamp = backup_timestamp(now)
        targets = [
            (self._store.transactions_path, f"{TRANSACTIONS_PREFIX}{stamp}{BACKUP_SUFFIX}"),
            (self._store.settings_path, f"{SETTINGS_PREFIX}{stamp}{BACKUP_SUFFIX}"),
        ]

        try:
            self.backups_dir.mkdir(parents=True, exist_ok=True)
            # Release handles so the copies see fully written files
            self._store.dispose()

            written = []
            for source, name in targets:
                if not source.exists():
                    logger.warning("backup_source_missing", path=str(source))
                    continue
                shutil.copy2(source, self.backups_dir / name)
                written.append(name)
        except OSError as e:
            logger.error("manual_backup_failed", error=str(e))
            await self._audit.log(AuditEventBuilder.local_backup_failed(str(e)))
            return False

        if not written:
            await self._audit.log(
                AuditEventBuilder.local_backup_failed("No database files to back up")
            )
            return False

        await self._audit.log(AuditEventBuilder.local_backup_created(written))
        return True

    def _list(self, prefix: str) -> list[str]:
        if not self.backups_dir.is_dir():
            return []
        names = [
            path.name
            for path in self.backups_dir.glob(f"{prefix}*{BACKUP_SUFFIX}")
            if path.is_file()
        ]

        def sort_key(name: str):
            parsed = parse_backup_timestamp(name)
            return (parsed is not None, parsed or datetime.min.replace(tzinfo=timezone.utc), name)

        return sorted(names, key=sort_key, reverse=True)

    def list_backups(self) -> BackupListing:
        """Backup filenames per database, newest first."""
        return BackupListing(
            transactions=self._list(TRANSACTIONS_PREFIX),
            settings=self._list(SETTINGS_PREFIX),
        )

    def _resolve(self, filename: str, prefix: str) -> Optional[Path]:
        """Path of a backup inside the backups directory, or None."""
        if not filename or Path(filename).name != filename:
            logger.warning("backup_name_rejected", filename=filename)
            return None
        if not (filename.startswith(prefix) and filename.endswith(BACKUP_SUFFIX)):
            logger.warning("backup_name_rejected", filename=filename)
            return None

        path = self.backups_dir / filename
        if not path.is_file():
            logger.warning("backup_not_found", filename=filename)
            return None
        return path

    async def restore_backup(
        self,
        transactions_file: Optional[str] = None,
        settings_file: Optional[str] = None,
    ) -> bool:
        """
        Copy the selected backups over the live database files.

        Every selected name is checked before anything is overwritten, so a
        bad selection leaves both databases untouched.
        """
        selected = []
        if transactions_file:
            selected.append((transactions_file, TRANSACTIONS_PREFIX, self._store.transactions_path))
        if settings_file:
            selected.append((settings_file, SETTINGS_PREFIX, self._store.settings_path))
        if not selected:
            return False

        plan = []
        for filename, prefix, target in selected:
            source = self._resolve(filename, prefix)
            if source is None:
                return False
            plan.append((source, target))

        try:
            self._store.dispose()
            for source, target in plan:
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, target)
        except OSError as e:
            logger.error("restore_backup_failed", error=str(e))
            await self._audit.log_error("restore_backup_failed", str(e))
            return False

        await self._audit.log(
            AuditEventBuilder.local_backup_restored([source.name for source, _ in plan])
        )
        return True

    def describe_backup(self, filename: str, tz: Optional[str] = None) -> str:
        """Human-readable local time of a backup, or the filename when it has none."""
        parsed = parse_backup_timestamp(filename)
        if parsed is None:
            return filename
        local = parsed.astimezone(resolve_timezone(tz))
        return local.strftime("%Y-%m-%d %H:%M:%S %Z").strip()
