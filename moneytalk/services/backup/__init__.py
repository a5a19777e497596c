"""Local database backup package."""

from moneytalk.services.backup.file_manager import (
    BackupFileManager,
    backup_timestamp,
    parse_backup_timestamp,
)

__all__ = [
    "BackupFileManager",
    "backup_timestamp",
    "parse_backup_timestamp",
]
