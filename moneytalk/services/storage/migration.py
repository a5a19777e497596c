"""
Legacy database migration.

Older builds kept their databases in a different directory. On startup
the rows are copied into the current data directory.

RULES:
- Legacy files are opened read-only and never modified or deleted
- A table is copied only when its new counterpart is empty
- Ids are preserved
- Once a run completes, a marker in the settings table stops later runs,
  so clearing data in the new location never re-imports the old rows

A failed copy rolls back the target and leaves no marker; the next
startup tries again.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import structlog
from sqlalchemy import MetaData, create_engine, func, insert, inspect, select
from sqlalchemy.exc import SQLAlchemyError

from moneytalk.periods.resolver import format_utc, utc_now
from moneytalk.services.storage.schema import (
    SETTINGS_DB,
    SETTINGS_METADATA,
    TRANSACTIONS_DB,
    TRANSACTIONS_METADATA,
    create_schema,
    read_only_sqlite_url,
    settings_table,
    sqlite_url,
)


logger = structlog.get_logger(__name__)


MIGRATION_MARKER_KEY = "legacy_migrated_at"

LEGACY_FILES = [
    (TRANSACTIONS_DB, TRANSACTIONS_METADATA),
    (SETTINGS_DB, SETTINGS_METADATA),
]


@dataclass
class MigrationReport:
    """What a migration run did."""

    skipped: bool = False
    copied: dict[str, int] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def total_rows(self) -> int:
        return sum(self.copied.values())


def _clean_row(table, row: dict) -> dict:
    if table.name == "transactions" and row.get("description") is None:
        row["description"] = ""
    return row


def copy_database(source: Path, target: Path, metadata: MetaData) -> int:
    """
    Copy rows from a legacy file into the target file.

    Tables already holding rows in the target are left alone.

    Returns:
        Number of rows copied

    Raises:
        SQLAlchemyError: If either file cannot be read or written
    """
    source_engine = create_engine(read_only_sqlite_url(source))
    target_engine = create_engine(sqlite_url(target))
    copied = 0

    try:
        create_schema(target_engine, metadata)

        with source_engine.connect() as src, target_engine.begin() as dst:
            source_inspector = inspect(src)

            for table in metadata.sorted_tables:
                if not source_inspector.has_table(table.name):
                    continue

                existing = dst.execute(
                    select(func.count()).select_from(table)
                ).scalar_one()
                if existing:
                    logger.info("migration_table_not_empty", table=table.name)
                    continue

                source_columns = {
                    column["name"] for column in source_inspector.get_columns(table.name)
                }
                columns = [column for column in table.columns if column.name in source_columns]
                if not columns:
                    continue

                rows = [
                    _clean_row(table, dict(row._mapping))
                    for row in src.execute(select(*columns))
                ]
                if rows:
                    dst.execute(insert(table), rows)
                    copied += len(rows)
    finally:
        source_engine.dispose()
        target_engine.dispose()

    return copied


def _marker_engine(data_dir: Path):
    engine = create_engine(sqlite_url(data_dir / SETTINGS_DB))
    create_schema(engine, SETTINGS_METADATA)
    return engine


def migrate_legacy_databases(
    legacy_dir: Optional[Path],
    data_dir: Path,
) -> MigrationReport:
    """
    Copy legacy databases into data_dir once.

    Never raises; failures are reported in MigrationReport.errors.
    """
    report = MigrationReport()

    if legacy_dir is None or not legacy_dir.exists():
        return report
    if legacy_dir.resolve() == data_dir.resolve():
        return report

    sources = [
        (legacy_dir / filename, data_dir / filename, metadata)
        for filename, metadata in LEGACY_FILES
        if (legacy_dir / filename).is_file()
    ]
    if not sources:
        return report

    try:
        engine = _marker_engine(data_dir)
        try:
            with engine.connect() as conn:
                marker = conn.execute(
                    select(settings_table.c.value).where(
                        settings_table.c.key == MIGRATION_MARKER_KEY
                    )
                ).scalar_one_or_none()
        finally:
            engine.dispose()
    except SQLAlchemyError as e:
        report.errors[SETTINGS_DB] = str(e)
        logger.error("migration_marker_unreadable", error=str(e))
        return report

    if marker is not None:
        report.skipped = True
        return report

    for source, target, metadata in sources:
        try:
            report.copied[source.name] = copy_database(source, target, metadata)
        except SQLAlchemyError as e:
            report.errors[source.name] = str(e)
            logger.error("legacy_migration_failed", source=str(source), error=str(e))

    if report.errors:
        return report

    try:
        engine = _marker_engine(data_dir)
        try:
            with engine.begin() as conn:
                conn.execute(insert(settings_table).values(
                    key=MIGRATION_MARKER_KEY,
                    value=format_utc(utc_now()),
                ))
        finally:
            engine.dispose()
    except SQLAlchemyError as e:
        report.errors[SETTINGS_DB] = str(e)
        logger.error("migration_marker_unwritable", error=str(e))
        return report

    logger.info("legacy_migration_completed", copied=report.copied)

    return report
