"""
SQLite Transaction Store

Implementation of TransactionStoreInterface on two local SQLite files,
accessed through SQLAlchemy Core.

DESIGN DECISION: The store normalizes amount signs on every write.
Callers (voice capture, manual edit, cloud restore) may hand in either
sign; a persisted expense is always negative and a persisted income
always positive. Aggregations use ABS so that rows written by older
builds with the "wrong" sign still add up correctly.

MONEY:
The amount column is a float. Every amount read back, single rows and
sums alike, is quantized to cents so binary rounding never reaches the
Decimal values callers see.

RECOVERY:
If a database file cannot be opened, it is moved aside to
"<name>.corrupt-<timestamp>" and recreated once. A second failure
leaves the store not ready and raises DatabaseUnavailableError.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Any, Optional, Union

import structlog
from sqlalchemy import (
    MetaData,
    case,
    create_engine,
    delete,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from moneytalk.audit import AuditLogger
from moneytalk.models.audit import AuditEventBuilder
from moneytalk.models.transaction import (
    AISuggestion,
    Balance,
    CategoryTotal,
    Period,
    Transaction,
    TransactionType,
    coerce_category,
    coerce_type,
)
from moneytalk.periods.resolver import (
    format_utc,
    parse_stored_date,
    window_start,
)
from moneytalk.services.storage.interface import (
    DatabaseUnavailableError,
    NotFoundError,
    StorageError,
    TransactionStoreInterface,
)
from moneytalk.services.storage.migration import migrate_legacy_databases
from moneytalk.services.storage.schema import (
    SETTINGS_DB,
    SETTINGS_METADATA,
    TRANSACTIONS_DB,
    TRANSACTIONS_METADATA,
    ai_suggestions_table,
    create_schema,
    daily_refresh_count_table,
    settings_table,
    sqlite_url,
    transactions_table,
)


logger = structlog.get_logger(__name__)

CENTS = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """A float column value (or SQL sum) as a Decimal at currency precision."""
    return Decimal(str(value or 0)).quantize(CENTS, rounding=ROUND_HALF_UP)


def utc_day(now: Optional[datetime] = None) -> str:
    """UTC calendar day as YYYY-MM-DD."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y-%m-%d")


def epoch_millis(now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    return int(now.timestamp() * 1000)


class SQLiteTransactionStore(TransactionStoreInterface):
    """
    Local store on transactions.db and settings.db.

    All public methods are async to match the interface; the SQLite work
    itself runs synchronously.
    """

    def __init__(
        self,
        data_dir: Path,
        legacy_dir: Optional[Path] = None,
        daily_refresh_limit: int = 3,
        audit_logger: Optional[AuditLogger] = None,
    ):
        """
        Initialize the store.

        Args:
            data_dir: Directory holding the live database files
            legacy_dir: Directory older builds used (migration source)
            daily_refresh_limit: AI suggestion refreshes allowed per UTC day
            audit_logger: Audit sink (a local-only logger if None)
        """
        self._data_dir = Path(data_dir)
        self._legacy_dir = Path(legacy_dir) if legacy_dir else None
        self._daily_refresh_limit = daily_refresh_limit
        self._audit = audit_logger or AuditLogger()

        self._transactions_engine: Optional[Engine] = None
        self._settings_engine: Optional[Engine] = None
        self._ready = False

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    @property
    def transactions_path(self) -> Path:
        return self._data_dir / TRANSACTIONS_DB

    @property
    def settings_path(self) -> Path:
        return self._data_dir / SETTINGS_DB

    @property
    def backups_dir(self) -> Path:
        return self._data_dir / "backups"

    async def initialize(self) -> None:
        """
        Create directories, migrate legacy files, open both databases
        and normalize rows written by older builds.

        Raises:
            DatabaseUnavailableError: If a database cannot be opened or recreated
        """
        self._ready = False
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            self.backups_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DatabaseUnavailableError(f"Cannot create data directory: {e}")

        report = migrate_legacy_databases(self._legacy_dir, self._data_dir)
        if report.total_rows:
            await self._audit.log(AuditEventBuilder.database_migrated(
                str(self._legacy_dir), report.total_rows
            ))
        for filename, error in report.errors.items():
            await self._audit.log_error(
                "legacy_migration_failed", error, details={"file": filename}
            )

        self._transactions_engine = await self._open_database(
            TRANSACTIONS_DB, TRANSACTIONS_METADATA
        )
        self._settings_engine = await self._open_database(
            SETTINGS_DB, SETTINGS_METADATA
        )

        try:
            fixed = self._normalize_rows()
        except SQLAlchemyError as e:
            raise DatabaseUnavailableError(f"Cannot normalize transactions: {e}")
        if fixed:
            logger.info("legacy_rows_normalized", rows=fixed)

        self._ready = True
        logger.info("store_initialized", data_dir=str(self._data_dir))

    async def _open_database(self, filename: str, metadata: MetaData) -> Engine:
        path = self._data_dir / filename
        engine = create_engine(sqlite_url(path))
        try:
            create_schema(engine, metadata)
            return engine
        except SQLAlchemyError as e:
            engine.dispose()
            logger.error("database_unusable", file=str(path), error=str(e))

        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        moved_to = path.with_name(f"{path.name}.corrupt-{stamp}")
        try:
            if path.exists():
                path.replace(moved_to)
        except OSError as e:
            raise DatabaseUnavailableError(f"Cannot move aside {path.name}: {e}")

        engine = create_engine(sqlite_url(path))
        try:
            create_schema(engine, metadata)
        except SQLAlchemyError as e:
            engine.dispose()
            raise DatabaseUnavailableError(f"Cannot recreate {path.name}: {e}")

        await self._audit.log(AuditEventBuilder.database_recovered(filename, str(moved_to)))
        return engine

    def _normalize_rows(self) -> int:
        """Fix signs and date formats of rows written by older builds."""
        table = transactions_table
        fixed = 0

        with self._transactions_engine.begin() as conn:
            result = conn.execute(
                update(table)
                .where(table.c.type == TransactionType.EXPENSE.value, table.c.amount > 0)
                .values(amount=-table.c.amount)
            )
            fixed += result.rowcount or 0

            result = conn.execute(
                update(table)
                .where(table.c.type == TransactionType.INCOME.value, table.c.amount < 0)
                .values(amount=-table.c.amount)
            )
            fixed += result.rowcount or 0

            # Canonical dates are exactly 24 characters and end in Z
            rows = conn.execute(
                select(table.c.id, table.c.date).where(
                    (func.length(table.c.date) != 24) | (table.c.date.not_like("%Z"))
                )
            ).all()
            for row_id, raw_date in rows:
                parsed = parse_stored_date(raw_date)
                if parsed is None:
                    continue
                conn.execute(
                    update(table).where(table.c.id == row_id).values(date=format_utc(parsed))
                )
                fixed += 1

        return fixed

    def dispose(self) -> None:
        for engine in (self._transactions_engine, self._settings_engine):
            if engine is not None:
                engine.dispose()

    def _transactions(self) -> Engine:
        if not self._ready or self._transactions_engine is None:
            raise DatabaseUnavailableError("Transaction database is not initialized")
        return self._transactions_engine

    def _settings(self) -> Engine:
        if not self._ready or self._settings_engine is None:
            raise DatabaseUnavailableError("Settings database is not initialized")
        return self._settings_engine

    # -------------------------------------------------------------------------
    # Row conversion
    # -------------------------------------------------------------------------

    @staticmethod
    def _to_row(transaction: Transaction) -> dict[str, Any]:
        normalized = transaction.with_normalized_sign()
        return {
            "amount": float(normalized.amount),
            "category": normalized.category.value,
            "type": normalized.type.value,
            "description": normalized.description or "",
            "date": format_utc(normalized.date),
            "image_url": normalized.image_url,
        }

    @staticmethod
    def _from_row(row: Any) -> Optional[Transaction]:
        """Build a Transaction, or None (logged) for rows that cannot be read."""
        mapping = row._mapping
        parsed_date = parse_stored_date(mapping["date"])
        if parsed_date is None:
            logger.warning("transaction_row_skipped", id=mapping["id"], reason="date")
            return None

        transaction_type = coerce_type(mapping["type"])
        if transaction_type is None:
            logger.warning("transaction_row_skipped", id=mapping["id"], reason="type")
            return None

        return Transaction(
            id=mapping["id"],
            amount=to_money(mapping["amount"]),
            category=coerce_category(mapping["category"]),
            type=transaction_type,
            description=mapping["description"],
            date=parsed_date,
            image_url=mapping["image_url"],
        )

    def _select_transactions(self, statement) -> list[Transaction]:
        with self._transactions().connect() as conn:
            rows = conn.execute(statement).all()
        return [tx for tx in (self._from_row(row) for row in rows) if tx is not None]

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def insert(self, transaction: Transaction) -> int:
        try:
            with self._transactions().begin() as conn:
                result = conn.execute(insert(transactions_table).values(**self._to_row(transaction)))
                new_id = result.inserted_primary_key[0]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to save transaction: {e}")

        await self._audit.log(AuditEventBuilder.transaction_saved(
            new_id,
            transaction.category.value,
            str(transaction.signed_amount),
        ))
        return new_id

    async def update(self, transaction: Transaction) -> None:
        if not transaction.id:
            raise NotFoundError("Transaction id is required for update")

        try:
            with self._transactions().begin() as conn:
                result = conn.execute(
                    update(transactions_table)
                    .where(transactions_table.c.id == transaction.id)
                    .values(**self._to_row(transaction))
                )
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to update transaction: {e}")

        if result.rowcount == 0:
            raise NotFoundError(f"Transaction not found: {transaction.id}")

        await self._audit.log(AuditEventBuilder.transaction_updated(transaction.id))

    async def get(self, transaction_id: int) -> Optional[Transaction]:
        try:
            found = self._select_transactions(
                select(transactions_table).where(transactions_table.c.id == transaction_id)
            )
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to get transaction: {e}")
        return found[0] if found else None

    async def recent(self, limit: int = 10) -> list[Transaction]:
        try:
            return self._select_transactions(
                select(transactions_table)
                .order_by(transactions_table.c.date.desc(), transactions_table.c.id.desc())
                .limit(limit)
            )
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list recent transactions: {e}")

    async def all(self) -> list[Transaction]:
        try:
            return self._select_transactions(
                select(transactions_table)
                .order_by(transactions_table.c.date.desc(), transactions_table.c.id.desc())
            )
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list transactions: {e}")

    async def by_period(
        self,
        period: Union[Period, str],
        tz: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> list[Transaction]:
        statement = select(transactions_table).order_by(
            transactions_table.c.date.desc(), transactions_table.c.id.desc()
        )
        start = window_start(period, tz, now)
        if start is not None:
            statement = statement.where(transactions_table.c.date >= format_utc(start))

        try:
            return self._select_transactions(statement)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list transactions by period: {e}")

    async def by_category(
        self,
        period: Union[Period, str],
        tz: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> list[CategoryTotal]:
        total = func.sum(func.abs(transactions_table.c.amount))
        statement = (
            select(transactions_table.c.category, total.label("total"))
            .where(transactions_table.c.type == TransactionType.EXPENSE.value)
            .group_by(transactions_table.c.category)
        )
        start = window_start(period, tz, now)
        if start is not None:
            statement = statement.where(transactions_table.c.date >= format_utc(start))

        try:
            with self._transactions().connect() as conn:
                rows = conn.execute(statement).all()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to total transactions by category: {e}")

        # Unknown legacy categories collapse into Other
        totals: dict = {}
        for raw_category, amount in rows:
            category = coerce_category(raw_category)
            totals[category] = totals.get(category, Decimal("0")) + to_money(amount)

        ordered = sorted(totals.items(), key=lambda item: item[1], reverse=True)
        return [CategoryTotal(category=category, amount=amount) for category, amount in ordered]

    async def balance(self) -> Balance:
        magnitude = func.abs(transactions_table.c.amount)
        statement = select(
            func.coalesce(func.sum(case(
                (transactions_table.c.type == TransactionType.INCOME.value, magnitude),
                else_=0,
            )), 0),
            func.coalesce(func.sum(case(
                (transactions_table.c.type == TransactionType.EXPENSE.value, magnitude),
                else_=0,
            )), 0),
        )

        try:
            with self._transactions().connect() as conn:
                income, expenses = conn.execute(statement).one()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to compute balance: {e}")

        return Balance(income=to_money(income), expenses=to_money(expenses))

    async def delete(self, transaction_id: int) -> bool:
        try:
            with self._transactions().begin() as conn:
                result = conn.execute(
                    delete(transactions_table).where(transactions_table.c.id == transaction_id)
                )
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to delete transaction: {e}")

        deleted = result.rowcount > 0
        if deleted:
            await self._audit.log(AuditEventBuilder.transaction_deleted(transaction_id))
        return deleted

    async def clear_all(self) -> int:
        try:
            with self._transactions().begin() as conn:
                result = conn.execute(delete(transactions_table))
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to clear transactions: {e}")

        removed = result.rowcount or 0
        await self._audit.log(AuditEventBuilder.transactions_cleared(removed))
        return removed

    async def replace_all(self, transactions: list[Transaction]) -> int:
        rows = []
        for transaction in transactions:
            row = self._to_row(transaction)
            if transaction.id:
                row["id"] = transaction.id
            rows.append(row)

        try:
            with self._transactions().begin() as conn:
                conn.execute(delete(transactions_table))
                # Rows with and without ids need separate statements
                with_ids = [row for row in rows if "id" in row]
                without_ids = [row for row in rows if "id" not in row]
                if with_ids:
                    conn.execute(insert(transactions_table), with_ids)
                if without_ids:
                    conn.execute(insert(transactions_table), without_ids)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to replace transactions: {e}")

        return len(rows)

    async def count(self) -> int:
        try:
            with self._transactions().connect() as conn:
                return conn.execute(
                    select(func.count()).select_from(transactions_table)
                ).scalar_one()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to count transactions: {e}")

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    async def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        try:
            with self._settings().connect() as conn:
                value = conn.execute(
                    select(settings_table.c.value).where(settings_table.c.key == key)
                ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read setting {key}: {e}")
        return default if value is None else value

    async def set_setting(self, key: str, value: str) -> None:
        try:
            with self._settings().begin() as conn:
                result = conn.execute(
                    update(settings_table)
                    .where(settings_table.c.key == key)
                    .values(value=value)
                )
                if result.rowcount == 0:
                    conn.execute(insert(settings_table).values(key=key, value=value))
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to write setting {key}: {e}")

    async def delete_setting(self, key: str) -> None:
        try:
            with self._settings().begin() as conn:
                conn.execute(delete(settings_table).where(settings_table.c.key == key))
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to delete setting {key}: {e}")

    async def settings_count(self) -> int:
        try:
            with self._settings().connect() as conn:
                return conn.execute(
                    select(func.count()).select_from(settings_table)
                ).scalar_one()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to count settings: {e}")

    # -------------------------------------------------------------------------
    # AI suggestion cache
    # -------------------------------------------------------------------------

    async def save_ai_suggestion(
        self,
        suggestion: str,
        timestamp: Optional[int] = None,
    ) -> AISuggestion:
        cached = AISuggestion(
            suggestion=suggestion,
            timestamp=timestamp if timestamp is not None else epoch_millis(),
        )
        try:
            with self._settings().begin() as conn:
                conn.execute(delete(ai_suggestions_table))
                conn.execute(insert(ai_suggestions_table).values(
                    suggestion=cached.suggestion,
                    timestamp=cached.timestamp,
                    created_at=format_utc(datetime.now(timezone.utc)),
                ))
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to save AI suggestion: {e}")
        return cached

    async def get_ai_suggestion(self) -> Optional[AISuggestion]:
        try:
            with self._settings().connect() as conn:
                row = conn.execute(
                    select(ai_suggestions_table.c.suggestion, ai_suggestions_table.c.timestamp)
                    .order_by(ai_suggestions_table.c.timestamp.desc())
                    .limit(1)
                ).first()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read AI suggestion: {e}")

        if row is None:
            return None
        return AISuggestion(suggestion=row.suggestion, timestamp=row.timestamp)

    async def clear_ai_suggestion(self) -> None:
        try:
            with self._settings().begin() as conn:
                conn.execute(delete(ai_suggestions_table))
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to clear AI suggestion: {e}")

    # -------------------------------------------------------------------------
    # Daily refresh counter
    # -------------------------------------------------------------------------

    async def get_daily_refresh_count(self, day: Optional[str] = None) -> int:
        day = day or utc_day()
        try:
            with self._settings().connect() as conn:
                value = conn.execute(
                    select(daily_refresh_count_table.c.count)
                    .where(daily_refresh_count_table.c.date == day)
                ).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read refresh count: {e}")
        return value or 0

    async def increment_daily_refresh_count(self, day: Optional[str] = None) -> int:
        day = day or utc_day()
        table = daily_refresh_count_table
        try:
            with self._settings().begin() as conn:
                result = conn.execute(
                    update(table).where(table.c.date == day).values(count=table.c.count + 1)
                )
                if result.rowcount == 0:
                    conn.execute(insert(table).values(
                        date=day,
                        count=1,
                        created_at=format_utc(datetime.now(timezone.utc)),
                    ))
                return conn.execute(
                    select(table.c.count).where(table.c.date == day)
                ).scalar_one()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to increment refresh count: {e}")

    async def set_daily_refresh_count(self, count: int, day: Optional[str] = None) -> None:
        """Overwrite a day's counter (used when restoring from the cloud)."""
        day = day or utc_day()
        table = daily_refresh_count_table
        try:
            with self._settings().begin() as conn:
                result = conn.execute(
                    update(table).where(table.c.date == day).values(count=count)
                )
                if result.rowcount == 0:
                    conn.execute(insert(table).values(
                        date=day,
                        count=count,
                        created_at=format_utc(datetime.now(timezone.utc)),
                    ))
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to write refresh count: {e}")

    async def remaining_refreshes(self, day: Optional[str] = None) -> int:
        used = await self.get_daily_refresh_count(day)
        return max(0, self._daily_refresh_limit - used)

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    async def database_info(self) -> dict:
        info = {
            "data_dir": str(self._data_dir),
            "transactions_path": str(self.transactions_path),
            "settings_path": str(self.settings_path),
            "backups_dir": str(self.backups_dir),
            "is_ready": self._ready,
            "transactions_exists": self.transactions_path.exists(),
            "settings_exists": self.settings_path.exists(),
        }
        if self._ready:
            info["transaction_count"] = await self.count()
            info["settings_count"] = await self.settings_count()
        return info
