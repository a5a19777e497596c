"""
Local SQLite schema.

Two database files live in the data directory:
- transactions.db: the transactions table
- settings.db: key/value settings, the AI suggestion cache and the
  per-day refresh counter

Dates are stored as fixed-width UTC strings (see periods.format_utc).
"""

from pathlib import Path

from sqlalchemy import (
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    inspect,
    text,
)
from sqlalchemy.engine import Engine


TRANSACTIONS_DB = "transactions.db"
SETTINGS_DB = "settings.db"


TRANSACTIONS_METADATA = MetaData()

transactions_table = Table(
    "transactions",
    TRANSACTIONS_METADATA,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("amount", Float, nullable=False),
    Column("category", String, nullable=False),
    Column("type", String, nullable=False),
    Column("description", String, nullable=False, server_default=""),
    Column("date", String, nullable=False),
    Column("image_url", String, nullable=True),
    sqlite_autoincrement=True,
)


SETTINGS_METADATA = MetaData()

settings_table = Table(
    "settings",
    SETTINGS_METADATA,
    Column("key", String, primary_key=True),
    Column("value", String, nullable=True),
)

ai_suggestions_table = Table(
    "ai_suggestions",
    SETTINGS_METADATA,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("suggestion", String, nullable=False),
    Column("timestamp", Integer, nullable=False),
    Column("created_at", String, nullable=True),
)

daily_refresh_count_table = Table(
    "daily_refresh_count",
    SETTINGS_METADATA,
    Column("date", String, primary_key=True),
    Column("count", Integer, nullable=False, server_default="0"),
    Column("created_at", String, nullable=True),
)


# Columns added after the first release: (table, column, DDL type)
ADDED_COLUMNS = [
    ("transactions", "image_url", "TEXT"),
]


def sqlite_url(path: Path) -> str:
    return f"sqlite:///{path}"


def read_only_sqlite_url(path: Path) -> str:
    """URL that opens an existing file without ever writing to it."""
    return f"sqlite:///file:{path}?mode=ro&uri=true"


def create_schema(engine: Engine, metadata: MetaData) -> None:
    """
    Create missing tables and add columns missing from older files.

    Raises:
        sqlalchemy.exc.SQLAlchemyError: If the file is not a usable database
    """
    metadata.create_all(engine)

    existing_tables = set(metadata.tables)
    with engine.begin() as conn:
        inspector = inspect(conn)
        for table_name, column_name, ddl_type in ADDED_COLUMNS:
            if table_name not in existing_tables:
                continue
            columns = {column["name"] for column in inspector.get_columns(table_name)}
            if column_name not in columns:
                conn.execute(text(
                    f"ALTER TABLE {table_name} ADD COLUMN {column_name} {ddl_type}"
                ))
