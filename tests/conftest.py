import asyncio

import pytest

from moneytalk.audit import AuditLogger
from moneytalk.services.storage import SQLiteTransactionStore


@pytest.fixture
def audit_logger():
    return AuditLogger(keep_history=True)


@pytest.fixture
def store(tmp_path, audit_logger):
    """An initialized store in a temporary data directory."""
    store = SQLiteTransactionStore(tmp_path / "data", audit_logger=audit_logger)
    asyncio.run(store.initialize())
    yield store
    store.dispose()
