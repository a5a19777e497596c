"""Tests for device identity and cloud reconciliation."""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID

import pytest

from fakes import InMemoryReplica
from moneytalk.models.audit import AuditEventType
from moneytalk.models.transaction import (
    AISuggestion,
    Transaction,
    TransactionCategory,
    TransactionType,
)
from moneytalk.services.cloud import (
    AUTO_SYNC_ENABLED_KEY,
    DEVICE_USER_ID_KEY,
    LAST_CLOUD_SYNC_KEY,
    CloudReconciliationService,
    DeviceIdentityManager,
)


NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)


def make_transactions():
    return [
        Transaction(
            id=1,
            amount=Decimal("50"),
            category=TransactionCategory.GROCERIES,
            type=TransactionType.EXPENSE,
            description="market",
            date=NOW - timedelta(days=2),
        ),
        Transaction(
            id=2,
            amount=Decimal("1000"),
            category=TransactionCategory.SALARY,
            type=TransactionType.INCOME,
            date=NOW - timedelta(days=1),
        ),
    ]


@pytest.fixture
def replica():
    return InMemoryReplica()


@pytest.fixture
def cloud(replica, store, audit_logger):
    return CloudReconciliationService(replica, store, audit_logger=audit_logger)


@pytest.fixture
def identity(cloud):
    return asyncio.run(cloud.initialize())


class TestDeviceIdentity:
    """Tests for creating and reusing the device id."""

    def test_created_once_and_persisted(self, store):
        manager = DeviceIdentityManager(store)
        first = asyncio.run(manager.load_or_create())

        assert asyncio.run(store.get_setting(DEVICE_USER_ID_KEY)) == str(first.user_id)
        again = asyncio.run(DeviceIdentityManager(store).load_or_create())
        assert again.user_id == first.user_id

    def test_legacy_id_replaced(self, store):
        asyncio.run(store.set_setting(DEVICE_USER_ID_KEY, "device_1699999999"))
        identity = asyncio.run(DeviceIdentityManager(store).load_or_create())

        assert isinstance(identity.user_id, UUID)
        assert asyncio.run(store.get_setting(DEVICE_USER_ID_KEY)) == str(identity.user_id)

    def test_garbage_id_replaced(self, store):
        asyncio.run(store.set_setting(DEVICE_USER_ID_KEY, "not-a-uuid"))
        identity = asyncio.run(DeviceIdentityManager(store).load_or_create())
        assert str(identity.user_id) != "not-a-uuid"


class TestInitialize:
    """Tests for remote profile creation."""

    def test_profile_created(self, cloud, replica):
        identity = asyncio.run(cloud.initialize())
        profiles = replica.tables["user_profiles"]
        assert [row["user_id"] for row in profiles] == [str(identity.user_id)]

    def test_profile_not_duplicated(self, cloud, replica):
        asyncio.run(cloud.initialize())
        asyncio.run(cloud.initialize())
        assert len(replica.tables["user_profiles"]) == 1

    def test_unreachable_replica_still_returns_identity(self, cloud, replica):
        replica.fail_on.add("select")
        identity = asyncio.run(cloud.initialize())
        assert identity.user_id is not None


class TestBackupAndRestore:
    """Tests for full-replace backup and restore."""

    def test_backup_replaces_remote_rows(self, cloud, replica, identity, store):
        asyncio.run(cloud.backup_all(identity, make_transactions(), now=NOW))
        result = asyncio.run(cloud.backup_all(identity, make_transactions()[:1], now=NOW))

        assert result.success
        assert result.message == "Successfully backed up 1 transactions"
        rows = replica.tables["transactions"]
        assert len(rows) == 1
        assert rows[0]["amount"] == "-50"
        assert rows[0]["user_id"] == str(identity.user_id)
        assert asyncio.run(store.get_setting(LAST_CLOUD_SYNC_KEY)) == "2025-03-15T12:00:00.000Z"

    def test_backup_leaves_other_devices_alone(self, cloud, replica, identity):
        replica.tables["transactions"].append({"user_id": "someone-else", "id": "1"})
        asyncio.run(cloud.backup_all(identity, make_transactions(), now=NOW))
        others = [row for row in replica.tables["transactions"] if row["user_id"] == "someone-else"]
        assert len(others) == 1

    def test_backup_updates_profile_last_sync(self, cloud, replica, identity):
        asyncio.run(cloud.backup_all(identity, [], now=NOW))
        assert replica.tables["user_profiles"][0]["last_sync"] == "2025-03-15T12:00:00.000Z"

    def test_backup_failure_is_reported(self, cloud, replica, identity, audit_logger, store):
        replica.fail_on.add("insert")
        result = asyncio.run(cloud.backup_all(identity, make_transactions(), now=NOW))

        assert not result.success
        assert result.message.startswith("Backup failed:")
        assert audit_logger.events_of_type(AuditEventType.CLOUD_BACKUP_FAILED)
        assert asyncio.run(store.get_setting(LAST_CLOUD_SYNC_KEY)) is None

    def test_restore_newest_first_with_normalized_signs(self, cloud, identity):
        asyncio.run(cloud.backup_all(identity, make_transactions(), now=NOW))
        result, transactions = asyncio.run(cloud.restore_all(identity))

        assert result.success
        assert result.message == "Successfully restored 2 transactions"
        assert [tx.id for tx in transactions] == [2, 1]
        assert transactions[1].amount == Decimal("-50")
        assert transactions[1].description == "market"

    def test_restore_skips_unreadable_rows(self, cloud, replica, identity):
        replica.tables["transactions"].append({
            "user_id": str(identity.user_id),
            "id": "9",
            "amount": "10",
            "type": "transfer",
            "date": "2025-03-01T00:00:00.000Z",
        })
        result, transactions = asyncio.run(cloud.restore_all(identity))
        assert result.success
        assert transactions == []

    def test_restore_failure(self, cloud, replica, identity):
        replica.fail_on.add("select")
        result, transactions = asyncio.run(cloud.restore_all(identity))
        assert not result.success
        assert transactions == []


class TestAutoSync:
    """Tests for the hourly automatic sync."""

    def test_first_sync_runs(self, cloud, replica, identity):
        result = asyncio.run(cloud.auto_sync(identity, make_transactions(), now=NOW))
        assert result.success
        assert result.data["count"] == 2
        assert len(replica.tables["transactions"]) == 2

    def test_recent_sync_skipped(self, cloud, replica, identity, audit_logger):
        asyncio.run(cloud.auto_sync(identity, make_transactions(), now=NOW))
        result = asyncio.run(cloud.auto_sync(
            identity, [], now=NOW + timedelta(minutes=30)
        ))

        assert result.success
        assert result.message == "Sync skipped - too recent"
        assert result.data["skipped"] is True
        assert len(replica.tables["transactions"]) == 2
        assert audit_logger.events_of_type(AuditEventType.SYNC_SKIPPED)

    def test_sync_after_interval(self, cloud, replica, identity):
        asyncio.run(cloud.auto_sync(identity, make_transactions(), now=NOW))
        result = asyncio.run(cloud.auto_sync(identity, [], now=NOW + timedelta(hours=1)))

        assert result.data.get("skipped") is None
        assert replica.tables["transactions"] == []

    def test_auto_sync_flag(self, cloud, replica, identity, store):
        assert asyncio.run(cloud.is_auto_sync_enabled()) is False

        result = asyncio.run(cloud.set_auto_sync_enabled(identity, True))

        assert result.message == "Auto-sync enabled"
        assert asyncio.run(cloud.is_auto_sync_enabled()) is True
        assert asyncio.run(store.get_setting(AUTO_SYNC_ENABLED_KEY)) == "true"
        assert replica.tables["settings"][0]["value"] == "true"

    def test_flag_saved_locally_when_remote_down(self, cloud, replica, identity):
        replica.fail_on.add("upsert")
        result = asyncio.run(cloud.set_auto_sync_enabled(identity, False))
        assert result.success
        assert result.message == "Auto-sync disabled"


class TestSyncStatus:
    """Tests for the sync status summary."""

    def test_none_before_first_sync(self, cloud, identity):
        assert asyncio.run(cloud.sync_status(identity)) is None

    def test_counts_after_sync(self, cloud, identity):
        asyncio.run(cloud.set_auto_sync_enabled(identity, True))
        asyncio.run(cloud.backup_all(identity, make_transactions(), now=NOW))

        status = asyncio.run(cloud.sync_status(identity))

        assert status.last_sync_time == NOW
        assert status.transaction_count == 2
        assert status.settings_count == 1

    def test_none_when_unreachable(self, cloud, replica, identity):
        asyncio.run(cloud.backup_all(identity, [], now=NOW))
        replica.fail_on.add("count")
        assert asyncio.run(cloud.sync_status(identity)) is None


class TestSuggestionMirror:
    """Tests for mirroring the suggestion cache and refresh counter."""

    def test_suggestion_round_trip(self, cloud, identity):
        cached = AISuggestion(suggestion="Cook at home twice this week", timestamp=1700000000000)
        asyncio.run(cloud.backup_ai_suggestion(identity, cached))
        asyncio.run(cloud.backup_ai_suggestion(
            identity, cached.model_copy(update={"suggestion": "Skip one taxi ride"})
        ))

        result, restored = asyncio.run(cloud.restore_ai_suggestion(identity))

        assert result.success
        assert restored.suggestion == "Skip one taxi ride"
        assert restored.timestamp == 1700000000000

    def test_no_remote_suggestion(self, cloud, identity):
        result, restored = asyncio.run(cloud.restore_ai_suggestion(identity))
        assert result.success
        assert restored is None

    def test_refresh_count(self, cloud, replica, identity):
        assert asyncio.run(cloud.get_daily_refresh_count(identity, "2025-03-15")) == 0

        asyncio.run(cloud.sync_daily_refresh_count(identity, "2025-03-15", 1))
        asyncio.run(cloud.sync_daily_refresh_count(identity, "2025-03-15", 2))

        assert asyncio.run(cloud.get_daily_refresh_count(identity, "2025-03-15")) == 2
        assert len(replica.tables["daily_refresh_count"]) == 1

    def test_refresh_count_unreachable(self, cloud, replica, identity):
        replica.fail_on.add("select")
        assert asyncio.run(cloud.get_daily_refresh_count(identity, "2025-03-15")) is None
