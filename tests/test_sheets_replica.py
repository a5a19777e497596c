"""Tests for the Google Sheets replica against an in-memory worksheet."""

import asyncio

import pytest

from moneytalk.services.cloud.google_sheets import GoogleSheetsReplica, row_ranges
from moneytalk.services.cloud.interface import (
    REMOTE_TABLE_COLUMNS,
    DuplicateKeyError,
    RemoteReplicaError,
)


class FakeSpreadsheet:
    """Applies deleteDimension batch requests and counts write calls."""

    def __init__(self, write_quota=None):
        self.worksheets = {}
        self.batch_calls = 0
        self.write_quota = write_quota

    def batch_update(self, body):
        self.batch_calls += 1
        if self.write_quota is not None and self.batch_calls > self.write_quota:
            raise ConnectionError("429 quota exceeded")
        for request in body["requests"]:
            span = request["deleteDimension"]["range"]
            sheet = self.worksheets[span["sheetId"]]
            del sheet.values[span["startIndex"]:span["endIndex"]]


class FakeWorksheet:
    """Implements the handful of gspread.Worksheet calls the replica makes."""

    def __init__(self, header, spreadsheet, sheet_id):
        self.values = [list(header)]
        self.id = sheet_id
        self.spreadsheet = spreadsheet
        spreadsheet.worksheets[sheet_id] = self

    def get_all_values(self):
        return [list(row) for row in self.values]

    def append_row(self, values, value_input_option=None):
        self.values.append(list(values))

    def append_rows(self, rows, value_input_option=None):
        self.values.extend(list(row) for row in rows)

    def update(self, range_name, values):
        row_number = int(range_name[1:])
        self.values[row_number - 1] = list(values[0])


class FakeSheetsClient:
    def __init__(self, write_quota=None):
        self.spreadsheet = FakeSpreadsheet(write_quota)
        self.sheets = {}
        self.broken = False

    def get_table_sheet(self, table):
        if self.broken:
            raise ConnectionError("quota exceeded")
        if table not in self.sheets:
            self.sheets[table] = FakeWorksheet(
                REMOTE_TABLE_COLUMNS[table], self.spreadsheet, len(self.sheets)
            )
        return self.sheets[table]


@pytest.fixture
def client():
    return FakeSheetsClient()


@pytest.fixture
def replica(client):
    return GoogleSheetsReplica(client=client)


def tx_row(user_id, tx_id, date):
    return {"user_id": user_id, "id": tx_id, "amount": "-5", "type": "expense", "date": date}


class TestGoogleSheetsReplica:
    """Tests for row mapping, keys and error wrapping."""

    def test_insert_writes_columns_in_order(self, replica, client):
        asyncio.run(replica.insert("transactions", [tx_row("u1", 1, "2025-01-01T00:00:00.000Z")]))

        header, row = client.sheets["transactions"].values
        assert header == REMOTE_TABLE_COLUMNS["transactions"]
        assert row[header.index("id")] == "1"
        assert row[header.index("image_url")] == ""

    def test_select_filters_and_orders(self, replica):
        asyncio.run(replica.insert("transactions", [
            tx_row("u1", 1, "2025-01-01T00:00:00.000Z"),
            tx_row("u2", 1, "2025-01-02T00:00:00.000Z"),
            tx_row("u1", 2, "2025-01-03T00:00:00.000Z"),
        ]))

        rows = asyncio.run(replica.select(
            "transactions", {"user_id": "u1"}, order_by="date", descending=True
        ))

        assert [row["id"] for row in rows] == ["2", "1"]
        assert asyncio.run(replica.count("transactions", {"user_id": "u2"})) == 1

    def test_duplicate_key_rejected(self, replica):
        asyncio.run(replica.insert("user_profiles", [{"user_id": "u1"}]))
        with pytest.raises(DuplicateKeyError):
            asyncio.run(replica.insert("user_profiles", [{"user_id": "u1"}]))

    def test_delete_only_matching_rows(self, replica, client):
        asyncio.run(replica.insert("transactions", [
            tx_row("u1", 1, "a"),
            tx_row("u2", 1, "b"),
            tx_row("u1", 2, "c"),
        ]))

        removed = asyncio.run(replica.delete("transactions", {"user_id": "u1"}))

        assert removed == 2
        remaining = asyncio.run(replica.select("transactions", {}))
        assert [row["user_id"] for row in remaining] == ["u2"]

    def test_large_partition_deleted_in_one_request(self):
        client = FakeSheetsClient(write_quota=1)
        replica = GoogleSheetsReplica(client=client)
        rows = [tx_row("u1", number, f"d{number}") for number in range(100)]
        rows.insert(50, tx_row("u2", 1, "keep"))
        asyncio.run(replica.insert("transactions", rows))

        removed = asyncio.run(replica.delete("transactions", {"user_id": "u1"}))

        assert removed == 100
        assert client.spreadsheet.batch_calls == 1
        remaining = asyncio.run(replica.select("transactions", {}))
        assert [row["date"] for row in remaining] == ["keep"]

    def test_failed_delete_leaves_partition_whole(self):
        client = FakeSheetsClient(write_quota=0)
        replica = GoogleSheetsReplica(client=client)
        asyncio.run(replica.insert(
            "transactions", [tx_row("u1", number, f"d{number}") for number in range(70)]
        ))

        with pytest.raises(RemoteReplicaError):
            asyncio.run(replica.delete("transactions", {"user_id": "u1"}))

        assert asyncio.run(replica.count("transactions", {"user_id": "u1"})) == 70

    def test_nothing_to_delete_makes_no_request(self, replica, client):
        assert asyncio.run(replica.delete("transactions", {"user_id": "u1"})) == 0
        assert client.spreadsheet.batch_calls == 0

    def test_row_ranges_collapse_runs_bottom_first(self):
        assert row_ranges([2, 3, 4, 7, 9, 10]) == [(9, 10), (7, 7), (2, 4)]
        assert row_ranges([]) == []

    def test_upsert_updates_in_place(self, replica, client):
        key = ["user_id", "key"]
        asyncio.run(replica.upsert("settings", {"user_id": "u1", "key": "k", "value": "a"}, key))
        asyncio.run(replica.upsert("settings", {"user_id": "u1", "key": "k", "value": "b"}, key))
        asyncio.run(replica.upsert("settings", {"user_id": "u1", "key": "j", "value": "c"}, key))

        rows = asyncio.run(replica.select("settings", {"user_id": "u1"}))
        assert [(row["key"], row["value"]) for row in rows] == [("k", "b"), ("j", "c")]

    def test_short_rows_padded(self, replica, client):
        sheet = client.get_table_sheet("settings")
        sheet.values.append(["u1", "k"])
        rows = asyncio.run(replica.select("settings", {"user_id": "u1"}))
        assert rows[0]["value"] == ""

    def test_client_errors_wrapped(self, replica, client):
        client.broken = True
        with pytest.raises(RemoteReplicaError):
            asyncio.run(replica.select("transactions", {}))
        with pytest.raises(RemoteReplicaError):
            asyncio.run(replica.insert("transactions", [tx_row("u1", 1, "a")]))
