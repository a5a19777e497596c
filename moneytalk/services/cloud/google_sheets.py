"""
Google Sheets Cloud Replica

DESIGN DECISION: Google Sheets holds the cloud copy because:
1. The user can open their backup directly in Sheets
2. No database server has to be provisioned
3. A service account is all the device needs

TRADEOFFS:
- Filtering happens in Python after reading the whole worksheet
- No multi-table transactions (a backup is delete-then-append);
  the delete itself is a single batch request

Each remote table is one worksheet whose first row holds the column names.
"""

from typing import Optional

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from moneytalk.config import get_settings
from moneytalk.config.settings import GoogleSheetsSettings
from moneytalk.services.cloud.interface import (
    REMOTE_TABLE_COLUMNS,
    REMOTE_TABLE_KEYS,
    DuplicateKeyError,
    RemoteReplicaError,
    RemoteReplicaInterface,
    ReplicaConnectionError,
    matches,
    row_key,
    to_cell,
)


def row_ranges(row_numbers: list[int]) -> list[tuple[int, int]]:
    """
    Collapse row numbers into inclusive (start, end) runs, bottom run first.

    Deleting from the bottom up keeps the remaining row numbers valid.
    """
    ranges: list[tuple[int, int]] = []
    for number in sorted(set(row_numbers), reverse=True):
        if ranges and ranges[-1][0] == number + 1:
            ranges[-1] = (number, ranges[-1][1])
        else:
            ranges.append((number, number))
    return ranges


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and worksheet creation, with retry on connect.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """Authenticate with the service account credentials."""
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ReplicaConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ReplicaConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
            except gspread.SpreadsheetNotFound:
                raise ReplicaConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_table_sheet(self, table: str) -> gspread.Worksheet:
        """Get or create the worksheet backing a remote table."""
        columns = REMOTE_TABLE_COLUMNS.get(table)
        if columns is None:
            raise RemoteReplicaError(f"Unknown remote table: {table}")

        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(table)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=table,
                rows=1000,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet


class GoogleSheetsReplica(RemoteReplicaInterface):
    """
    Remote replica backed by one worksheet per table.

    Every gspread failure is re-raised as RemoteReplicaError so the
    reconciliation service only handles one exception family.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _read(self, table: str) -> tuple[gspread.Worksheet, list[tuple[int, dict[str, str]]]]:
        """Return the sheet plus (sheet row number, record) pairs."""
        sheet = self._client.get_table_sheet(table)
        values = sheet.get_all_values()
        header = values[0] if values else REMOTE_TABLE_COLUMNS[table]

        records = []
        # Sheet rows are 1-indexed and row 1 is the header
        for row_number, row in enumerate(values[1:], start=2):
            record = {
                column: row[index] if index < len(row) else ""
                for index, column in enumerate(header)
            }
            records.append((row_number, record))
        return sheet, records

    @staticmethod
    def _to_values(table: str, row: dict[str, str]) -> list[str]:
        return [to_cell(row.get(column)) for column in REMOTE_TABLE_COLUMNS[table]]

    async def select(
        self,
        table: str,
        filters: dict[str, str],
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> list[dict[str, str]]:
        try:
            _, records = self._read(table)
        except RemoteReplicaError:
            raise
        except Exception as e:
            raise RemoteReplicaError(f"Failed to read {table}: {e}")

        rows = [record for _, record in records if matches(record, filters)]
        if order_by:
            rows.sort(key=lambda record: record.get(order_by, ""), reverse=descending)
        return rows

    async def insert(self, table: str, rows: list[dict[str, str]]) -> int:
        if not rows:
            return 0
        try:
            sheet, records = self._read(table)
            key_columns = REMOTE_TABLE_KEYS.get(table, [])
            if key_columns:
                existing = {row_key(record, key_columns) for _, record in records}
                for row in rows:
                    key = row_key({k: to_cell(v) for k, v in row.items()}, key_columns)
                    if key in existing:
                        raise DuplicateKeyError(f"Duplicate key in {table}: {key}")
                    existing.add(key)

            sheet.append_rows(
                [self._to_values(table, row) for row in rows],
                value_input_option="RAW",
            )
        except RemoteReplicaError:
            raise
        except Exception as e:
            raise RemoteReplicaError(f"Failed to insert into {table}: {e}")
        return len(rows)

    async def delete(self, table: str, filters: dict[str, str]) -> int:
        try:
            sheet, records = self._read(table)
            targets = [number for number, record in records if matches(record, filters)]
            if targets:
                # One batch request: Sheets applies it whole or not at all
                sheet.spreadsheet.batch_update({
                    "requests": [
                        {
                            "deleteDimension": {
                                "range": {
                                    "sheetId": sheet.id,
                                    "dimension": "ROWS",
                                    "startIndex": start - 1,
                                    "endIndex": end,
                                }
                            }
                        }
                        for start, end in row_ranges(targets)
                    ]
                })
        except RemoteReplicaError:
            raise
        except Exception as e:
            raise RemoteReplicaError(f"Failed to delete from {table}: {e}")
        return len(targets)

    async def upsert(
        self,
        table: str,
        row: dict[str, str],
        key_columns: list[str],
    ) -> None:
        try:
            sheet, records = self._read(table)
            key_filter = {column: row.get(column, "") for column in key_columns}
            values = self._to_values(table, row)

            for row_number, record in records:
                if matches(record, key_filter):
                    sheet.update(range_name=f"A{row_number}", values=[values])
                    return

            sheet.append_row(values, value_input_option="RAW")
        except RemoteReplicaError:
            raise
        except Exception as e:
            raise RemoteReplicaError(f"Failed to upsert into {table}: {e}")

    async def count(self, table: str, filters: dict[str, str]) -> int:
        return len(await self.select(table, filters))
