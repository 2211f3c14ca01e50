"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is the storage backend because:
1. The household manager can view and fix the data directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- No transactions (billing runs write rows one by one, in a fixed order)
- Limited query capabilities (we filter in Python)
- Single writer assumed; concurrent edits in the Sheets UI are not detected

When a session token is available the client authorizes with it, so a
revoked or expired token surfaces as a 401 from the API. Without one it
falls back to the service account credentials file.
"""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Optional

import gspread
from google.oauth2.credentials import Credentials as UserCredentials
from google.oauth2.service_account import Credentials
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from meterbill.config import GoogleSheetsSettings, get_settings
from meterbill.models.audit import AuditEvent
from meterbill.models.spreadsheet import SpreadsheetInfo
from meterbill.services.storage.interface import (
    AuditStorageInterface,
    SpreadsheetCatalogInterface,
    TabularStoreInterface,
)


SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]

# Column mappings for the audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "tenant_name",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


# Sort key for Drive files that report no timestamps
NEVER_MODIFIED = datetime.min.replace(tzinfo=timezone.utc)


class SheetsConnectionError(Exception):
    """Could not reach the spreadsheet (bad key file, missing spreadsheet)."""
    pass


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for connecting.
    Individual reads and writes are never retried here.
    """

    def __init__(
        self,
        settings: Optional[GoogleSheetsSettings] = None,
        token_getter: Optional[Callable[[], Optional[str]]] = None,
    ):
        self._settings = settings or get_settings().google_sheets
        self._token_getter = token_getter
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._authorized_token: Optional[str] = None
        self._spreadsheet_id = self._settings.spreadsheet_id

    @property
    def settings(self) -> GoogleSheetsSettings:
        return self._settings

    @property
    def spreadsheet_id(self) -> str:
        return self._spreadsheet_id

    def select_spreadsheet(self, spreadsheet_id: str) -> None:
        """Use another spreadsheet from now on."""
        if spreadsheet_id != self._spreadsheet_id:
            self._spreadsheet_id = spreadsheet_id
            self._spreadsheet = None

    def _credentials(self):
        token = self._token_getter() if self._token_getter else None
        if token:
            return UserCredentials(token=token), token
        try:
            return Credentials.from_service_account_file(
                self._settings.credentials_path,
                scopes=SCOPES,
            ), None
        except FileNotFoundError:
            raise SheetsConnectionError(
                f"Google credentials file not found: {self._settings.credentials_path}"
            )

    @retry(
        retry=retry_if_exception_type(gspread.exceptions.GSpreadException),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Re-authorizes whenever the session token has changed.
        """
        current = self._token_getter() if self._token_getter else None
        if self._client is None or current != self._authorized_token:
            credentials, token = self._credentials()
            self._client = gspread.authorize(credentials)
            self._authorized_token = token
            self._spreadsheet = None
        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the selected spreadsheet."""
        client = self.connect()
        if self._spreadsheet is None:
            try:
                self._spreadsheet = client.open_by_key(
                    self._spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise SheetsConnectionError(
                    f"Spreadsheet not found: {self._spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, title: str, cols: int, header: Optional[list] = None) -> gspread.Worksheet:
        """Get a worksheet, creating it (with an optional header row) if missing."""
        spreadsheet = self.get_spreadsheet()
        try:
            return spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(title=title, rows=1000, cols=cols)
            if header:
                sheet.append_row(header, value_input_option="RAW")
            return sheet

    def get_readings_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.readings_sheet_name, cols=9)

    def get_audit_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(
            self._settings.audit_sheet_name,
            cols=len(AUDIT_COLUMNS),
            header=AUDIT_COLUMNS,
        )


class GoogleSheetsTabularStore(TabularStoreInterface):
    """
    Google Sheets implementation of the tabular store.

    gspread blocks, so every call runs in a worker thread; only the
    awaiting coroutine is suspended.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_readings_sheet()

    async def get_rows(self, range_spec: str) -> list[list[str]]:
        def _get():
            return [list(row) for row in self._sheet().get(range_spec)]
        return await asyncio.to_thread(_get)

    async def append_row(self, row: list) -> None:
        def _append():
            self._sheet().append_row(
                row,
                value_input_option="USER_ENTERED",
                insert_data_option="INSERT_ROWS",
                table_range="A:I",
            )
        await asyncio.to_thread(_append)

    async def update_range(self, range_spec: str, rows: list[list]) -> None:
        def _update():
            self._sheet().update(
                range_name=range_spec,
                values=rows,
                value_input_option="RAW",
            )
        await asyncio.to_thread(_update)

    async def delete_row(self, row_number: int) -> None:
        await asyncio.to_thread(lambda: self._sheet().delete_rows(row_number))

    async def create_sheet(self, title: str, header: Optional[list] = None) -> int:
        def _create():
            sheet = self._client.get_spreadsheet().add_worksheet(
                title=title,
                rows=1000,
                cols=9,
            )
            if header:
                sheet.update(range_name="A1:I1", values=[header], value_input_option="RAW")
            return sheet.id
        return await asyncio.to_thread(_create)


class GoogleSheetsCatalog(SpreadsheetCatalogInterface):
    """
    Spreadsheet files from the account's Drive.

    Listing and creating files needs the Drive scope as well as the
    Sheets scope.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    @property
    def selected_id(self) -> str:
        return self._client.spreadsheet_id

    def select(self, spreadsheet_id: str) -> None:
        self._client.select_spreadsheet(spreadsheet_id)

    async def list_spreadsheets(self) -> list[SpreadsheetInfo]:
        def _list():
            files = self._client.connect().list_spreadsheet_files()
            return [SpreadsheetInfo.from_drive_file(entry) for entry in files]
        spreadsheets = await asyncio.to_thread(_list)
        return sorted(
            spreadsheets,
            key=lambda info: info.modified_time or info.created_time or NEVER_MODIFIED,
            reverse=True,
        )

    async def create_spreadsheet(self, title: str, header: list) -> SpreadsheetInfo:
        def _create():
            spreadsheet = self._client.connect().create(title)
            sheet = spreadsheet.sheet1
            readings_title = self._client.settings.readings_sheet_name
            if sheet.title != readings_title:
                sheet.update_title(readings_title)
            sheet.update(range_name="A1:I1", values=[header], value_input_option="RAW")
            return SpreadsheetInfo(spreadsheet_id=spreadsheet.id, name=spreadsheet.title)
        return await asyncio.to_thread(_create)

    async def rename_spreadsheet(self, spreadsheet_id: str, name: str) -> None:
        def _rename():
            self._client.connect().open_by_key(spreadsheet_id).update_title(name)
        await asyncio.to_thread(_rename)


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        def _append():
            self._client.get_audit_sheet().append_row(
                event.to_sheets_row(),
                value_input_option="RAW",
            )
        await asyncio.to_thread(_append)
        return True
