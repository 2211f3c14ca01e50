"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for the tabular store.
This allows us to:
1. Swap Google Sheets for another backend later
2. Use in-memory storage for testing
3. Keep the billing flow decoupled from gspread

The interface is intentionally low level: ranges of string cells, append a
row, delete a row. Everything that knows about the bill row schema lives
in ReadingRepository, on top of this.

There are no transactions. Callers that write several rows do so one at a
time, in a fixed order.
"""

from abc import ABC, abstractmethod
from typing import Optional

from meterbill.models.audit import AuditEvent
from meterbill.models.spreadsheet import SpreadsheetInfo


class TabularStoreInterface(ABC):
    """
    Abstract interface for a single-sheet tabular store.

    Ranges use A1 notation relative to the configured sheet
    (e.g. "A1:I1", "A:I"). Row numbers are 1-based.
    """

    @abstractmethod
    async def get_rows(self, range_spec: str) -> list[list[str]]:
        """
        Read a range.

        Returns:
            Rows in sheet order; trailing empty cells may be missing
        """
        pass

    @abstractmethod
    async def append_row(self, row: list) -> None:
        """
        Append one row after the last non-empty row.

        Raises:
            Any backend error; the caller classifies it.
        """
        pass

    @abstractmethod
    async def update_range(self, range_spec: str, rows: list[list]) -> None:
        """Overwrite a range with the given rows."""
        pass

    @abstractmethod
    async def delete_row(self, row_number: int) -> None:
        """Delete a row by its 1-based number."""
        pass

    @abstractmethod
    async def create_sheet(self, title: str, header: Optional[list] = None) -> int:
        """
        Create a new worksheet in the spreadsheet.

        Writes `header` as its first row when given.

        Returns:
            The new sheet's id
        """
        pass


class SpreadsheetCatalogInterface(ABC):
    """
    The spreadsheets the signed-in account can use for bills.

    Exactly one is selected at a time; the tabular store and the audit
    log both read and write the selected one.
    """

    @property
    @abstractmethod
    def selected_id(self) -> str:
        """Id of the spreadsheet currently in use."""
        pass

    @abstractmethod
    def select(self, spreadsheet_id: str) -> None:
        """Switch to another spreadsheet. Nothing is fetched until the next call."""
        pass

    @abstractmethod
    async def list_spreadsheets(self) -> list[SpreadsheetInfo]:
        """Every spreadsheet visible to the account, most recently modified first."""
        pass

    @abstractmethod
    async def create_spreadsheet(self, title: str, header: list) -> SpreadsheetInfo:
        """
        Create a spreadsheet whose readings sheet starts with `header`.

        Does not select it.
        """
        pass

    @abstractmethod
    async def rename_spreadsheet(self, spreadsheet_id: str, name: str) -> None:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass
