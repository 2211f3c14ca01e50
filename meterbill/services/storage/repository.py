"""
Reading Repository

Knows the bill row schema on top of a TabularStoreInterface:

    A            B                 C                D               E
    Tenant Name  Previous Reading  Current Reading  Units Consumed  Cost per Unit
    F            G     H            I
    Total Bill   Date  Water Units  Water Cost

Rows are appended, never edited in place. Editing a record deletes its
row and appends the replacement. Rows are matched by content (tenant,
current reading, total bill, date) because the sheet has no id column
and may be edited by hand.
"""

import math
from typing import Optional

import structlog

from meterbill.errors import LogicInvariantViolation
from meterbill.models.billing import (
    SHEET_HEADER,
    BillRecord,
    MeterReading,
)
from meterbill.services.storage.interface import TabularStoreInterface


HEADER_RANGE = "A1:I1"
DATA_RANGE = "A:I"
HEADER_KEYWORDS = ("tenant", "name", "reading", "cost", "bill", "unit", "date", "water")
MATCH_TOLERANCE = 0.01


logger = structlog.get_logger(__name__)


def looks_like_header(row: list) -> bool:
    """True if any cell of the first row reads like a column label."""
    return any(
        isinstance(cell, str) and any(word in cell.lower() for word in HEADER_KEYWORDS)
        for cell in row
    )


def usable_reading(record: BillRecord) -> float:
    """A stored current reading that can start the next run, else 0."""
    value = record.current_reading
    if math.isfinite(value) and value >= 0:
        return value
    logger.warning(
        "stored_reading_unusable",
        tenant_name=record.tenant_name,
        current_reading=str(value),
    )
    return 0.0


def family_alias(meter_id: str) -> Optional[str]:
    """'family3' -> 'Family 3', the generic label older rows use."""
    if meter_id.startswith("family") and meter_id[len("family"):].isdigit():
        return f"Family {meter_id[len('family'):]}"
    return None


class ReadingRepository:
    """Bill records stored as spreadsheet rows."""

    def __init__(self, store: TabularStoreInterface):
        self._store = store

    async def ensure_header(self) -> bool:
        """
        Write the header row when it is missing or incomplete.

        Returns:
            True if the header was written
        """
        rows = await self._store.get_rows(HEADER_RANGE)
        if rows and len(rows[0]) >= len(SHEET_HEADER):
            return False
        await self._store.update_range(HEADER_RANGE, [list(SHEET_HEADER)])
        return True

    async def append_record(self, record: BillRecord) -> None:
        await self._store.append_row(record.to_sheets_row())

    async def _data_rows(self) -> tuple[int, list[list[str]]]:
        """(first data row number, data rows) with any header skipped."""
        rows = await self._store.get_rows(DATA_RANGE)
        if rows and looks_like_header(rows[0]):
            return 2, rows[1:]
        return 1, rows

    async def list_records(self) -> list[BillRecord]:
        """All records in sheet order; rows too short to be bills are skipped."""
        _, rows = await self._data_rows()
        return [
            BillRecord.from_sheets_row(row)
            for row in rows
            if len(row) >= 3 and str(row[0]).strip()
        ]

    async def latest_readings(
        self,
        meters: list[MeterReading],
        default_cost_per_unit: float,
    ) -> tuple[dict[str, float], float]:
        """
        Most recent current reading per meter, and the latest cost per unit.

        A row belongs to a meter when its tenant name contains the meter's
        display name (or its 'Family N' alias). Later rows win. Meters with
        no rows read 0, and so does a hand-edited reading that is negative
        or not finite.
        """
        latest = {meter.meter_id: 0.0 for meter in meters}
        cost_per_unit = default_cost_per_unit

        for record in await self.list_records():
            if record.cost_per_unit > 0:
                cost_per_unit = record.cost_per_unit
            for meter in meters:
                alias = family_alias(meter.meter_id)
                if meter.display_name in record.tenant_name or (
                    alias and alias in record.tenant_name
                ):
                    latest[meter.meter_id] = usable_reading(record)
                    break

        return latest, cost_per_unit

    async def find_row(self, record: BillRecord) -> int:
        """
        1-based row number of the first row matching record.

        Raises:
            LogicInvariantViolation: if no row matches
        """
        first_row, rows = await self._data_rows()
        for offset, row in enumerate(rows):
            if len(row) < 6:
                continue
            candidate = BillRecord.from_sheets_row(row)
            if (
                candidate.tenant_name == record.tenant_name
                and abs(candidate.current_reading - record.current_reading) < MATCH_TOLERANCE
                and abs(candidate.total_bill - record.total_bill) < MATCH_TOLERANCE
                and candidate.date == record.date
            ):
                return first_row + offset

        raise LogicInvariantViolation(
            f"Could not find the entry for {record.tenant_name} "
            f"({record.date.isoformat()}) in the spreadsheet"
        )

    async def delete_record(self, record: BillRecord) -> int:
        """Delete the matching row. Returns the row number removed."""
        row_number = await self.find_row(record)
        await self._store.delete_row(row_number)
        return row_number

    async def replace_record(self, old: BillRecord, new: BillRecord) -> int:
        """Edit = delete the old row, then append the new one."""
        row_number = await self.delete_record(old)
        await self.append_record(new)
        return row_number

    async def create_readings_sheet(self, title: str) -> int:
        """New worksheet, with the header row, for a fresh set of bills. Returns its sheet id."""
        return await self._store.create_sheet(title, list(SHEET_HEADER))
