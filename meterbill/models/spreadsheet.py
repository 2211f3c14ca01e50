"""
Spreadsheet Models

A billing spreadsheet as listed from the user's Drive.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SpreadsheetInfo(BaseModel):
    """One spreadsheet file the signed-in account can open."""
    model_config = ConfigDict(frozen=True)

    spreadsheet_id: str = Field(..., min_length=1)
    name: str = ""
    created_time: Optional[datetime] = None
    modified_time: Optional[datetime] = None

    @classmethod
    def from_drive_file(cls, entry: dict) -> 'SpreadsheetInfo':
        """Build from a Drive files.list entry (id, name, createdTime, modifiedTime)."""
        return cls(
            spreadsheet_id=entry["id"],
            name=entry.get("name") or "",
            created_time=entry.get("createdTime"),
            modified_time=entry.get("modifiedTime"),
        )

    def matches(self, search: Optional[str]) -> bool:
        """Case-insensitive name search; a blank search matches everything."""
        if not search or not search.strip():
            return True
        return search.strip().lower() in self.name.lower()
