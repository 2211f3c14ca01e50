"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Currently implements Google Sheets as the backend, but designed to be swappable.
"""

from meterbill.services.storage.interface import (
    AuditStorageInterface,
    SpreadsheetCatalogInterface,
    TabularStoreInterface,
)
from meterbill.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsCatalog,
    GoogleSheetsClient,
    GoogleSheetsTabularStore,
    SheetsConnectionError,
)
from meterbill.services.storage.repository import ReadingRepository

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "SpreadsheetCatalogInterface",
    "TabularStoreInterface",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsCatalog",
    "GoogleSheetsClient",
    "GoogleSheetsTabularStore",
    "SheetsConnectionError",
    # Row schema
    "ReadingRepository",
]
