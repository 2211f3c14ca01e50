"""Services package."""

from meterbill.services.identity import (
    GoogleIdentityProvider,
    IdentityProviderInterface,
)
from meterbill.services.local_state import (
    FamilyPreferencesStore,
    SpreadsheetSelectionStore,
    TokenStore,
)
from meterbill.services.storage import (
    AuditStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsCatalog,
    GoogleSheetsClient,
    GoogleSheetsTabularStore,
    ReadingRepository,
    SheetsConnectionError,
    SpreadsheetCatalogInterface,
    TabularStoreInterface,
)

__all__ = [
    # Identity
    "GoogleIdentityProvider",
    "IdentityProviderInterface",
    # Local state
    "FamilyPreferencesStore",
    "SpreadsheetSelectionStore",
    "TokenStore",
    # Storage
    "AuditStorageInterface",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsCatalog",
    "GoogleSheetsClient",
    "GoogleSheetsTabularStore",
    "ReadingRepository",
    "SheetsConnectionError",
    "SpreadsheetCatalogInterface",
    "TabularStoreInterface",
]
