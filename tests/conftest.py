"""
Shared fixtures.

No test talks to Google: the spreadsheet and the identity provider are
replaced by in-memory fakes, and time comes from a clock the test moves.
"""

import asyncio
from datetime import date, datetime, timedelta
from typing import Optional

import pytest

from meterbill.audit import AuditLogger
from meterbill.models.session import AccessToken, Identity
from meterbill.models.spreadsheet import SpreadsheetInfo
from meterbill.orchestrator import BillingFlow
from meterbill.services.identity import IdentityProviderInterface
from meterbill.services.local_state import (
    FamilyPreferencesStore,
    SpreadsheetSelectionStore,
    TokenStore,
)
from meterbill.services.storage import (
    ReadingRepository,
    SpreadsheetCatalogInterface,
    TabularStoreInterface,
)
from meterbill.session import SessionManager


AUTH_FAILURE_TEXT = "Request had invalid authentication credentials."
RUN_DATE = date(2024, 3, 1)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2024, 3, 1, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class InMemoryTabularStore(TabularStoreInterface):
    """
    A single sheet held as a list of rows.

    Cells come back as strings, the way the Sheets API returns them.
    `fail_on` maps a tenant name to the error its append should raise.
    """

    def __init__(self, rows: Optional[list[list]] = None):
        self.rows: list[list] = [list(row) for row in rows or []]
        self.sheets: dict[str, list[list]] = {}
        self.fail_on: dict[str, Exception] = {}
        self.read_error: Optional[Exception] = None
        self.append_attempts: list[str] = []

    async def get_rows(self, range_spec: str) -> list[list[str]]:
        if self.read_error is not None:
            raise self.read_error
        rows = self.rows[:1] if range_spec.startswith("A1:") else self.rows
        return [[str(cell) for cell in row] for row in rows]

    async def append_row(self, row: list) -> None:
        tenant = str(row[0])
        self.append_attempts.append(tenant)
        if tenant in self.fail_on:
            raise self.fail_on[tenant]
        self.rows.append(list(row))

    async def update_range(self, range_spec: str, rows: list[list]) -> None:
        if self.rows:
            self.rows[0] = list(rows[0])
        else:
            self.rows.append(list(rows[0]))

    async def delete_row(self, row_number: int) -> None:
        del self.rows[row_number - 1]

    async def create_sheet(self, title: str, header: Optional[list] = None) -> int:
        self.sheets[title] = [list(header)] if header else []
        return len(self.sheets)


class FakeSpreadsheetCatalog(SpreadsheetCatalogInterface):
    """Spreadsheets held in a dict; new ones get sequential ids."""

    def __init__(self, selected_id: str = "sheet-initial"):
        self.spreadsheets: dict[str, SpreadsheetInfo] = {
            selected_id: SpreadsheetInfo(spreadsheet_id=selected_id, name="Electricity Bills"),
        }
        self.headers: dict[str, list] = {}
        self.list_error: Optional[Exception] = None
        self._selected_id = selected_id

    @property
    def selected_id(self) -> str:
        return self._selected_id

    def select(self, spreadsheet_id: str) -> None:
        self._selected_id = spreadsheet_id

    async def list_spreadsheets(self) -> list[SpreadsheetInfo]:
        if self.list_error is not None:
            raise self.list_error
        return list(self.spreadsheets.values())

    async def create_spreadsheet(self, title: str, header: list) -> SpreadsheetInfo:
        spreadsheet_id = f"sheet-{len(self.spreadsheets) + 1}"
        info = SpreadsheetInfo(spreadsheet_id=spreadsheet_id, name=title)
        self.spreadsheets[spreadsheet_id] = info
        self.headers[spreadsheet_id] = list(header)
        return info

    async def rename_spreadsheet(self, spreadsheet_id: str, name: str) -> None:
        self.spreadsheets[spreadsheet_id] = self.spreadsheets[spreadsheet_id].model_copy(
            update={"name": name}
        )


class FakeIdentityProvider(IdentityProviderInterface):
    """Hands out fixed tokens; any step can be made to fail."""

    def __init__(self, token: str = "token-1"):
        self.token = token
        self.identity = Identity(
            id="user-1",
            display_name="House Manager",
            email="manager@example.com",
        )
        self.exchange_error: Optional[Exception] = None
        self.identity_error: Optional[Exception] = None
        self.revoke_error: Optional[Exception] = None
        self.requested_scopes: list[list[str]] = []
        self.revoked: list[str] = []

    async def exchange_token(self, scopes: list[str]) -> AccessToken:
        self.requested_scopes.append(list(scopes))
        if self.exchange_error is not None:
            raise self.exchange_error
        return AccessToken(access_token=self.token)

    async def fetch_identity(self, access_token: str) -> Identity:
        if self.identity_error is not None:
            raise self.identity_error
        return self.identity

    async def revoke(self, access_token: str) -> None:
        self.revoked.append(access_token)
        if self.revoke_error is not None:
            raise self.revoke_error


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def identity_provider():
    return FakeIdentityProvider()


@pytest.fixture
def token_store():
    return TokenStore()


@pytest.fixture
def session_manager(identity_provider, token_store, clock):
    return SessionManager(
        identity_provider=identity_provider,
        token_store=token_store,
        scopes=["https://www.googleapis.com/auth/spreadsheets"],
        clock=clock,
        audit_logger=AuditLogger(),
    )


@pytest.fixture
def signed_in(session_manager):
    asyncio.run(session_manager.sign_in())
    return session_manager


@pytest.fixture
def store():
    return InMemoryTabularStore()


@pytest.fixture
def repository(store):
    return ReadingRepository(store)


@pytest.fixture
def catalog():
    return FakeSpreadsheetCatalog()


@pytest.fixture
def selection():
    return SpreadsheetSelectionStore()


@pytest.fixture
def billing_flow(signed_in, repository, catalog, selection):
    return BillingFlow(
        session=signed_in,
        repository=repository,
        preferences=FamilyPreferencesStore(),
        audit_logger=AuditLogger(),
        today=lambda: RUN_DATE,
        catalog=catalog,
        selection=selection,
    )
