"""
Tests for the billing flow.

The session is real; the spreadsheet is an in-memory fake.
"""

import asyncio

import pytest

from conftest import AUTH_FAILURE_TEXT, RUN_DATE, FakeSpreadsheetCatalog
from meterbill.errors import (
    AuthorizationError,
    ErrorKind,
    LogicInvariantViolation,
    ValidationError,
)
from meterbill.models.billing import (
    FAMILY_1,
    FAMILY_2,
    MAIN_METER,
    SHEET_HEADER,
    SHOP,
    WATER_MOTOR,
    FamilyConfig,
    default_families,
    default_readings,
)
from meterbill.models.form import ReadingForm
from meterbill.models.session import SessionState
from meterbill.orchestrator import BillingFlow


def household_form(**current) -> ReadingForm:
    return ReadingForm(
        cost_per_unit="10",
        current_readings=current,
        previous_readings={SHOP: 100, FAMILY_1: 200},
    )


def tenants(rows):
    return [row[0] for row in rows]


class TestSubmitReadings:
    """Tests for a full billing run."""

    def test_writes_header_then_records_in_order(self, billing_flow, store):
        result = asyncio.run(billing_flow.submit_readings(
            household_form(water_motor="100", shop="150", family1="260")
        ))

        assert result.completed
        assert store.rows[0] == list(SHEET_HEADER)
        assert tenants(store.rows[1:]) == [
            "Water Motor",
            "Shop",
            "Rakesh Bhayya",
            "Kadam Medam",
            "Pipalde Sir",
            "Single Room Yash",
        ]
        assert result.next_previous_readings[SHOP] == 150
        assert result.next_previous_readings[WATER_MOTOR] == 100
        assert result.run.allocation.percentages[FAMILY_1] == pytest.approx(36.37)

    def test_records_carry_run_date(self, billing_flow, store):
        asyncio.run(billing_flow.submit_readings(household_form(shop="150")))
        assert store.rows[1][6] == RUN_DATE.isoformat()

    def test_invalid_form_writes_nothing(self, billing_flow, store):
        result = asyncio.run(billing_flow.submit_readings(household_form(shop="90")))

        assert result.rejected
        assert not result.completed
        assert result.validation.message_for(SHOP) == "Must be greater than previous reading"
        assert store.rows == []
        assert store.append_attempts == []

    def test_auth_failure_stops_the_run(self, billing_flow, store, signed_in):
        store.fail_on["Shop"] = Exception(AUTH_FAILURE_TEXT)

        result = asyncio.run(billing_flow.submit_readings(
            household_form(water_motor="100", shop="150", family1="260")
        ))

        assert result.error.kind == ErrorKind.AUTHORIZATION
        assert [r.tenant_name for r in result.submitted] == ["Water Motor"]
        assert result.failed_record.tenant_name == "Shop"
        assert result.pending[0].tenant_name == "Rakesh Bhayya"
        assert result.next_previous_readings is None
        # Nothing after the failure was attempted
        assert store.append_attempts == ["Water Motor", "Shop"]
        # Written records stay written
        assert tenants(store.rows[1:]) == ["Water Motor"]
        assert signed_in.state == SessionState.UNAUTHENTICATED

    def test_transient_failure_can_be_resumed(self, billing_flow, store, signed_in):
        store.fail_on["Rakesh Bhayya"] = ConnectionError("connection reset")

        result = asyncio.run(billing_flow.submit_readings(
            household_form(water_motor="100", shop="150", family1="260")
        ))

        assert result.error.kind == ErrorKind.TRANSIENT
        assert signed_in.is_authenticated()
        assert tenants(store.rows[1:]) == ["Water Motor", "Shop"]

        del store.fail_on["Rakesh Bhayya"]
        resumed = asyncio.run(billing_flow.resume_submission(result))

        assert resumed.completed
        assert len(resumed.submitted) == 6
        assert tenants(store.rows[1:]) == [
            "Water Motor",
            "Shop",
            "Rakesh Bhayya",
            "Kadam Medam",
            "Pipalde Sir",
            "Single Room Yash",
        ]
        assert resumed.next_previous_readings[FAMILY_1] == 260

    def test_retry_single_record(self, billing_flow, store):
        store.fail_on["Shop"] = ConnectionError("timeout")
        result = asyncio.run(billing_flow.submit_readings(household_form(shop="150")))
        assert result.failed_record.tenant_name == "Shop"

        del store.fail_on["Shop"]
        asyncio.run(billing_flow.retry_record(result.failed_record, result.correlation_id))

        assert tenants(store.rows[1:]) == ["Shop"]

    def test_retry_failed_record_keeps_the_rest_pending(self, billing_flow, store):
        store.fail_on["Shop"] = ConnectionError("timeout")
        result = asyncio.run(billing_flow.submit_readings(
            household_form(water_motor="100", shop="150", family1="260")
        ))

        del store.fail_on["Shop"]
        retried = asyncio.run(billing_flow.retry_failed_record(result))

        assert [r.tenant_name for r in retried.submitted] == ["Water Motor", "Shop"]
        assert retried.failed_record is None
        assert len(retried.pending) == 4
        assert not retried.completed
        assert store.append_attempts == ["Water Motor", "Shop", "Shop"]

        resumed = asyncio.run(billing_flow.resume_submission(retried))
        assert resumed.completed
        assert len(tenants(store.rows[1:])) == 6

    def test_retry_failed_last_record_completes_the_run(self, billing_flow, store):
        store.fail_on["Shop"] = ConnectionError("timeout")
        result = asyncio.run(billing_flow.submit_readings(household_form(shop="150")))

        still_failing = asyncio.run(billing_flow.retry_failed_record(result))
        assert still_failing.failed_record.tenant_name == "Shop"
        assert still_failing.error.kind == ErrorKind.TRANSIENT

        del store.fail_on["Shop"]
        retried = asyncio.run(billing_flow.retry_failed_record(still_failing))

        assert retried.completed
        assert retried.next_previous_readings[SHOP] == 150
        assert tenants(store.rows[1:]) == ["Shop"]

    def test_header_failure_attempts_no_records(self, billing_flow, store):
        store.read_error = ConnectionError("unreachable")

        result = asyncio.run(billing_flow.submit_readings(household_form(shop="150")))

        assert result.error.kind == ErrorKind.TRANSIENT
        assert result.failed_record is None
        assert [r.tenant_name for r in result.unsent] == ["Shop"]
        assert store.append_attempts == []

    def test_signed_out_run_is_refused(self, billing_flow, signed_in, store):
        asyncio.run(signed_in.sign_out())

        result = asyncio.run(billing_flow.submit_readings(household_form(shop="150")))

        assert result.error.kind == ErrorKind.AUTHORIZATION
        assert store.append_attempts == []


class TestPreviousReadings:
    """Tests for the prefetch before the form is shown."""

    def test_reads_latest_values(self, billing_flow, store):
        asyncio.run(billing_flow.submit_readings(household_form(shop="150")))

        previous, cost = asyncio.run(billing_flow.load_previous_readings())

        assert previous[SHOP] == 150
        assert previous[FAMILY_2] == 0
        assert cost == 10

    def test_transient_failure_degrades_to_zeros(self, billing_flow, store, signed_in):
        store.read_error = ConnectionError("service unavailable")

        previous, cost = asyncio.run(billing_flow.load_previous_readings())

        assert set(previous.values()) == {0.0}
        assert len(previous) == 7
        assert cost == 10.0
        assert signed_in.is_authenticated()

    def test_hand_edited_negative_reading_starts_from_zero(self, billing_flow, store):
        store.rows = [
            list(SHEET_HEADER),
            ["Shop", "0", "-5", "-5", "10", "-50", "2024-02-01", "0", "0"],
            ["Main Meter", "0", "inf", "0", "10", "0", "2024-02-01", "0", "0"],
        ]

        previous, _ = asyncio.run(billing_flow.load_previous_readings())
        assert previous[SHOP] == 0
        assert previous[MAIN_METER] == 0

        result = asyncio.run(billing_flow.submit_readings(ReadingForm(
            cost_per_unit="10",
            current_readings={SHOP: "20"},
            previous_readings=previous,
        )))

        assert result.completed
        assert result.submitted[0].units_consumed == 20
        assert store.rows[-1][0] == "Shop"

    def test_auth_failure_is_raised(self, billing_flow, store, signed_in):
        store.read_error = Exception(AUTH_FAILURE_TEXT)

        with pytest.raises(AuthorizationError):
            asyncio.run(billing_flow.load_previous_readings())
        assert signed_in.state == SessionState.UNAUTHENTICATED


class TestSubmitReading:
    """Tests for the single-record path."""

    def test_valid_reading(self, billing_flow, store):
        record = asyncio.run(billing_flow.submit_reading({
            "tenant_name": "Shop",
            "previous_reading": "100",
            "current_reading": "150",
            "cost_per_unit": "10",
        }))

        assert record.total_bill == 500
        assert record.date == RUN_DATE
        assert tenants(store.rows) == ["Tenant Name", "Shop"]

    @pytest.mark.parametrize("form_data, field", [
        ({"tenant_name": "", "current_reading": "5", "cost_per_unit": "1"}, "tenant_name"),
        ({"tenant_name": "Shop", "current_reading": "5", "cost_per_unit": "0"}, "cost_per_unit"),
        ({"tenant_name": "Shop", "previous_reading": "5", "current_reading": "5",
          "cost_per_unit": "1"}, "current_reading"),
    ])
    def test_invalid_reading(self, billing_flow, store, form_data, field):
        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(billing_flow.submit_reading(form_data))
        assert exc_info.value.field == field
        assert store.rows == []

    def test_auth_failure(self, billing_flow, store):
        store.fail_on["Shop"] = Exception(AUTH_FAILURE_TEXT)
        with pytest.raises(AuthorizationError):
            asyncio.run(billing_flow.submit_reading({
                "tenant_name": "Shop",
                "current_reading": "5",
                "cost_per_unit": "1",
            }))


class TestHistory:
    """Tests for listing, deleting and editing stored records."""

    def test_list_delete_edit(self, billing_flow, store):
        asyncio.run(billing_flow.submit_readings(household_form(shop="150", main_meter="30")))
        records = asyncio.run(billing_flow.list_records())
        shop, main = records

        asyncio.run(billing_flow.delete_record(main))
        edited = shop.model_copy(update={"tenant_name": "Shop (corrected)"})
        asyncio.run(billing_flow.edit_record(shop, edited))

        assert tenants(store.rows[1:]) == ["Shop (corrected)"]

    def test_deleting_unknown_record(self, billing_flow):
        asyncio.run(billing_flow.submit_readings(household_form(shop="150")))
        shop = asyncio.run(billing_flow.list_records())[0]
        missing = shop.model_copy(update={"current_reading": 999.0})

        with pytest.raises(LogicInvariantViolation):
            asyncio.run(billing_flow.delete_record(missing))

    def test_amend_record_rebills_and_keeps_date(self, billing_flow, store):
        asyncio.run(billing_flow.submit_readings(household_form(shop="150")))
        shop = asyncio.run(billing_flow.list_records())[0]

        amended = asyncio.run(billing_flow.amend_record(shop, {"current_reading": "160"}))

        assert amended.units_consumed == 60
        assert amended.total_bill == 600
        assert amended.date == shop.date
        records = asyncio.run(billing_flow.list_records())
        assert [(r.tenant_name, r.current_reading) for r in records] == [("Shop", 160)]

    def test_amend_record_rejects_unbillable_reading(self, billing_flow, store):
        asyncio.run(billing_flow.submit_readings(household_form(shop="150")))
        shop = asyncio.run(billing_flow.list_records())[0]

        with pytest.raises(ValidationError) as exc_info:
            asyncio.run(billing_flow.amend_record(shop, {"current_reading": "90"}))

        assert exc_info.value.field == "current_reading"
        assert store.rows[1][2] == 150

    def test_amend_water_only_record(self, billing_flow, store):
        asyncio.run(billing_flow.submit_readings(household_form(water_motor="100")))
        kadam = next(
            r for r in asyncio.run(billing_flow.list_records())
            if r.tenant_name == "Kadam Medam"
        )
        assert kadam.is_water_only

        amended = asyncio.run(billing_flow.amend_record(kadam, {"water_cost": "300"}))

        assert amended.total_bill == 300
        assert tenants(store.rows)[-1] == "Kadam Medam"

    def test_create_sheet(self, billing_flow, store):
        assert asyncio.run(billing_flow.create_sheet("April")) == 1
        assert store.sheets["April"][0] == list(SHEET_HEADER)

    def test_create_sheet_needs_a_name(self, billing_flow, store):
        with pytest.raises(ValidationError):
            asyncio.run(billing_flow.create_sheet("   "))
        assert store.sheets == {}


class TestSpreadsheets:
    """Tests for choosing where bills are written."""

    def test_list_with_search(self, billing_flow, catalog):
        asyncio.run(catalog.create_spreadsheet("Water 2023", list(SHEET_HEADER)))

        everything = asyncio.run(billing_flow.list_spreadsheets())
        found = asyncio.run(billing_flow.list_spreadsheets(search="  water "))

        assert len(everything) == 2
        assert [info.name for info in found] == ["Water 2023"]

    def test_create_selects_and_remembers(self, billing_flow, catalog, selection):
        created = asyncio.run(billing_flow.create_spreadsheet())

        assert created.name == f"Electricity Bills - {RUN_DATE.isoformat()}"
        assert catalog.headers[created.spreadsheet_id] == list(SHEET_HEADER)
        assert billing_flow.selected_spreadsheet_id == created.spreadsheet_id
        assert selection.load_selected() == created.spreadsheet_id

    def test_selection_is_restored(self, signed_in, repository, selection):
        selection.save_selected("sheet-7")
        catalog = FakeSpreadsheetCatalog()
        flow = BillingFlow(
            session=signed_in,
            repository=repository,
            catalog=catalog,
            selection=selection,
        )

        assert flow.restore_spreadsheet_selection() == "sheet-7"
        assert catalog.selected_id == "sheet-7"

    def test_rename(self, billing_flow, catalog):
        asyncio.run(billing_flow.rename_spreadsheet("sheet-initial", " March bills "))
        assert catalog.spreadsheets["sheet-initial"].name == "March bills"

        with pytest.raises(ValidationError):
            asyncio.run(billing_flow.rename_spreadsheet("sheet-initial", ""))

    def test_auth_failure_ends_session(self, billing_flow, catalog, signed_in):
        catalog.list_error = Exception(AUTH_FAILURE_TEXT)

        with pytest.raises(AuthorizationError):
            asyncio.run(billing_flow.list_spreadsheets())
        assert signed_in.state == SessionState.UNAUTHENTICATED

    def test_without_catalog(self, signed_in, repository):
        flow = BillingFlow(session=signed_in, repository=repository)

        assert flow.selected_spreadsheet_id is None
        assert flow.restore_spreadsheet_selection() is None
        with pytest.raises(LogicInvariantViolation):
            asyncio.run(flow.list_spreadsheets())


class TestAllocationAndFamilies:

    def test_compute_allocation(self, billing_flow):
        readings = [
            r.with_current(100.0) if r.meter_id == WATER_MOTOR else r
            for r in default_readings()
        ]
        allocation = billing_flow.compute_allocation(readings, "10", default_families())
        assert allocation.share_for(FAMILY_1).rounded_cost == 363.64

    def test_compute_allocation_without_source(self, billing_flow):
        allocation = billing_flow.compute_allocation([], "10", default_families())
        assert allocation.total_cost == 0

    def test_family_preferences_round_trip(self, billing_flow):
        families = default_families()
        families[1] = FamilyConfig(family_id=FAMILY_2, member_count=5, display_name="Kadam Family")

        billing_flow.save_families(families)

        loaded = billing_flow.families()
        assert loaded[1].display_name == "Kadam Family"
        assert loaded[1].member_count == 5
        assert loaded[0] == default_families()[0]
