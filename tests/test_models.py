"""
Tests for Household Meter Billing

Test strategy:
1. Unit tests for individual components (models, validators, engine)
2. Flow tests with the spreadsheet and identity provider faked
3. No real API calls in tests
"""

import json
from datetime import date, datetime, timedelta
from uuid import uuid4

import pytest

from meterbill.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from meterbill.models.billing import (
    FAMILY_1,
    FAMILY_3,
    METER_ORDER,
    WATER_MOTOR,
    BillRecord,
    FamilyConfig,
    MeterReading,
    MeterRole,
    TariffConfig,
    default_readings,
)
from meterbill.models.form import ValidationIssue, ValidationResult
from meterbill.models.session import Session
from meterbill.models.spreadsheet import SpreadsheetInfo
from meterbill.services.local_state import (
    FamilyPreferencesStore,
    SpreadsheetSelectionStore,
    TokenStore,
)


def sample_record(**overrides) -> BillRecord:
    fields = dict(
        tenant_name="Shop",
        previous_reading=100.0,
        current_reading=150.0,
        units_consumed=50.0,
        cost_per_unit=10.0,
        electricity_cost=500.0,
        total_bill=500.0,
        date=date(2024, 3, 1),
    )
    fields.update(overrides)
    return BillRecord(**fields)


class TestBillingModels:
    """Tests for reading and bill Pydantic models."""

    def test_meter_reading_strips_whitespace(self):
        reading = MeterReading(meter_id="shop", display_name="  Shop  ")
        assert reading.display_name == "Shop"
        assert not reading.has_reading

    def test_meter_reading_must_increase(self):
        with pytest.raises(ValueError):
            MeterReading(
                meter_id="shop",
                display_name="Shop",
                previous_reading=100,
                current_reading=100,
            )

    def test_meter_reading_rejects_negative(self):
        with pytest.raises(ValueError):
            MeterReading(meter_id="shop", display_name="Shop", previous_reading=-1)

    def test_with_previous_drops_current(self):
        reading = MeterReading(
            meter_id="shop",
            display_name="Shop",
            previous_reading=100,
            current_reading=150,
        )
        carried = reading.with_previous(150)
        assert carried.previous_reading == 150
        assert carried.current_reading is None

    def test_tariff_must_be_positive(self):
        with pytest.raises(ValueError):
            TariffConfig(cost_per_unit=0)

    def test_family_needs_a_member(self):
        with pytest.raises(ValueError):
            FamilyConfig(family_id=FAMILY_1, member_count=0, display_name="Empty")

    def test_default_readings_order_and_roles(self):
        readings = default_readings({FAMILY_3: 42.0})
        assert [r.meter_id for r in readings] == list(METER_ORDER)
        assert readings[3].previous_reading == 42.0
        assert readings[1].role == MeterRole.FAMILY_MEMBER
        assert readings[-1].role == MeterRole.WATER_SOURCE
        assert readings[-1].meter_id == WATER_MOTOR

    def test_default_readings_use_family_names(self):
        families = [FamilyConfig(family_id=FAMILY_1, member_count=3, display_name="Sharma")]
        assert default_readings(None, families)[1].display_name == "Sharma"


class TestBillRecordRows:
    """Tests for the spreadsheet row mapping."""

    def test_from_sheets_row_derives_electricity_cost(self):
        record = BillRecord.from_sheets_row(
            ["Shop", "100", "150", "50", "10", "525.5", "2024-03-01", "2.5", "25.5"]
        )
        assert record.electricity_cost == 500
        assert record.water_cost == 25.5
        assert record.date == date(2024, 3, 1)

    def test_from_sheets_row_tolerates_missing_columns(self):
        record = BillRecord.from_sheets_row(["Shop", "100", "150", "50", "10", "500"])
        assert record.water_units == 0
        assert record.water_cost == 0
        assert record.date == date.min

    def test_from_sheets_row_reads_junk_as_zero(self):
        record = BillRecord.from_sheets_row(["Shop", "n/a", "", "x", "10", "?", "soon"])
        assert record.previous_reading == 0
        assert record.total_bill == 0

    def test_records_are_immutable(self):
        record = sample_record()
        with pytest.raises(ValueError):
            record.total_bill = 1


class TestSessionModels:
    """Tests for session age and persistence."""

    def test_expiry_is_strict(self):
        start = datetime(2024, 3, 1, 9, 0)
        session = Session(access_token="t", obtained_at=start)
        limit = timedelta(minutes=55)

        assert not session.is_expired(start + limit, limit)
        assert session.is_expired(start + limit + timedelta(seconds=1), limit)

    def test_persisted_form_has_no_identity(self):
        start = datetime(2024, 3, 1, 9, 0)
        session = Session(access_token="t", obtained_at=start)

        data = session.to_persisted()

        assert data == {"access_token": "t", "obtained_at": "2024-03-01T09:00:00"}
        assert Session.from_persisted(data).obtained_at == start


class TestAuditModels:
    """Tests for audit event models."""

    def test_audit_event_creation(self):
        event = AuditEvent(
            event_type=AuditEventType.READING_SUBMITTED,
            description="Bill saved",
        )
        assert event.event_id is not None
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        correlation_id = uuid4()
        event = AuditEventBuilder.reading_submitted(sample_record(), correlation_id)
        log_dict = event.to_log_dict()

        assert log_dict["event_type"] == "reading_submitted"
        assert log_dict["tenant_name"] == "Shop"
        assert log_dict["correlation_id"] == str(correlation_id)
        assert log_dict["details"]["total_bill"] == 500.0

    def test_audit_event_to_sheets_row(self):
        event = AuditEventBuilder.record_deleted(sample_record(), row_number=4)
        row = event.to_sheets_row()

        assert len(row) == 10
        assert row[2] == "record_deleted"
        assert json.loads(row[7])["row_number"] == 4
        assert row[9] == "True"

    def test_billing_run_aborted_is_an_error(self):
        event = AuditEventBuilder.billing_run_aborted(
            failed_record=sample_record(),
            submitted_count=1,
            pending_count=3,
            error_kind="transient",
            error_message="timeout",
            correlation_id=uuid4(),
        )
        assert event.severity == AuditSeverity.ERROR
        assert event.details["pending_count"] == 3

    def test_session_events(self):
        assert AuditEventBuilder.session_started("a@b.c", restored=True).event_type == (
            AuditEventType.SESSION_RESTORED
        )
        expired = AuditEventBuilder.session_ended("expired")
        assert expired.event_type == AuditEventType.SESSION_EXPIRED
        assert expired.severity == AuditSeverity.WARNING
        signed_out = AuditEventBuilder.session_ended("signed_out")
        assert signed_out.event_type == AuditEventType.SESSION_ENDED
        assert signed_out.is_user_action


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_validation_result_has_errors(self):
        result = ValidationResult(issues=[
            ValidationIssue(
                field="shop",
                issue_type="not_increasing",
                message="Must be greater than previous reading",
                severity="error",
            ),
            ValidationIssue(
                field="shop",
                issue_type="invalid_number",
                message="second message",
            ),
        ])
        assert result.has_errors
        assert not result.is_valid
        assert result.error_count == 2
        assert result.message_for("shop") == "Must be greater than previous reading"

    def test_validation_result_warnings_only(self):
        result = ValidationResult(issues=[
            ValidationIssue(
                field="cost_per_unit",
                issue_type="unusual",
                message="Higher than last month",
                severity="warning",
            ),
        ])
        assert not result.has_errors
        assert result.is_valid
        assert result.errors_by_field == {}


class TestLocalState:
    """Tests for the JSON files kept next to the app."""

    def test_token_store_round_trip(self, tmp_path):
        store = TokenStore.in_dir(tmp_path)
        assert store.load() is None

        store.save({"access_token": "t", "obtained_at": "2024-03-01T09:00:00"})
        assert TokenStore.in_dir(tmp_path).load()["access_token"] == "t"

        store.clear()
        assert store.load() is None
        assert not (tmp_path / TokenStore.FILENAME).exists()

    def test_family_preferences_round_trip(self, tmp_path):
        store = FamilyPreferencesStore.in_dir(tmp_path)
        families = store.load_families()
        families[0] = FamilyConfig(family_id=FAMILY_1, member_count=6, display_name="Rakesh")

        store.save_families(families)

        loaded = FamilyPreferencesStore.in_dir(tmp_path).load_families()
        assert loaded[0].member_count == 6
        assert loaded[0].display_name == "Rakesh"
        assert [f.member_count for f in loaded[1:]] == [4, 2, 1]

    def test_family_preferences_ignore_bad_entries(self, tmp_path):
        (tmp_path / FamilyPreferencesStore.FILENAME).write_text(json.dumps({
            "family1": {"name": "Ok", "members": 0},
            "family2": "not a dict",
            "family3": {"members": 3},
        }))

        loaded = FamilyPreferencesStore.in_dir(tmp_path).load_families()

        # members 0 is falsy, so the default count is kept
        assert loaded[0].display_name == "Ok"
        assert loaded[0].member_count == 4
        assert loaded[1].display_name == "Kadam Medam"
        assert loaded[2].member_count == 3
        assert loaded[2].display_name == "Pipalde Sir"

    def test_family_preferences_ignore_unreadable_file(self, tmp_path):
        (tmp_path / FamilyPreferencesStore.FILENAME).write_text("{not json")
        loaded = FamilyPreferencesStore.in_dir(tmp_path).load_families()
        assert [f.member_count for f in loaded] == [4, 4, 2, 1]

    def test_spreadsheet_selection_round_trip(self, tmp_path):
        store = SpreadsheetSelectionStore.in_dir(tmp_path)
        assert store.load_selected() is None

        store.save_selected("1AbC")

        assert SpreadsheetSelectionStore.in_dir(tmp_path).load_selected() == "1AbC"

    def test_spreadsheet_selection_ignores_bad_file(self, tmp_path):
        (tmp_path / SpreadsheetSelectionStore.FILENAME).write_text('{"spreadsheet_id": 42}')
        assert SpreadsheetSelectionStore.in_dir(tmp_path).load_selected() is None

        (tmp_path / SpreadsheetSelectionStore.FILENAME).write_text("{not json")
        assert SpreadsheetSelectionStore.in_dir(tmp_path).load_selected() is None


class TestSpreadsheetInfo:
    """Tests for Drive file entries."""

    def test_from_drive_file(self):
        info = SpreadsheetInfo.from_drive_file({
            "id": "1AbC",
            "name": "Electricity Bills - 2024-03-01",
            "createdTime": "2024-03-01T09:00:00.000Z",
            "modifiedTime": "2024-03-02T10:30:00.000Z",
        })
        assert info.spreadsheet_id == "1AbC"
        assert info.modified_time.day == 2
        assert info.modified_time.tzinfo is not None

    def test_missing_times_are_allowed(self):
        info = SpreadsheetInfo.from_drive_file({"id": "1AbC"})
        assert info.name == ""
        assert info.created_time is None

    def test_matches_ignores_case_and_blank_search(self):
        info = SpreadsheetInfo(spreadsheet_id="1AbC", name="Electricity Bills")
        assert info.matches("bills")
        assert info.matches("   ")
        assert info.matches(None)
        assert not info.matches("water")

    def test_spreadsheet_audit_event(self):
        event = AuditEventBuilder.spreadsheet_changed(
            AuditEventType.SPREADSHEET_SELECTED,
            "1AbC",
            "Electricity Bills",
        )
        assert event.description == "Spreadsheet selected: Electricity Bills"
        assert event.details == {"spreadsheet_id": "1AbC", "name": "Electricity Bills"}
        assert event.is_user_action
