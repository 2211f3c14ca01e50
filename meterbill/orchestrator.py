"""
Main Orchestrator for Household Meter Billing

This module ties together all the components and defines the
end-to-end flows for:
1. Billing run (form -> validate -> compute -> write records in order)
2. History (list, delete, edit stored records)
3. Choosing the spreadsheet bills are written to

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing invalid reaches the spreadsheet
- Every spreadsheet call goes through the session guard
- Records are written one at a time, water source first, and the first
  failure stops the run. Written records stay written; the failed record
  can be resubmitted on its own.
- Nothing is retried automatically; the user retries
"""

from datetime import date, timedelta
from functools import partial
from typing import Callable, Optional, Sequence
from uuid import UUID

import structlog
from pydantic import BaseModel, ConfigDict, Field

from meterbill.audit import AuditLogger, create_correlation_id
from meterbill.billing import (
    TariffLike,
    allocate_shared_utility,
    bill_from_form,
    build_billing_run,
)
from meterbill.config import Settings, get_settings
from meterbill.errors import (
    AuthorizationError,
    LogicInvariantViolation,
    MeterBillError,
    ValidationError,
)
from meterbill.models.audit import AuditEventType
from meterbill.models.billing import (
    DEFAULT_METER_NAMES,
    SHEET_HEADER,
    WATER_MOTOR,
    AllocationResult,
    BillingRun,
    BillRecord,
    FamilyConfig,
    MeterReading,
    MeterRole,
    default_families,
    default_readings,
    role_for,
)
from meterbill.models.form import ReadingForm, ValidationResult
from meterbill.models.spreadsheet import SpreadsheetInfo
from meterbill.services.identity import GoogleIdentityProvider
from meterbill.services.local_state import (
    FamilyPreferencesStore,
    SpreadsheetSelectionStore,
    TokenStore,
)
from meterbill.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsCatalog,
    GoogleSheetsClient,
    GoogleSheetsTabularStore,
    ReadingRepository,
    SpreadsheetCatalogInterface,
)
from meterbill.session import SessionManager
from meterbill.validation import ReadingFormValidator


logger = structlog.get_logger(__name__)


class SubmissionResult(BaseModel):
    """Outcome of submitting a billing run."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    correlation_id: UUID
    validation: Optional[ValidationResult] = None
    run: Optional[BillingRun] = None

    submitted: list[BillRecord] = Field(default_factory=list)
    failed_record: Optional[BillRecord] = None
    pending: list[BillRecord] = Field(
        default_factory=list,
        description="Records after the failure that were never attempted"
    )
    error: Optional[MeterBillError] = None

    next_previous_readings: Optional[dict[str, float]] = Field(
        default=None,
        description="Set only when every record was written"
    )

    @property
    def rejected(self) -> bool:
        """The form failed validation; nothing was written."""
        return self.validation is not None and not self.validation.is_valid

    @property
    def completed(self) -> bool:
        return not self.rejected and self.error is None

    @property
    def unsent(self) -> list[BillRecord]:
        """The failed record followed by everything after it."""
        head = [self.failed_record] if self.failed_record is not None else []
        return head + list(self.pending)


class BillingFlow:
    """
    Orchestrates the billing run and the history view.

    Flow:
    1. Prefetch previous readings (degrades to zeros on transient failure)
    2. Validate the form (errors shown per field, never persisted)
    3. Build the billing run (pure computation)
    4. Write the header if missing, then every record in order
    5. Stop at the first failed write and report what is left
    """

    def __init__(
        self,
        session: SessionManager,
        repository: ReadingRepository,
        validator: Optional[ReadingFormValidator] = None,
        preferences: Optional[FamilyPreferencesStore] = None,
        audit_logger: Optional[AuditLogger] = None,
        default_cost_per_unit: float = 10.0,
        today: Callable[[], date] = date.today,
        catalog: Optional[SpreadsheetCatalogInterface] = None,
        selection: Optional[SpreadsheetSelectionStore] = None,
    ):
        self._session = session
        self._repository = repository
        self._validator = validator or ReadingFormValidator()
        self._preferences = preferences
        self._audit_logger = audit_logger
        self._default_cost_per_unit = default_cost_per_unit
        self._today = today
        self._catalog = catalog
        self._selection = selection

    @property
    def session(self) -> SessionManager:
        return self._session

    # =========================================================================
    # Family preferences
    # =========================================================================

    def families(self) -> list[FamilyConfig]:
        """Saved family names and member counts, or the defaults."""
        if self._preferences is None:
            return default_families()
        return self._preferences.load_families()

    def save_families(self, families: Sequence[FamilyConfig]) -> None:
        if self._preferences is not None:
            self._preferences.save_families(list(families))

    # =========================================================================
    # Billing run
    # =========================================================================

    async def load_previous_readings(
        self,
        families: Optional[Sequence[FamilyConfig]] = None,
    ) -> tuple[dict[str, float], float]:
        """
        Latest stored reading per meter, plus the latest cost per unit.

        A failed read is not fatal: every meter starts from 0 and the
        default cost applies. An authorization failure is, and is raised.

        Raises:
            AuthorizationError: not signed in, or the token was rejected
        """
        meters = default_readings(None, list(families or self.families()))
        try:
            return await self._session.guard(partial(
                self._repository.latest_readings,
                meters,
                self._default_cost_per_unit,
            ))
        except AuthorizationError:
            raise
        except MeterBillError as e:
            logger.warning("previous_readings_unavailable", error=e.message)
            if self._audit_logger:
                self._audit_logger.log_previous_readings_degraded(e.message)
            return (
                {meter.meter_id: 0.0 for meter in meters},
                self._default_cost_per_unit,
            )

    def validate(self, form: ReadingForm) -> ValidationResult:
        return self._validator.validate(form)

    def compute_allocation(
        self,
        readings: Sequence[MeterReading],
        tariff: TariffLike,
        families: Sequence[FamilyConfig],
    ) -> AllocationResult:
        """
        Water split for display while the form is being filled in.

        Without a water source reading every share is zero.
        """
        source = next(
            (r for r in readings if r.role == MeterRole.WATER_SOURCE),
            MeterReading(
                meter_id=WATER_MOTOR,
                display_name=DEFAULT_METER_NAMES[WATER_MOTOR],
                role=role_for(WATER_MOTOR),
            ),
        )
        return allocate_shared_utility(source, tariff, families)

    async def submit_readings(
        self,
        form: ReadingForm,
        correlation_id: Optional[UUID] = None,
    ) -> SubmissionResult:
        """
        Validate, compute and write one billing run.

        Never raises for classified failures; they are reported in the
        result together with the records still to be written.
        """
        correlation_id = correlation_id or create_correlation_id()

        validation = self._validator.validate(form)
        if not validation.is_valid:
            if self._audit_logger:
                await self._audit_logger.log_validation_failed(
                    [issue.model_dump() for issue in validation.issues],
                    correlation_id,
                )
            return SubmissionResult(
                correlation_id=correlation_id,
                validation=validation,
            )

        run = build_billing_run(
            form.to_readings(),
            form.to_tariff(),
            form.families,
            on=self._today(),
        )

        try:
            await self._session.guard(self._repository.ensure_header)
        except MeterBillError as e:
            return await self._aborted(
                run, [], None, run.records, e, correlation_id, validation
            )

        return await self._write_records(run, run.records, correlation_id, validation)

    async def resume_submission(self, result: SubmissionResult) -> SubmissionResult:
        """Write the failed record and everything after it, in the original order."""
        if result.completed or result.run is None:
            return result
        return await self._write_records(
            result.run,
            result.unsent,
            result.correlation_id,
            result.validation,
            already_submitted=result.submitted,
        )

    async def retry_record(
        self,
        record: BillRecord,
        correlation_id: Optional[UUID] = None,
    ) -> BillRecord:
        """
        Resubmit a single record that failed to write.

        Raises:
            MeterBillError: classified write failure
        """
        await self._session.guard(partial(self._repository.append_record, record))
        if self._audit_logger:
            await self._audit_logger.log_reading_submitted(record, correlation_id)
        return record

    async def retry_failed_record(self, result: SubmissionResult) -> SubmissionResult:
        """
        Resubmit only the record a run stopped at.

        Pending records stay pending; resume_submission() writes them.
        A run whose last record this was is complete afterwards.
        """
        if result.failed_record is None:
            return result

        try:
            await self.retry_record(result.failed_record, result.correlation_id)
        except MeterBillError as e:
            return result.model_copy(update={"error": e})

        submitted = list(result.submitted) + [result.failed_record]
        if result.pending:
            return result.model_copy(update={
                "submitted": submitted,
                "failed_record": None,
            })

        if self._audit_logger:
            await self._audit_logger.log_billing_run_completed(
                len(submitted),
                result.correlation_id,
            )
        return SubmissionResult(
            correlation_id=result.correlation_id,
            validation=result.validation,
            run=result.run,
            submitted=submitted,
            next_previous_readings=dict(result.run.next_previous_readings),
        )

    async def submit_reading(self, form_data: dict) -> BillRecord:
        """
        Bill and write one reading given as raw form fields.

        Raises:
            ValidationError: blank tenant, non-positive cost, or a reading
                that does not increase
            AuthorizationError: not signed in, or the token was rejected
        """
        record = bill_from_form(form_data, on=self._today())
        self._check_single(record)

        await self._session.guard(self._repository.ensure_header)
        await self._session.guard(partial(self._repository.append_record, record))

        if self._audit_logger:
            await self._audit_logger.log_reading_submitted(record)
        return record

    @staticmethod
    def _check_single(record: BillRecord, allow_unchanged: bool = False) -> None:
        if not record.tenant_name:
            raise ValidationError("Tenant name is required", field="tenant_name")
        if record.cost_per_unit <= 0:
            raise ValidationError(
                "Must be a valid positive number",
                field="cost_per_unit",
            )
        unchanged = record.current_reading == record.previous_reading
        if record.current_reading < record.previous_reading or (unchanged and not allow_unchanged):
            raise ValidationError(
                "Current reading must be greater than previous reading",
                field="current_reading",
            )

    async def _write_records(
        self,
        run: BillingRun,
        records: Sequence[BillRecord],
        correlation_id: UUID,
        validation: Optional[ValidationResult],
        already_submitted: Sequence[BillRecord] = (),
    ) -> SubmissionResult:
        submitted = list(already_submitted)

        for index, record in enumerate(records):
            try:
                await self._session.guard(
                    partial(self._repository.append_record, record)
                )
            except MeterBillError as e:
                return await self._aborted(
                    run,
                    submitted,
                    record,
                    list(records[index + 1:]),
                    e,
                    correlation_id,
                    validation,
                )

            submitted.append(record)
            if self._audit_logger:
                await self._audit_logger.log_reading_submitted(record, correlation_id)

        if self._audit_logger:
            await self._audit_logger.log_billing_run_completed(
                len(submitted),
                correlation_id,
            )

        return SubmissionResult(
            correlation_id=correlation_id,
            validation=validation,
            run=run,
            submitted=submitted,
            next_previous_readings=dict(run.next_previous_readings),
        )

    async def _aborted(
        self,
        run: BillingRun,
        submitted: list[BillRecord],
        failed_record: Optional[BillRecord],
        pending: Sequence[BillRecord],
        error: MeterBillError,
        correlation_id: UUID,
        validation: Optional[ValidationResult],
    ) -> SubmissionResult:
        logger.warning(
            "billing_run_aborted",
            error_kind=error.kind.value,
            error=error.message,
            submitted=len(submitted),
            pending=len(pending),
        )
        if self._audit_logger and failed_record is None:
            self._audit_logger.log_external_service_error(
                service="google_sheets",
                error_message=error.message,
                correlation_id=correlation_id,
            )
        elif self._audit_logger:
            await self._audit_logger.log_billing_run_aborted(
                failed_record=failed_record,
                submitted_count=len(submitted),
                pending_count=len(pending),
                error_kind=error.kind.value,
                error_message=error.message,
                correlation_id=correlation_id,
            )

        return SubmissionResult(
            correlation_id=correlation_id,
            validation=validation,
            run=run,
            submitted=submitted,
            failed_record=failed_record,
            pending=list(pending),
            error=error,
        )

    # =========================================================================
    # History
    # =========================================================================

    async def list_records(self) -> list[BillRecord]:
        """All stored records, oldest first."""
        return await self._session.guard(self._repository.list_records)

    async def delete_record(self, record: BillRecord) -> int:
        """
        Delete a stored record.

        Raises:
            LogicInvariantViolation: no row matches the record
        """
        try:
            row_number = await self._session.guard(
                partial(self._repository.delete_record, record)
            )
        except LogicInvariantViolation as e:
            if self._audit_logger:
                await self._audit_logger.log_record_not_found(record, e.message)
            raise

        if self._audit_logger:
            await self._audit_logger.log_record_deleted(record, row_number)
        return row_number

    async def edit_record(self, old: BillRecord, new: BillRecord) -> BillRecord:
        """
        Replace a stored record: delete its row, append the new one.

        Raises:
            LogicInvariantViolation: no row matches the old record
        """
        try:
            await self._session.guard(
                partial(self._repository.replace_record, old, new)
            )
        except LogicInvariantViolation as e:
            if self._audit_logger:
                await self._audit_logger.log_record_not_found(old, e.message)
            raise

        if self._audit_logger:
            await self._audit_logger.log_record_edited(old, new)
        return new

    async def amend_record(self, old: BillRecord, form_data: dict) -> BillRecord:
        """
        Re-bill a stored record from corrected form fields and replace it.

        Missing fields keep the old values; the date never changes.

        Raises:
            ValidationError: the corrected reading is not billable
            LogicInvariantViolation: no row matches the old record
        """
        fields = {
            "tenant_name": old.tenant_name,
            "previous_reading": old.previous_reading,
            "current_reading": old.current_reading,
            "cost_per_unit": old.cost_per_unit,
            "water_units": old.water_units,
            "water_cost": old.water_cost,
        }
        fields.update({key: value for key, value in form_data.items() if value is not None})

        new = bill_from_form(fields, on=old.date)
        # Water-only records keep their reading unchanged
        self._check_single(new, allow_unchanged=old.is_water_only)
        return await self.edit_record(old, new)

    async def create_sheet(self, title: str) -> int:
        """Start a fresh worksheet with the bill header. Returns its sheet id."""
        if not title or not title.strip():
            raise ValidationError("Sheet name is required", field="title")
        return await self._session.guard(
            partial(self._repository.create_readings_sheet, title.strip())
        )

    # =========================================================================
    # Spreadsheets
    # =========================================================================

    def _require_catalog(self) -> SpreadsheetCatalogInterface:
        if self._catalog is None:
            raise LogicInvariantViolation("Spreadsheet selection is not configured")
        return self._catalog

    @property
    def selected_spreadsheet_id(self) -> Optional[str]:
        return self._catalog.selected_id if self._catalog is not None else None

    def restore_spreadsheet_selection(self) -> Optional[str]:
        """Switch back to the spreadsheet chosen last time, if one was saved."""
        if self._catalog is None or self._selection is None:
            return None
        saved = self._selection.load_selected()
        if saved:
            self._catalog.select(saved)
        return saved

    async def list_spreadsheets(self, search: Optional[str] = None) -> list[SpreadsheetInfo]:
        """Spreadsheets the account can use, filtered by name."""
        catalog = self._require_catalog()
        spreadsheets = await self._session.guard(catalog.list_spreadsheets)
        return [info for info in spreadsheets if info.matches(search)]

    async def select_spreadsheet(self, spreadsheet_id: str, name: str = "") -> None:
        """Write bills to another spreadsheet from now on, and remember it."""
        catalog = self._require_catalog()
        if spreadsheet_id == catalog.selected_id:
            return
        catalog.select(spreadsheet_id)
        if self._selection is not None:
            self._selection.save_selected(spreadsheet_id)
        logger.info("spreadsheet_selected", spreadsheet_id=spreadsheet_id)
        if self._audit_logger:
            await self._audit_logger.log_spreadsheet_changed(
                AuditEventType.SPREADSHEET_SELECTED,
                spreadsheet_id,
                name,
            )

    async def create_spreadsheet(self, title: Optional[str] = None) -> SpreadsheetInfo:
        """
        New spreadsheet with the bill header, selected straight away.

        The default title carries today's date.
        """
        catalog = self._require_catalog()
        title = (title or "").strip() or f"Electricity Bills - {self._today().isoformat()}"
        created = await self._session.guard(
            partial(catalog.create_spreadsheet, title, list(SHEET_HEADER))
        )
        if self._audit_logger:
            await self._audit_logger.log_spreadsheet_changed(
                AuditEventType.SPREADSHEET_CREATED,
                created.spreadsheet_id,
                created.name,
            )
        await self.select_spreadsheet(created.spreadsheet_id, created.name)
        return created

    async def rename_spreadsheet(self, spreadsheet_id: str, name: str) -> None:
        """
        Raises:
            ValidationError: blank name
        """
        catalog = self._require_catalog()
        if not name or not name.strip():
            raise ValidationError("Spreadsheet name is required", field="name")
        await self._session.guard(
            partial(catalog.rename_spreadsheet, spreadsheet_id, name.strip())
        )
        if self._audit_logger:
            await self._audit_logger.log_spreadsheet_changed(
                AuditEventType.SPREADSHEET_RENAMED,
                spreadsheet_id,
                name.strip(),
            )


def create_app_components(
    settings: Optional[Settings] = None,
) -> tuple[BillingFlow, SessionManager, GoogleSheetsClient]:
    """
    Factory function to create all application components.

    Nothing connects here; the first spreadsheet call does.

    Returns:
        (billing_flow, session_manager, sheets_client)
    """
    settings = settings or get_settings()
    state_dir = settings.app.state_path

    session = SessionManager(
        identity_provider=GoogleIdentityProvider(
            credentials_path=settings.google_sheets.credentials_path,
            auth_settings=settings.google_auth,
        ),
        token_store=TokenStore.in_dir(state_dir),
        scopes=settings.google_auth.scopes,
        max_age=timedelta(minutes=settings.app.session_max_age_minutes),
        notice_duration=timedelta(seconds=settings.app.session_notice_seconds),
        # Session events never reach the sheet
        audit_logger=AuditLogger(),
    )

    sheets_client = GoogleSheetsClient(
        settings=settings.google_sheets,
        token_getter=lambda: session.stored_token,
    )
    audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))

    billing_flow = BillingFlow(
        session=session,
        repository=ReadingRepository(GoogleSheetsTabularStore(sheets_client)),
        preferences=FamilyPreferencesStore.in_dir(state_dir),
        audit_logger=audit_logger,
        default_cost_per_unit=settings.app.default_cost_per_unit,
        catalog=GoogleSheetsCatalog(sheets_client),
        selection=SpreadsheetSelectionStore.in_dir(state_dir),
    )
    billing_flow.restore_spreadsheet_selection()

    return billing_flow, session, sheets_client
