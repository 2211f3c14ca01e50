"""
Audit Logger

DESIGN DECISION: Every submission and every session transition is logged.

The audit logger:
- Always logs locally as structured JSON
- Optionally appends events to the audit worksheet
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace all records of one billing run

Session events are local-only: they are usually logged at the moment the
credentials needed to reach the sheet have just been lost.
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from meterbill.models.audit import AuditEvent, AuditEventBuilder, AuditEventType, AuditSeverity
from meterbill.models.billing import BillRecord
from meterbill.services.storage.interface import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Google Sheets (for persistence), when storage is configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("meterbill.audit")

    def record_locally(self, event: AuditEvent) -> None:
        """Write an event to the local structured log only."""
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        self.record_locally(event)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_reading_submitted(
        self,
        record: BillRecord,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log one bill record written to the sheet."""
        await self.log(AuditEventBuilder.reading_submitted(record, correlation_id))

    async def log_billing_run_completed(
        self,
        record_count: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.billing_run_completed(record_count, correlation_id))

    async def log_billing_run_aborted(
        self,
        failed_record: BillRecord,
        submitted_count: int,
        pending_count: int,
        error_kind: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log a run that stopped at a failed write."""
        event = AuditEventBuilder.billing_run_aborted(
            failed_record=failed_record,
            submitted_count=submitted_count,
            pending_count=pending_count,
            error_kind=error_kind,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        if error_kind == "authorization":
            # The sheet is unreachable without credentials
            self.record_locally(event)
        else:
            await self.log(event)

    async def log_validation_failed(
        self,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.validation_failed(issues, correlation_id))

    def log_previous_readings_degraded(self, error_message: str) -> None:
        """Local only: the sheet just failed to answer."""
        self.record_locally(AuditEventBuilder.previous_readings_degraded(error_message))

    async def log_record_deleted(self, record: BillRecord, row_number: int) -> None:
        await self.log(AuditEventBuilder.record_deleted(record, row_number))

    async def log_record_edited(self, old: BillRecord, new: BillRecord) -> None:
        await self.log(AuditEventBuilder.record_edited(old, new))

    async def log_record_not_found(self, record: BillRecord, error_message: str) -> None:
        await self.log(AuditEventBuilder.record_not_found(record, error_message))

    async def log_spreadsheet_changed(
        self,
        event_type: AuditEventType,
        spreadsheet_id: str,
        name: str = "",
    ) -> None:
        await self.log(AuditEventBuilder.spreadsheet_changed(event_type, spreadsheet_id, name))

    def log_session_started(self, email: Optional[str], restored: bool) -> None:
        self.record_locally(AuditEventBuilder.session_started(email, restored))

    def log_session_ended(self, reason: str) -> None:
        self.record_locally(AuditEventBuilder.session_ended(reason))

    def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Local only: the failing service may be the audit sheet itself."""
        self.record_locally(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a billing run and pass it to every write.
    """
    return uuid4()
