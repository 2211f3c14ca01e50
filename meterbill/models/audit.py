"""
Audit Models for Household Meter Billing

Every billing submission and every session transition is logged.
This provides:
1. A record of which bills were written and when
2. Debugging information when a run is aborted half way
3. The exact record to resubmit after a failed write

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from meterbill.models.billing import BillRecord


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Billing
    READING_SUBMITTED = "reading_submitted"
    BILLING_RUN_COMPLETED = "billing_run_completed"
    BILLING_RUN_ABORTED = "billing_run_aborted"
    VALIDATION_FAILED = "validation_failed"
    PREVIOUS_READINGS_DEGRADED = "previous_readings_degraded"

    # History edits
    RECORD_DELETED = "record_deleted"
    RECORD_EDITED = "record_edited"
    RECORD_NOT_FOUND = "record_not_found"

    # Spreadsheets
    SPREADSHEET_CREATED = "spreadsheet_created"
    SPREADSHEET_SELECTED = "spreadsheet_selected"
    SPREADSHEET_RENAMED = "spreadsheet_renamed"

    # Session
    SESSION_STARTED = "session_started"
    SESSION_RESTORED = "session_restored"
    SESSION_EXPIRED = "session_expired"
    SESSION_ENDED = "session_ended"

    # System events
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context
    tenant_name: Optional[str] = Field(
        default=None,
        description="Tenant the event relates to, if any"
    )
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID shared by all events of one billing run"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "tenant_name": self.tenant_name,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row for the audit worksheet.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, tenant_name,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.tenant_name or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


def _record_details(record: BillRecord) -> dict:
    return {
        "units_consumed": record.units_consumed,
        "total_bill": round(record.total_bill, 2),
        "water_cost": round(record.water_cost, 2),
        "date": record.date.isoformat(),
    }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.reading_submitted(record, correlation_id)
        event = AuditEventBuilder.session_ended("signed_out")
    """

    @staticmethod
    def reading_submitted(
        record: BillRecord,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.READING_SUBMITTED,
            tenant_name=record.tenant_name,
            correlation_id=correlation_id,
            description=f"Bill saved: {record.tenant_name} - {record.total_bill:.2f}",
            details=_record_details(record),
            is_user_action=True,
        )

    @staticmethod
    def billing_run_completed(
        record_count: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BILLING_RUN_COMPLETED,
            correlation_id=correlation_id,
            description=f"Billing run completed with {record_count} records",
            details={"record_count": record_count},
        )

    @staticmethod
    def billing_run_aborted(
        failed_record: BillRecord,
        submitted_count: int,
        pending_count: int,
        error_kind: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BILLING_RUN_ABORTED,
            severity=AuditSeverity.ERROR,
            tenant_name=failed_record.tenant_name,
            correlation_id=correlation_id,
            description=f"Billing run aborted at {failed_record.tenant_name}",
            details={
                "submitted_count": submitted_count,
                "pending_count": pending_count,
                "error_kind": error_kind,
                "failed_record": _record_details(failed_record),
            },
            error_message=error_message,
        )

    @staticmethod
    def validation_failed(
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description=f"Reading form rejected with {len(issues)} issues",
            details={"issues": issues},
            is_user_action=True,
        )

    @staticmethod
    def previous_readings_degraded(error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PREVIOUS_READINGS_DEGRADED,
            severity=AuditSeverity.WARNING,
            description="Could not load previous readings, using zeros",
            error_message=error_message,
        )

    @staticmethod
    def record_deleted(record: BillRecord, row_number: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_DELETED,
            tenant_name=record.tenant_name,
            description=f"Record deleted: {record.tenant_name} ({record.date.isoformat()})",
            details={"row_number": row_number, **_record_details(record)},
            is_user_action=True,
        )

    @staticmethod
    def record_edited(old: BillRecord, new: BillRecord) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_EDITED,
            tenant_name=new.tenant_name,
            description=f"Record edited: {old.tenant_name}",
            details={"old": _record_details(old), "new": _record_details(new)},
            is_user_action=True,
        )

    @staticmethod
    def record_not_found(record: BillRecord, error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECORD_NOT_FOUND,
            severity=AuditSeverity.WARNING,
            tenant_name=record.tenant_name,
            description=f"Could not locate record for {record.tenant_name}",
            details=_record_details(record),
            error_message=error_message,
        )

    @staticmethod
    def spreadsheet_changed(
        event_type: AuditEventType,
        spreadsheet_id: str,
        name: str = "",
    ) -> AuditEvent:
        action = event_type.value.split("_", 1)[1]
        return AuditEvent(
            event_type=event_type,
            description=f"Spreadsheet {action}: {name or spreadsheet_id}",
            details={"spreadsheet_id": spreadsheet_id, "name": name},
            is_user_action=True,
        )

    @staticmethod
    def session_started(email: Optional[str], restored: bool) -> AuditEvent:
        return AuditEvent(
            event_type=(
                AuditEventType.SESSION_RESTORED if restored
                else AuditEventType.SESSION_STARTED
            ),
            description="Session restored" if restored else "User signed in",
            details={"email": email or ""},
            is_user_action=not restored,
        )

    @staticmethod
    def session_ended(reason: str) -> AuditEvent:
        severity = AuditSeverity.INFO if reason == "signed_out" else AuditSeverity.WARNING
        event_type = (
            AuditEventType.SESSION_EXPIRED if reason == "expired"
            else AuditEventType.SESSION_ENDED
        )
        return AuditEvent(
            event_type=event_type,
            severity=severity,
            description=f"Session ended: {reason}",
            details={"reason": reason},
            is_user_action=reason == "signed_out",
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={"service": service},
            correlation_id=correlation_id,
        )
