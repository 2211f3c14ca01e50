"""
Data Models Package

This package contains all Pydantic models used in the meter billing system.
All data flowing through the system must conform to these schemas.
"""

from meterbill.models.billing import (
    FAMILY_ORDER,
    METER_ORDER,
    SHEET_HEADER,
    WATER_MOTOR,
    AllocationResult,
    BillingRun,
    BillRecord,
    FamilyConfig,
    FamilyShare,
    MeterReading,
    MeterRole,
    TariffConfig,
    default_families,
    default_readings,
)
from meterbill.models.form import (
    ReadingForm,
    ValidationIssue,
    ValidationResult,
)
from meterbill.models.session import (
    AccessToken,
    EndReason,
    Identity,
    Session,
    SessionEvent,
    SessionNotice,
    SessionState,
)
from meterbill.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from meterbill.models.spreadsheet import SpreadsheetInfo

__all__ = [
    # Billing models
    "FAMILY_ORDER",
    "METER_ORDER",
    "SHEET_HEADER",
    "WATER_MOTOR",
    "AllocationResult",
    "BillingRun",
    "BillRecord",
    "FamilyConfig",
    "FamilyShare",
    "MeterReading",
    "MeterRole",
    "TariffConfig",
    "default_families",
    "default_readings",
    # Form models
    "ReadingForm",
    "ValidationIssue",
    "ValidationResult",
    # Session models
    "AccessToken",
    "EndReason",
    "Identity",
    "Session",
    "SessionEvent",
    "SessionNotice",
    "SessionState",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    # Spreadsheet models
    "SpreadsheetInfo",
]
