"""
Reading Form Models

The form holds exactly what the user typed: text, not numbers.
It is checked by ReadingFormValidator before anything is computed,
and only converted to typed readings once it is known to be valid.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from meterbill.models.billing import (
    FamilyConfig,
    MeterReading,
    TariffConfig,
    default_families,
    default_readings,
)


class ReadingForm(BaseModel):
    """Raw input for one billing run."""

    cost_per_unit: str = Field(
        default="",
        description="Cost per unit as typed"
    )
    current_readings: dict[str, str] = Field(
        default_factory=dict,
        description="meter_id -> current reading as typed (blank = not read)"
    )
    previous_readings: dict[str, float] = Field(
        default_factory=dict,
        description="meter_id -> last stored reading"
    )
    families: list[FamilyConfig] = Field(
        default_factory=default_families,
        description="Family member counts in allocation order"
    )

    def entered(self, meter_id: str) -> str:
        """The typed current reading for a meter, stripped."""
        return (self.current_readings.get(meter_id) or "").strip()

    def meters(self) -> list[MeterReading]:
        """Unread meters with their previous readings, in fixed order."""
        return default_readings(self.previous_readings, self.families)

    def to_readings(self) -> list[MeterReading]:
        """
        Typed readings for the billing engine.

        Only call on a validated form; invalid values raise.
        """
        readings = []
        for meter in self.meters():
            text = self.entered(meter.meter_id)
            readings.append(meter.with_current(float(text) if text else None))
        return readings

    def to_tariff(self) -> TariffConfig:
        return TariffConfig(cost_per_unit=float(self.cost_per_unit))


class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue (meter id or 'cost_per_unit')"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_number', 'not_increasing')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        default="error",
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class ValidationResult(BaseModel):
    """Result of form validation."""

    validated_at: datetime = Field(
        default_factory=datetime.utcnow
    )
    issues: list[ValidationIssue] = Field(
        default_factory=list,
        description="All validation issues found"
    )

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def is_valid(self) -> bool:
        return not self.has_errors

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def errors_by_field(self) -> dict[str, str]:
        """First error message per field, for inline display."""
        errors: dict[str, str] = {}
        for issue in self.issues:
            if issue.severity == "error":
                errors.setdefault(issue.field, issue.message)
        return errors

    def message_for(self, field: str) -> Optional[str]:
        return self.errors_by_field.get(field)
