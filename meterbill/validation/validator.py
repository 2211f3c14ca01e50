"""
Reading Form Validation

Runs before the billing engine. The engine itself parses permissively
(blank means 0), so this is the only place where bad input is caught.

Checks:
- Cost per unit is present, numeric and positive
- Each entered reading is numeric and not negative
- Each entered reading is greater than the meter's previous reading
- At least one meter was read

IMPORTANT: Validation NEVER silently fixes issues.
It reports them per field for inline display.
"""

import math
from typing import Optional

from meterbill.models.form import ReadingForm, ValidationIssue, ValidationResult


COST_FIELD = "cost_per_unit"
READINGS_FIELD = "readings"


def _as_number(text: str) -> Optional[float]:
    """Strict parse: None unless text is a finite number."""
    try:
        number = float(text)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class ReadingFormValidator:
    """Validates a ReadingForm field by field."""

    def _validate_cost(self, form: ReadingForm) -> list[ValidationIssue]:
        text = (form.cost_per_unit or "").strip()
        if not text:
            return [ValidationIssue(
                field=COST_FIELD,
                issue_type="missing",
                message="Cost per unit is required",
            )]

        cost = _as_number(text)
        if cost is None or cost <= 0:
            return [ValidationIssue(
                field=COST_FIELD,
                issue_type="invalid_number",
                message="Must be a valid positive number",
            )]
        return []

    def _validate_readings(self, form: ReadingForm) -> list[ValidationIssue]:
        issues = []
        for meter in form.meters():
            text = form.entered(meter.meter_id)
            if not text:
                # Meters may be skipped for a run
                continue

            value = _as_number(text)
            if value is None or value < 0:
                issues.append(ValidationIssue(
                    field=meter.meter_id,
                    issue_type="invalid_number",
                    message="Must be a valid positive number",
                ))
            elif value <= meter.previous_reading:
                issues.append(ValidationIssue(
                    field=meter.meter_id,
                    issue_type="not_increasing",
                    message="Must be greater than previous reading",
                ))
        return issues

    def _validate_presence(self, form: ReadingForm) -> list[ValidationIssue]:
        if any(form.entered(meter.meter_id) for meter in form.meters()):
            return []
        return [ValidationIssue(
            field=READINGS_FIELD,
            issue_type="missing",
            message="Please enter at least one current reading",
        )]

    def validate(self, form: ReadingForm) -> ValidationResult:
        """Run every check and collect all issues."""
        issues = []
        issues.extend(self._validate_cost(form))
        issues.extend(self._validate_readings(form))
        issues.extend(self._validate_presence(form))
        return ValidationResult(issues=issues)

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """One line for the form banner."""
        if result.is_valid:
            return "All readings look good."
        if result.error_count == 1:
            return "Please fix the highlighted field before saving."
        return f"Please fix the {result.error_count} highlighted fields before saving."
