"""Billing engine package."""

from meterbill.billing.engine import (
    TariffLike,
    allocate_shared_utility,
    attach_water,
    bill_from_form,
    build_billing_run,
    compute_individual_bill,
    cost_per_unit_of,
    normalize_percentages,
    parse_number,
    water_only_bill,
)

__all__ = [
    "TariffLike",
    "allocate_shared_utility",
    "attach_water",
    "bill_from_form",
    "build_billing_run",
    "compute_individual_bill",
    "cost_per_unit_of",
    "normalize_percentages",
    "parse_number",
    "water_only_bill",
]
