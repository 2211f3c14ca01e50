"""
Core Data Models for Household Meter Billing

These models define the schemas for readings, tariffs, family configuration
and the bill records written to the spreadsheet.

DESIGN DECISION: The order in which meters are processed is an explicit
list (METER_ORDER / FAMILY_ORDER), never the incidental order of a dict.
Billing output and submission order both depend on it.
"""

from datetime import date
from enum import Enum
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    model_validator,
)


# =============================================================================
# ENUMS
# =============================================================================

class MeterRole(str, Enum):
    """How a meter takes part in a billing run."""
    INDEPENDENT = "independent"        # Billed on its own (shop, main meter)
    WATER_SOURCE = "water_source"      # Shared pump, cost split across families
    FAMILY_MEMBER = "family_member"    # Tenant family, receives a water share


# =============================================================================
# METER ENUMERATION
# =============================================================================

SHOP = "shop"
FAMILY_1 = "family1"
FAMILY_2 = "family2"
FAMILY_3 = "family3"
FAMILY_4 = "family4"
MAIN_METER = "main_meter"
WATER_MOTOR = "water_motor"

FAMILY_ORDER: tuple[str, ...] = (FAMILY_1, FAMILY_2, FAMILY_3, FAMILY_4)

METER_ORDER: tuple[str, ...] = (
    SHOP,
    FAMILY_1,
    FAMILY_2,
    FAMILY_3,
    FAMILY_4,
    MAIN_METER,
    WATER_MOTOR,
)


# =============================================================================
# INPUT MODELS
# =============================================================================

class MeterReading(BaseModel):
    """
    One meter's readings for a billing run.

    current_reading is None when the meter was not read this run.
    When present it must be strictly greater than previous_reading.
    """
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    meter_id: str = Field(..., min_length=1)
    display_name: str = Field(..., min_length=1, max_length=200)
    previous_reading: float = Field(default=0.0, ge=0)
    current_reading: Optional[float] = Field(default=None, ge=0)
    role: MeterRole = MeterRole.INDEPENDENT

    @model_validator(mode='after')
    def validate_monotonic(self) -> 'MeterReading':
        """Current reading must move forward."""
        if (
            self.current_reading is not None
            and self.current_reading <= self.previous_reading
        ):
            raise ValueError(
                "Current reading must be greater than previous reading"
            )
        return self

    @property
    def has_reading(self) -> bool:
        return self.current_reading is not None

    def with_current(self, current_reading: Optional[float]) -> 'MeterReading':
        """Return a copy with a new current reading (validated)."""
        return MeterReading(
            meter_id=self.meter_id,
            display_name=self.display_name,
            previous_reading=self.previous_reading,
            current_reading=current_reading,
            role=self.role,
        )

    def with_previous(self, previous_reading: float) -> 'MeterReading':
        """Return a copy carried into the next run (no current reading)."""
        return MeterReading(
            meter_id=self.meter_id,
            display_name=self.display_name,
            previous_reading=previous_reading,
            role=self.role,
        )


class FamilyConfig(BaseModel):
    """Member count for one family meter, used only for water allocation."""
    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    family_id: str = Field(..., min_length=1)
    member_count: int = Field(..., ge=1)
    display_name: str = Field(..., min_length=1, max_length=200)


class TariffConfig(BaseModel):
    """Cost per unit applied uniformly across all meters in one run."""
    model_config = ConfigDict(frozen=True)

    cost_per_unit: float = Field(..., gt=0)


# =============================================================================
# OUTPUT MODELS
# =============================================================================

SHEET_HEADER: tuple[str, ...] = (
    "Tenant Name",
    "Previous Reading",
    "Current Reading",
    "Units Consumed",
    "Cost per Unit",
    "Total Bill",
    "Date",
    "Water Units",
    "Water Cost",
)


def _parse_cell(value: object) -> float:
    # Blank or unparsable cells read as 0, matching how the sheet is filled by hand
    try:
        return float(str(value).strip()) if str(value).strip() else 0.0
    except (TypeError, ValueError):
        return 0.0


class BillRecord(BaseModel):
    """
    One bill line: one meter, one billing run.

    Immutable once produced. Appended to the spreadsheet, never edited in
    place; an edit is a delete followed by a fresh append.
    """
    model_config = ConfigDict(frozen=True)

    tenant_name: str
    previous_reading: float
    current_reading: float
    units_consumed: float
    cost_per_unit: float
    electricity_cost: float
    water_units: float = Field(default=0.0, ge=0)
    water_cost: float = Field(default=0.0, ge=0)
    total_bill: float
    date: date

    @property
    def is_water_only(self) -> bool:
        """True for records synthesised only to carry a water share."""
        return self.units_consumed == 0 and self.water_cost > 0

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [tenant_name, previous_reading, current_reading, units_consumed,
         cost_per_unit, total_bill, date, water_units, water_cost]

        Water figures are rounded to 2 decimals here, and only here.
        """
        return [
            self.tenant_name,
            self.previous_reading,
            self.current_reading,
            self.units_consumed,
            self.cost_per_unit,
            round(self.total_bill, 2),
            self.date.isoformat(),
            round(self.water_units, 2),
            round(self.water_cost, 2),
        ]

    @classmethod
    def from_sheets_row(cls, row: list) -> 'BillRecord':
        """
        Build a record from a spreadsheet row.

        Missing trailing columns and unparsable numbers read as 0.
        Electricity cost is derived, since the sheet does not store it.
        """
        def safe_get(index: int) -> str:
            try:
                return row[index] if row[index] is not None else ""
            except IndexError:
                return ""

        units = _parse_cell(safe_get(3))
        cost_per_unit = _parse_cell(safe_get(4))
        raw_date = str(safe_get(6)).strip()
        try:
            record_date = date.fromisoformat(raw_date)
        except ValueError:
            record_date = date.min

        return cls(
            tenant_name=str(safe_get(0)).strip(),
            previous_reading=_parse_cell(safe_get(1)),
            current_reading=_parse_cell(safe_get(2)),
            units_consumed=units,
            cost_per_unit=cost_per_unit,
            electricity_cost=units * cost_per_unit,
            total_bill=_parse_cell(safe_get(5)),
            date=record_date,
            water_units=max(_parse_cell(safe_get(7)), 0.0),
            water_cost=max(_parse_cell(safe_get(8)), 0.0),
        )


class FamilyShare(BaseModel):
    """A family's exact (unrounded) share of the shared water source."""
    model_config = ConfigDict(frozen=True)

    family_id: str
    member_count: int = 0
    units_share: float = 0.0
    cost_share: float = 0.0

    @property
    def rounded_units(self) -> float:
        return round(self.units_share, 2)

    @property
    def rounded_cost(self) -> float:
        return round(self.cost_share, 2)


class AllocationResult(BaseModel):
    """Proportional split of the water source across families."""

    total_units: float = 0.0
    total_cost: float = 0.0
    total_members: int = 0
    shares: dict[str, FamilyShare] = Field(default_factory=dict)
    percentages: dict[str, float] = Field(default_factory=dict)

    def share_for(self, family_id: str) -> FamilyShare:
        """Get a family's share; families without one get a zero share."""
        return self.shares.get(family_id) or FamilyShare(family_id=family_id)

    @computed_field
    @property
    def displayed_cost_total(self) -> float:
        """Sum of the 2-decimal cost shares as they appear on bills."""
        return round(sum(share.rounded_cost for share in self.shares.values()), 2)


class BillingRun(BaseModel):
    """Everything produced by one billing run."""

    records: list[BillRecord] = Field(default_factory=list)
    next_previous_readings: dict[str, float] = Field(default_factory=dict)
    allocation: Optional[AllocationResult] = None

    @property
    def is_empty(self) -> bool:
        return not self.records


# =============================================================================
# DEFAULT HOUSEHOLD
# =============================================================================

DEFAULT_METER_NAMES: dict[str, str] = {
    SHOP: "Shop",
    FAMILY_1: "Rakesh Bhayya",
    FAMILY_2: "Kadam Medam",
    FAMILY_3: "Pipalde Sir",
    FAMILY_4: "Single Room Yash",
    MAIN_METER: "Main Meter",
    WATER_MOTOR: "Water Motor",
}

DEFAULT_MEMBER_COUNTS: dict[str, int] = {
    FAMILY_1: 4,
    FAMILY_2: 4,
    FAMILY_3: 2,
    FAMILY_4: 1,
}


def role_for(meter_id: str) -> MeterRole:
    """Role of a meter in the fixed household layout."""
    if meter_id == WATER_MOTOR:
        return MeterRole.WATER_SOURCE
    if meter_id in FAMILY_ORDER:
        return MeterRole.FAMILY_MEMBER
    return MeterRole.INDEPENDENT


def default_families() -> list[FamilyConfig]:
    """Family configuration in FAMILY_ORDER."""
    return [
        FamilyConfig(
            family_id=family_id,
            member_count=DEFAULT_MEMBER_COUNTS[family_id],
            display_name=DEFAULT_METER_NAMES[family_id],
        )
        for family_id in FAMILY_ORDER
    ]


def default_readings(
    previous: Optional[dict[str, float]] = None,
    families: Optional[list[FamilyConfig]] = None,
) -> list[MeterReading]:
    """
    Build unread meters in METER_ORDER.

    Family display names come from `families` when given, so renamed
    families keep their names across runs.
    """
    previous = previous or {}
    names = dict(DEFAULT_METER_NAMES)
    for family in families or []:
        names[family.family_id] = family.display_name

    return [
        MeterReading(
            meter_id=meter_id,
            display_name=names[meter_id],
            previous_reading=previous.get(meter_id, 0.0),
            role=role_for(meter_id),
        )
        for meter_id in METER_ORDER
    ]
