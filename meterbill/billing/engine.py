"""
Billing Engine

Pure, deterministic functions that turn meter readings and configuration
into bill records. Nothing here reads or writes persistent state.

ALLOCATION:
The shared water source is split across family meters by member count.
Unit and cost shares are kept exact; they are rounded to 2 decimals only
when written to the sheet or shown, and units and cost are rounded
independently. The rounded cost shares therefore need not add up to the
rounded total cost. Percentages are different: they are display-only and
are reconciled so they always add up to exactly 100.00.
"""

import math
from datetime import date
from typing import Any, Iterable, Optional, Sequence, Union

from meterbill.errors import ValidationError
from meterbill.models.billing import (
    FAMILY_ORDER,
    METER_ORDER,
    AllocationResult,
    BillingRun,
    BillRecord,
    FamilyConfig,
    FamilyShare,
    MeterReading,
    MeterRole,
    TariffConfig,
)


TariffLike = Union[TariffConfig, float, int, str, None]


def parse_number(value: Any) -> float:
    """
    Permissive numeric parse.

    Absent, blank, unparsable and non-finite values all read as 0.
    This is not validation; the form validator has already run.
    """
    if value is None:
        return 0.0
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def cost_per_unit_of(tariff: TariffLike) -> float:
    """Cost per unit from a TariffConfig or a raw value (blank -> 0)."""
    if isinstance(tariff, TariffConfig):
        return tariff.cost_per_unit
    return parse_number(tariff)


def compute_individual_bill(
    reading: MeterReading,
    tariff: TariffLike,
    on: Optional[date] = None,
) -> BillRecord:
    """
    Electricity bill for one meter.

    Water fields are zero; attach_water() adds a family's share afterwards.

    Raises:
        ValidationError: if the meter has no current reading
    """
    if reading.current_reading is None:
        raise ValidationError(
            f"No current reading for {reading.display_name}",
            field=reading.meter_id,
        )

    previous = parse_number(reading.previous_reading)
    current = parse_number(reading.current_reading)
    cost_per_unit = cost_per_unit_of(tariff)
    units = current - previous
    electricity_cost = units * cost_per_unit

    return BillRecord(
        tenant_name=reading.display_name,
        previous_reading=previous,
        current_reading=current,
        units_consumed=units,
        cost_per_unit=cost_per_unit,
        electricity_cost=electricity_cost,
        water_units=0.0,
        water_cost=0.0,
        total_bill=electricity_cost,
        date=on or date.today(),
    )


def attach_water(record: BillRecord, share: FamilyShare) -> BillRecord:
    """Return a copy of record carrying a water share, added into the total."""
    return record.model_copy(update={
        "water_units": share.units_share,
        "water_cost": share.cost_share,
        "total_bill": record.electricity_cost + share.cost_share,
    })


def water_only_bill(
    reading: MeterReading,
    tariff: TariffLike,
    share: FamilyShare,
    on: Optional[date] = None,
) -> BillRecord:
    """
    Record for a family that was not read this run but owes water.

    The reading stays where it was, so electricity is zero and the
    total is the water cost alone.
    """
    previous = parse_number(reading.previous_reading)
    return BillRecord(
        tenant_name=reading.display_name,
        previous_reading=previous,
        current_reading=previous,
        units_consumed=0.0,
        cost_per_unit=cost_per_unit_of(tariff),
        electricity_cost=0.0,
        water_units=share.units_share,
        water_cost=share.cost_share,
        total_bill=share.cost_share,
        date=on or date.today(),
    )


def normalize_percentages(families: Sequence[FamilyConfig]) -> dict[str, float]:
    """
    Member-count percentages, 2 decimals, summing to exactly 100.00.

    Each raw percentage is rounded on its own; the leftover difference goes
    entirely to the family with the most members. Ties go to the family
    that comes first in FAMILY_ORDER, whatever order `families` is in;
    ids outside FAMILY_ORDER come last.
    """
    total = sum(family.member_count for family in families)
    if total == 0:
        return {family.family_id: 0.0 for family in families}

    rounded = {
        family.family_id: round(family.member_count / total * 100, 2)
        for family in families
    }
    diff = round(100 - sum(rounded.values()), 2)

    if diff != 0:
        position = {family_id: index for index, family_id in enumerate(FAMILY_ORDER)}
        largest = min(
            enumerate(families),
            key=lambda item: (
                -item[1].member_count,
                position.get(item[1].family_id, len(FAMILY_ORDER)),
                item[0],
            ),
        )[1]
        rounded[largest.family_id] = round(rounded[largest.family_id] + diff, 2)

    return rounded


def allocate_shared_utility(
    source: MeterReading,
    tariff: TariffLike,
    families: Sequence[FamilyConfig],
) -> AllocationResult:
    """
    Split the water source's units and cost across families by member count.

    A source without a current reading, or with no members to share
    between, yields all-zero shares.
    """
    if source.current_reading is None:
        total_units = 0.0
    else:
        total_units = parse_number(source.current_reading) - parse_number(source.previous_reading)
    total_cost = total_units * cost_per_unit_of(tariff)
    total_members = sum(family.member_count for family in families)

    shares = {}
    for family in families:
        if total_members == 0:
            units_share = cost_share = 0.0
        else:
            units_share = total_units * family.member_count / total_members
            cost_share = total_cost * family.member_count / total_members
        shares[family.family_id] = FamilyShare(
            family_id=family.family_id,
            member_count=family.member_count,
            units_share=units_share,
            cost_share=cost_share,
        )

    return AllocationResult(
        total_units=total_units,
        total_cost=total_cost,
        total_members=total_members,
        shares=shares,
        percentages=normalize_percentages(families),
    )


def _in_meter_order(readings: Iterable[MeterReading]) -> list[MeterReading]:
    # Unknown meters go after the known ones, keeping their relative order
    position = {meter_id: index for index, meter_id in enumerate(METER_ORDER)}
    return sorted(readings, key=lambda r: position.get(r.meter_id, len(METER_ORDER)))


def build_billing_run(
    readings: Sequence[MeterReading],
    tariff: TariffLike,
    families: Sequence[FamilyConfig],
    on: Optional[date] = None,
) -> BillingRun:
    """
    Bill every meter that was read this run.

    Output order: the water source's own record first (if it was read),
    then one record per meter in METER_ORDER. Family meters carry their
    water share; unread families with a nonzero share get a water-only
    record so that every family owing water has exactly one record.

    next_previous_readings gives each meter's starting point for the
    next run: its current reading if it was read, else unchanged.
    """
    on = on or date.today()
    ordered = _in_meter_order(readings)
    source = next((r for r in ordered if r.role == MeterRole.WATER_SOURCE), None)

    records: list[BillRecord] = []
    next_previous: dict[str, float] = {}
    allocation: Optional[AllocationResult] = None

    if source is not None:
        if source.has_reading:
            allocation = allocate_shared_utility(source, tariff, families)
            records.append(compute_individual_bill(source, tariff, on))
            next_previous[source.meter_id] = parse_number(source.current_reading)
        else:
            next_previous[source.meter_id] = parse_number(source.previous_reading)

    for reading in ordered:
        if reading is source:
            continue

        is_family = reading.role == MeterRole.FAMILY_MEMBER
        share = (
            allocation.share_for(reading.meter_id)
            if allocation is not None
            else FamilyShare(family_id=reading.meter_id)
        )

        if reading.has_reading:
            record = compute_individual_bill(reading, tariff, on)
            if is_family:
                record = attach_water(record, share)
            records.append(record)
            next_previous[reading.meter_id] = parse_number(reading.current_reading)
        else:
            if is_family and share.units_share > 0:
                records.append(water_only_bill(reading, tariff, share, on))
            next_previous[reading.meter_id] = parse_number(reading.previous_reading)

    return BillingRun(
        records=records,
        next_previous_readings=next_previous,
        allocation=allocation,
    )


def bill_from_form(form_data: dict, on: Optional[date] = None) -> BillRecord:
    """
    Bill a single submitted reading given as raw form fields.

    Keys: tenant_name, previous_reading, current_reading, cost_per_unit,
    and optionally water_units / water_cost. Every number is parsed
    permissively.
    """
    previous = parse_number(form_data.get("previous_reading"))
    current = parse_number(form_data.get("current_reading"))
    cost_per_unit = parse_number(form_data.get("cost_per_unit"))
    water_units = max(parse_number(form_data.get("water_units")), 0.0)
    water_cost = max(parse_number(form_data.get("water_cost")), 0.0)

    units = current - previous
    electricity_cost = units * cost_per_unit

    return BillRecord(
        tenant_name=str(form_data.get("tenant_name") or "").strip(),
        previous_reading=previous,
        current_reading=current,
        units_consumed=units,
        cost_per_unit=cost_per_unit,
        electricity_cost=electricity_cost,
        water_units=water_units,
        water_cost=water_cost,
        total_bill=electricity_cost + water_cost,
        date=on or date.today(),
    )
