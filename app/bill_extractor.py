"""
Bill Text Extractor
===================

Turns the text layer of a City of Johannesburg municipal bill into a
``Bill``: header fields, property details, and one line item per service
section (electricity, water, sewerage, refuse, rates, sundry).

Usage:
    from bill_extractor import extract_bill
    bill = extract_bill(text)
    print(bill.to_json(indent=2))

Extraction never raises on malformed input. Fields that cannot be located
are None, and anything that went wrong in a section is logged and recorded
in ``Bill.warnings`` without affecting the other sections.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from bill_parser import (
    Bill,
    ChargeLine,
    LineItem,
    MeterReading,
    PropertyHints,
    PropertyInfo,
    RateLine,
    ServiceType,
    StepCharge,
    parse_quantity,
    parse_rand,
    parse_rate_cents,
    round_half_up,
)
from common.formatters import parse_bill_date
from pipeline import SectionExtractionResult, extract_all, preprocess, segment_sections
from section_configs import HEADER_CONFIG, SECTION_CONFIGS

log = logging.getLogger(__name__)

VAT_RATE = Decimal("0.15")

# Stated and re-multiplied step totals may differ by per-row rounding.
STEP_TOTAL_TOLERANCE = 100


def _groups(result: SectionExtractionResult, name: str) -> tuple[str, ...]:
    fr = result.get(name)
    return fr.groups if fr else ()


def _value(result: SectionExtractionResult, name: str) -> Optional[str]:
    fr = result.get(name)
    return fr.value if fr else None


def _matches(result: SectionExtractionResult, name: str) -> list[tuple[str, ...]]:
    fr = result.get(name)
    return fr.matches if fr else []


def _sum_cents(rows: list[tuple[str, ...]], index: int = -1) -> int:
    total = 0
    for row in rows:
        cents = parse_rand(row[index])
        if cents is not None:
            total += cents
    return total


def _vat_and_total(result: SectionExtractionResult) -> tuple[Optional[int], Optional[int]]:
    """(vat, total) from the section's VAT line; zero-rated lines carry only the total."""
    groups = _groups(result, "vat_total")
    if not groups:
        return None, None
    if len(groups) == 1:
        return 0, parse_rand(groups[0])
    return parse_rand(groups[0]), parse_rand(groups[-1])


def _with_vat(subtotal: int) -> tuple[int, int]:
    vat = round_half_up(Decimal(subtotal) * VAT_RATE)
    return vat, subtotal + vat


def _steps(rows: list[tuple[str, ...]]) -> list[StepCharge]:
    steps: list[StepCharge] = []
    for index, qty, rate in rows:
        quantity = parse_quantity(qty)
        rate_cents = parse_rate_cents(rate)
        if quantity is None or rate_cents is None:
            continue
        steps.append(StepCharge(step=int(index), quantity=quantity, rate=rate_cents))
    return steps


# ---------------------------------------------------------------------------
# Per-service builders
# ---------------------------------------------------------------------------

def _electricity_items(result: SectionExtractionResult, warnings: list[str]) -> list[LineItem]:
    meters = []
    for number, consumption, reading_type in _matches(result, "meters"):
        qty = parse_quantity(consumption)
        if qty is not None:
            meters.append(MeterReading(meter_number=number, consumption=qty, reading_type=reading_type))

    steps = _steps(_matches(result, "step_charges"))
    recomputed = sum(s.amount for s in steps)
    stated_rows = _matches(result, "step_amounts")
    energy_total = _sum_cents(stated_rows) if stated_rows else recomputed
    if stated_rows and steps and abs(energy_total - recomputed) > STEP_TOTAL_TOLERANCE:
        warnings.append(
            f"Electricity step rows re-multiply to {recomputed} cents but the bill "
            f"states {energy_total} cents"
        )

    service_charge = _sum_cents(_matches(result, "service_charges"))
    network_charge = _sum_cents(_matches(result, "network_charges"))
    network_charge += parse_rand(_value(result, "network_surcharge")) or 0
    demand_levy = parse_rand(_value(result, "demand_levy")) or 0

    vat, total = _vat_and_total(result)
    subtotal = energy_total + service_charge + network_charge + demand_levy
    if total is None:
        if subtotal == 0:
            warnings.append("Electricity section found but no charges could be read")
            return []
        vat, total = _with_vat(subtotal)

    if meters:
        consumption = sum(m.consumption for m in meters)
    elif steps:
        consumption = sum(s.quantity for s in steps)
    else:
        consumption = None

    description = "Electricity consumption" if len(meters) <= 1 else f"Electricity ({len(meters)} meters)"
    return [LineItem(
        service_type=ServiceType.ELECTRICITY,
        description=description,
        amount=total,
        quantity=consumption,
        is_estimated=any(m.is_estimated for m in meters),
        metadata={
            "meters": meters,
            "charges": steps,
            "energy_charge_total": energy_total,
            "service_charge": service_charge,
            "network_charge": network_charge,
            "demand_levy": demand_levy,
            "vat_amount": vat,
        },
    )]


def _water_items(result: SectionExtractionResult, warnings: list[str],
                 units_hint: Optional[int]) -> list[LineItem]:
    consumption = parse_quantity(_value(result, "consumption"))
    reading_type = _value(result, "reading_type") or "Actual"
    steps = _steps(_matches(result, "steps"))
    stated_rows = _matches(result, "step_amounts")
    water_charges = _sum_cents(stated_rows) if stated_rows else sum(s.amount for s in steps)

    units = units_hint
    demand_levy = 0
    levy_per_unit = None
    levy = _groups(result, "demand_levy_per_unit")
    if levy:
        units = int(levy[0])
        levy_per_unit = parse_rand(levy[1])
        demand_levy = parse_rand(levy[2]) or 0
    else:
        demand_levy = parse_rand(_value(result, "demand_levy")) or 0

    sewer = _groups(result, "sewer_charge")
    sewer_units = int(sewer[0]) if sewer else None
    sewer_amount = (parse_rand(sewer[1]) or 0) if sewer else 0

    subtotal = water_charges + demand_levy + sewer_amount
    vat, total = _vat_and_total(result)
    if total is None:
        if subtotal == 0:
            warnings.append("Water section found but no charges could be read")
            return []
        vat, total = _with_vat(subtotal)

    # The sewer row carries its proportional share of the section's VAT
    sewer_vat = round_half_up(vat * sewer_amount / subtotal) if sewer_amount and subtotal else 0
    sewer_total = sewer_amount + sewer_vat if sewer_amount else 0
    water_amount = max(total - sewer_total, 0)

    if consumption is None and steps:
        consumption = sum(s.quantity for s in steps)

    items = [LineItem(
        service_type=ServiceType.WATER,
        description="Water consumption" if not units or units <= 1 else f"Water ({units} units)",
        amount=water_amount,
        quantity=consumption,
        is_estimated="estimat" in reading_type.lower(),
        metadata={
            "units": units,
            "water_charges": water_charges,
            "demand_levy": demand_levy,
            "demand_levy_per_unit": levy_per_unit,
            "steps": steps,
            "reading_type": reading_type,
            "vat_amount": vat - sewer_vat,
        },
    )]
    if sewer_amount:
        per_unit = round_half_up(sewer_amount / sewer_units) if sewer_units else None
        items.append(LineItem(
            service_type=ServiceType.SEWERAGE,
            description=f"Sewerage ({sewer_units} units)",
            amount=sewer_total,
            quantity=sewer_units,
            unit_price=per_unit,
            metadata={
                "units": sewer_units,
                "per_unit": per_unit,
                "base_amount": sewer_amount,
                "vat_amount": sewer_vat,
            },
        ))
    return items


_REFUSE_LINES = [
    ("removal", "Refuse removal"),
    ("cleaning_levy", "City cleaning levy"),
    ("residential", "Refuse residential"),
]


def _refuse_items(result: SectionExtractionResult, warnings: list[str]) -> list[LineItem]:
    lines = []
    for field_name, description in _REFUSE_LINES:
        cents = parse_rand(_value(result, field_name))
        if cents is not None:
            lines.append(ChargeLine(description=description, amount=cents))
    subtotal = sum(line.amount for line in lines)

    bins = None
    bin_groups = _groups(result, "bins")
    if bin_groups:
        bins = int(bin_groups[0]) * int(bin_groups[1])

    vat, total = _vat_and_total(result)
    if total is None:
        if not lines:
            warnings.append("Refuse section found but no charges could be read")
            return []
        vat, total = _with_vat(subtotal)

    return [LineItem(
        service_type=ServiceType.REFUSE,
        description="Refuse collection",
        amount=total,
        quantity=bins,
        metadata={"lines": lines, "bins": bins, "subtotal": subtotal, "vat_amount": vat},
    )]


def _rates_items(result: SectionExtractionResult, warnings: list[str],
                 property_type: Optional[str], valuation: Optional[int]) -> list[LineItem]:
    categories = [m[0] for m in _matches(result, "categories")]
    rows = _matches(result, "rate_rows")

    rate_lines: list[RateLine] = []
    for i, (value, rate, amount) in enumerate(rows):
        value_cents = parse_rand(value)
        amount_cents = parse_rand(amount)
        if value_cents is None or amount_cents is None:
            continue
        category = categories[i] if len(categories) == len(rows) else "calculated"
        rate_lines.append(RateLine(value=value_cents, rate=float(rate), amount=amount_cents, category=category))

    rebate = _groups(result, "rebate")
    if rebate:
        threshold = parse_rand(rebate[0]) if len(rebate) == 2 else 0
        rebate_amount = parse_rand(rebate[-1]) or 0
        rate_lines.append(RateLine(
            value=threshold or 0,
            rate=rate_lines[0].rate if rate_lines else 0.0,
            amount=-rebate_amount,
            category="rebate",
        ))

    calculated_total = sum(line.amount for line in rate_lines)
    _, total = _vat_and_total(result)
    if total is None:
        if not rate_lines:
            warnings.append("Rates section found but no charges could be read")
            return []
        total = max(calculated_total, 0)

    unique_categories = list(dict.fromkeys(categories))
    rates_category = " & ".join(unique_categories) if unique_categories else property_type

    return [LineItem(
        service_type=ServiceType.RATES,
        description=f"Property rates ({rates_category})" if rates_category else "Property rates",
        amount=total,
        metadata={
            "property_type": rates_category,
            "municipal_valuation": valuation,
            "rate_lines": rate_lines,
            "calculated_total": calculated_total,
            "has_statutory_adjustment": result.get("statutory_adjustment") is not None,
        },
    )]


def _sundry_items(result: SectionExtractionResult, warnings: list[str]) -> list[LineItem]:
    base = parse_rand(_value(result, "base_amount"))
    vat, total = _vat_and_total(result)
    if total is None:
        if base is None:
            warnings.append("Sundry section found but no charges could be read")
            return []
        vat, total = _with_vat(base)
    return [LineItem(
        service_type=ServiceType.SUNDRY,
        description="Business services surcharge",
        amount=total,
        metadata={"base_amount": base, "vat_amount": vat},
    )]


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def _header(text: str) -> SectionExtractionResult:
    return extract_all(text, HEADER_CONFIG)


def _property_info(header: SectionExtractionResult, hints: Optional[PropertyHints]) -> PropertyInfo:
    hints = hints or PropertyHints()
    stand = parse_quantity(_value(header, "stand_size"))
    units = _value(header, "units")
    valuation = parse_rand(_value(header, "market_value"))
    return PropertyInfo(
        address=(_value(header, "address") or "").strip() or None,
        stand_size=int(stand) if stand is not None else None,
        units=int(units) if units else hints.units,
        property_type=_value(header, "property_type") or hints.property_type,
        municipal_valuation=valuation if valuation is not None else hints.municipal_valuation,
    )


def extract_bill(text: str, hints: Optional[PropertyHints] = None) -> Bill:
    """Extract a ``Bill`` from municipal bill text.

    Args:
        text: The bill's text layer.
        hints: Facts known by the caller (valuation, units, property type);
            they fill gaps but never override printed values.
    """
    text = preprocess(text or "", HEADER_CONFIG.get("preprocess"))
    warnings: list[str] = []

    header = _header(text)
    warnings.extend(header.warnings)
    prop = _property_info(header, hints)

    period = _groups(header, "billing_period")
    period_start = parse_bill_date(period[0]) if period else None
    period_end = parse_bill_date(period[1]) if len(period) > 1 else None

    line_items: list[LineItem] = []
    sections = segment_sections(text)
    if not sections:
        warnings.append("No service sections found in bill text")

    for name, section in sections.items():
        log.debug("Section %s located by rule %s (%d chars)", name, section.header_rule, len(section.text))
        try:
            result = extract_all(section.text, SECTION_CONFIGS[name])
            warnings.extend(result.warnings)
            if name == "electricity":
                line_items.extend(_electricity_items(result, warnings))
            elif name == "water":
                line_items.extend(_water_items(result, warnings, prop.units))
            elif name == "refuse":
                line_items.extend(_refuse_items(result, warnings))
            elif name == "rates":
                line_items.extend(_rates_items(result, warnings, prop.property_type, prop.municipal_valuation))
            elif name == "sundry":
                line_items.extend(_sundry_items(result, warnings))
        except Exception as e:
            log.warning("Failed to parse %s section", name, exc_info=True)
            warnings.append(f"Failed to parse {name} section: {e}")

    for w in warnings:
        log.debug("Extraction warning: %s", w)

    return Bill(
        account_number=_value(header, "account_number"),
        bill_date=parse_bill_date(_value(header, "bill_date")),
        due_date=parse_bill_date(_value(header, "due_date")),
        period_start=period_start,
        period_end=period_end,
        total_due=parse_rand(_value(header, "total_due")),
        previous_balance=parse_rand(_value(header, "previous_balance")),
        current_charges=parse_rand(_value(header, "current_charges")),
        current_charges_incl_vat=parse_rand(_value(header, "current_charges_incl_vat")),
        vat_amount=parse_rand(_value(header, "vat_amount")),
        line_items=line_items,
        property_info=prop,
        raw_text=text,
        warnings=warnings,
    )
