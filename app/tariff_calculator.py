"""
Tariff Calculator - Expected Charges from Tariff Rules
======================================================

Pure functions that price a consumption figure or a property valuation
against a ``TariffRule`` and return the expected amount together with a
line-by-line breakdown. No I/O; identical inputs give identical results.

All amounts are integer cents. Quantities are carried as ``Decimal`` inside
the band allocation so the per-band usages add back up to the input
consumption, and every line (band, fixed charge, VAT) is rounded half-up
exactly once.

Errors never raise: a missing input or an unusable pricing structure returns
``CalculationResult.failure(...)`` naming what is missing.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, asdict
from decimal import Decimal
from typing import Optional

from bill_parser import round_half_up
from tariff_models import (
    ElectricityPricing,
    FixedCharge,
    RateBand,
    RatesPricing,
    RefusePricing,
    SeweragePricing,
    TariffRule,
    WaterPricing,
)

log = logging.getLogger(__name__)

COMMERCIAL_CATEGORIES = ("commercial", "business", "industrial")

_UNITS = {"electricity": "kWh", "water": "kL", "sewerage": "units"}


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass
class CalculationBand:
    """One priced slice of a stepped tariff."""
    range: str
    usage: float
    rate: float      # cents per unit
    amount: int      # cents
    rule_source: str


@dataclass
class BreakdownLine:
    """A fixed, periodic or adjustment line in a breakdown (cents, may be negative)."""
    name: str
    amount: int
    rule_source: str


@dataclass
class CalculationBreakdown:
    subtotal: int
    total: int
    tariff_rule_id: str
    financial_year: str
    customer_category: str
    consumption: Optional[float] = None
    consumption_unit: Optional[str] = None
    property_value: Optional[int] = None
    bands: list[CalculationBand] = field(default_factory=list)
    fixed_charges: list[BreakdownLine] = field(default_factory=list)
    vat_rate: Optional[float] = None
    vat_amount: Optional[int] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class CalculationResult:
    success: bool
    expected_amount: Optional[int] = None
    breakdown: Optional[CalculationBreakdown] = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> "CalculationResult":
        return cls(success=False, error=error)


@dataclass(frozen=True)
class BandAllocation:
    band: RateBand
    usage: Decimal


# ---------------------------------------------------------------------------
# Shared building blocks
# ---------------------------------------------------------------------------

def _dec(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _rand(cents: int) -> str:
    return f"R{cents / 100:,.2f}"


def allocate_bands(
    bands: list[RateBand],
    consumption: float,
    scale: float | Decimal = 1,
) -> list[BandAllocation]:
    """Split *consumption* across stepped bands, lowest band first.

    Each band's width (upper - lower, unbounded = infinite) is multiplied by
    *scale* (billing days / reference period days). Usage beyond a bounded
    final band stays in the final band, so the allocations always add up to
    *consumption*.
    """
    ordered = sorted(bands, key=lambda b: b.min_units)
    remaining = _dec(consumption)
    scale = _dec(scale)
    allocations: list[BandAllocation] = []

    for idx, band in enumerate(ordered):
        if remaining <= 0:
            break
        if band.max_units is None or idx == len(ordered) - 1:
            usage = remaining
        else:
            width = (_dec(band.max_units) - _dec(band.min_units)) * scale
            usage = min(remaining, width)
        if usage > 0:
            allocations.append(BandAllocation(band=band, usage=usage))
            remaining -= usage

    return allocations


def _price_allocations(allocations: list[BandAllocation], unit: str) -> list[CalculationBand]:
    priced = []
    for alloc in allocations:
        band = alloc.band
        amount = round_half_up(alloc.usage * _dec(band.rate))
        priced.append(CalculationBand(
            range=f"{band.label} {unit}",
            usage=float(alloc.usage),
            rate=band.rate,
            amount=amount,
            rule_source=f"{band.description or 'Band'} @ {band.rate:g} c/{unit}",
        ))
    return priced


def _fixed_lines(charges: list[FixedCharge], billing_days: int) -> list[BreakdownLine]:
    lines = []
    for charge in charges:
        if charge.frequency == "daily":
            amount = charge.amount * billing_days
        elif charge.frequency == "annual":
            amount = round_half_up(Decimal(charge.amount) / 12)
        else:
            amount = charge.amount
        lines.append(BreakdownLine(
            name=charge.name,
            amount=amount,
            rule_source=f"{charge.name}: {_rand(charge.amount)} {charge.frequency}",
        ))
    return lines


def _apply_vat(rule: TariffRule, subtotal: int) -> tuple[int, int]:
    """Return (vat, total). VAT-inclusive rules report the VAT already embedded."""
    rate = _dec(rule.vat_rate)
    if rule.vat_inclusive:
        excl = round_half_up(Decimal(subtotal) * 100 / (100 + rate))
        return subtotal - excl, subtotal
    vat = round_half_up(Decimal(subtotal) * rate / 100)
    return vat, subtotal + vat


def _finish(
    rule: TariffRule,
    bands: list[CalculationBand],
    lines: list[BreakdownLine],
    *,
    consumption: Optional[float] = None,
    property_value: Optional[int] = None,
    vat_exempt: bool = False,
) -> CalculationResult:
    subtotal = sum(b.amount for b in bands) + sum(line.amount for line in lines)
    if vat_exempt:
        vat, total = None, subtotal
    else:
        vat, total = _apply_vat(rule, subtotal)

    breakdown = CalculationBreakdown(
        subtotal=subtotal,
        total=total,
        tariff_rule_id=rule.id,
        financial_year=rule.financial_year,
        customer_category=rule.customer_category,
        consumption=consumption,
        consumption_unit=_UNITS.get(rule.service_type) if consumption is not None else None,
        property_value=property_value,
        bands=bands,
        fixed_charges=lines,
        vat_rate=None if vat_exempt else rule.vat_rate,
        vat_amount=vat,
    )
    return CalculationResult(success=True, expected_amount=total, breakdown=breakdown)


# ---------------------------------------------------------------------------
# Per-service calculators
# ---------------------------------------------------------------------------

def calculate_time_of_use_charge(
    pricing: ElectricityPricing,
    peak: float = 0,
    standard: float = 0,
    off_peak: float = 0,
    season: str = "summer",
) -> list[CalculationBand]:
    """Price per-period consumption against seasonal time-of-use rates.

    Raises:
        ValueError: If the structure has no time-of-use rates or *season*
            is not "summer" or "winter".
    """
    if pricing.time_of_use is None:
        raise ValueError("pricing structure has no time-of-use rates")
    if season not in ("summer", "winter"):
        raise ValueError(f"Unknown season: {season!r}")
    rates = getattr(pricing.time_of_use, season)

    bands = []
    for label, usage, rate in (
        ("Peak", peak, rates.peak),
        ("Standard", standard, rates.standard),
        ("Off-peak", off_peak, rates.off_peak),
    ):
        if usage and usage > 0:
            bands.append(CalculationBand(
                range=f"{label} ({season})",
                usage=float(usage),
                rate=rate,
                amount=round_half_up(_dec(usage) * _dec(rate)),
                rule_source=f"{season.title()} {label.lower()} @ {rate:g} c/kWh",
            ))
    return bands


def _electricity(rule, pricing: ElectricityPricing, consumption, billing_days, demand_kva,
                 time_of_use, season) -> CalculationResult:
    use_tou = bool(time_of_use) and pricing.time_of_use is not None
    if consumption is None and not use_tou:
        return CalculationResult.failure("Consumption required for electricity calculation")

    days = billing_days or pricing.billing_period_days

    if use_tou:
        bands = calculate_time_of_use_charge(pricing, season=season, **time_of_use)
        consumption = float(sum(_dec(v) for v in time_of_use.values()))
    else:
        if not pricing.bands:
            return CalculationResult.failure("Electricity pricing structure has no rate bands")
        scale = Decimal(days) / Decimal(pricing.billing_period_days)
        allocations = allocate_bands(pricing.bands, consumption, scale)
        log.debug("Electricity %s kWh over %d days -> %d band(s)", consumption, days, len(allocations))
        bands = _price_allocations(allocations, "kWh")

    lines = _fixed_lines(pricing.fixed_charges, days)

    if demand_kva is not None:
        if pricing.demand_charges is not None:
            chargeable = max(Decimal(0), _dec(demand_kva) - _dec(pricing.demand_charges.threshold))
            lines.append(BreakdownLine(
                name="Demand charge",
                amount=round_half_up(chargeable * _dec(pricing.demand_charges.rate_per_kva)),
                rule_source=f"{chargeable} kVA @ {pricing.demand_charges.rate_per_kva:g} c/kVA",
            ))
        if pricing.network_charges is not None:
            nc = pricing.network_charges
            access, demand = (
                (nc.winter_access, nc.winter_demand) if season == "winter"
                else (nc.summer_access, nc.summer_demand)
            )
            kva = _dec(demand_kva)
            if access:
                lines.append(BreakdownLine(
                    name="Network access charge",
                    amount=round_half_up(kva * _dec(access)),
                    rule_source=f"{demand_kva} kVA @ {access:g} c/kVA ({season})",
                ))
            if demand:
                lines.append(BreakdownLine(
                    name="Network demand charge",
                    amount=round_half_up(kva * _dec(demand)),
                    rule_source=f"{demand_kva} kVA @ {demand:g} c/kVA ({season})",
                ))

    return _finish(rule, bands, lines, consumption=consumption)


def _water(rule, pricing: WaterPricing, consumption, billing_days) -> CalculationResult:
    if consumption is None:
        return CalculationResult.failure("Consumption required for water calculation")
    if not pricing.bands:
        return CalculationResult.failure("Water pricing structure has no rate bands")
    bands = _price_allocations(allocate_bands(pricing.bands, consumption), "kL")
    lines = _fixed_lines(pricing.fixed_charges, billing_days or 30)
    return _finish(rule, bands, lines, consumption=consumption)


def _sewerage(rule, pricing: SeweragePricing, water_charge_excl_vat, units, billing_days) -> CalculationResult:
    lines: list[BreakdownLine] = []
    if pricing.percentage_of_water:
        lines.append(BreakdownLine(
            name="Sewerage (% of water)",
            amount=round_half_up(Decimal(water_charge_excl_vat) * _dec(pricing.percentage_of_water) / 100),
            rule_source=f"{pricing.percentage_of_water:g}% of water charges",
        ))
    if pricing.per_unit_charge and units > 1:
        lines.append(BreakdownLine(
            name=f"Sewerage per unit ({units} units)",
            amount=pricing.per_unit_charge * units,
            rule_source=f"{_rand(pricing.per_unit_charge)} x {units} units",
        ))
    lines.extend(_fixed_lines(pricing.fixed_charges, billing_days or 30))
    if not lines:
        return CalculationResult.failure(
            "Sewerage pricing structure has no charge applicable to this property"
        )
    return _finish(rule, [], lines, consumption=float(units))


def _refuse(rule, pricing: RefusePricing, bins, billing_days) -> CalculationResult:
    is_business = rule.customer_category in COMMERCIAL_CATEGORIES
    base = pricing.business_charge if is_business else pricing.residential_charge
    lines = [BreakdownLine(
        name="Business refuse" if is_business else "Residential refuse",
        amount=base,
        rule_source=f"{rule.provider} {rule.customer_category} tariff",
    )]
    if bins > 1 and pricing.additional_bin_charge:
        lines.append(BreakdownLine(
            name=f"Additional bins ({bins - 1})",
            amount=pricing.additional_bin_charge * (bins - 1),
            rule_source=f"{_rand(pricing.additional_bin_charge)} per additional bin",
        ))
    lines.extend(_fixed_lines(pricing.fixed_charges, billing_days or 30))
    return _finish(rule, [], lines)


def monthly_rates(value: int | Decimal, rate_in_rand: float) -> int:
    """Monthly rates on *value* cents: annual amount rounded first, then / 12."""
    annual = round_half_up(_dec(value) * _dec(rate_in_rand))
    return round_half_up(Decimal(annual) / 12)


def _rates(rule, pricing: RatesPricing, property_value, is_primary_residence,
           apply_statutory_adjustment) -> CalculationResult:
    if not property_value or property_value <= 0:
        return CalculationResult.failure("Property value required for rates calculation")

    gross = monthly_rates(property_value, pricing.rate_in_rand)
    lines = [BreakdownLine(
        name="Property rates",
        amount=gross,
        rule_source=f"{_rand(property_value)} x {pricing.rate_in_rand:g} / 12",
    )]
    running = gross

    for rebate in pricing.rebates:
        if rebate.type == "threshold":
            if not is_primary_residence:
                continue
            exempt = min(int(rebate.amount), property_value)
            # rounded as its own row, matching the printed rebate line
            amount = monthly_rates(exempt, pricing.rate_in_rand)
            source = f"Rates on first {_rand(exempt)} of market value exempt"
        elif rebate.type == "percentage":
            amount = round_half_up(Decimal(running) * _dec(rebate.amount) / 100)
            source = f"{rebate.amount:g}% rebate"
        else:
            amount = min(int(rebate.amount), running)
            source = f"{_rand(int(rebate.amount))} monthly rebate"
        lines.append(BreakdownLine(name=rebate.name, amount=-amount, rule_source=source))
        running -= amount

    if apply_statutory_adjustment and pricing.statutory_adjustment:
        lines.append(BreakdownLine(
            name="Section 15 MPRA adjustment",
            amount=pricing.statutory_adjustment,
            rule_source="Municipal Property Rates Act section 15 adjustment",
        ))

    return _finish(rule, [], lines, property_value=property_value, vat_exempt=True)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def calculate_expected_charge(
    rule: TariffRule,
    consumption: Optional[float] = None,
    property_value: Optional[int] = None,
    units: int = 1,
    billing_days: Optional[int] = None,
    water_charge_excl_vat: int = 0,
    is_primary_residence: bool = True,
    apply_statutory_adjustment: bool = False,
    bins: int = 1,
    demand_kva: Optional[float] = None,
    time_of_use: Optional[dict[str, float]] = None,
    season: str = "summer",
) -> CalculationResult:
    """Price a line item against *rule*.

    Args:
        rule: The matched tariff rule.
        consumption: kWh or kL for electricity and water.
        property_value: Municipal valuation in cents (rates).
        units: Living units on the property (sewerage).
        billing_days: Actual billing-period length; scales electricity bands
            and prorates daily fixed charges.
        water_charge_excl_vat: Water charge in cents, base for
            percentage-of-water sewerage.
        is_primary_residence: Whether threshold rates rebates apply.
        apply_statutory_adjustment: Add the Section 15 MPRA line (rates).
        bins: Number of refuse bins charged.
        demand_kva: Measured demand for demand and network charges.
        time_of_use: Per-period kWh (``peak``, ``standard``, ``off_peak``)
            priced at the rule's seasonal rates instead of its bands.
        season: "summer" or "winter" for time-of-use and network charges.

    Returns:
        CalculationResult with the expected amount in cents, or a failure.
    """
    if consumption is not None and consumption < 0:
        return CalculationResult.failure("Consumption cannot be negative")

    pricing = rule.pricing_structure
    try:
        if isinstance(pricing, ElectricityPricing):
            return _electricity(rule, pricing, consumption, billing_days, demand_kva, time_of_use, season)
        if isinstance(pricing, WaterPricing):
            return _water(rule, pricing, consumption, billing_days)
        if isinstance(pricing, SeweragePricing):
            return _sewerage(rule, pricing, water_charge_excl_vat, units, billing_days)
        if isinstance(pricing, RefusePricing):
            return _refuse(rule, pricing, bins, billing_days)
        if isinstance(pricing, RatesPricing):
            return _rates(rule, pricing, property_value, is_primary_residence, apply_statutory_adjustment)
    except (ValueError, TypeError) as e:
        return CalculationResult.failure(f"Calculation error: {e}")

    return CalculationResult.failure(f"Unknown service type: {rule.service_type}")
