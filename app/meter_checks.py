"""
Meter Checks
============

Reading-quality checks that need no tariff: estimated readings on any
account, and unusually high usage on residential accounts. Every finding is
drawn from figures printed on the bill, so they cite the bill itself.
"""
from __future__ import annotations

import logging

from bill_parser import Bill, LineItem, ServiceType, round_half_up
from common.formatters import format_kl, format_kwh, format_rand
from finding_builder import USAGE_HEURISTIC_NOTE, F, Finding
from rule_matcher import COMMERCIAL_CATEGORIES
from verification_settings import DEFAULT_SETTINGS, VerificationSettings

log = logging.getLogger(__name__)

_METERED = (ServiceType.ELECTRICITY, ServiceType.WATER)


def _estimated(item: LineItem, settings: VerificationSettings) -> Finding:
    service = item.service_type.value
    label = service.title()
    estimated_meters = [m for m in item.meta("meters") or [] if m.is_estimated]
    which = ""
    if estimated_meters:
        numbers = ", ".join(m.meter_number for m in estimated_meters)
        which = f" (meter{'s' if len(estimated_meters) > 1 else ''} {numbers})"

    impact_min = round_half_up(item.amount * settings.estimated_impact_min_pct / 100)
    impact_max = round_half_up(item.amount * settings.estimated_impact_max_pct / 100)
    return (
        F.meter(f"{service}_estimated")
        .likely_wrong(f"{label} reading is estimated", impact_max)
        .named(f"{service}_estimated_reading")
        .with_impact(impact_min, impact_max)
        .because(
            f"Your {service} reading{which} was **estimated** rather than actually read. "
            "Estimated readings are often inaccurate and can lead to over- or under-billing.\n\n"
            "**Recommendation:** Submit your own meter reading to the municipality and request "
            "a bill adjustment based on actual consumption."
        )
        .confidence(75)
        .self_evident(f"Reading type 'Estimated' is printed on the {service} section of the bill.")
        .build()
    )


def _high_electricity(item: LineItem, settings: VerificationSettings) -> Finding:
    usage = item.quantity
    low, high = settings.typical_electricity_kwh_low, settings.typical_electricity_kwh_high
    impact_min = round_half_up((usage - high) * settings.electricity_excess_rate)
    impact_max = round_half_up((usage - low) * settings.electricity_excess_rate)
    return (
        F.meter("electricity_high_usage")
        .likely_wrong("Unusually high electricity usage", impact_max)
        .named("electricity_high_usage")
        .with_impact(impact_min, impact_max)
        .because(
            f"Your electricity usage of {format_kwh(usage)} is significantly higher than typical "
            f"residential usage ({low:g}-{high:g} kWh/month). This could indicate a faulty meter, "
            "a reading error, or an unexpected load such as a geyser element or pool pump.\n\n"
            f"**Estimated overcharge:** {format_rand(impact_min)} - {format_rand(impact_max)}"
        )
        .confidence(65)
        .self_evident(
            f"Printed consumption of {format_kwh(usage)} compared with the typical residential usage "
            f"heuristic of {low:g}-{high:g} kWh/month.",
            note=USAGE_HEURISTIC_NOTE,
        )
        .build()
    )


def _high_water(item: LineItem, settings: VerificationSettings) -> Finding:
    usage = item.quantity
    low, high = settings.typical_water_kl_low, settings.typical_water_kl_high
    impact_min = round_half_up((usage - high) * settings.water_excess_rate)
    impact_max = round_half_up((usage - low) * settings.water_excess_rate)
    return (
        F.meter("water_high_usage")
        .likely_wrong("Unusually high water usage", impact_max)
        .named("water_high_usage")
        .with_impact(impact_min, impact_max)
        .because(
            f"Your water usage of {format_kl(usage)} is significantly higher than typical "
            f"household usage ({low:g}-{high:g} kL/month). This may indicate a leak or a meter "
            "reading error.\n\n"
            "**Recommendation:** Check for leaks by reading your meter when no water is in use.\n\n"
            f"**Estimated overcharge:** {format_rand(impact_min)} - {format_rand(impact_max)}"
        )
        .confidence(70)
        .self_evident(
            f"Printed consumption of {format_kl(usage)} compared with the typical household usage "
            f"heuristic of {low:g}-{high:g} kL/month.",
            note=USAGE_HEURISTIC_NOTE,
        )
        .build()
    )


def run_meter_checks(
    bill: Bill,
    customer_category: str,
    settings: VerificationSettings = DEFAULT_SETTINGS,
) -> list[Finding]:
    """Estimated-reading findings for every item; usage checks on the first electricity and water items."""
    findings = [_estimated(item, settings) for item in bill.line_items if item.is_estimated]
    is_residential = customer_category not in COMMERCIAL_CATEGORIES

    for service in _METERED:
        item = bill.first_item(service)
        if item is None or not is_residential or item.quantity is None:
            continue
        if service is ServiceType.ELECTRICITY and item.quantity > settings.high_electricity_kwh:
            log.debug("High electricity usage: %s kWh", item.quantity)
            findings.append(_high_electricity(item, settings))
        elif service is ServiceType.WATER and item.quantity > settings.high_water_kl:
            log.debug("High water usage: %s kL", item.quantity)
            findings.append(_high_water(item, settings))

    return findings
