"""
Arithmetic Checks
=================

Whole-bill checks that use only numbers printed on the bill:

- reconciliation: the line items must add up to the stated current charges
- VAT: per-service VAT must add up to the stated VAT (rates are exempt)

Both cite the bill itself, so a discrepancy here can be reported as
LIKELY_WRONG without a tariff document.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional

from bill_parser import Bill, LineItem, ServiceType, round_half_up
from common.formatters import format_rand
from finding_builder import F, Finding, arithmetic_citation
from verification_settings import DEFAULT_SETTINGS, VerificationSettings

log = logging.getLogger(__name__)

SERVICE_NAMES = {
    ServiceType.ELECTRICITY: "Electricity",
    ServiceType.WATER: "Water",
    ServiceType.SEWERAGE: "Sewerage/Sanitation",
    ServiceType.REFUSE: "Refuse",
    ServiceType.RATES: "Property Rates",
    ServiceType.SUNDRY: "Business Services",
    ServiceType.OTHER: "Other Charges",
}


def stated_total(bill: Bill) -> tuple[int, str]:
    """The total the line items should add up to, and where it came from."""
    if bill.current_charges_incl_vat is not None:
        return bill.current_charges_incl_vat, "Current charges (incl. VAT)"
    if bill.total_due is not None:
        return bill.total_due, "Total due"
    if bill.current_charges is not None and bill.vat_amount is not None:
        return bill.current_charges + bill.vat_amount, "Current charges + VAT"
    return sum(i.amount for i in bill.line_items), "Sum of line items"


def _reconciliation_table(bill: Bill) -> str:
    rows = ["| Service | Amount |", "|---|---:|"]
    for item in bill.line_items:
        rows.append(f"| {SERVICE_NAMES[item.service_type]} | {format_rand(item.amount)} |")
    return "\n".join(rows)


def check_reconciliation(bill: Bill, settings: VerificationSettings = DEFAULT_SETTINGS) -> Optional[Finding]:
    if not bill.line_items:
        return None

    calculated = sum(i.amount for i in bill.line_items)
    stated, label = stated_total(bill)
    difference = stated - calculated
    table = _reconciliation_table(bill)

    if abs(difference) <= settings.reconciliation_tolerance:
        return (
            F.arithmetic("bill_reconciliation")
            .verified("Bill arithmetic verified")
            .because(
                f"All {len(bill.line_items)} line items add up to {format_rand(calculated)}, "
                f"matching the stated total of {format_rand(stated)}.\n\n{table}"
            )
            .confidence(98)
            .with_citation(arithmetic_citation())
            .build()
        )

    return (
        F.arithmetic("bill_reconciliation")
        .likely_wrong("Bill arithmetic discrepancy detected", difference)
        .with_impact(abs(difference), abs(difference))
        .because(
            f"The line items on your bill add up to {format_rand(calculated)}, but the "
            f"{label.lower()} shown is {format_rand(stated)}.\n\n{table}\n\n"
            f"**Calculated:** {format_rand(calculated)}\n"
            f"**Stated:** {format_rand(stated)}\n"
            f"**Difference:** {format_rand(abs(difference))}"
        )
        .confidence(95)
        .with_citation(arithmetic_citation())
        .build()
    )


def item_vat(item: LineItem, vat_rate: float) -> int:
    """VAT on one line item: printed VAT when extracted, else reverse-calculated."""
    if item.service_type.is_vat_exempt:
        return 0
    vat = item.meta("vat_amount")
    if vat is not None:
        return vat
    excl = round_half_up(Decimal(item.amount) * 100 / (100 + Decimal(str(vat_rate))))
    return item.amount - excl


def check_vat(bill: Bill, settings: VerificationSettings = DEFAULT_SETTINGS) -> Optional[Finding]:
    if bill.vat_amount is None or not bill.line_items:
        return None

    lines: list[str] = []
    vatable = 0
    expected_vat = 0
    for item in bill.line_items:
        name = SERVICE_NAMES[item.service_type]
        if item.service_type.is_vat_exempt:
            lines.append(f"• {name}: exempt")
            continue
        vat = item_vat(item, settings.vat_rate)
        vatable += item.amount - vat
        expected_vat += vat
        lines.append(f"• {name}: {format_rand(vat)}")
    breakdown = "\n".join(lines)

    difference = bill.vat_amount - expected_vat
    if abs(difference) <= settings.vat_tolerance:
        return (
            F.arithmetic("vat_calculation")
            .verified("VAT correctly calculated")
            .because(
                f"VAT of {format_rand(bill.vat_amount)} is correct at {settings.vat_rate:g}% on "
                f"VAT-able charges of {format_rand(vatable)}.\n\n{breakdown}\n\n"
                "_Property rates are VAT-exempt._"
            )
            .confidence(97)
            .with_citation(arithmetic_citation())
            .build()
        )

    log.debug("VAT mismatch: stated %d, expected %d", bill.vat_amount, expected_vat)
    return (
        F.arithmetic("vat_calculation")
        .likely_wrong("VAT calculation discrepancy", difference)
        .with_impact(abs(difference), abs(difference))
        .because(
            f"The VAT shown on your bill ({format_rand(bill.vat_amount)}) does not match "
            f"{settings.vat_rate:g}% of the VAT-able charges ({format_rand(expected_vat)}).\n\n"
            f"{breakdown}\n\n**Difference:** {format_rand(abs(difference))}"
        )
        .confidence(90)
        .with_citation(arithmetic_citation())
        .build()
    )


def run_arithmetic_checks(bill: Bill, settings: VerificationSettings = DEFAULT_SETTINGS) -> list[Finding]:
    findings = []
    for check in (check_reconciliation, check_vat):
        finding = check(bill, settings)
        if finding is not None:
            findings.append(finding)
    return findings
