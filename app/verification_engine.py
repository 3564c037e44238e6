"""
Verification Engine
===================

Runs the three check families over a parsed bill and aggregates the
findings:

  1. Tariff checks: each service charge against the matched tariff rule
  2. Meter checks: estimated readings and unusual usage
  3. Arithmetic checks: line items vs stated totals, VAT

The result carries per-status counts, the summed impact range of the
LIKELY_WRONG findings and a recommendation (do_nothing, handle_yourself or
escalate).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from arithmetic_checks import run_arithmetic_checks
from bill_parser import Bill
from finding_builder import Finding, FindingStatus
from meter_checks import run_meter_checks
from rule_matcher import RuleMatcher, infer_customer_category
from tariff_checks import CheckContext, run_tariff_checks
from verification_settings import DEFAULT_SETTINGS, VerificationSettings

log = logging.getLogger(__name__)

RECOMMENDATIONS = ("do_nothing", "handle_yourself", "escalate")


@dataclass
class VerificationOptions:
    property_value: Optional[int] = None  # cents, overrides the bill's market value
    settings: VerificationSettings = DEFAULT_SETTINGS
    as_of_date: Optional[date] = None


@dataclass
class VerificationSummary:
    verified: int = 0
    likely_wrong: int = 0
    cannot_verify: int = 0


@dataclass
class VerificationResult:
    findings: list[Finding]
    summary: VerificationSummary
    total_impact_min: int
    total_impact_max: int
    recommendation: str
    customer_category: str = "residential"
    warnings: list[str] = field(default_factory=list)

    def by_status(self, status: FindingStatus) -> list[Finding]:
        return [f for f in self.findings if f.status is status]

    def to_dict(self) -> dict:
        return {
            "findings": [f.to_dict() for f in self.findings],
            "summary": {
                "verified": self.summary.verified,
                "likely_wrong": self.summary.likely_wrong,
                "cannot_verify": self.summary.cannot_verify,
            },
            "total_impact_min": self.total_impact_min,
            "total_impact_max": self.total_impact_max,
            "recommendation": self.recommendation,
            "customer_category": self.customer_category,
            "warnings": list(self.warnings),
        }


def _recommend(likely_wrong: int, impact_max: int, settings: VerificationSettings) -> str:
    if likely_wrong == 0:
        return "do_nothing"
    if impact_max < settings.handle_yourself_threshold:
        return "handle_yourself"
    return "escalate"


def verify_bill(bill: Bill, matcher: RuleMatcher, options: Optional[VerificationOptions] = None) -> VerificationResult:
    """Verify every charge on *bill*.

    Args:
        bill: A parsed bill from ``bill_extractor.extract_bill``.
        matcher: Rule matcher over the tariff rule store.
        options: Valuation override, settings and the as-of date used for
            rule selection (defaults to the bill date, then today).

    Returns:
        VerificationResult with findings in check-family order.
    """
    options = options or VerificationOptions()
    settings = options.settings
    info = bill.property_info
    category = infer_customer_category(info.property_type, info.units, bill.account_number)
    as_of = options.as_of_date or bill.bill_date or date.today()
    log.info("Verifying bill %s as %s (as of %s)", bill.account_number, category, as_of)

    ctx = CheckContext(
        bill=bill,
        matcher=matcher,
        customer_category=category,
        as_of=as_of,
        settings=settings,
        property_value=options.property_value,
    )

    findings: list[Finding] = []
    findings.extend(run_tariff_checks(ctx))
    findings.extend(run_meter_checks(bill, category, settings))
    findings.extend(run_arithmetic_checks(bill, settings))

    summary = VerificationSummary()
    impact_min = impact_max = 0
    for finding in findings:
        if finding.status is FindingStatus.VERIFIED:
            summary.verified += 1
        elif finding.status is FindingStatus.LIKELY_WRONG:
            summary.likely_wrong += 1
            impact_min += finding.impact_min or 0
            impact_max += finding.impact_max or 0
        else:
            summary.cannot_verify += 1

    result = VerificationResult(
        findings=findings,
        summary=summary,
        total_impact_min=impact_min,
        total_impact_max=impact_max,
        recommendation=_recommend(summary.likely_wrong, impact_max, settings),
        customer_category=category,
        warnings=list(bill.warnings),
    )
    log.debug(
        "%d verified, %d likely wrong, %d cannot verify",
        summary.verified, summary.likely_wrong, summary.cannot_verify,
    )
    return result


def generate_summary(result: VerificationResult) -> str:
    """One-paragraph plain-language summary of *result*."""
    summary = result.summary
    if summary.likely_wrong == 0 and summary.cannot_verify == 0:
        return "All charges on your bill appear to be correct based on current tariffs."

    parts: list[str] = []
    if summary.likely_wrong > 0:
        issues = f"Found {summary.likely_wrong} potential issue{'s' if summary.likely_wrong > 1 else ''}"
        if result.total_impact_max > 0:
            issues += (
                f" with estimated impact of R{result.total_impact_min / 100:.0f}"
                f" - R{result.total_impact_max / 100:.0f}"
            )
        parts.append(issues)
    if summary.cannot_verify > 0:
        parts.append(f"{summary.cannot_verify} item{'s' if summary.cannot_verify > 1 else ''} could not be verified")
    return ". ".join(parts) + "."
