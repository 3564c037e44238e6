#!/usr/bin/env python3
"""
Bill Verification Script
========================

Extracts a City of Johannesburg bill from its text layer, verifies every
charge against the tariff rule store and prints the findings.

Usage:
    python3 evaluate_bill.py fixtures/residential_bill.txt
    python3 evaluate_bill.py BILL.txt --valuation 2150000       # valuation in Rand
    python3 evaluate_bill.py BILL.txt --rules my_rules.json     # extra rule file
    python3 evaluate_bill.py BILL.txt --json                    # JSON output

Exit code is 1 when any finding is LIKELY_WRONG, 0 otherwise.
"""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys

# Ensure app/ is on the path
sys.path.insert(0, os.path.dirname(__file__))

import pandas as pd

from bill_extractor import extract_bill
from bill_parser import Bill, PropertyHints, parse_rand
from common.comparison import findings_to_frame
from common.formatters import format_date_range, format_rand
from rule_matcher import RuleMatcher
from tariff_repository import InMemoryRuleRepository, InMemoryAlertSink, load_rules
from verification_engine import VerificationOptions, VerificationResult, generate_summary, verify_bill
from verification_settings import VerificationSettings

log = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Verify a City of Johannesburg municipal bill.")
    parser.add_argument("bill", help="Path to the bill's extracted text")
    parser.add_argument("--rules", action="append", default=[], help="Additional tariff rule JSON file")
    parser.add_argument("--valuation", help="Municipal valuation in Rand (overrides the bill)")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser


def build_matcher(rule_files: list[str]) -> tuple[RuleMatcher, InMemoryAlertSink]:
    repository = InMemoryRuleRepository.from_default_data(strict=False)
    for path in rule_files:
        for rule in load_rules(path, strict=False):
            repository.add(rule)
    sink = InMemoryAlertSink()
    return RuleMatcher(repository, alert_sink=sink), sink


def print_report(bill: Bill, result: VerificationResult) -> None:
    """Print a human-readable verification report."""
    print("=" * 70)
    print(f"  Account {bill.account_number or '?'}  "
          f"Period {format_date_range(bill.period_start, bill.period_end)}")
    print(f"  Customer category: {result.customer_category}")
    print("=" * 70)

    for item in bill.line_items:
        qty = f"  qty={item.quantity:g}" if item.quantity is not None else ""
        est = " [ESTIMATED]" if item.is_estimated else ""
        print(f"  {item.description:<40} {format_rand(item.amount):>14}{qty}{est}")

    for warning in bill.warnings:
        print(f"  WARNING: {warning}")

    df = findings_to_frame(result)
    if not df.empty:
        print()
        with pd.option_context("display.max_colwidth", 50, "display.width", 140):
            print(df[["status", "confidence", "check_name", "title", "impact_max"]].to_string(index=False))

    print(f"\n{'=' * 70}")
    print(f"  {generate_summary(result)}")
    print(f"  Recommendation: {result.recommendation}")
    print(f"{'=' * 70}")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    with open(args.bill, encoding="utf-8") as f:
        text = f.read()

    valuation = parse_rand(args.valuation) if args.valuation else None
    bill = extract_bill(text, PropertyHints(municipal_valuation=valuation))
    matcher, sink = build_matcher(args.rules)
    options = VerificationOptions(property_value=valuation, settings=VerificationSettings.from_env())
    result = verify_bill(bill, matcher, options)

    if args.json:
        payload = {"bill": bill.to_dict(), "verification": result.to_dict()}
        payload["bill"].pop("raw_text", None)
        payload["missing_tariffs"] = [a.__dict__ for a in sink.alerts.values()]
        print(json.dumps(payload, indent=2, default=str))
    else:
        print_report(bill, result)
        for alert in sink.alerts.values():
            log.warning("Missing tariff: %s/%s %s", alert.provider, alert.service_type, alert.financial_year)

    return 1 if result.summary.likely_wrong else 0


if __name__ == "__main__":
    sys.exit(main())
