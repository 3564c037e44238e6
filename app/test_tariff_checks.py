"""
Tests for the per-service tariff checks.

The two fixture bills run end-to-end against the shipped FY2025/26 rules;
the remaining cases build a line item and a small rule set inline.
"""
from datetime import date

import pytest

from bill_extractor import extract_bill
from bill_parser import Bill, LineItem, MeterReading, PropertyInfo, RateLine, ServiceType, StepCharge
from finding_builder import FindingStatus
from rule_matcher import RuleMatcher, infer_customer_category
from tariff_checks import (
    CheckContext,
    check_electricity,
    check_rates,
    check_water,
    format_breakdown,
    run_tariff_checks,
    verify_rates_rows,
)
from tariff_calculator import calculate_expected_charge
from tariff_repository import InMemoryRuleRepository, parse_rule_records


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

AS_OF = date(2025, 12, 1)


def _fixture_ctx(text, matcher) -> CheckContext:
    bill = extract_bill(text)
    info = bill.property_info
    return CheckContext(
        bill=bill,
        matcher=matcher,
        customer_category=infer_customer_category(info.property_type, info.units, bill.account_number),
        as_of=bill.bill_date,
    )


def _water_record(**kwargs) -> dict:
    d = {
        "id": "water-inline",
        "provider": "joburg_water",
        "service_type": "water",
        "customer_category": "residential",
        "financial_year": "2025/26",
        "effective_date": "2025-07-01",
        "pricing_structure": {"bands": [{"min_units": 0, "rate": 3000}]},
    }
    d.update(kwargs)
    return d


def _make_ctx(*items, records=(), category="residential", **bill_kwargs) -> CheckContext:
    matcher = RuleMatcher(InMemoryRuleRepository(parse_rule_records(list(records))))
    bill = Bill(
        period_start=date(2025, 10, 28),
        period_end=date(2025, 11, 27),
        line_items=list(items),
        **bill_kwargs,
    )
    return CheckContext(bill=bill, matcher=matcher, customer_category=category, as_of=AS_OF)


def _by_name(findings):
    return {f.check_name: f for f in findings}


# ===================================================================
# Fixture bills
# ===================================================================

class TestResidentialFixture:

    @pytest.fixture
    def findings(self, residential_text, matcher):
        return run_tariff_checks(_fixture_ctx(residential_text, matcher))

    def test_every_service_verified(self, findings):
        assert [f.check_name for f in findings] == [
            "electricity_tariff_verified",
            "water_tariff_verified",
            "refuse_tariff_verified",
            "rates_tariff_verified",
        ]
        assert all(f.status is FindingStatus.VERIFIED for f in findings)

    def test_verified_findings_cite_documents(self, findings):
        for finding in findings:
            assert finding.citation.has_source
            assert finding.citation.knowledge_document_id
            assert finding.calculation_breakdown is not None

    def test_electricity_confidence_and_text(self, findings):
        electricity = _by_name(findings)["electricity_tariff_verified"]
        assert electricity.confidence == 92
        assert "R2,497.43" in electricity.explanation
        assert "**Expected Total:**" in electricity.explanation

    def test_rates_are_vat_exempt(self, findings):
        rates = _by_name(findings)["rates_tariff_verified"]
        assert rates.calculation_breakdown.vat_amount is None
        assert rates.calculation_breakdown.total == 147147


class TestCommercialFixture:

    @pytest.fixture
    def findings(self, commercial_text, matcher):
        return run_tariff_checks(_fixture_ctx(commercial_text, matcher))

    def test_finding_names_in_service_order(self, findings):
        assert [f.check_name for f in findings] == [
            "electricity_arithmetic_verified",
            "water_demand_levy",
            "sewerage_tariff_verified",
            "refuse_tariff_cannot_verify",
            "rates_rows_verified",
            "sundry_business_surcharge",
        ]

    def test_multi_meter_uses_bill_rates(self, findings):
        electricity = _by_name(findings)["electricity_arithmetic_verified"]
        assert electricity.confidence == 90
        assert electricity.title == "Electricity charges verified (2 meters)"
        assert electricity.citation.self_evident

    def test_sewerage_per_unit_levy(self, findings):
        sewerage = _by_name(findings)["sewerage_tariff_verified"]
        assert sewerage.confidence == 85
        assert sewerage.title == "Sewerage per-unit levy verified"
        assert sewerage.calculation_breakdown.total == 1937260

    def test_refuse_above_range_is_not_an_accusation(self, findings, alert_sink):
        refuse = _by_name(findings)["refuse_tariff_cannot_verify"]
        assert refuse.status is FindingStatus.CANNOT_VERIFY
        assert refuse.confidence == 55
        assert ("pikitup", "refuse", "2025/26") in alert_sink.alerts

    def test_levy_and_rates_rows(self, findings):
        by_name = _by_name(findings)
        assert by_name["water_demand_levy"].confidence == 75
        assert by_name["rates_rows_verified"].confidence == 85


# ===================================================================
# Inline cases
# ===================================================================

class TestCompare:

    def _water(self, amount):
        return LineItem(ServiceType.WATER, "Water consumption", amount, quantity=10.0)

    def test_no_rule_cannot_verify(self):
        finding = check_water(self._water(34500), _make_ctx())
        assert finding.status is FindingStatus.CANNOT_VERIFY
        assert finding.check_name == "water_tariff_cannot_verify"
        assert finding.confidence == 0
        assert finding.citation.no_source_reason == "Water tariff schedule not found."

    def test_within_tolerance_unverified_rule(self):
        finding = check_water(self._water(34500), _make_ctx(records=[_water_record()]))
        assert finding.status is FindingStatus.VERIFIED
        assert finding.confidence == 68

    def test_discrepancy_without_document_is_not_accused(self):
        finding = check_water(self._water(50000), _make_ctx(records=[_water_record()]))
        assert finding.status is FindingStatus.CANNOT_VERIFY
        assert finding.title == "Water charge requires manual verification"
        assert finding.confidence == 50

    def test_discrepancy_with_document(self):
        record = _water_record(knowledge_document_id="doc-water", source_page_number=4)
        finding = check_water(self._water(50000), _make_ctx(records=[record]))
        assert finding.status is FindingStatus.LIKELY_WRONG
        assert finding.title == "Water charge discrepancy detected"
        assert finding.confidence == 60
        assert (finding.impact_min, finding.impact_max) == (13175, 15500)
        assert "**Difference:** R155.00" in finding.explanation
        assert finding.citation.knowledge_document_id == "doc-water"

    def test_undercharge_title(self):
        record = _water_record(knowledge_document_id="doc-water", is_verified=True)
        finding = check_water(self._water(20000), _make_ctx(records=[record]))
        assert finding.title == "Water undercharge detected"
        assert finding.confidence == 82

    def test_zero_water_is_skipped(self):
        item = LineItem(ServiceType.WATER, "Water", 0, quantity=0.0)
        assert check_water(item, _make_ctx()) is None


class TestElectricityArithmetic:

    def _item(self, amount):
        return LineItem(
            ServiceType.ELECTRICITY,
            "Electricity consumption",
            amount,
            quantity=100.0,
            metadata={"charges": [StepCharge(step=1, quantity=100.0, rate=200.0)]},
        )

    def test_commercial_printed_rates_add_up(self):
        finding = check_electricity(self._item(23000), _make_ctx(category="commercial"))
        assert finding.check_name == "electricity_arithmetic_verified"
        assert finding.title == "Electricity charges verified (1 meter)"

    def test_commercial_printed_rates_do_not_add_up(self):
        finding = check_electricity(self._item(30000), _make_ctx(category="commercial"))
        assert finding.status is FindingStatus.LIKELY_WRONG
        assert finding.check_name == "electricity_arithmetic_discrepancy"
        assert (finding.impact_min, finding.impact_max) == (7000, 7000)
        assert finding.confidence == 85
        assert finding.citation.self_evident

    def test_residential_without_rule_falls_back_to_bill_rates(self):
        finding = check_electricity(self._item(23000), _make_ctx())
        assert finding.check_name == "electricity_arithmetic_verified"

    def test_energy_uses_quantity_times_rate_not_printed_total(self):
        meters = [MeterReading("5001", 60.0, "Actual"), MeterReading("5002", 40.0, "Actual")]
        item = LineItem(
            ServiceType.ELECTRICITY,
            "Electricity (2 meters)",
            46000,
            quantity=100.0,
            metadata={
                "meters": meters,
                "charges": [StepCharge(step=1, quantity=100.0, rate=300.0)],
                "energy_charge_total": 40000,
            },
        )
        finding = check_electricity(item, _make_ctx())
        assert finding.status is FindingStatus.LIKELY_WRONG
        assert (finding.impact_min, finding.impact_max) == (11500, 11500)

    def test_multi_meter_without_step_rows_is_not_accused(self):
        meters = [MeterReading("5001", 60.0, "Actual"), MeterReading("5002", 40.0, "Actual")]
        item = LineItem(ServiceType.ELECTRICITY, "Electricity (2 meters)", 46000, quantity=100.0,
                        metadata={"meters": meters})
        finding = check_electricity(item, _make_ctx())
        assert finding.status is FindingStatus.CANNOT_VERIFY
        assert finding.impact_max is None
        assert "step rows" in finding.citation.no_source_reason

    def test_no_rule_and_no_printed_rates(self):
        item = LineItem(ServiceType.ELECTRICITY, "Electricity", 50000, quantity=300.0)
        finding = check_electricity(item, _make_ctx(category="commercial"))
        assert finding.status is FindingStatus.CANNOT_VERIFY
        assert "Commercial tariffs differ" in finding.explanation


class TestRates:

    def _rows(self, residential_amount):
        rows = [
            RateLine(value=1000000000, rate=0.023862, amount=1988500, category="Business"),
            RateLine(value=500000000, rate=0.0095447, amount=residential_amount, category="Residential"),
        ]
        return LineItem(
            ServiceType.RATES,
            "Property rates (Business & Residential)",
            sum(r.amount for r in rows),
            metadata={"rate_lines": rows},
        )

    def test_rows_add_up(self):
        finding = verify_rates_rows(self._rows(397696), _make_ctx())
        assert finding.status is FindingStatus.VERIFIED

    def test_row_error(self):
        finding = verify_rates_rows(self._rows(400000), _make_ctx())
        assert finding.status is FindingStatus.LIKELY_WRONG
        assert finding.check_name == "rates_rows_discrepancy"
        assert (finding.impact_min, finding.impact_max) == (2304, 2304)
        assert finding.confidence == 80

    def test_zero_rates(self):
        item = LineItem(ServiceType.RATES, "Property rates", 0)
        assert check_rates(item, _make_ctx()).check_name == "rates_zero"

    def test_missing_valuation(self):
        item = LineItem(ServiceType.RATES, "Property rates", 147147)
        finding = check_rates(item, _make_ctx())
        assert finding.status is FindingStatus.CANNOT_VERIFY
        assert finding.confidence == 50

    def test_caller_valuation_used(self, matcher):
        item = LineItem(ServiceType.RATES, "Property rates", 147147)
        ctx = _make_ctx(item)
        ctx.matcher = matcher
        ctx.property_value = 215000000
        finding = check_rates(item, ctx)
        assert finding.check_name == "rates_tariff_verified"
        assert finding.confidence == 90


class TestRunTariffChecks:

    def test_unrecognised_item_mapped_by_description(self, matcher):
        item = LineItem(ServiceType.OTHER, "Pikitup refuse removal", 37605)
        ctx = _make_ctx(item)
        ctx.matcher = matcher
        assert [f.check_name for f in run_tariff_checks(ctx)] == ["refuse_tariff_verified"]

    @pytest.mark.parametrize("quantity", [None, 0.0])
    def test_electricity_without_consumption_cannot_verify(self, quantity):
        item = LineItem(ServiceType.ELECTRICITY, "Electricity", 250000, quantity=quantity)
        findings = run_tariff_checks(_make_ctx(item))
        assert len(findings) == 1
        assert findings[0].status is FindingStatus.CANNOT_VERIFY
        assert findings[0].citation.no_source_reason == "Electricity consumption not found on bill."

    def test_zero_electricity_skipped(self):
        item = LineItem(ServiceType.ELECTRICITY, "Electricity", 0, quantity=0.0)
        assert run_tariff_checks(_make_ctx(item)) == []

    def test_sundry_always_noted(self):
        item = LineItem(ServiceType.SUNDRY, "Business services surcharge", 155870, metadata={"base_amount": 135539})
        findings = run_tariff_checks(_make_ctx(item, property_info=PropertyInfo(units=47)))
        assert findings[0].check_name == "sundry_business_surcharge"


class TestFormatBreakdown:

    def test_lists_bands_and_total(self, repository):
        rule = next(r for r in repository._rules if r.id == "coj-jw-water-res-2025-26")
        result = calculate_expected_charge(rule, consumption=18.0)
        text = format_breakdown(result.breakdown)
        assert "**Consumption:** 18 kL" in text
        assert "**Expected Total:**" in text
        assert "2025/26 residential tariff" in text
