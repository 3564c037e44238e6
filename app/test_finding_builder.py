"""
Tests for the finding builder and its citation guard.

A LIKELY_WRONG finding must cite a source document or be self-evident
from the bill; every other required part is checked at build().
"""

import pytest

from finding_builder import (
    SELF_EVIDENT_NOTE,
    USAGE_HEURISTIC_NOTE,
    CheckType,
    CitationRequiredError,
    F,
    FindingStatus,
    IncompleteFindingError,
    arithmetic_citation,
    citation_from,
    no_citation,
    sundry_business_surcharge,
    water_demand_levy,
    zero_amount,
)
from rule_matcher import RuleMatch
from tariff_models import TariffRule


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_match(document_id="doc-1", verified=True) -> RuleMatch:
    rule = TariffRule.model_validate({
        "id": "rule-1",
        "provider": "pikitup",
        "service_type": "refuse",
        "customer_category": "residential",
        "financial_year": "2025/26",
        "effective_date": "2025-07-01",
        "pricing_structure": {"residential_charge": 32700, "business_charge": 0},
        "knowledge_document_id": document_id,
        "source_page_number": 3,
        "source_excerpt": "R327.00 per month",
        "is_verified": verified,
    })
    return RuleMatch(
        rule=rule,
        confidence=95,
        source_excerpt=rule.source_excerpt,
        financial_year="2025/26",
        is_verified=verified,
    )


def _complete(builder):
    return builder.because("explanation").confidence(90)


# ===================================================================
# Required parts
# ===================================================================

class TestRequiredParts:

    def test_verified_finding(self):
        finding = _complete(F.tariff("refuse").verified("Refuse verified")).cited_from(_make_match()).build()
        assert finding.status is FindingStatus.VERIFIED
        assert finding.check_type is CheckType.TARIFF
        assert finding.check_name == "refuse_verified"
        assert finding.citation.has_source
        assert finding.citation.source_page_number == 3
        assert not finding.is_accusation

    @pytest.mark.parametrize("builder, message", [
        (lambda: F.tariff("x").because("e").confidence(1).without_source("r"), "status"),
        (lambda: F.tariff("x").verified("").because("e").confidence(1).without_source("r"), "title"),
        (lambda: F.tariff("x").verified("t").confidence(1).without_source("r"), "explanation"),
        (lambda: F.tariff("x").verified("t").because("e").without_source("r"), "confidence"),
        (lambda: F.tariff("x").verified("t").because("e").confidence(1), "citation"),
    ])
    def test_missing_part(self, builder, message):
        with pytest.raises(IncompleteFindingError, match=message):
            builder().build()

    def test_confidence_clamped(self):
        high = F.meter("m").verified("t").because("e").confidence(140).without_source("r").build()
        low = F.meter("m").verified("t").because("e").confidence(-3).without_source("r").build()
        assert (high.confidence, low.confidence) == (100, 0)

    def test_check_name_suffixes(self):
        wrong = F.arithmetic("vat").likely_wrong("t", 100).because("e").confidence(1).with_citation(arithmetic_citation()).build()
        unknown = F.tariff("water").cannot_verify("t").because("e").confidence(1).without_source("r").build()
        assert wrong.check_name == "vat_discrepancy"
        assert unknown.check_name == "water_cannot_verify"

    def test_named_overrides(self):
        finding = F.tariff("water").verified("t").named("water_demand_levy").because("e").confidence(1).without_source("r").build()
        assert finding.check_name == "water_demand_levy"


# ===================================================================
# Citation guard
# ===================================================================

class TestCitationGuard:

    def test_likely_wrong_with_document(self):
        finding = _complete(F.tariff("refuse").likely_wrong("Overcharged", -2000)).cited_from(_make_match()).build()
        assert finding.is_accusation
        assert finding.impact_min == 1700
        assert finding.impact_max == 2000

    def test_likely_wrong_without_source_rejected(self):
        with pytest.raises(CitationRequiredError):
            _complete(F.tariff("refuse").likely_wrong("Overcharged", 2000)).without_source("no rule").build()

    def test_likely_wrong_with_undocumented_rule_rejected(self):
        builder = _complete(F.tariff("refuse").likely_wrong("Overcharged", 2000)).cited_from(_make_match(None))
        with pytest.raises(CitationRequiredError):
            builder.build()

    def test_self_evident_accepted_and_noted(self):
        finding = _complete(F.meter("electricity").likely_wrong("Estimated", 100)).self_evident("Reading printed as Estimated").build()
        assert finding.citation.self_evident
        assert not finding.citation.has_source
        assert SELF_EVIDENT_NOTE in finding.explanation

    def test_self_evident_custom_note(self):
        finding = (
            _complete(F.meter("water").likely_wrong("High usage", 100))
            .self_evident("Usage above the household band", note=USAGE_HEURISTIC_NOTE)
            .build()
        )
        assert USAGE_HEURISTIC_NOTE in finding.explanation
        assert SELF_EVIDENT_NOTE not in finding.explanation
        assert finding.citation.no_source_reason == "Usage above the household band"

    def test_cannot_verify_needs_no_source(self):
        finding = _complete(F.tariff("rates").cannot_verify("No valuation")).without_source("valuation missing").build()
        assert finding.status is FindingStatus.CANNOT_VERIFY
        assert finding.citation.no_source_reason == "valuation missing"

    def test_with_impact_overrides(self):
        finding = (
            _complete(F.meter("water").likely_wrong("High usage", 1000))
            .with_impact(10, 20)
            .self_evident("usage")
            .build()
        )
        assert (finding.impact_min, finding.impact_max) == (10, 20)


class TestCitationHelpers:

    def test_citation_from_none(self):
        citation = citation_from(None)
        assert not citation.has_source
        assert "No matching tariff rule" in citation.no_source_reason

    def test_citation_from_undocumented_rule(self):
        citation = citation_from(_make_match(None))
        assert not citation.has_source
        assert citation.tariff_rule_id == "rule-1"
        assert "not backed by a source document" in citation.no_source_reason

    def test_no_citation(self):
        assert no_citation("why").no_source_reason == "why"

    def test_to_dict(self):
        finding = _complete(F.tariff("refuse").verified("t")).cited_from(_make_match()).build()
        d = finding.to_dict()
        assert d["status"] == "VERIFIED"
        assert d["check_type"] == "tariff"
        assert d["citation"]["knowledge_document_id"] == "doc-1"


# ===================================================================
# Templates
# ===================================================================

class TestTemplates:

    def test_zero_amount(self):
        finding = zero_amount("rates", "No rates charged")
        assert finding.status is FindingStatus.VERIFIED
        assert finding.confidence == 95
        assert finding.check_name == "rates_zero"

    def test_sundry_business_surcharge(self):
        finding = sundry_business_surcharge(155870, 135539)
        assert finding.confidence == 70
        assert "R1,558.70" in finding.explanation
        assert "R1,355.39 + 15% VAT" in finding.explanation

    def test_water_levy_within_range(self):
        finding = water_demand_levy(351757, 47, 5500, 8500)
        assert finding.status is FindingStatus.VERIFIED
        assert finding.confidence == 75
        assert "R74.84/unit" in finding.explanation

    def test_water_levy_out_of_range_is_noted(self):
        finding = water_demand_levy(900000, 47, 5500, 8500)
        assert finding.confidence == 70
        assert finding.title == "Water charges noted"

    def test_water_levy_single_unit(self):
        assert water_demand_levy(6508, 1, 5500, 8500).title == "Water charges noted"
