"""
Tests for the pydantic tariff rule models.

Covers the service_type discriminated union, band validation, the
flat-rate shortcut and rule-level consistency checks.
"""
from datetime import date

import pytest
from pydantic import ValidationError

from tariff_models import (
    ElectricityPricing,
    RateBand,
    RatesPricing,
    SeweragePricing,
    TariffRule,
    WaterPricing,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_rule_dict(service_type="electricity", pricing=None, **kwargs) -> dict:
    if pricing is None:
        pricing = {"bands": [{"min_units": 0, "max_units": None, "rate": 264.44}]}
    d = {
        "id": f"test-{service_type}",
        "provider": "city_power",
        "service_type": service_type,
        "customer_category": "residential",
        "financial_year": "2025/26",
        "effective_date": "2025-07-01",
        "pricing_structure": pricing,
    }
    d.update(kwargs)
    return d


# ===================================================================
# Discriminated union
# ===================================================================

class TestPricingUnion:

    def test_discriminator_inherited_from_rule(self):
        rule = TariffRule.model_validate(_make_rule_dict())
        assert isinstance(rule.pricing_structure, ElectricityPricing)
        assert rule.effective_date == date(2025, 7, 1)

    @pytest.mark.parametrize("service_type, pricing, cls", [
        ("water", {"bands": [{"min_units": 0, "max_units": 6, "rate": 0}, {"min_units": 6, "rate": 2984}]}, WaterPricing),
        ("sewerage", {"per_unit_charge": 35842}, SeweragePricing),
        ("rates", {"rate_in_rand": 0.0095447}, RatesPricing),
    ])
    def test_variant_selected_by_service(self, service_type, pricing, cls):
        rule = TariffRule.model_validate(_make_rule_dict(service_type, pricing))
        assert isinstance(rule.pricing_structure, cls)

    def test_mismatched_structure_rejected(self):
        d = _make_rule_dict("water", {"service_type": "rates", "rate_in_rand": 0.01})
        with pytest.raises(ValidationError, match="pricing structure is for rates"):
            TariffRule.model_validate(d)

    def test_wrong_shape_for_service_rejected(self):
        with pytest.raises(ValidationError):
            TariffRule.model_validate(_make_rule_dict("refuse", {"rate_in_rand": 0.01}))

    def test_unknown_fields_rejected(self):
        d = _make_rule_dict(pricing={"bands": [], "surprise": 1})
        with pytest.raises(ValidationError):
            TariffRule.model_validate(d)


# ===================================================================
# Bands
# ===================================================================

class TestBands:

    def test_band_label(self):
        assert RateBand(min_units=0, max_units=500, rate=264.44).label == "0 - 500"
        assert RateBand(min_units=2000, rate=349.05).label == "2000+"

    def test_inverted_band_rejected(self):
        with pytest.raises(ValidationError, match="must exceed"):
            RateBand(min_units=10, max_units=5, rate=1)

    def test_negative_rate_rejected(self):
        with pytest.raises(ValidationError):
            RateBand(min_units=0, rate=-1)

    def test_bands_sorted(self):
        pricing = ElectricityPricing(bands=[
            {"min_units": 500, "max_units": None, "rate": 301.85},
            {"min_units": 0, "max_units": 500, "rate": 264.44},
        ])
        assert [b.min_units for b in pricing.bands] == [0, 500]

    def test_gap_between_bands_rejected(self):
        with pytest.raises(ValidationError, match="not contiguous"):
            WaterPricing(bands=[
                {"min_units": 0, "max_units": 6, "rate": 0},
                {"min_units": 10, "max_units": None, "rate": 3115},
            ])

    def test_unbounded_band_must_be_last(self):
        with pytest.raises(ValidationError, match="unbounded"):
            WaterPricing(bands=[
                {"min_units": 0, "max_units": None, "rate": 0},
                {"min_units": 6, "max_units": 10, "rate": 2984},
            ])

    def test_flat_rate_becomes_single_band(self):
        pricing = ElectricityPricing(flat_rate=250.0)
        assert len(pricing.bands) == 1
        assert pricing.bands[0].is_unbounded
        assert pricing.bands[0].rate == 250.0


# ===================================================================
# Rule-level checks
# ===================================================================

class TestTariffRule:

    def test_malformed_financial_year(self):
        with pytest.raises(ValidationError):
            TariffRule.model_validate(_make_rule_dict(financial_year="2025/27"))

    def test_expiry_before_effective(self):
        with pytest.raises(ValidationError, match="expiry_date"):
            TariffRule.model_validate(_make_rule_dict(expiry_date="2025-06-30"))

    def test_is_current(self):
        rule = TariffRule.model_validate(_make_rule_dict(expiry_date="2026-06-30"))
        assert rule.is_current(date(2025, 7, 1))
        assert rule.is_current(date(2026, 6, 30))
        assert not rule.is_current(date(2025, 6, 30))
        assert not rule.is_current(date(2026, 7, 1))

    def test_open_ended_rule(self):
        rule = TariffRule.model_validate(_make_rule_dict())
        assert rule.is_current(date(2030, 1, 1))

    def test_rules_are_frozen(self):
        rule = TariffRule.model_validate(_make_rule_dict())
        with pytest.raises(ValidationError):
            rule.is_verified = True

    def test_vat_rate_bounds(self):
        with pytest.raises(ValidationError):
            TariffRule.model_validate(_make_rule_dict(vat_rate=150))
