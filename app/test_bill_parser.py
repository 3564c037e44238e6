"""
Tests for the bill data model and money parsing helpers.

Covers:
  (a) Rand / quantity / rate parsing into integer cents
  (b) LineItem validation
  (c) Bill helpers and dict/json serialization
"""
import json
from datetime import date

import pytest

from bill_parser import (
    Bill,
    LineItem,
    MeterReading,
    PropertyInfo,
    RateLine,
    ServiceType,
    StepCharge,
    parse_quantity,
    parse_rand,
    parse_rate_cents,
    round_half_up,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def _make_item(service_type=ServiceType.ELECTRICITY, amount=249743, **kwargs) -> LineItem:
    return LineItem(service_type=service_type, description=kwargs.pop("description", "x"), amount=amount, **kwargs)


def _make_bill(**kwargs) -> Bill:
    defaults = dict(
        account_number="550123456789",
        period_start=date(2025, 10, 28),
        period_end=date(2025, 11, 27),
        line_items=[
            _make_item(),
            _make_item(ServiceType.WATER, 54188, quantity=18.0),
            _make_item(ServiceType.WATER, 1000, description="second water"),
        ],
        property_info=PropertyInfo(units=1, municipal_valuation=215000000),
    )
    defaults.update(kwargs)
    return Bill(**defaults)


# ===================================================================
# Parsing helpers
# ===================================================================

class TestParseRand:

    @pytest.mark.parametrize("text, cents", [
        ("2,497.43", 249743),
        ("R 4,886.83", 488683),
        ("R2150000.00", 215000000),
        ("300 000.00", 30000000),
        ("0.00", 0),
        ("65.08", 6508),
        ("-238.62", -23862),
        ("1.005", 101),
    ])
    def test_valid_amounts(self, text, cents):
        assert parse_rand(text) == cents

    @pytest.mark.parametrize("text", [None, "", "abc", "R"])
    def test_invalid_amounts(self, text):
        assert parse_rand(text) is None


class TestRoundHalfUp:

    @pytest.mark.parametrize("value, expected", [
        (0.5, 1),
        (1.5, 2),
        (2.5, 3),
        (252686.52, 252687),
        (32575.2, 32575),
        (-0.5, -1),
    ])
    def test_halves_round_away_from_zero(self, value, expected):
        assert round_half_up(value) == expected


class TestQuantitiesAndRates:

    def test_parse_quantity(self):
        assert parse_quantity("19,616.000") == pytest.approx(19616.0)
        assert parse_quantity("374.000") == pytest.approx(374.0)
        assert parse_quantity(None) is None
        assert parse_quantity("n/a") is None

    def test_parse_rate_cents(self):
        assert parse_rate_cents("2.6444") == pytest.approx(264.44)
        assert parse_rate_cents("29.8400") == pytest.approx(2984.0)
        assert parse_rate_cents(None) is None
        assert parse_rate_cents("x") is None

    def test_step_charge_amount(self):
        assert StepCharge(step=1, quantity=374.0, rate=264.44).amount == 98901
        assert StepCharge(step=2, quantity=5000.0, rate=383.15).amount == 1915750

    def test_meter_reading_estimated(self):
        assert MeterReading("5002", 4000.0, "Estimated").is_estimated is True
        assert MeterReading("5001", 6000.0, "Actual").is_estimated is False
        assert MeterReading("5003", 1.0, "ESTIMATE").is_estimated is True


# ===================================================================
# LineItem
# ===================================================================

class TestLineItem:

    def test_float_amount_rejected(self):
        with pytest.raises(ValueError, match="integer cents"):
            _make_item(amount=2497.43)

    def test_bool_amount_rejected(self):
        with pytest.raises(ValueError):
            _make_item(amount=True)

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError, match="non-negative"):
            _make_item(amount=-1)

    def test_negative_quantity_rejected(self):
        with pytest.raises(ValueError, match="quantity"):
            _make_item(quantity=-3.0)

    def test_service_type_coerced_from_string(self):
        item = _make_item(service_type="refuse", amount=37605)
        assert item.service_type is ServiceType.REFUSE

    def test_unknown_service_type_rejected(self):
        with pytest.raises(ValueError):
            _make_item(service_type="gas")

    def test_meta_default(self):
        item = _make_item(metadata={"vat_amount": 32575})
        assert item.meta("vat_amount") == 32575
        assert item.meta("missing", 7) == 7

    def test_rates_are_vat_exempt(self):
        assert ServiceType.RATES.is_vat_exempt is True
        assert ServiceType.REFUSE.is_vat_exempt is False

    def test_rebate_rate_line_may_be_negative(self):
        assert RateLine(value=30000000, rate=0.0095447, amount=-23862, category="rebate").amount == -23862


# ===================================================================
# Bill
# ===================================================================

class TestBill:

    def test_billing_days(self):
        assert _make_bill().billing_days == 30

    def test_billing_days_unknown(self):
        assert _make_bill(period_end=None).billing_days is None
        assert _make_bill(period_end=date(2025, 10, 1)).billing_days is None

    def test_items_for_and_first_item(self):
        bill = _make_bill()
        assert len(bill.items_for(ServiceType.WATER)) == 2
        assert bill.first_item(ServiceType.WATER).amount == 54188
        assert bill.first_item(ServiceType.RATES) is None

    def test_to_dict_uses_plain_values(self):
        d = _make_bill().to_dict()
        assert d["line_items"][0]["service_type"] == "electricity"
        assert d["property_info"]["units"] == 1

    def test_to_json(self):
        data = json.loads(_make_bill().to_json())
        assert data["period_start"] == "2025-10-28"
        assert data["line_items"][1]["quantity"] == 18.0

    def test_from_dict_round_trip(self):
        bill = _make_bill()
        restored = Bill.from_dict(json.loads(bill.to_json()))
        assert restored.period_start == date(2025, 10, 28)
        assert restored.line_items[1].service_type is ServiceType.WATER
        assert restored.property_info.municipal_valuation == 215000000
        assert restored.billing_days == 30

    def test_from_dict_ignores_unknown_keys(self):
        restored = Bill.from_dict({"account_number": "1", "extra": "ignored"})
        assert restored.account_number == "1"
        assert restored.line_items == []
