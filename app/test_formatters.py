"""Unit tests for the display formatting helpers."""
from datetime import date

import pytest

from common.formatters import format_date_range, format_kl, format_kwh, format_rand, parse_bill_date


@pytest.mark.parametrize("cents, expected", [
    (249743, "R2,497.43"),
    (0, "R0.00"),
    (-23862, "-R238.62"),
    (2232000000, "R22,320,000.00"),
    (None, "—"),
])
def test_format_rand(cents, expected):
    assert format_rand(cents) == expected


def test_units():
    assert format_kwh(10000) == "10,000.0 kWh"
    assert format_kl(18, precision=0) == "18 kL"
    assert format_kwh(None) == "—"


def test_format_date_range():
    assert format_date_range(date(2025, 10, 28), date(2025, 11, 27)) == "2025-10-28 → 2025-11-27"
    assert format_date_range(date(2025, 10, 28), None) == "2025-10-28"
    assert format_date_range(None, None) == "—"


@pytest.mark.parametrize("text, expected", [
    ("2025/12/01", date(2025, 12, 1)),
    ("2025-12-01", date(2025, 12, 1)),
    ("01/12/2025", date(2025, 12, 1)),
    ("1 Dec 2025", date(2025, 12, 1)),
    (" 2025/12/15 ", date(2025, 12, 15)),
    ("31/02/2025", None),
    ("", None),
    (None, None),
])
def test_parse_bill_date(text, expected):
    assert parse_bill_date(text) == expected
