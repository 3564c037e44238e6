"""
Municipal financial year helpers.

The City of Johannesburg financial year runs 1 July to 30 June and is written
``YYYY/YY`` ("2025/26" covers 2025-07-01 to 2026-06-30).
"""
from __future__ import annotations

import re
from datetime import date

FY_START_MONTH = 7

_FY_RE = re.compile(r"^(\d{4})/(\d{2})$")


def _format(start_year: int) -> str:
    return f"{start_year}/{str(start_year + 1)[2:]}"


def financial_year_for(as_of: date) -> str:
    """Return the financial year label containing *as_of*."""
    if as_of.month >= FY_START_MONTH:
        return _format(as_of.year)
    return _format(as_of.year - 1)


def parse_financial_year(fy: str) -> int:
    """Return the start year of a ``YYYY/YY`` label.

    Raises:
        ValueError: If the label is malformed or the two halves are not
            consecutive years.
    """
    m = _FY_RE.match(fy.strip()) if fy else None
    if not m:
        raise ValueError(f"Malformed financial year: {fy!r}")
    start = int(m.group(1))
    if str(start + 1)[2:] != m.group(2):
        raise ValueError(f"Financial year halves are not consecutive: {fy!r}")
    return start


def previous_financial_year(fy: str) -> str:
    """Return the label one year before *fy* ("2025/26" -> "2024/25")."""
    return _format(parse_financial_year(fy) - 1)


def financial_year_bounds(fy: str) -> tuple[date, date]:
    """First and last day of a financial year."""
    start = parse_financial_year(fy)
    return date(start, FY_START_MONTH, 1), date(start + 1, FY_START_MONTH - 1, 30)
