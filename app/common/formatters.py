"""Formatting utilities for the bill verifier.

Rand, kWh, kL and date helpers used by findings, reports and
the command-line evaluator. Money arrives as integer cents.
"""
from __future__ import annotations

from datetime import date, datetime as dt


def format_rand(cents: int | None) -> str:
    """Format integer cents as Rand ("R2,497.43"), or a dash if None."""
    if cents is None:
        return "—"
    sign = "-" if cents < 0 else ""
    return f"{sign}R{abs(cents) / 100:,.2f}"


def format_kwh(value: float | None, precision: int = 1) -> str:
    """Format a kWh value with appropriate precision."""
    if value is None:
        return "—"
    return f"{value:,.{precision}f} kWh"


def format_kl(value: float | None, precision: int = 1) -> str:
    """Format a water volume in kilolitres."""
    if value is None:
        return "—"
    return f"{value:,.{precision}f} kL"


def format_date_range(start: date | None, end: date | None) -> str:
    """Format a billing period date range."""
    if start and end:
        return f"{start.isoformat()} → {end.isoformat()}"
    if start:
        return start.isoformat()
    return "—"


def parse_bill_date(date_str: str | None):
    """Try to parse a date string from bill extraction.

    CoJ bills print ``YYYY/MM/DD``; the other formats cover dates typed in
    by hand. Returns a date object or None.
    """
    if not date_str:
        return None
    formats = ["%Y/%m/%d", "%Y-%m-%d", "%d/%m/%Y", "%d %b %Y", "%d %B %Y"]
    for fmt in formats:
        try:
            return dt.strptime(date_str.strip(), fmt).date()
        except (ValueError, TypeError):
            continue
    return None
