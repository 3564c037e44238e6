"""
Bill Parser - Municipal Bill Data Model
========================================

Typed records produced by the bill text extractor and consumed by the
verification engine, plus the money parsing helpers used at the text
boundary.

All currency values are integer cents. Currency text is parsed with
``Decimal`` and rounded half-up once, so no float Rand survives past
``parse_rand``.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field, asdict
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Optional


class ServiceType(str, Enum):
    """Closed set of services a bill line item can belong to."""
    ELECTRICITY = "electricity"
    WATER = "water"
    SEWERAGE = "sewerage"
    REFUSE = "refuse"
    RATES = "rates"
    SUNDRY = "sundry"
    OTHER = "other"

    @property
    def is_vat_exempt(self) -> bool:
        # Property rates are exempt under the VAT Act
        return self is ServiceType.RATES


# ---------------------------------------------------------------------------
# Money and quantity parsing
# ---------------------------------------------------------------------------

_CURRENCY_NOISE = re.compile(r"[,\s]|R(?=\s*\d)")


def round_half_up(value: float | Decimal | int) -> int:
    """Round to the nearest integer, halves away from zero."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_rand(val: str | None) -> Optional[int]:
    """Parse a Rand amount string ("1,234.56", "R 99.00") into cents.

    Thousands separators and whitespace are stripped. Returns None when the
    text is not a number.
    """
    if val is None:
        return None
    cleaned = _CURRENCY_NOISE.sub("", val).rstrip(".")
    if not cleaned:
        return None
    try:
        return round_half_up(Decimal(cleaned) * 100)
    except InvalidOperation:
        return None


def parse_quantity(val: str | None) -> Optional[float]:
    """Parse a consumption figure such as "19,616.000"."""
    if val is None:
        return None
    try:
        return float(val.replace(",", "").replace(" ", ""))
    except ValueError:
        return None


def parse_rate_cents(val: str | None) -> Optional[float]:
    """Parse a printed unit rate in Rand ("2.6444") into cents per unit."""
    if val is None:
        return None
    try:
        return float(Decimal(val.replace(",", "").strip()) * 100)
    except InvalidOperation:
        return None


# ---------------------------------------------------------------------------
# Metadata rows
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MeterReading:
    """One physical meter block from a service section."""
    meter_number: str
    consumption: float
    reading_type: str = "Actual"

    @property
    def is_estimated(self) -> bool:
        return "estimat" in self.reading_type.lower()


@dataclass(frozen=True)
class StepCharge:
    """A stepped-tariff row printed on the bill: quantity at a unit rate."""
    step: int
    quantity: float
    rate: float  # cents per unit, as printed

    @property
    def amount(self) -> int:
        return round_half_up(Decimal(str(self.quantity)) * Decimal(str(self.rate)))


@dataclass(frozen=True)
class ChargeLine:
    """A named charge row (refuse removal, cleaning levy, ...)."""
    description: str
    amount: int


@dataclass(frozen=True)
class RateLine:
    """A property-rates row: valuation x rate-in-rand / 12, or a rebate."""
    value: int          # cents of valuation
    rate: float         # rand per rand of valuation
    amount: int         # cents, negative for rebates
    category: str = "calculated"


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class LineItem:
    """A single service charge on a municipal bill."""
    service_type: ServiceType
    description: str
    amount: int
    quantity: Optional[float] = None
    unit_price: Optional[int] = None
    tariff_code: Optional[str] = None
    is_estimated: bool = False
    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise ValueError(f"LineItem amount must be integer cents, got {self.amount!r}")
        if self.amount < 0:
            raise ValueError(f"LineItem amount must be non-negative, got {self.amount}")
        if self.quantity is not None and self.quantity < 0:
            raise ValueError(f"LineItem quantity must be non-negative, got {self.quantity}")
        if not isinstance(self.service_type, ServiceType):
            object.__setattr__(self, "service_type", ServiceType(self.service_type))

    def meta(self, key: str, default=None):
        return self.metadata.get(key, default)


@dataclass(frozen=True)
class PropertyInfo:
    """Property details printed in the bill header."""
    address: Optional[str] = None
    stand_size: Optional[int] = None
    units: Optional[int] = None
    property_type: Optional[str] = None
    municipal_valuation: Optional[int] = None


@dataclass
class PropertyHints:
    """Caller-supplied facts that fill gaps in the printed property info."""
    municipal_valuation: Optional[int] = None
    units: Optional[int] = None
    property_type: Optional[str] = None


@dataclass(frozen=True)
class Bill:
    """A parsed municipal bill. Created once per parse and not mutated."""
    account_number: Optional[str] = None
    bill_date: Optional[date] = None
    due_date: Optional[date] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None

    # Totals (cents)
    total_due: Optional[int] = None
    previous_balance: Optional[int] = None
    current_charges: Optional[int] = None
    current_charges_incl_vat: Optional[int] = None
    vat_amount: Optional[int] = None

    line_items: list[LineItem] = field(default_factory=list)
    property_info: PropertyInfo = field(default_factory=PropertyInfo)

    raw_text: str = ""
    warnings: list[str] = field(default_factory=list)

    @property
    def billing_days(self) -> Optional[int]:
        if self.period_start and self.period_end and self.period_end > self.period_start:
            return (self.period_end - self.period_start).days
        return None

    def items_for(self, service_type: ServiceType) -> list[LineItem]:
        return [i for i in self.line_items if i.service_type == service_type]

    def first_item(self, service_type: ServiceType) -> Optional[LineItem]:
        items = self.items_for(service_type)
        return items[0] if items else None

    # ---- serialization helpers ----

    def to_dict(self) -> dict:
        """Serialize to a plain dict (line items and metadata rows become dicts)."""
        d = asdict(self)
        for item in d["line_items"]:
            item["service_type"] = ServiceType(item["service_type"]).value
        return d

    def to_json(self, **kwargs) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), default=str, **kwargs)

    @classmethod
    def from_dict(cls, d: dict) -> "Bill":
        """Construct from a plain dict (inverse of to_dict, metadata kept as dicts)."""
        d = dict(d)
        items_raw = d.pop("line_items", [])
        items = [LineItem(**li) if isinstance(li, dict) else li for li in items_raw]
        prop = d.pop("property_info", None) or {}
        if isinstance(prop, dict):
            prop = PropertyInfo(**prop)
        for key in ("bill_date", "due_date", "period_start", "period_end"):
            if isinstance(d.get(key), str):
                d[key] = date.fromisoformat(d[key])
        known = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in d.items() if k in known}
        return cls(line_items=items, property_info=prop, **filtered)
