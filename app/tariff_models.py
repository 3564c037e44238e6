"""
Tariff Models - Versioned Pricing Rules
========================================

Pydantic models for the tariff rules the verifier prices bills against. A
``TariffRule`` carries one ``PricingStructure`` variant, selected by its
``service_type`` discriminator, so a stored record whose shape does not fit
its service fails validation when it is loaded instead of producing a wrong
calculation later.

Currency amounts are integer cents; per-unit rates are cents per kWh or kL
and may be fractional (264.44 c/kWh). ``RatesPricing.rate_in_rand`` is Rand
of annual rates per Rand of valuation.
"""
from __future__ import annotations

from datetime import date
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from financial_year import parse_financial_year


class _Model(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------

class RateBand(_Model):
    """One slice of a stepped tariff."""
    min_units: float = Field(ge=0)
    max_units: Optional[float] = None
    rate: float = Field(ge=0)
    description: str = ""

    @model_validator(mode="after")
    def _check_width(self):
        if self.max_units is not None and self.max_units <= self.min_units:
            raise ValueError(
                f"band upper bound {self.max_units} must exceed lower bound {self.min_units}"
            )
        return self

    @property
    def is_unbounded(self) -> bool:
        return self.max_units is None

    @property
    def label(self) -> str:
        if self.max_units is None:
            return f"{self.min_units:g}+"
        return f"{self.min_units:g} - {self.max_units:g}"


class FixedCharge(_Model):
    name: str
    amount: int
    frequency: Literal["monthly", "daily", "annual"] = "monthly"


class SeasonalRates(_Model):
    peak: float = Field(ge=0)
    standard: float = Field(ge=0)
    off_peak: float = Field(ge=0)


class TimeOfUseRates(_Model):
    """High-demand (winter, June-August) and low-demand (summer) seasons."""
    summer: SeasonalRates
    winter: SeasonalRates


class DemandCharges(_Model):
    rate_per_kva: float = Field(ge=0)
    threshold: float = 0


class NetworkCharges(_Model):
    """Per-kVA network access and demand charges by season."""
    summer_access: float = 0
    summer_demand: float = 0
    winter_access: float = 0
    winter_demand: float = 0


class Rebate(_Model):
    """A rates rebate.

    ``threshold``: ``amount`` is a valuation in cents exempt from rates.
    ``percentage``: ``amount`` is a percentage off the gross monthly rates.
    ``fixed``: ``amount`` is cents off the monthly rates.
    """
    name: str
    type: Literal["threshold", "percentage", "fixed"]
    amount: float = Field(ge=0)
    conditions: Optional[str] = None


def _check_contiguous(bands: list[RateBand]) -> list[RateBand]:
    ordered = sorted(bands, key=lambda b: b.min_units)
    for prev, nxt in zip(ordered, ordered[1:]):
        if prev.max_units is None:
            raise ValueError("only the final band may be unbounded")
        if prev.max_units != nxt.min_units:
            raise ValueError(
                f"bands are not contiguous: {prev.label} is followed by {nxt.label}"
            )
    return ordered


# ---------------------------------------------------------------------------
# Pricing structure variants
# ---------------------------------------------------------------------------

class ElectricityPricing(_Model):
    service_type: Literal["electricity"] = "electricity"
    bands: list[RateBand] = Field(default_factory=list)
    billing_period_days: int = Field(default=30, gt=0)
    flat_rate: Optional[float] = Field(default=None, ge=0)
    time_of_use: Optional[TimeOfUseRates] = None
    fixed_charges: list[FixedCharge] = Field(default_factory=list)
    network_charges: Optional[NetworkCharges] = None
    demand_charges: Optional[DemandCharges] = None

    @model_validator(mode="before")
    @classmethod
    def _flat_rate_as_band(cls, data):
        if isinstance(data, dict) and not data.get("bands") and data.get("flat_rate") is not None:
            data = dict(data)
            data["bands"] = [{
                "min_units": 0,
                "max_units": None,
                "rate": data["flat_rate"],
                "description": "Flat rate",
            }]
        return data

    @field_validator("bands")
    @classmethod
    def _bands_contiguous(cls, v):
        return _check_contiguous(v)


class WaterPricing(_Model):
    service_type: Literal["water"] = "water"
    bands: list[RateBand] = Field(default_factory=list)
    fixed_charges: list[FixedCharge] = Field(default_factory=list)

    @field_validator("bands")
    @classmethod
    def _bands_contiguous(cls, v):
        return _check_contiguous(v)


class SeweragePricing(_Model):
    service_type: Literal["sewerage"] = "sewerage"
    percentage_of_water: Optional[float] = Field(default=None, ge=0)
    per_unit_charge: Optional[int] = Field(default=None, ge=0)
    fixed_charges: list[FixedCharge] = Field(default_factory=list)


class RefusePricing(_Model):
    service_type: Literal["refuse"] = "refuse"
    residential_charge: int = Field(ge=0)
    business_charge: int = Field(ge=0)
    additional_bin_charge: Optional[int] = Field(default=None, ge=0)
    fixed_charges: list[FixedCharge] = Field(default_factory=list)


class RatesPricing(_Model):
    service_type: Literal["rates"] = "rates"
    rate_in_rand: float = Field(gt=0)
    rebates: list[Rebate] = Field(default_factory=list)
    statutory_adjustment: Optional[int] = None
    formula: str = "market value x rate in rand / 12"


PricingStructure = Annotated[
    Union[ElectricityPricing, WaterPricing, SeweragePricing, RefusePricing, RatesPricing],
    Field(discriminator="service_type"),
]

ServiceName = Literal["electricity", "water", "sewerage", "refuse", "rates"]


# ---------------------------------------------------------------------------
# Tariff rule
# ---------------------------------------------------------------------------

class TariffRule(_Model):
    """A versioned tariff rule with its provenance."""
    id: str
    provider: str
    service_type: ServiceName
    customer_category: str
    financial_year: str
    effective_date: date
    expiry_date: Optional[date] = None
    pricing_structure: PricingStructure
    tariff_code: Optional[str] = None
    description: Optional[str] = None
    vat_rate: float = Field(default=15.0, ge=0, le=100)
    vat_inclusive: bool = False
    knowledge_document_id: Optional[str] = None
    source_excerpt: str = ""
    source_page_number: Optional[int] = None
    is_verified: bool = False
    is_active: bool = True
    extraction_confidence: Optional[float] = Field(default=None, ge=0, le=100)

    @model_validator(mode="before")
    @classmethod
    def _inherit_discriminator(cls, data):
        # Stored records may omit the discriminator inside pricing_structure
        if isinstance(data, dict):
            ps = data.get("pricing_structure")
            if isinstance(ps, dict) and "service_type" not in ps and "service_type" in data:
                data = dict(data)
                data["pricing_structure"] = {**ps, "service_type": data["service_type"]}
        return data

    @field_validator("financial_year")
    @classmethod
    def _valid_financial_year(cls, v: str) -> str:
        parse_financial_year(v)
        return v

    @model_validator(mode="after")
    def _structure_matches_service(self):
        if self.pricing_structure.service_type != self.service_type:
            raise ValueError(
                f"pricing structure is for {self.pricing_structure.service_type}, "
                f"rule is for {self.service_type}"
            )
        if self.expiry_date is not None and self.expiry_date < self.effective_date:
            raise ValueError("expiry_date precedes effective_date")
        return self

    def is_current(self, as_of: date) -> bool:
        """Effective on or before *as_of* and not expired."""
        if self.effective_date > as_of:
            return False
        return self.expiry_date is None or self.expiry_date >= as_of
