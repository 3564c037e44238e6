"""
Verification settings: tolerances, typical ranges and thresholds.

All money values are integer cents. Defaults are the empirically tuned values
the checks have always used; they are not taken from published municipal
policy, so deployments can override any of them through environment
variables named ``BILL_VERIFIER_<FIELD>`` (e.g.
``BILL_VERIFIER_RATES_TOLERANCE=2500``).
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace
from typing import Mapping, Optional

log = logging.getLogger(__name__)

ENV_PREFIX = "BILL_VERIFIER_"


@dataclass(frozen=True)
class VerificationSettings:
    # Tariff comparison tolerances (billed vs expected)
    electricity_tolerance_residential: int = 1000
    electricity_tolerance_commercial: int = 5000
    water_tolerance_residential: int = 500
    water_tolerance_commercial: int = 2000
    sewerage_tolerance: int = 1000
    refuse_tolerance: int = 500
    rates_tolerance: int = 5000
    bill_rate_arithmetic_tolerance: int = 500
    rates_row_tolerance: int = 100

    # Whole-bill arithmetic
    reconciliation_tolerance: int = 100
    vat_tolerance: int = 500
    vat_rate: float = 15.0

    # Heuristic ranges used when no rule is available
    refuse_typical_min: int = 15000
    refuse_typical_max: int = 40000
    water_levy_per_unit_min: int = 5500
    water_levy_per_unit_max: int = 8500

    # Meter sanity (residential only)
    high_electricity_kwh: float = 1500.0
    typical_electricity_kwh_low: float = 500.0
    typical_electricity_kwh_high: float = 900.0
    electricity_excess_rate: int = 210
    high_water_kl: float = 50.0
    typical_water_kl_low: float = 15.0
    typical_water_kl_high: float = 25.0
    water_excess_rate: int = 3550
    estimated_impact_min_pct: float = 10.0
    estimated_impact_max_pct: float = 30.0

    # Recommendation
    handle_yourself_threshold: int = 20000

    def electricity_tolerance(self, commercial: bool) -> int:
        return self.electricity_tolerance_commercial if commercial else self.electricity_tolerance_residential

    def water_tolerance(self, commercial: bool) -> int:
        return self.water_tolerance_commercial if commercial else self.water_tolerance_residential

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "VerificationSettings":
        """Defaults overridden by ``BILL_VERIFIER_*`` environment variables.

        Raises:
            ValueError: If a variable does not parse as the field's type or
                is negative.
        """
        env = os.environ if environ is None else environ
        overrides = {}
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw.strip() == "":
                continue
            caster = int if f.type in (int, "int") else float
            try:
                value = caster(raw.strip())
            except ValueError as e:
                raise ValueError(f"{ENV_PREFIX}{f.name.upper()} must be a {caster.__name__}, got {raw!r}") from e
            if value < 0:
                raise ValueError(f"{ENV_PREFIX}{f.name.upper()} must not be negative")
            log.debug("Setting %s overridden to %s", f.name, value)
            overrides[f.name] = value
        return replace(cls(), **overrides)


DEFAULT_SETTINGS = VerificationSettings()
