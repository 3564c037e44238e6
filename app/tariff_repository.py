"""
Tariff Repository - Rule Storage and Missing-Tariff Alerts
==========================================================

The verifier reads tariff rules through a small lookup interface and reports
gaps through an alert sink. Both are Protocols so a database-backed store
can replace the in-memory implementations here.

Rule records are JSON files (see ``tariff_data/``), each a list of
``TariffRule`` dicts or an object with a ``"rules"`` list. Every record is
validated on load; see ``load_rules`` for the strict / lenient modes.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional, Protocol

from pydantic import ValidationError

from tariff_models import TariffRule

log = logging.getLogger(__name__)

TARIFF_DATA_DIR = os.path.join(os.path.dirname(__file__), "tariff_data")


class TariffDataError(ValueError):
    """A stored tariff record is malformed."""


# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------

class RuleRepository(Protocol):
    def lookup(
        self,
        provider: str,
        service_type: str,
        customer_category: str,
        financial_year: Optional[str],
    ) -> list[TariffRule]:
        """Active rules for the key; all financial years when *financial_year* is None."""
        ...


@dataclass
class MissingTariffAlert:
    provider: str
    service_type: str
    financial_year: str
    suggested_urls: list[str] = field(default_factory=list)
    affected_analysis_count: int = 1
    priority: str = "high"
    status: str = "open"
    updated_at: Optional[datetime] = None


class AlertSink(Protocol):
    def missing_tariff(self, alert: MissingTariffAlert) -> None:
        ...


# Where an administrator can find the official schedule for each provider.
SUGGESTED_URLS: dict[str, list[str]] = {
    "city_power": [
        "https://www.citypower.co.za/customers/Pages/Tariffs.aspx",
        "https://www.joburg.org.za/documents",
    ],
    "joburg_water": [
        "https://www.johannesburgwater.co.za/tariffs/",
        "https://www.joburg.org.za/documents",
    ],
    "pikitup": [
        "https://www.pikitup.co.za/tariffs/",
        "https://www.joburg.org.za/documents",
    ],
    "coj": [
        "https://www.joburg.org.za/documents",
        "https://www.joburg.org.za/budget",
    ],
}

DEFAULT_SUGGESTED_URLS = ["https://www.joburg.org.za/documents"]


def suggested_urls(provider: str) -> list[str]:
    return list(SUGGESTED_URLS.get(provider, DEFAULT_SUGGESTED_URLS))


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------

class InMemoryRuleRepository:
    """Rule store backed by a list of validated ``TariffRule`` objects."""

    def __init__(self, rules: Iterable[TariffRule] = ()):
        self._rules: list[TariffRule] = list(rules)

    def __len__(self) -> int:
        return len(self._rules)

    def add(self, rule: TariffRule) -> None:
        self._rules.append(rule)

    def lookup(
        self,
        provider: str,
        service_type: str,
        customer_category: str,
        financial_year: Optional[str],
    ) -> list[TariffRule]:
        return [
            r for r in self._rules
            if r.is_active
            and r.provider == provider
            and r.service_type == service_type
            and r.customer_category == customer_category
            and (financial_year is None or r.financial_year == financial_year)
        ]

    @classmethod
    def from_files(cls, paths: Iterable[str], *, strict: bool = True) -> "InMemoryRuleRepository":
        rules: list[TariffRule] = []
        for path in paths:
            rules.extend(load_rules(path, strict=strict))
        return cls(rules)

    @classmethod
    def from_default_data(cls, *, strict: bool = True) -> "InMemoryRuleRepository":
        """Load every JSON rule file shipped in ``tariff_data/``."""
        paths = sorted(
            os.path.join(TARIFF_DATA_DIR, name)
            for name in os.listdir(TARIFF_DATA_DIR)
            if name.endswith(".json")
        )
        return cls.from_files(paths, strict=strict)


class InMemoryAlertSink:
    """Collects alerts keyed by (provider, service_type, financial_year).

    A repeated miss for the same key increments ``affected_analysis_count``
    instead of adding a second alert.
    """

    def __init__(self):
        self.alerts: dict[tuple[str, str, str], MissingTariffAlert] = {}

    def missing_tariff(self, alert: MissingTariffAlert) -> None:
        key = (alert.provider, alert.service_type, alert.financial_year)
        existing = self.alerts.get(key)
        if existing is None:
            alert.updated_at = datetime.now()
            self.alerts[key] = alert
        else:
            existing.affected_analysis_count += 1
            existing.updated_at = datetime.now()

    def __len__(self) -> int:
        return len(self.alerts)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def parse_rule_records(records: list[dict], *, strict: bool = True, source: str = "<records>") -> list[TariffRule]:
    """Validate raw rule dicts.

    In strict mode the first malformed record raises ``TariffDataError``;
    otherwise malformed records are skipped with a warning.
    """
    rules: list[TariffRule] = []
    for idx, record in enumerate(records):
        try:
            rules.append(TariffRule.model_validate(record))
        except ValidationError as e:
            rule_id = record.get("id", f"#{idx}") if isinstance(record, dict) else f"#{idx}"
            if strict:
                raise TariffDataError(f"{source}: rule {rule_id} is malformed: {e}") from e
            log.warning("Skipping malformed tariff rule %s in %s", rule_id, source, exc_info=True)
    return rules


def load_rules(path: str, *, strict: bool = True) -> list[TariffRule]:
    """Load and validate a JSON rule file.

    Raises:
        TariffDataError: If the file is not valid JSON, has the wrong shape,
            or (in strict mode) holds a malformed record.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise TariffDataError(f"Cannot parse tariff file '{path}': {e}") from e

    if isinstance(data, dict):
        data = data.get("rules")
    if not isinstance(data, list):
        raise TariffDataError(f"Tariff file '{path}' must hold a list of rules")

    rules = parse_rule_records(data, strict=strict, source=os.path.basename(path))
    log.debug("Loaded %d tariff rules from %s", len(rules), path)
    return rules
