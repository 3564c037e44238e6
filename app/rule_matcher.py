"""
Rule Matcher - Selecting the Applicable Tariff Rule
===================================================

Matches a bill line item (provider, service, customer category, date) to the
single best tariff rule in a ``RuleRepository``.

Matching hierarchy, first hit wins:
  1. Verified rule for the target financial year, in force on the date
     (most recent effective date first)               -> confidence 95
  2. Unverified rule, same criteria (highest extraction confidence first)
                                                      -> extraction clamped to 65-80
  3. Any active rule from the previous financial year (verified first)
                                                      -> 60 verified / 40 not
  4. Nothing: a ``MissingTariffAlert`` goes to the alert sink and the
     matcher returns None.

Also holds the small inference helpers used to key a lookup: customer
category from property details, and provider/service from free-text line
descriptions (keyword rules first, rapidfuzz as the fallback).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from rapidfuzz import fuzz

from financial_year import financial_year_for, previous_financial_year
from tariff_models import TariffRule
from tariff_repository import AlertSink, MissingTariffAlert, RuleRepository, suggested_urls

log = logging.getLogger(__name__)

VERIFIED_CONFIDENCE = 95
UNVERIFIED_CAP = 80
UNVERIFIED_DEFAULT = 70
# Any current-year match outranks a previous-year one
UNVERIFIED_FLOOR = 65
PREVIOUS_YEAR_VERIFIED = 60
PREVIOUS_YEAR_UNVERIFIED = 40

COMMERCIAL_CATEGORIES = ("commercial", "business", "industrial")


@dataclass(frozen=True)
class RuleMatch:
    """A selected rule plus the confidence and provenance of the selection."""
    rule: TariffRule
    confidence: int
    source_excerpt: str
    financial_year: str
    is_verified: bool

    @property
    def tariff_rule_id(self) -> str:
        return self.rule.id

    @property
    def knowledge_document_id(self) -> Optional[str]:
        return self.rule.knowledge_document_id

    @property
    def source_page_number(self) -> Optional[int]:
        return self.rule.source_page_number

    @property
    def pricing_structure(self):
        return self.rule.pricing_structure


def _confidence_key(rule: TariffRule) -> float:
    return rule.extraction_confidence if rule.extraction_confidence is not None else -1.0


class RuleMatcher:
    """Selects tariff rules from a repository, reporting gaps to an alert sink."""

    def __init__(self, repository: RuleRepository, alert_sink: Optional[AlertSink] = None):
        self.repository = repository
        self.alert_sink = alert_sink

    def _lookup(self, provider, service_type, customer_category, financial_year) -> list[TariffRule]:
        try:
            rules = self.repository.lookup(provider, service_type, customer_category, financial_year)
        except Exception:
            log.warning(
                "Rule lookup failed for %s/%s/%s %s; treating as no rules",
                provider, service_type, customer_category, financial_year,
                exc_info=True,
            )
            return []
        return [r for r in rules if r.is_active]

    def match(
        self,
        provider: str,
        service_type: str,
        customer_category: str,
        as_of_date: Optional[date] = None,
        financial_year: Optional[str] = None,
    ) -> Optional[RuleMatch]:
        """Return the best rule for the key, or None (after raising an alert)."""
        as_of = as_of_date or date.today()
        target_fy = financial_year or financial_year_for(as_of)

        current = [
            r for r in self._lookup(provider, service_type, customer_category, target_fy)
            if r.is_current(as_of)
        ]

        # 1. Verified, newest effective date first
        verified = sorted(
            (r for r in current if r.is_verified),
            key=lambda r: r.effective_date,
            reverse=True,
        )
        if verified:
            rule = verified[0]
            log.debug("Matched verified rule %s for %s/%s", rule.id, provider, service_type)
            return RuleMatch(
                rule=rule,
                confidence=VERIFIED_CONFIDENCE,
                source_excerpt=rule.source_excerpt,
                financial_year=rule.financial_year,
                is_verified=True,
            )

        # 2. Unverified, best extraction first
        unverified = sorted(
            (r for r in current if not r.is_verified),
            key=_confidence_key,
            reverse=True,
        )
        if unverified:
            rule = unverified[0]
            base = int(rule.extraction_confidence or UNVERIFIED_DEFAULT)
            log.debug("Matched unverified rule %s for %s/%s", rule.id, provider, service_type)
            return RuleMatch(
                rule=rule,
                confidence=max(min(base, UNVERIFIED_CAP), UNVERIFIED_FLOOR),
                source_excerpt=rule.source_excerpt,
                financial_year=rule.financial_year,
                is_verified=False,
            )

        # 3. Previous financial year
        prev_fy = previous_financial_year(target_fy)
        previous = sorted(
            self._lookup(provider, service_type, customer_category, prev_fy),
            key=lambda r: (r.is_verified, _confidence_key(r)),
            reverse=True,
        )
        if previous:
            rule = previous[0]
            log.debug("Matched previous-year rule %s for %s/%s", rule.id, provider, service_type)
            return RuleMatch(
                rule=rule,
                confidence=PREVIOUS_YEAR_VERIFIED if rule.is_verified else PREVIOUS_YEAR_UNVERIFIED,
                source_excerpt=f"[Previous year: {prev_fy}] {rule.source_excerpt}",
                financial_year=rule.financial_year,
                is_verified=rule.is_verified,
            )

        # 4. Nothing
        self._alert_missing(provider, service_type, target_fy)
        return None

    def _alert_missing(self, provider: str, service_type: str, financial_year: str) -> None:
        log.warning("No tariff rule for %s/%s in %s", provider, service_type, financial_year)
        if self.alert_sink is None:
            return
        alert = MissingTariffAlert(
            provider=provider,
            service_type=service_type,
            financial_year=financial_year,
            suggested_urls=suggested_urls(provider),
        )
        try:
            self.alert_sink.missing_tariff(alert)
        except Exception:
            log.warning("Failed to record missing tariff alert", exc_info=True)

    def find_all_matching_rules(
        self,
        provider: str,
        service_type: str,
        customer_category: str,
        financial_year: Optional[str] = None,
    ) -> list[RuleMatch]:
        """Every active rule for the key, for reviewing conflicts.

        Ordered newest financial year first, then verified first, then by
        extraction confidence.
        """
        rules = self._lookup(provider, service_type, customer_category, financial_year)
        rules.sort(key=lambda r: (r.financial_year, r.is_verified, _confidence_key(r)), reverse=True)
        return [
            RuleMatch(
                rule=r,
                confidence=VERIFIED_CONFIDENCE if r.is_verified else int(r.extraction_confidence or UNVERIFIED_DEFAULT),
                source_excerpt=r.source_excerpt,
                financial_year=r.financial_year,
                is_verified=r.is_verified,
            )
            for r in rules
        ]


# ---------------------------------------------------------------------------
# Inference helpers
# ---------------------------------------------------------------------------

def infer_customer_category(
    property_type: Optional[str] = None,
    units: Optional[int] = None,
    account_number: Optional[str] = None,
) -> str:
    """Customer category from the bill's property details.

    More than four living units is treated as commercial; otherwise the
    printed property type decides, defaulting to residential.
    """
    if units and units > 4:
        return "commercial"
    if property_type:
        lowered = property_type.lower()
        if "business" in lowered or "commercial" in lowered:
            return "commercial"
        if "industrial" in lowered:
            return "industrial"
    return "residential"


SERVICE_PROVIDERS: dict[str, str] = {
    "electricity": "city_power",
    "water": "joburg_water",
    "sewerage": "joburg_water",
    "refuse": "pikitup",
    "rates": "coj",
    "sundry": "coj",
}


def provider_for_service(service_type: str) -> Optional[str]:
    return SERVICE_PROVIDERS.get(service_type)


@dataclass(frozen=True)
class ServiceInference:
    provider: str
    service_type: str
    method: str  # "keyword" or "fuzzy"
    score: float = 100.0


# Phrases compared against unrecognised descriptions by the fuzzy fallback.
_SERVICE_PHRASES: dict[str, list[str]] = {
    "electricity": ["electricity consumption", "energy charge", "city power", "network charge"],
    "water": ["water consumption", "water demand levy", "johannesburg water"],
    "sewerage": ["sewer charge", "sanitation charge", "sewerage"],
    "refuse": ["refuse removal", "city cleaning levy", "pikitup"],
    "rates": ["property rates", "assessment rates"],
}

FUZZY_THRESHOLD = 80


def infer_service_from_description(description: str) -> Optional[ServiceInference]:
    """Map a free-text line description to (provider, service type)."""
    if not description:
        return None
    lowered = description.lower()

    if "city power" in lowered or "electricity" in lowered or "kwh" in lowered:
        service = "electricity"
    elif "water" in lowered and "sewer" not in lowered:
        service = "water"
    elif "sewer" in lowered or "sanitation" in lowered:
        service = "sewerage"
    elif "pikitup" in lowered or "refuse" in lowered or "waste" in lowered:
        service = "refuse"
    elif "rates" in lowered or "property tax" in lowered or "assessment" in lowered:
        service = "rates"
    else:
        service = None

    if service is not None:
        return ServiceInference(SERVICE_PROVIDERS[service], service, "keyword")

    best_score = 0.0
    best_service = None
    for candidate, phrases in _SERVICE_PHRASES.items():
        for phrase in phrases:
            score = fuzz.token_sort_ratio(lowered, phrase)
            if score > best_score:
                best_score = score
                best_service = candidate

    if best_service and best_score >= FUZZY_THRESHOLD:
        log.debug("Fuzzy service match %r -> %s (%.0f%%)", description, best_service, best_score)
        return ServiceInference(SERVICE_PROVIDERS[best_service], best_service, "fuzzy", best_score)
    return None
