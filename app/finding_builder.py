"""
Finding Builder - Constructing Verification Findings
====================================================

Every finding is built through ``F``:

    F.tariff("electricity")
        .verified("Electricity charges verified")
        .because("Your charge of R2,497.43 matches the residential tariff.")
        .confidence(92)
        .cited_from(match)
        .build()

``build()`` refuses to produce a finding without a status, title,
explanation, confidence and citation. A LIKELY_WRONG finding additionally
needs a citation backed by a source document, or one marked self-evident
(worked out from the figures printed on the bill itself); anything else
raises ``CitationRequiredError``.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict, replace
from enum import Enum
from typing import Optional

from bill_parser import round_half_up

SELF_EVIDENT_NOTE = (
    "Derived from the bill's own printed rates and totals; no external source required."
)
USAGE_HEURISTIC_NOTE = (
    "Derived from the consumption printed on the bill, compared with typical household usage "
    "(a heuristic, not a tariff); no external source required."
)


class CheckType(str, Enum):
    TARIFF = "tariff"
    METER = "meter"
    ARITHMETIC = "arithmetic"


class FindingStatus(str, Enum):
    VERIFIED = "VERIFIED"
    LIKELY_WRONG = "LIKELY_WRONG"
    CANNOT_VERIFY = "CANNOT_VERIFY"


class IncompleteFindingError(ValueError):
    """A finding was built without one of its required parts."""


class CitationRequiredError(IncompleteFindingError):
    """A LIKELY_WRONG finding had no source and was not self-evident."""


@dataclass(frozen=True)
class Citation:
    has_source: bool
    knowledge_document_id: Optional[str] = None
    knowledge_chunk_id: Optional[str] = None
    tariff_rule_id: Optional[str] = None
    source_page_number: Optional[int] = None
    excerpt: Optional[str] = None
    no_source_reason: Optional[str] = None
    self_evident: bool = False


@dataclass(frozen=True)
class Finding:
    check_type: CheckType
    check_name: str
    status: FindingStatus
    confidence: int
    title: str
    explanation: str
    citation: Citation
    impact_min: Optional[int] = None
    impact_max: Optional[int] = None
    calculation_breakdown: Optional[object] = None

    @property
    def is_accusation(self) -> bool:
        return self.status is FindingStatus.LIKELY_WRONG

    def to_dict(self) -> dict:
        d = asdict(self)
        d["check_type"] = self.check_type.value
        d["status"] = self.status.value
        return d


# ---------------------------------------------------------------------------
# Citation helpers
# ---------------------------------------------------------------------------

def citation_from(match) -> Citation:
    """Citation for a matched rule; sourced only when the rule names its document."""
    if match is None:
        return no_citation("No matching tariff rule found in the rule store.")
    if not match.knowledge_document_id:
        return Citation(
            has_source=False,
            tariff_rule_id=match.tariff_rule_id,
            excerpt=match.source_excerpt or None,
            no_source_reason=f"Tariff rule {match.tariff_rule_id} is not backed by a source document.",
        )
    return Citation(
        has_source=True,
        knowledge_document_id=match.knowledge_document_id,
        tariff_rule_id=match.tariff_rule_id,
        source_page_number=match.source_page_number,
        excerpt=match.source_excerpt,
    )


def no_citation(reason: str) -> Citation:
    return Citation(has_source=False, no_source_reason=reason)


def self_evident_citation(reason: str) -> Citation:
    return Citation(has_source=False, no_source_reason=reason, self_evident=True)


def arithmetic_citation() -> Citation:
    return self_evident_citation("Arithmetic verified using values shown on the bill itself.")


# ---------------------------------------------------------------------------
# Fluent builder
# ---------------------------------------------------------------------------

class FindingBuilder:
    def __init__(self, check_type: CheckType, name: str):
        self._check_type = check_type
        self._check_name = name
        self._status: Optional[FindingStatus] = None
        self._title: Optional[str] = None
        self._explanation: Optional[str] = None
        self._confidence: Optional[int] = None
        self._citation: Optional[Citation] = None
        self._impact_min: Optional[int] = None
        self._impact_max: Optional[int] = None
        self._breakdown = None
        self._self_evident_note = SELF_EVIDENT_NOTE

    # ---- verdict ----

    def verified(self, title: str) -> "FindingBuilder":
        self._status = FindingStatus.VERIFIED
        self._title = title
        self._check_name = f"{self._check_name}_verified"
        return self

    def likely_wrong(self, title: str, impact: int) -> "FindingBuilder":
        """Mark as LIKELY_WRONG; *impact* is the discrepancy in cents."""
        self._status = FindingStatus.LIKELY_WRONG
        self._title = title
        self._check_name = f"{self._check_name}_discrepancy"
        self._impact_min = round_half_up(abs(impact) * 0.85)
        self._impact_max = abs(impact)
        return self

    def cannot_verify(self, title: str) -> "FindingBuilder":
        self._status = FindingStatus.CANNOT_VERIFY
        self._title = title
        self._check_name = f"{self._check_name}_cannot_verify"
        return self

    # ---- story ----

    def because(self, text: str) -> "FindingBuilder":
        self._explanation = text
        return self

    def confidence(self, level: float) -> "FindingBuilder":
        self._confidence = int(max(0, min(100, level)))
        return self

    # ---- evidence ----

    def cited_from(self, match) -> "FindingBuilder":
        self._citation = citation_from(match)
        return self

    def without_source(self, reason: str) -> "FindingBuilder":
        self._citation = no_citation(reason)
        return self

    def self_evident(self, reason: str, note: str = SELF_EVIDENT_NOTE) -> "FindingBuilder":
        """Cite the bill itself; *note* is appended to a LIKELY_WRONG explanation."""
        self._citation = self_evident_citation(reason)
        self._self_evident_note = note
        return self

    def with_citation(self, citation: Citation) -> "FindingBuilder":
        self._citation = citation
        return self

    # ---- enrichment ----

    def named(self, check_name: str) -> "FindingBuilder":
        self._check_name = check_name
        return self

    def with_impact(self, impact_min: int, impact_max: int) -> "FindingBuilder":
        self._impact_min = impact_min
        self._impact_max = impact_max
        return self

    def with_breakdown(self, breakdown) -> "FindingBuilder":
        self._breakdown = breakdown
        return self

    # ---- build ----

    def build(self) -> Finding:
        """Validate and return the finding.

        Raises:
            IncompleteFindingError: A required part is missing.
            CitationRequiredError: LIKELY_WRONG without a source document
                and not self-evident.
        """
        if self._status is None:
            raise IncompleteFindingError("Finding must have a status (verified/likely_wrong/cannot_verify)")
        if not self._title:
            raise IncompleteFindingError("Finding must have a title")
        if not self._explanation:
            raise IncompleteFindingError("Finding must have an explanation (use .because())")
        if self._confidence is None:
            raise IncompleteFindingError("Finding must have a confidence level")
        if self._citation is None:
            raise IncompleteFindingError(
                "Finding must have a citation (use .cited_from(), .without_source() or .self_evident())"
            )

        explanation = self._explanation
        citation = self._citation
        if self._status is FindingStatus.LIKELY_WRONG:
            if citation.has_source and not citation.knowledge_document_id:
                raise CitationRequiredError(
                    f"{self._check_name}: sourced citation has no knowledge document id"
                )
            if not citation.has_source:
                if not citation.self_evident:
                    raise CitationRequiredError(
                        f"{self._check_name}: a LIKELY_WRONG finding needs a source document "
                        "or a self-evident citation"
                    )
                note = self._self_evident_note
                if note not in explanation:
                    explanation = f"{explanation}\n\n_{note}_"
                if not citation.no_source_reason:
                    citation = replace(citation, no_source_reason=note)

        return Finding(
            check_type=self._check_type,
            check_name=self._check_name,
            status=self._status,
            confidence=self._confidence,
            title=self._title,
            explanation=explanation,
            citation=citation,
            impact_min=self._impact_min,
            impact_max=self._impact_max,
            calculation_breakdown=self._breakdown,
        )


class F:
    """Entry points for building findings."""

    @staticmethod
    def tariff(service: str) -> FindingBuilder:
        return FindingBuilder(CheckType.TARIFF, service)

    @staticmethod
    def meter(service: str) -> FindingBuilder:
        return FindingBuilder(CheckType.METER, service)

    @staticmethod
    def arithmetic(check_name: str) -> FindingBuilder:
        return FindingBuilder(CheckType.ARITHMETIC, check_name)


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

def _rand(cents: int) -> str:
    return f"R{cents / 100:,.2f}"


def zero_amount(service: str, reason: str, confidence: int = 95) -> Finding:
    """A service billed at R0.00, which is not an error."""
    return (
        F.tariff(service)
        .verified(f"No {service} charged this period")
        .named(f"{service}_zero")
        .because(reason)
        .confidence(confidence)
        .without_source(f"{service.title()} shows R0.00; no tariff verification required.")
        .build()
    )


def sundry_business_surcharge(billed: int, base_amount: Optional[int] = None) -> Finding:
    base = f" ({_rand(base_amount)} + 15% VAT)" if base_amount else ""
    return (
        F.tariff("sundry")
        .verified("Business services surcharge noted")
        .named("sundry_business_surcharge")
        .because(
            f"Business services surcharge of {_rand(billed)}{base} is applied to "
            "commercial and multi-unit properties per CoJ policy."
        )
        .confidence(70)
        .without_source("Business services surcharge per CoJ tariff schedule for non-residential properties.")
        .build()
    )


def water_demand_levy(billed: int, units: Optional[int], low: int, high: int) -> Finding:
    """Water billed with no consumption: a per-unit demand levy or minimum charge.

    *low* and *high* bound the typical per-unit levy in cents.
    """
    if units and units > 1:
        per_unit = round_half_up(billed / units)
        if low <= per_unit <= high:
            return (
                F.tariff("water")
                .verified("Water demand levy verified")
                .named("water_demand_levy")
                .because(
                    f"Your water demand levy of {_rand(billed)} for {units} units "
                    f"({_rand(per_unit)}/unit) is within the typical CoJ range "
                    f"({_rand(low)}-{_rand(high)} per unit)."
                )
                .confidence(75)
                .without_source("Water demand levy based on typical Johannesburg Water multi-unit rates.")
                .build()
            )
    return (
        F.tariff("water")
        .verified("Water charges noted")
        .named("water_demand_levy")
        .because(
            f"Water charge of {_rand(billed)} with 0 kL consumption; likely a demand levy or minimum charge."
        )
        .confidence(70)
        .without_source("Water tariff verification requires the official tariff schedule.")
        .build()
    )
