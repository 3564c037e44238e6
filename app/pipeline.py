"""
Bill Text Extraction Pipeline
=============================

Config-driven extraction for City of Johannesburg bill text:

  Step 1: Preprocessing hook named by the config (whitespace and line-ending
          normalisation for text pulled out of PDFs)
  Step 2: Section segmentation: each service section starts at the first of
          its header rules that matches and ends at the next section header
          or a terminator line
  Step 3: Per-field regex cascades from ``section_configs``; the first named
          rule that matches wins, and the winning rule is recorded on the
          result

The output is raw strings. Turning them into cents, quantities and line
items is ``bill_extractor``'s job.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from section_configs import HEADER_CONFIG, SECTION_CONFIGS, TERMINATORS

log = logging.getLogger(__name__)

FLAGS = re.IGNORECASE | re.MULTILINE


@dataclass
class FieldExtractionResult:
    """Result for a single extracted field."""
    field_name: str
    value: str
    confidence: float
    pattern_index: int  # which pattern matched (0-based)
    rule_name: str
    groups: tuple[str, ...] = ()
    matches: list[tuple[str, ...]] = field(default_factory=list)  # multi_match only


@dataclass
class SectionExtractionResult:
    """Result of running one section config over its text."""
    section: str
    fields: dict[str, FieldExtractionResult]
    field_count: int
    hit_rate: float  # fraction of config fields that matched
    warnings: list[str] = field(default_factory=list)

    def get(self, field_name: str) -> Optional[FieldExtractionResult]:
        return self.fields.get(field_name)


@dataclass
class SectionText:
    """A located section of the bill."""
    name: str
    header_rule: str
    start: int
    end: int
    text: str


# ---- Preprocessing hooks ----

_PREPROCESS_HOOKS: dict[str, object] = {}


def register_preprocess(name: str):
    """Decorator to register a text preprocessing hook."""
    def decorator(fn):
        _PREPROCESS_HOOKS[name] = fn
        return fn
    return decorator


@register_preprocess("coj_normalize")
def _preprocess_coj(text: str) -> str:
    """Normalise PDF text-layer artifacts in CoJ bills."""
    t = text.replace("\r\n", "\n").replace("\r", "\n")
    # Non-breaking and narrow spaces
    t = t.replace("\u00a0", " ").replace("\u202f", " ")
    # Collapse runs of spaces/tabs but keep line structure
    t = re.sub(r"[ \t]+", " ", t)
    t = re.sub(r" +\n", "\n", t)
    return t


def preprocess(text: str, name: Optional[str]) -> str:
    if not name:
        return text
    hook = _PREPROCESS_HOOKS.get(name)
    if hook is None:
        log.warning("Unknown preprocess hook %r; using text as-is", name)
        return text
    return hook(text)


# ---- Value transforms ----

def _apply_transform(value: str, transform: str | None) -> str:
    """Apply a post-extraction transform to a captured value."""
    if transform is None:
        return value
    if transform == "strip_commas":
        return value.replace(",", "")
    if transform == "strip_spaces":
        return value.replace(" ", "")
    return value


# ---- Core extraction engine ----

def extract_field(text: str, field_name: str, field_cfg: dict) -> Optional[FieldExtractionResult]:
    """Run one field's pattern cascade over *text*.

    Returns the result of the first rule that matches, or None when no rule
    matches. Multi-match fields collect every match of that first rule.
    """
    confidence = field_cfg.get("confidence", 0.5)
    transform = field_cfg.get("transform")
    multi_match = field_cfg.get("multi_match", False)

    for pat_idx, (rule_name, value_re) in enumerate(field_cfg["patterns"]):
        if multi_match:
            found = [
                tuple(_apply_transform(g or "", transform) for g in m.groups())
                for m in re.finditer(value_re, text, FLAGS)
                if m.lastindex
            ]
            if not found:
                continue
            return FieldExtractionResult(
                field_name=field_name,
                value="; ".join(" ".join(groups) for groups in found),
                confidence=confidence,
                pattern_index=pat_idx,
                rule_name=rule_name,
                groups=found[0],
                matches=found,
            )

        m = re.search(value_re, text, FLAGS)
        if not m:
            continue
        # Guard: pattern must have at least one capture group
        if m.lastindex is None or m.lastindex < 1:
            continue
        groups = tuple(_apply_transform(g, transform) for g in m.groups() if g is not None)
        return FieldExtractionResult(
            field_name=field_name,
            value=" - ".join(groups) if len(groups) > 1 else groups[0],
            confidence=confidence,
            pattern_index=pat_idx,
            rule_name=rule_name,
            groups=groups,
        )
    return None


def extract_all(text: str, config: dict) -> SectionExtractionResult:
    """Extract every field of *config* from *text*.

    Args:
        text: The section text (or the whole bill for the header config).
        config: A config from ``section_configs``.

    Returns:
        SectionExtractionResult with extracted fields and hit rate.
    """
    text = preprocess(text, config.get("preprocess"))
    fields_config = config["fields"]
    extracted: dict[str, FieldExtractionResult] = {}
    warnings: list[str] = []

    for field_name, field_cfg in fields_config.items():
        try:
            result = extract_field(text, field_name, field_cfg)
        except re.error as e:
            warnings.append(f"{config['section']}.{field_name}: bad pattern ({e})")
            log.warning("Bad pattern for %s.%s", config["section"], field_name, exc_info=True)
            continue
        if result is not None:
            extracted[field_name] = result

    total_fields = len(fields_config)
    hit_count = len(extracted)
    hit_rate = hit_count / total_fields if total_fields > 0 else 0.0
    log.debug("%s: %d/%d fields matched", config["section"], hit_count, total_fields)

    return SectionExtractionResult(
        section=config["section"],
        fields=extracted,
        field_count=hit_count,
        hit_rate=hit_rate,
        warnings=warnings,
    )


# ---- Section segmentation ----

def _find_header(text: str, config: dict) -> Optional[tuple[str, re.Match]]:
    for rule_name, header_re in config["headers"]:
        m = re.search(header_re, text, FLAGS)
        if m:
            return rule_name, m
    return None


def segment_sections(text: str, configs: Optional[dict[str, dict]] = None) -> dict[str, SectionText]:
    """Locate each service section in the bill text.

    A section runs from its header to the start of the next section header,
    or to the first terminator (e.g. "Current Charges (Including VAT)")
    after its header, whichever comes first. Sections whose header is not
    found are simply absent from the result.
    """
    configs = SECTION_CONFIGS if configs is None else configs
    text = preprocess(text, HEADER_CONFIG.get("preprocess"))

    starts: list[tuple[int, int, str, str]] = []
    for name, config in configs.items():
        found = _find_header(text, config)
        if found is None:
            continue
        rule_name, m = found
        starts.append((m.start(), m.end(), name, rule_name))
    starts.sort()

    sections: dict[str, SectionText] = {}
    for i, (start, header_end, name, rule_name) in enumerate(starts):
        end = starts[i + 1][0] if i + 1 < len(starts) else len(text)
        for _, term_re in TERMINATORS:
            t = re.compile(term_re, FLAGS).search(text, header_end, end)
            if t:
                end = t.start()
        sections[name] = SectionText(
            name=name,
            header_rule=rule_name,
            start=start,
            end=end,
            text=text[start:end],
        )
    return sections
