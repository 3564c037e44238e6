"""Helpers for turning verification results into tables."""
from __future__ import annotations

import pandas as pd

FINDING_COLUMNS = [
    "check_type",
    "check_name",
    "status",
    "confidence",
    "title",
    "impact_min",
    "impact_max",
    "has_source",
    "self_evident",
    "tariff_rule_id",
]

BREAKDOWN_COLUMNS = ["line", "quantity", "rate", "amount", "source"]


def findings_to_frame(result) -> pd.DataFrame:
    """One row per finding, in the order the engine produced them.

    Accepts a ``VerificationResult`` or a plain list of findings.
    """
    findings = getattr(result, "findings", result)
    rows = [
        {
            "check_type": f.check_type.value,
            "check_name": f.check_name,
            "status": f.status.value,
            "confidence": f.confidence,
            "title": f.title,
            "impact_min": f.impact_min,
            "impact_max": f.impact_max,
            "has_source": f.citation.has_source,
            "self_evident": f.citation.self_evident,
            "tariff_rule_id": f.citation.tariff_rule_id,
        }
        for f in findings
    ]
    df = pd.DataFrame(rows, columns=FINDING_COLUMNS)
    df["impact_min"] = df["impact_min"].astype("Int64")
    df["impact_max"] = df["impact_max"].astype("Int64")
    return df


def breakdown_to_frame(breakdown) -> pd.DataFrame:
    """Bands then fixed lines of a ``CalculationBreakdown``, amounts in cents."""
    if breakdown is None:
        return pd.DataFrame(columns=BREAKDOWN_COLUMNS)
    rows = [
        {
            "line": band.range,
            "quantity": band.usage,
            "rate": band.rate,
            "amount": band.amount,
            "source": band.rule_source,
        }
        for band in breakdown.bands
    ]
    rows.extend(
        {
            "line": line.name,
            "quantity": None,
            "rate": None,
            "amount": line.amount,
            "source": line.rule_source,
        }
        for line in breakdown.fixed_charges
    )
    if breakdown.vat_amount is not None:
        rows.append({
            "line": f"VAT ({breakdown.vat_rate:g}%)",
            "quantity": None,
            "rate": None,
            "amount": breakdown.vat_amount,
            "source": "VAT",
        })
    return pd.DataFrame(rows, columns=BREAKDOWN_COLUMNS)


def filter_findings_by_status(
    df: pd.DataFrame,
    statuses: list[str],
    status_col: str = "status",
) -> pd.DataFrame:
    """Keep rows whose status is in *statuses* (case-insensitive)."""
    if status_col not in df.columns:
        return df

    if not statuses:
        return df.iloc[0:0].copy()

    wanted = {s.upper() for s in statuses}
    mask = df[status_col].fillna("").astype(str).str.upper().isin(wanted)
    return df[mask].reset_index(drop=True)
