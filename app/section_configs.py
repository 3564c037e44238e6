"""
Section configurations for City of Johannesburg bill text.

Each config describes one part of the bill:
  - section: name of the section (a ``ServiceType`` value, or "header")
  - version: schema version for future migrations
  - headers: ordered (rule_name, regex) alternatives that locate the start
    of the section; the first rule that matches wins
  - fields: dict of field_name -> extraction rule

Field extraction rules:
  - patterns: list of (rule_name, regex) tuples tried in order; each regex
    needs at least one capture group
  - confidence: expected reliability (0.0-1.0)
  - transform: optional post-extraction transform ('strip_commas', 'strip_spaces')
  - multi_match: collect every match of the first rule that matches at all
    (meters, step rows, repeated service charges)

Patterns are compiled with IGNORECASE | MULTILINE.
"""
from __future__ import annotations

# ---------------------------------------------------------------------------
# Shared patterns
# ---------------------------------------------------------------------------

# "VAT: 15.00%325.752,497.43" -> (325.75, 2,497.43). Currency figures always
# end in exactly two decimals, which is what splits the run-together shape.
VAT_RUN_TOGETHER = ("vat_run_together", r"VAT[:\s]*[\d.]+\s*%\s*([\d,]+\.\d{2})([\d,]+\.\d{2})")
VAT_SPACED = ("vat_spaced", r"VAT[:\s]*[\d.]+\s*%\s*([\d,]+\.\d{2})\s+([\d,]+\.\d{2})")
VAT_ZERO = ("vat_zero_rated", r"VAT[:\s]*0\s*%\s*0\.00\s*([\d,]+\.\d{2})")

# Section boundaries that are not themselves section headers.
TERMINATORS: list[tuple[str, str]] = [
    ("current_charges_including", r"Current\s*Charges\s*\(Including"),
    ("where_can_i_pay", r"Where\s*can"),
]

# ---------------------------------------------------------------------------
# Document header (account, dates, totals, property)
# ---------------------------------------------------------------------------

HEADER_CONFIG = {
    "section": "header",
    "version": 1,
    "preprocess": "coj_normalize",
    "headers": [],
    "fields": {
        "account_number": {
            "patterns": [
                ("account_number", r"Account\s*(?:Number|No\.?)[:\s]*(\d{9,12})"),
            ],
            "confidence": 0.95,
        },
        "bill_date": {
            "patterns": [
                ("labelled_bill_date", r"(?:Invoice|Bill|Statement)\s*Date[:\s]*(\d{4}/\d{2}/\d{2})"),
                ("bare_date", r"(?<!Due )\bDate\s+(\d{4}/\d{2}/\d{2})"),
            ],
            "confidence": 0.90,
        },
        "due_date": {
            "patterns": [
                ("due_date", r"Due\s*Date[:\s]*(\d{4}/\d{2}/\d{2})"),
            ],
            "confidence": 0.90,
        },
        "billing_period": {
            "patterns": [
                ("period_range", r"(?:Billing|Reading)\s+Period[:\s]*(\d{4}/\d{2}/\d{2})\s*(?:to|-)\s*(\d{4}/\d{2}/\d{2})"),
            ],
            "confidence": 0.85,
        },
        "total_due": {
            "patterns": [
                ("total_due", r"Total\s+(?:Amount\s+)?Due[:\s]*R?\s*([\d,]+\.\d{2})"),
            ],
            "confidence": 0.90,
            "transform": "strip_commas",
        },
        "previous_balance": {
            "patterns": [
                ("previous_balance", r"Previous\s+Account\s+Balance[:\s]*R?\s*(-?[\d,]+\.\d{2})"),
                ("balance_brought_forward", r"Balance\s+(?:Brought\s+)?Forward[:\s]*R?\s*(-?[\d,]+\.\d{2})"),
            ],
            "confidence": 0.85,
            "transform": "strip_commas",
        },
        "current_charges": {
            "patterns": [
                ("current_charges_excl_vat", r"Current\s+Charges\s*\(Excl(?:uding|\.)?\s*VAT\)[:\s]*R?\s*([\d,]+\.\d{2})"),
            ],
            "confidence": 0.85,
            "transform": "strip_commas",
        },
        "current_charges_incl_vat": {
            "patterns": [
                ("current_charges_incl_vat", r"Current\s+Charges\s*\(Incl(?:uding|\.)?\s*VAT\)[:\s]*R?\s*([\d,]+\.\d{2})"),
            ],
            "confidence": 0.85,
            "transform": "strip_commas",
        },
        "vat_amount": {
            "patterns": [
                ("vat_at_15", r"VAT\s*@\s*15\s*%[:\s]*R?\s*([\d,]+\.\d{2})"),
            ],
            "confidence": 0.85,
            "transform": "strip_commas",
        },
        "address": {
            "patterns": [
                ("physical_address", r"Physical\s+Address[:\s]+([^\n]+)"),
            ],
            "confidence": 0.80,
        },
        "stand_size": {
            "patterns": [
                ("labelled_stand", r"Stand\s*(?:Size)?[:\s]*([\d,]+)\s*m2"),
                ("bare_m2", r"(\d[\d,]*)\s*m2\b"),
            ],
            "confidence": 0.75,
            "transform": "strip_commas",
        },
        "units": {
            "patterns": [
                ("living_units", r"(\d+)\s*living\s*Unit"),
            ],
            "confidence": 0.85,
        },
        "property_type": {
            "patterns": [
                ("rates_category", r"Category\s+of\s+Property[:\s]+Property\s+Rates[:\s]+(\w+)"),
            ],
            "confidence": 0.80,
        },
        "market_value": {
            "patterns": [
                ("market_value", r"Market\s+Value[:\s]*R\s*([\d,]+(?:\.\d{2})?)"),
                ("municipal_valuation", r"Municipal\s+Valuation[:\s]*R\s*([\d,]+(?:\.\d{2})?)"),
            ],
            "confidence": 0.85,
            "transform": "strip_commas",
        },
    },
}

# ---------------------------------------------------------------------------
# City Power electricity
# ---------------------------------------------------------------------------

ELECTRICITY_CONFIG = {
    "section": "electricity",
    "version": 1,
    "headers": [
        ("city_power_electricity", r"City\s*Power\s*\n\s*Electricity"),
    ],
    "fields": {
        "meters": {
            "patterns": [
                # Meter number, consumption and reading type, never crossing into the next meter
                ("meter_block", r"Meter[:\s]*(\d+)[;\s](?:(?!Meter)[\s\S])*?Consumption[:\s]*([\d,]+\.\d+)[;\s](?:(?!Meter)[\s\S])*?Type[:\s]*(\w+)"),
            ],
            "confidence": 0.90,
            "multi_match": True,
        },
        "step_charges": {
            "patterns": [
                ("step_kwh_at_rate", r"Step\s*(\d+)\s*([\d,]+\.\d+)\s*kWh\s*@\s*R\s*([\d.]+)"),
            ],
            "confidence": 0.90,
            "multi_match": True,
        },
        "step_amounts": {
            "patterns": [
                # Amount printed at the end of a step row; a block of steps
                # may print one total on its last row only
                ("step_line_amount", r"Step\s*\d+[^\n]*?kWh\s*@\s*R\s*[\d.]+[^\n]*?[\s)]([\d,]+\.\d{2})[ \t]*$"),
            ],
            "confidence": 0.80,
            "multi_match": True,
        },
        "service_charges": {
            "patterns": [
                ("service_charge", r"Service\s+charge[^)\n]*\)[:\s]*([\d,]+\.\d{2})"),
            ],
            "confidence": 0.85,
            "multi_match": True,
        },
        "network_charges": {
            "patterns": [
                ("network_charge", r"Network\s+charge[^)\n]*\)[:\s]*([\d,]+\.\d{2})"),
            ],
            "confidence": 0.85,
            "multi_match": True,
        },
        "network_surcharge": {
            "patterns": [
                # "Network Surcharge kWh1,137.36": no separator before the amount
                ("network_surcharge", r"Network\s+Surcharge[^:\d\n]*?([\d,]+\.\d{2})"),
            ],
            "confidence": 0.80,
        },
        "demand_levy": {
            "patterns": [
                ("dsm_levy", r"Demand\s+side\s+management\s+levy(?:\s*\([^)]*\))?[:\s]*([\d,]+\.\d{2})"),
            ],
            "confidence": 0.80,
        },
        "vat_total": {
            "patterns": [VAT_RUN_TOGETHER, VAT_SPACED],
            "confidence": 0.90,
        },
    },
}

# ---------------------------------------------------------------------------
# Johannesburg Water: water and sanitation
# ---------------------------------------------------------------------------

WATER_CONFIG = {
    "section": "water",
    "version": 1,
    "headers": [
        ("joburg_water_sanitation", r"Johannesburg\s*Water\s*\n\s*Water\s*&\s*Sanitation"),
    ],
    "fields": {
        "consumption": {
            "patterns": [
                ("meter_consumption", r"Consumption[:\s]*([\d,]+\.\d+)[;\s]"),
            ],
            "confidence": 0.90,
            "transform": "strip_commas",
        },
        "reading_type": {
            "patterns": [
                ("reading_type", r"Type[:\s]*(\w+)"),
            ],
            "confidence": 0.80,
        },
        "steps": {
            "patterns": [
                ("step_kl_at_rate", r"Step\s*(\d+)\s*([\d,]+\.\d+)\s*KL\s*@\s*R\s*([\d.]+)"),
            ],
            "confidence": 0.90,
            "multi_match": True,
        },
        "step_amounts": {
            "patterns": [
                ("step_line_amount", r"Step\s*\d+[^\n]*?KL\s*@\s*R\s*[\d.]+[^\n]*?[\s)]([\d,]+\.\d{2})[ \t]*$"),
            ],
            "confidence": 0.80,
            "multi_match": True,
        },
        "demand_levy_per_unit": {
            "patterns": [
                ("levy_per_living_unit", r"Water\s+Demand\s+Levy\s+per\s+(\d+)\s+living\s+Units?[^@\n]*@\s*R\s*([\d.]+)[^)\n]*\)[:\s]*([\d,]+\.\d{2})"),
            ],
            "confidence": 0.85,
        },
        "demand_levy": {
            "patterns": [
                ("demand_management_levy", r"Demand\s+Management\s+Levy[^)\n]*\)[:\s]*([\d,]+\.\d{2})"),
            ],
            "confidence": 0.85,
        },
        "sewer_charge": {
            "patterns": [
                ("sewer_per_living_unit", r"Sewer\s+charge\s+per\s+(\d+)\s+living\s+units?[^)\n]*\)[:\s]*([\d,]+\.\d{2})"),
            ],
            "confidence": 0.85,
        },
        "vat_total": {
            "patterns": [VAT_RUN_TOGETHER, VAT_SPACED],
            "confidence": 0.90,
        },
    },
}

# ---------------------------------------------------------------------------
# Pikitup refuse
# ---------------------------------------------------------------------------

REFUSE_CONFIG = {
    "section": "refuse",
    "version": 1,
    "headers": [
        ("pikitup_refuse", r"PIKITUP\s*\n\s*Refuse"),
    ],
    "fields": {
        "removal": {
            "patterns": [
                ("refuse_removal", r"Refuse\s+removal[^)\n]*\)\s*([\d,]+\.\d{2})"),
            ],
            "confidence": 0.85,
        },
        "cleaning_levy": {
            "patterns": [
                ("city_cleaning_levy", r"City\s+cleaning\s+levy[^)\n]*\)\s*([\d,]+\.\d{2})"),
            ],
            "confidence": 0.85,
        },
        "residential": {
            "patterns": [
                ("refuse_residential", r"Refuse\s+Residential[^)\n]*\)\s*([\d,]+\.\d{2})"),
            ],
            "confidence": 0.85,
        },
        "bins": {
            "patterns": [
                # "2-bin @ R 495.97  X 6"
                ("bin_size_times_count", r"(\d+)\s*-\s*bins?\b[^\n]*?X\s*(\d+)"),
            ],
            "confidence": 0.75,
        },
        "vat_total": {
            "patterns": [VAT_RUN_TOGETHER, VAT_SPACED],
            "confidence": 0.90,
        },
    },
}

# ---------------------------------------------------------------------------
# City of Johannesburg property rates
# ---------------------------------------------------------------------------

RATES_CONFIG = {
    "section": "rates",
    "version": 1,
    "headers": [
        ("coj_property_rates", r"City\s*of\s*Johannesburg\s*\n\s*Property\s*Rates"),
        # A bare heading line; never "Category of Property: Property Rates: X"
        ("bare_property_rates", r"^\s*Property\s*Rates\s*$"),
    ],
    "fields": {
        "rate_rows": {
            "patterns": [
                # "R 22,320,000.00 X R 0.0095447 / 12 ( Billing Period 2025/12 )17,753.24"
                ("value_times_rate", r"R\s*([\d,]+\.\d{2})\s*X\s*R\s*([\d.]+)\s*/\s*12[^)\n]*\)\s*([\d,]+\.\d{2})"),
            ],
            "confidence": 0.90,
            "multi_match": True,
        },
        "rebate": {
            "patterns": [
                ("less_rates_on_first", r"Less\s+rates\s+on\s+first\s+R\s*([\d ,]+\.\d{2})[^-\n]*-\s*([\d,]+\.\d{2})"),
                ("less_rates", r"Less\s+rates[^-\n]*-\s*([\d,]+\.\d{2})"),
            ],
            "confidence": 0.85,
        },
        "categories": {
            "patterns": [
                ("rates_category", r"Category\s+of\s+Property[:\s]+Property\s+Rates[:\s]+(\w+)"),
            ],
            "confidence": 0.85,
            "multi_match": True,
        },
        "statutory_adjustment": {
            "patterns": [
                ("section_15_mpra", r"(Section\s*15\s*(?:of\s+the\s+)?MPRA)"),
            ],
            "confidence": 0.80,
        },
        "vat_total": {
            "patterns": [VAT_ZERO, VAT_RUN_TOGETHER, VAT_SPACED],
            "confidence": 0.90,
        },
    },
}

# ---------------------------------------------------------------------------
# Sundry (business services surcharge)
# ---------------------------------------------------------------------------

SUNDRY_CONFIG = {
    "section": "sundry",
    "version": 1,
    "headers": [
        ("coj_sundry", r"City\s*of\s*Johannesburg\s*\n\s*Sundry"),
        ("bare_sundry", r"^\s*Sundry"),
    ],
    "fields": {
        "base_amount": {
            "patterns": [
                ("business_surcharge_with_period", r"Surcharge\s+on\s+business\s+services(?:\s*\([^)]*\))?[^:\d]*([\d,]+\.\d{2})"),
                ("business_surcharge", r"Surcharge\s+on\s+business\s+services[^:\d]*([\d,]+\.\d{2})"),
            ],
            "confidence": 0.85,
        },
        "vat_total": {
            "patterns": [VAT_SPACED, VAT_RUN_TOGETHER],
            "confidence": 0.90,
        },
    },
}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

SECTION_CONFIGS: dict[str, dict] = {
    "electricity": ELECTRICITY_CONFIG,
    "water": WATER_CONFIG,
    "refuse": REFUSE_CONFIG,
    "rates": RATES_CONFIG,
    "sundry": SUNDRY_CONFIG,
}


def get_section_config(section: str) -> dict | None:
    """Look up a section config by name. Returns None if not found."""
    if section == "header":
        return HEADER_CONFIG
    return SECTION_CONFIGS.get(section)
