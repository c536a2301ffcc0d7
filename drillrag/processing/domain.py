"""
Drilling-report vocabulary.

Every domain heuristic the chunker and reranker apply lives here as an
ordered table, so adding a category or metric is a one-line change:

  DRILLING_SEPARATORS        split preference, most structural first
  PRESERVE_PATTERNS          phrases the splitter must not break on spaces
  CONTENT_TYPE_RULES         (label, patterns); first match wins
  CONTENT_TYPE_PREFIXES      human-readable label prepended to chunk content
  METRIC_PATTERNS            (name, pattern); group 1 is the numeric value
  SUMMARY_PATTERNS           (field, pattern) for the document summary chunk
  DRILLING_INDICATORS        any match marks a chunk as drilling content
  TECHNICAL_VALUE_PATTERNS   counted by the reranker
  IDENTIFIER_PATTERNS        equipment names surfaced for aggregation queries

All patterns are case-insensitive.
"""

from __future__ import annotations

import re
from enum import Enum

_I = re.IGNORECASE


class ContentType(str, Enum):
    MOTOR_STATOR_SPECS  = "MOTOR_STATOR_SPECS"
    BIT_SPECIFICATIONS  = "BIT_SPECIFICATIONS"
    BHA_ASSEMBLY        = "BHA_ASSEMBLY"
    PERFORMANCE_DATA    = "PERFORMANCE_DATA"
    OPERATIONAL_METRICS = "OPERATIONAL_METRICS"
    TECHNICAL_SUMMARY   = "TECHNICAL_SUMMARY"
    DRILLING_GENERAL    = "DRILLING_GENERAL"
    STRUCTURED_SUMMARY  = "STRUCTURED_SUMMARY"


# ---------------------------------------------------------------------------
# Splitting
# ---------------------------------------------------------------------------

DRILLING_SEPARATORS: list[str] = [
    # Major report sections
    "\n\n=== ",
    "\n\nBHA Performance Report",
    "\n\nMotor Performance Report",
    "\n\nRun Data",
    "\n\nMotor data",
    "\n\nMotor Data",
    "\n\nBit Data",
    "\n\nDrilling Parameters",
    "\n\nBHA Details",
    "\n\nAdditional Comments",
    "\n\nSensor Offsets",
    "\n\nDirectional Performance",
    # Table rows
    "\n\nDescription\t",
    "\n\nSN\t",
    "\n\nCNX TOP\t",
    # Sub-sections
    "\n\nFlow Range",
    "\n\nMax DiffP",
    "\n\nStator Vendor",
    "\n\nBearing Gap",
    "\n\nTotal Drilled",
    # Paragraphs, lines, sentences
    "\n\n",
    "\n",
    ". ",
    "! ",
    "? ",
    "; ",
    " ",
    "",
]

PRESERVE_PATTERNS: list[re.Pattern] = [
    # Motor / stator configuration
    re.compile(r"Stator Fit[:\s]+[+-]?\d+\.?\d*", _I),
    re.compile(r"TFA[:\s]+\d+\.?\d*\s*\([^)\n]{1,40}\)", _I),
    re.compile(r"Make[:\s]+[A-Za-z \t-]{1,40}(?=\n|Model)", _I),
    # Performance
    re.compile(r"Avg ROP[:\s]+\d+\.?\d*", _I),
    re.compile(r"WOB[^:\n.;]{0,30}[:\s]+\d+\.?\d*", _I),
    re.compile(r"RPM[:\s]+\d+\.?\d*", _I),
    # Assembly
    re.compile(r"Weight[:\s]+\d+\.?\d*\s*lb/ft", _I),
    re.compile(r"Length[:\s]+\d+\.?\d*\s*usft", _I),
    # Operational
    re.compile(r"Total Drilled[:\s]+\d+\.?\d*", _I),
    re.compile(r"Drill Hrs[:\s]+\d+\.?\d*", _I),
]


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

CONTENT_TYPE_RULES: list[tuple[ContentType, list[re.Pattern]]] = [
    (ContentType.MOTOR_STATOR_SPECS, [
        re.compile(r"stator fit|stator vendor|lobes|stages|bend angle", _I),
        re.compile(r"make.*rival|make.*tag|make.*dynamax", _I),
    ]),
    (ContentType.BIT_SPECIFICATIONS, [
        re.compile(r"bit.*tfa|pdc|baker|ulterra|reed", _I),
        re.compile(r"model.*dd\d+|model.*cf\d+|model.*xp\d+", _I),
    ]),
    (ContentType.BHA_ASSEMBLY, [
        re.compile(r"cnx top|cnx btm|weight.*lb/ft|length.*usft", _I),
        re.compile(r"float sub|ubho|nmdc|shock sub", _I),
    ]),
    (ContentType.PERFORMANCE_DATA, [
        re.compile(r"wob|rop|rpm|differential pressure|avg diff press", _I),
        re.compile(r"slide.*%|rotary.*%|drilling hours", _I),
    ]),
    (ContentType.OPERATIONAL_METRICS, [
        re.compile(r"total drilled|circulation|pickup weight|so wt|pu wt", _I),
        re.compile(r"depth in|depth out|inc in|inc out", _I),
    ]),
    (ContentType.TECHNICAL_SUMMARY, [
        re.compile(r"additional comments|motor drained|bit graded|surface findings", _I),
    ]),
]

CONTENT_TYPE_PREFIXES: dict[ContentType, str] = {
    ContentType.MOTOR_STATOR_SPECS:  "MOTOR & STATOR SPECIFICATIONS: ",
    ContentType.BIT_SPECIFICATIONS:  "BIT CONFIGURATION & SPECS: ",
    ContentType.BHA_ASSEMBLY:        "BHA ASSEMBLY DETAILS: ",
    ContentType.PERFORMANCE_DATA:    "DRILLING PERFORMANCE METRICS: ",
    ContentType.OPERATIONAL_METRICS: "OPERATIONAL DATA & MEASUREMENTS: ",
    ContentType.TECHNICAL_SUMMARY:   "TECHNICAL SUMMARY & NOTES: ",
    ContentType.DRILLING_GENERAL:    "DRILLING REPORT DATA: ",
}

# Content types the reranker treats as high-value evidence
HIGH_VALUE_CONTENT_TYPES = frozenset({
    ContentType.MOTOR_STATOR_SPECS,
    ContentType.BIT_SPECIFICATIONS,
    ContentType.PERFORMANCE_DATA,
    ContentType.OPERATIONAL_METRICS,
    ContentType.STRUCTURED_SUMMARY,
})


def classify_content(text: str) -> ContentType:
    for content_type, patterns in CONTENT_TYPE_RULES:
        if any(p.search(text) for p in patterns):
            return content_type
    return ContentType.DRILLING_GENERAL


# ---------------------------------------------------------------------------
# Inline metrics
# ---------------------------------------------------------------------------

MAX_INLINE_METRICS = 10

METRIC_PATTERNS: list[tuple[str, re.Pattern]] = [
    # Weight & force
    ("WEIGHT",         re.compile(r"(\d+\.?\d*)\s*klbs", _I)),
    ("WOB",            re.compile(r"WOB[^:\n.;]{0,30}[:\s]+(\d+\.?\d*)", _I)),
    ("PICKUP_WT",      re.compile(r"PU\s+WT[:\s]+(\d+\.?\d*)", _I)),
    # Rate of penetration
    ("ROP",            re.compile(r"(\d+\.?\d*)\s*usft/hr", _I)),
    ("AVG_ROP",        re.compile(r"Avg ROP[:\s]+(\d+\.?\d*)", _I)),
    ("SLIDE_ROP",      re.compile(r"Slide ROP[:\s]+(\d+\.?\d*)", _I)),
    ("ROT_ROP",        re.compile(r"Rot ROP[:\s]+(\d+\.?\d*)", _I)),
    # Footage
    ("TOTAL_DRILLED",  re.compile(r"Total Drilled[:\s]+(\d+\.?\d*)", _I)),
    ("ROTARY_DRILLED", re.compile(r"Rotary Drilled[:\s]+(\d+\.?\d*)", _I)),
    ("SLIDE_DRILLED",  re.compile(r"Slide Drilled[:\s]+(\d+\.?\d*)", _I)),
    # Hours
    ("DRILL_HRS",      re.compile(r"Drill Hrs[:\s]+(\d+\.?\d*)", _I)),
    ("CIRC_HRS",       re.compile(r"Circ Hrs[:\s]+(\d+\.?\d*)", _I)),
    ("SLIDE_HRS",      re.compile(r"Slide Hours[:\s]+(\d+\.?\d*)", _I)),
    # Hydraulics & mechanics
    ("RPM",            re.compile(r"(\d+\.?\d*)\s*rpm", _I)),
    ("FLOW",           re.compile(r"(\d+\.?\d*)\s*gpm", _I)),
    ("PRESSURE",       re.compile(r"(\d+\.?\d*)\s*psi", _I)),
    ("DIFF_PRESS",     re.compile(r"Diff Press[:\s]+(\d+\.?\d*)", _I)),
    ("MAX_DIFF_P",     re.compile(r"Max DiffP[:\s]+(\d+\.?\d*)", _I)),
    ("MAX_TORQUE",     re.compile(r"Max Torque[:\s]+(\d+\.?\d*)", _I)),
    # Percentages
    ("SLIDE_PERCENT",  re.compile(r"%Slide[:\s]+(\d+\.?\d*)", _I)),
    ("ROTARY_PERCENT", re.compile(r"%Rotary[:\s]+(\d+\.?\d*)", _I)),
    # Dimensions
    ("LENGTH",         re.compile(r"(\d+\.?\d*)\s*usft", _I)),
    ("TOTAL_LENGTH",   re.compile(r"Total Length[:\s]+(\d+\.?\d*)", _I)),
    ("FISHNECK_OD",    re.compile(r"Fishneck OD[:\s]+(\d+\.?\d*)", _I)),
    # Motor / bit
    ("STATOR_FIT",     re.compile(r"([+-]?\d+\.?\d*)\s*(?:stator fit)", _I)),
    ("TFA",            re.compile(r"TFA[:\s]+(\d+\.?\d*)", _I)),
    ("HOLE_SIZE",      re.compile(r"(\d+\.?\d*)[\"\s]*(?:hole|section)", _I)),
]


def _is_number(value: str) -> bool:
    try:
        float(value)
    except ValueError:
        return False
    return True


def extract_metrics(text: str, limit: int = MAX_INLINE_METRICS) -> tuple[tuple[str, str], ...]:
    """First numeric value per metric name, in table order, at most `limit` names."""
    metrics: list[tuple[str, str]] = []
    for name, pattern in METRIC_PATTERNS:
        if len(metrics) >= limit:
            break
        for match in pattern.finditer(text):
            value = match.group(1)
            if value and _is_number(value):
                metrics.append((name, value))
                break
    return tuple(metrics)


def format_metrics(metrics: tuple[tuple[str, str], ...]) -> str:
    if not metrics:
        return ""
    return " [METRICS: " + ", ".join(f"{name}:{value}" for name, value in metrics) + "]"


# ---------------------------------------------------------------------------
# Structured summary
# ---------------------------------------------------------------------------

SUMMARY_PREFIX        = "DRILLING REPORT STRUCTURED DATA: "
SUMMARY_MIN_FIELDS    = 2
SUMMARY_MAX_VALUES    = 3

SUMMARY_PATTERNS: list[tuple[str, re.Pattern]] = [
    # Motor & stator
    ("MOTOR_MAKE",     re.compile(r"Make[:\s]+([A-Za-z\s-]+)(?=\n|Model|$)", _I)),
    ("STATOR_VENDOR",  re.compile(r"Stator Vendor[:\s]+([A-Za-z\s-]+)(?=\n|$)", _I)),
    ("STATOR_FIT",     re.compile(r"Stator Fit[:\s]+([+-]?\d+\.?\d*)", _I)),
    ("MOTOR_CONFIG",   re.compile(r"(\d+/\d+)\s+(?:lobes|stages)", _I)),
    ("MAX_DIFF_PRESS", re.compile(r"Max DiffP[:\s]+(\d+\.?\d*)", _I)),
    ("MAX_TORQUE",     re.compile(r"Max Torque[:\s]+(\d+\.?\d*)", _I)),
    # Bit & BHA
    ("BIT_MODEL",      re.compile(r"(?:Bit\s+)?Model[:\s]+([A-Za-z0-9\-_]+)", _I)),
    ("BIT_MAKE",       re.compile(r"(?:Bit\s+)?Make[:\s]+([A-Za-z\s-]+)(?=\n|Model|$)", _I)),
    ("TFA",            re.compile(r"TFA[:\s]+(\d+\.?\d*)\s*\(([^)]+)\)", _I)),
    ("HOLE_SIZE",      re.compile(r"(\d+\.?\d*)[\"\s]*(?:hole|section)", _I)),
    # Performance
    ("AVG_ROP",        re.compile(r"Avg ROP[:\s]+(\d+\.?\d*)", _I)),
    ("SLIDE_ROP",      re.compile(r"Slide ROP[:\s]+(\d+\.?\d*)", _I)),
    ("ROT_ROP",        re.compile(r"Rot ROP[:\s]+(\d+\.?\d*)", _I)),
    ("TOTAL_DRILLED",  re.compile(r"Total Drilled[:\s]+(\d+\.?\d*)", _I)),
    ("ROTARY_DRILLED", re.compile(r"Rotary Drilled[:\s]+(\d+\.?\d*)", _I)),
    ("SLIDE_DRILLED",  re.compile(r"Slide Drilled[:\s]+(\d+\.?\d*)", _I)),
    # Operational
    ("DRILLING_HOURS", re.compile(r"(?:Total\s+)?Drill\s+Hrs[:\s]+(\d+\.?\d*)", _I)),
    ("CIRC_HOURS",     re.compile(r"(?:Off\s+Btm\s+)?Circ\s+Hrs[:\s]+(\d+\.?\d*)", _I)),
    ("SLIDE_HOURS",    re.compile(r"Slide Hours[:\s]+(\d+\.?\d*)", _I)),
    ("SLIDE_PERCENT",  re.compile(r"%Slide[:\s]+(\d+\.?\d*)", _I)),
    # Weight & pressure
    ("PICKUP_WEIGHT",  re.compile(r"PU\s+WT[:\s]+(\d+\.?\d*)", _I)),
    ("WOB",            re.compile(r"WOB[^:\n.;]{0,30}[:\s]+(\d+\.?\d*)", _I)),
    ("DIFF_PRESS",     re.compile(r"(?:Avg\s+)?Diff\s+Press[:\s]+(\d+\.?\d*)", _I)),
    # BHA dimensions
    ("BHA_LENGTH",     re.compile(r"Total Length[:\s]+(\d+\.?\d*)", _I)),
    ("FISHNECK_OD",    re.compile(r"Fishneck OD[:\s]+(\d+\.?\d*)", _I)),
    ("STABILIZER",     re.compile(r"(\d+\.?\d*)[\"\s]*(?:stab|stabilizer)", _I)),
    # Depths
    ("DEPTH_IN",       re.compile(r"Depth In[:\s]+(\d+\.?\d*)", _I)),
    ("DEPTH_OUT",      re.compile(r"Depth Out[:\s]+(\d+\.?\d*)", _I)),
]


def build_structured_summary(text: str) -> str | None:
    """
    One dense line of every recognized report field, or None when fewer
    than SUMMARY_MIN_FIELDS field categories are present.
    """
    fields: list[str] = []
    for name, pattern in SUMMARY_PATTERNS:
        values = []
        for match in pattern.finditer(text):
            value = (match.group(1) or match.group(0)).strip()
            if value:
                values.append(value)
            if len(values) == SUMMARY_MAX_VALUES:
                break
        if values:
            fields.append(f"{name}: {', '.join(values)}")

    if len(fields) < SUMMARY_MIN_FIELDS:
        return None
    return SUMMARY_PREFIX + " | ".join(fields)


# ---------------------------------------------------------------------------
# Validity & reranking signals
# ---------------------------------------------------------------------------

DRILLING_INDICATORS: list[re.Pattern] = [
    re.compile(r"\d+\.?\d*\s*(?:klbs|rpm|gpm|psi|usft|degf)", _I),
    re.compile(r"motor|bit|bha|stator|drilling|performance", _I),
    re.compile(r"make|model|grade|vendor|specs", _I),
    re.compile(r"wob|rop|tfa|differential|pressure", _I),
]

_WORD_TOKEN  = re.compile(r"[A-Za-z]{3,}")
_DIGIT       = re.compile(r"\d")
_SENTENCE_PUNCT = re.compile(r"[.!?;:]")


def is_valid_chunk(text: str) -> bool:
    """
    A chunk is kept when it has at least one alphabetic word of three or
    more letters and carries a digit, sentence punctuation or a drilling
    indicator.
    """
    if not _WORD_TOKEN.search(text):
        return False
    return bool(
        _DIGIT.search(text)
        or _SENTENCE_PUNCT.search(text)
        or any(p.search(text) for p in DRILLING_INDICATORS)
    )


STRUCTURED_MARKERS = ("STRUCTURED DATA", "METRICS:")

TECHNICAL_VALUE_PATTERNS: list[re.Pattern] = [
    re.compile(r"\d+\.?\d*\s*(?:klbs|rpm|gpm|psi|usft/hr|degf|%|usft)", _I),
    re.compile(r"stator fit|tfa|wob|rop", _I),
    re.compile(r"make|model|grade|sn:", _I),
]

NUMBER_PATTERN = re.compile(r"[+-]?\d+(?:\.\d+)?")

IDENTIFIER_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("make",   re.compile(r"Make[:\s]+([A-Za-z][A-Za-z\s-]*?)(?=\s*(?:\n|Model|$|\t))", _I)),
    ("model",  re.compile(r"Model[:\s]+([A-Za-z0-9][A-Za-z0-9\-_]*)", _I)),
    ("vendor", re.compile(r"Vendor[:\s]+([A-Za-z][A-Za-z\s-]*?)(?=\s*(?:\n|$|\t))", _I)),
]


def count_technical_values(text: str) -> int:
    return sum(len(p.findall(text)) for p in TECHNICAL_VALUE_PATTERNS)
