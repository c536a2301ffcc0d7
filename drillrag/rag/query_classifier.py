"""
Query classification — selects the search-parameter profile.

Precedence when several cue lists match:
  aggregation  >  comparison  >  domain-specific  >  general

  aggregation      statistics over many chunks ("average ROP across all runs")
                   → wide net, low threshold
  comparison       two or more subjects side by side ("Rival vs TAG motors")
                   → balanced profile
  domain-specific  a precise drilling fact ("stator fit on BHA 2")
                   → narrow net, high threshold
  general          everything else
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


class QueryType(str, Enum):
    AGGREGATION     = "aggregation"
    COMPARISON      = "comparison"
    DOMAIN_SPECIFIC = "domain_specific"
    GENERAL         = "general"


@dataclass(frozen=True)
class SearchProfile:
    limit:           int
    score_threshold: float


SEARCH_PROFILES: dict[QueryType, SearchProfile] = {
    QueryType.AGGREGATION:     SearchProfile(limit=60, score_threshold=0.25),
    QueryType.DOMAIN_SPECIFIC: SearchProfile(limit=10, score_threshold=0.45),
    QueryType.COMPARISON:      SearchProfile(limit=25, score_threshold=0.35),
    QueryType.GENERAL:         SearchProfile(limit=15, score_threshold=0.3),
}


def _cue_pattern(words: list[str]) -> re.Pattern:
    return re.compile(r"\b(?:" + "|".join(words) + r")\b", re.IGNORECASE)


AGGREGATION_CUES = _cue_pattern([
    "average", "avg", "mean", "median", "total", "sum", "overall",
    "highest", "lowest", "maximum", "minimum", "max", "min", "most", "least",
    "how many", "count", "all", "every", "each", "across", "statistics",
    "trend", "distribution", "range", "list",
])

COMPARISON_CUES = _cue_pattern([
    "compare", "compared", "comparison", "versus", "vs", "difference",
    "differ", "better", "worse", "higher than", "lower than", "between",
])

DOMAIN_CUES = _cue_pattern([
    "stator", "rotor", "motor", "bit", "bha", "tfa", "wob", "rop", "rpm",
    "torque", "diff press", "differential", "slide", "rotary", "circ",
    "circulation", "fishneck", "stabilizer", "lobes", "stages", "bend",
    "hole size", "flow", "gpm", "psi", "klbs", "usft", "depth", "inclination",
    "pickup", "make", "model", "vendor", "drilled",
])


def classify_query(text: str) -> QueryType:
    if AGGREGATION_CUES.search(text):
        return QueryType.AGGREGATION
    if COMPARISON_CUES.search(text):
        return QueryType.COMPARISON
    if DOMAIN_CUES.search(text):
        return QueryType.DOMAIN_SPECIFIC
    return QueryType.GENERAL


def profile_for(query_type: QueryType) -> SearchProfile:
    return SEARCH_PROFILES[query_type]
