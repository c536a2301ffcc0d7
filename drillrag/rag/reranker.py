"""
Domain Re-Ranking — score boosting from drilling-report signals

Takes the raw similarity hits for one query and adds a bounded boost:

  +0.08   payload content_type is high-value (motor, bit, performance,
          operational, structured summary) OR content carries a
          structured-data marker ("STRUCTURED DATA", "METRICS:")
  +0.01   per recognized technical value (units, stator fit, TFA, make, …),
          capped at +0.04
          ── the two above together are capped at DOMAIN_BOOST_CAP (0.12)
  +0.002  per numeric token, aggregation queries only, capped at +0.03

  final score = min(similarity + boost, 1.0)

Results are re-sorted by final score; ties keep the vector-search order.
Relevance labels are derived from the ORIGINAL similarity, so a boosted
weak match is never labelled HIGH.

For aggregation queries each result is also annotated with the numbers,
data categories and equipment identifiers found in it, so the answer
stage can compute statistics without re-parsing payloads.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from drillrag.processing.domain import (
    HIGH_VALUE_CONTENT_TYPES,
    IDENTIFIER_PATTERNS,
    NUMBER_PATTERN,
    STRUCTURED_MARKERS,
    count_technical_values,
    extract_metrics,
)
from drillrag.rag.query_classifier import QueryType
from drillrag.vectorstore.base import ScoredPoint

logger = logging.getLogger(__name__)

HIGH_VALUE_BOOST       = 0.08
TECHNICAL_VALUE_BOOST  = 0.01
TECHNICAL_BOOST_CAP    = 0.04
DOMAIN_BOOST_CAP       = 0.12
NUMERIC_DENSITY_BOOST  = 0.002
NUMERIC_BOOST_CAP      = 0.03

MAX_ANNOTATED_NUMBERS  = 50

_HIGH_VALUE_TYPES = {t.value for t in HIGH_VALUE_CONTENT_TYPES}


def relevance_label(score: float) -> str:
    if score >= 0.8:
        return "HIGH"
    if score >= 0.6:
        return "MEDIUM"
    if score >= 0.4:
        return "LOW"
    return "MINIMAL"


@dataclass
class SearchResult:
    """
    One reranked hit.

    rank           : 1-based position in the raw vector-search order
    score          : final score after boosting
    original_score : similarity returned by the vector store
    relevance      : HIGH / MEDIUM / LOW / MINIMAL from original_score
    annotations    : aggregation-only extraction (numbers, categories, identifiers)
    """
    id:             str
    score:          float
    payload:        dict
    rank:           int
    relevance:      str
    original_score: float
    boost:          float = 0.0
    annotations:    dict  = field(default_factory=dict)

    @property
    def content(self) -> str:
        return self.payload.get("content", "")

    @property
    def file_name(self) -> str:
        return self.payload.get("name", "")


class DomainReranker:
    """
    Usage:
        reranker = DomainReranker()
        results  = reranker.rerank(points, QueryType.AGGREGATION)
    """

    def rerank(self, points: list[ScoredPoint], query_type: QueryType) -> list[SearchResult]:
        aggregation = query_type == QueryType.AGGREGATION

        results = []
        for rank, point in enumerate(points, start=1):
            content = point.payload.get("content", "") or ""
            boost   = self.domain_boost(content, point.payload.get("content_type"))
            if aggregation:
                boost += self.numeric_boost(content)

            results.append(SearchResult(
                id=point.id,
                score=min(point.score + boost, 1.0),
                payload=point.payload,
                rank=rank,
                relevance=relevance_label(point.score),
                original_score=point.score,
                boost=round(boost, 4),
                annotations=annotate(content, point.payload) if aggregation else {},
            ))

        results.sort(key=lambda r: (-r.score, r.rank))

        if results:
            logger.debug(
                "Reranker | type=%s results=%d top_score=%.3f top_boost=%.3f",
                query_type.value, len(results), results[0].score, results[0].boost,
            )
        return results

    @staticmethod
    def domain_boost(content: str, content_type: str | None) -> float:
        boost = 0.0
        if content_type in _HIGH_VALUE_TYPES or any(m in content for m in STRUCTURED_MARKERS):
            boost += HIGH_VALUE_BOOST
        boost += min(count_technical_values(content) * TECHNICAL_VALUE_BOOST, TECHNICAL_BOOST_CAP)
        return min(boost, DOMAIN_BOOST_CAP)

    @staticmethod
    def numeric_boost(content: str) -> float:
        return min(len(NUMBER_PATTERN.findall(content)) * NUMERIC_DENSITY_BOOST, NUMERIC_BOOST_CAP)


def annotate(content: str, payload: dict) -> dict:
    """Numbers, data categories and equipment identifiers found in one result."""
    numbers = [float(n) for n in NUMBER_PATTERN.findall(content)[:MAX_ANNOTATED_NUMBERS]]

    categories: list[str] = []
    content_type = payload.get("content_type")
    if content_type:
        categories.append(content_type)
    for name, _ in extract_metrics(content):
        if name not in categories:
            categories.append(name)

    identifiers: dict[str, list[str]] = {}
    for kind, pattern in IDENTIFIER_PATTERNS:
        found = []
        for match in pattern.finditer(content):
            value = match.group(1).strip()
            if value and value not in found:
                found.append(value)
        if found:
            identifiers[kind] = found

    return {"numbers": numbers, "categories": categories, "identifiers": identifiers}
