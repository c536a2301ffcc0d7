"""
Text quality heuristic for digital extraction output.

Four components, each normalized to [0, 1] and weighted:

  length     0.35   characters per page vs. an expected 500
  structure  0.25   paragraphs + sentences per page vs. an expected 10
  word_len   0.20   average word length inside the natural 3–8 band
  variety    0.20   distinct characters, damped by the alphanumeric ratio

A clean single page of prose scores well above 0.7; a text layer of
scattered glyphs, ligature garbage or header-only pages scores low.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

WEIGHT_LENGTH    = 0.35
WEIGHT_STRUCTURE = 0.25
WEIGHT_WORD_LEN  = 0.20
WEIGHT_VARIETY   = 0.20

EXPECTED_CHARS_PER_PAGE     = 500
EXPECTED_STRUCTURE_PER_PAGE = 10
EXPECTED_DISTINCT_CHARS     = 30
MIN_ALNUM_RATIO             = 0.6

_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
_SENTENCE_END    = re.compile(r"[.!?](?:\s|$)")


@dataclass(frozen=True)
class QualityBreakdown:
    length:    float
    structure: float
    word_len:  float
    variety:   float

    @property
    def score(self) -> float:
        total = (
            WEIGHT_LENGTH * self.length
            + WEIGHT_STRUCTURE * self.structure
            + WEIGHT_WORD_LEN * self.word_len
            + WEIGHT_VARIETY * self.variety
        )
        return round(min(max(total, 0.0), 1.0), 4)


def _word_length_component(words: list[str]) -> float:
    if not words:
        return 0.0
    avg = sum(len(w) for w in words) / len(words)
    if avg < 3:
        return avg / 3
    if avg > 8:
        return max(0.0, 1.0 - (avg - 8) / 8)
    return 1.0


def _variety_component(text: str) -> float:
    visible = [c for c in text if not c.isspace()]
    if not visible:
        return 0.0
    distinct = min(len(set(visible)) / EXPECTED_DISTINCT_CHARS, 1.0)
    alnum_ratio = sum(1 for c in visible if c.isalnum()) / len(visible)
    return distinct * min(alnum_ratio / MIN_ALNUM_RATIO, 1.0)


def quality_breakdown(text: str, page_count: int) -> QualityBreakdown:
    pages = max(page_count, 1)
    stripped = text.strip()
    if not stripped:
        return QualityBreakdown(0.0, 0.0, 0.0, 0.0)

    paragraphs = [p for p in _PARAGRAPH_SPLIT.split(stripped) if p.strip()]
    sentences  = _SENTENCE_END.findall(stripped)

    return QualityBreakdown(
        length=min(len(stripped) / (pages * EXPECTED_CHARS_PER_PAGE), 1.0),
        structure=min((len(paragraphs) + len(sentences)) / (pages * EXPECTED_STRUCTURE_PER_PAGE), 1.0),
        word_len=_word_length_component(stripped.split()),
        variety=_variety_component(stripped),
    )


def score_text_quality(text: str, page_count: int) -> float:
    """Weighted [0, 1] quality estimate for extracted text."""
    return quality_breakdown(text, page_count).score
