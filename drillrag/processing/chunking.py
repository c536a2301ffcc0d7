"""
Drilling Report Chunker  —  Domain-Aware Recursive Segmentation
════════════════════════════════════════════════════════════════

Why not plain fixed-size chunks?
────────────────────────────────
  Motor and BHA reports are dense key/value tables. A window that breaks
  between a label and its value produces two useless embeddings:

    "Stator Fit:
    [CHUNK BREAK]
    +0.010 ..."

  The retriever finds neither half for "what was the stator fit?".

Our approach
────────────
  1. Normalize (NFC, non-breaking spaces → spaces, ≥3 newlines → 2)
  2. Protect significant phrases (Stator Fit, TFA, WOB, Avg ROP, …): their
     interior spaces become U+00A0 so the " " separator cannot split them;
     each span stays within one line and one clause
  3. Recursive split (langchain RecursiveCharacterTextSplitter) over the
     drilling separator list: report sections first, then table rows and
     sub-sections, then paragraphs, lines, sentences, words, characters
  4. Per candidate: restore spaces, classify content type, extract inline
     metrics, build enriched content = LABEL + body + [METRICS: …]
  5. Drop candidates under min_chunk_chars or failing the validity check;
     if nothing survives keep every non-empty candidate
  6. Prepend one STRUCTURED_SUMMARY chunk when ≥2 report fields are found

Invariants
──────────
  - Every non-summary chunk body is a contiguous substring of the
    normalized text (the splitter keeps separators and only strips ends)
  - strip_enrichment(chunk.content) == chunk.body
  - Indices are assigned after the summary chunk is prepended
  - chunk_overlap < chunk_size, enforced at call time

If splitting, enrichment or the summary raises, the chunker falls back to
fixed windows that break at the same separators (fallback_windows),
labelled DRILLING_GENERAL and left unclassified.
"""

from __future__ import annotations

import dataclasses
import logging
import re
import unicodedata
from dataclasses import dataclass

from langchain_text_splitters import RecursiveCharacterTextSplitter

from drillrag.core.config import Settings, settings as default_settings
from drillrag.core.exceptions import ChunkingFailed
from drillrag.processing.domain import (
    CONTENT_TYPE_PREFIXES,
    DRILLING_SEPARATORS,
    PRESERVE_PATTERNS,
    ContentType,
    build_structured_summary,
    classify_content,
    count_technical_values,
    extract_metrics,
    format_metrics,
    is_valid_chunk,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration constants
# ---------------------------------------------------------------------------

# Texts shorter than this are returned as a single enriched chunk
SHORT_TEXT_CHARS = 100

# Fallback windows accept a break point only past this fraction of the window
FALLBACK_MIN_BREAK_RATIO = 0.4

# Placeholder for spaces inside protected phrases
PROTECTED_SPACE = "\u00a0"

_METRICS_SUFFIX = re.compile(r" \[METRICS: [^\]]*\]$")


@dataclass(frozen=True)
class ChunkingOptions:
    chunk_size:      int = 1350
    chunk_overlap:   int = 250
    min_chunk_chars: int = 50

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ChunkingOptions":
        cfg = settings or default_settings
        return cls(
            chunk_size=cfg.chunk_size,
            chunk_overlap=cfg.chunk_overlap,
            min_chunk_chars=cfg.min_chunk_chars,
        )

    def validate(self) -> None:
        if self.chunk_size <= 0:
            raise ChunkingFailed(f"chunk_size must be positive, got {self.chunk_size}")
        if self.chunk_overlap < 0 or self.chunk_overlap >= self.chunk_size:
            raise ChunkingFailed(
                f"chunk_overlap ({self.chunk_overlap}) must be in [0, chunk_size={self.chunk_size})",
                context={"chunk_size": self.chunk_size, "chunk_overlap": self.chunk_overlap},
            )


@dataclass(frozen=True)
class Chunk:
    """
    A single retrieval unit ready for embedding.

    content        : enriched text that gets embedded (label + body + metrics)
    body           : raw segment of the normalized document text
    content_type   : ContentType value
    inline_metrics : ((name, value), ...) in metric-table order
    index          : 0-based position, summary chunk first when present
    total_count    : number of chunks produced for the document
    """
    content:        str
    body:           str
    content_type:   str
    inline_metrics: tuple[tuple[str, str], ...] = ()
    index:          int = 0
    total_count:    int = 0

    @property
    def is_summary(self) -> bool:
        return self.content_type == ContentType.STRUCTURED_SUMMARY.value


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------

def normalize_text(text: str) -> str:
    """
    NFC-normalize, turn non-breaking spaces into plain spaces, strip
    trailing whitespace per line and collapse runs of 3+ newlines.
    """
    text = unicodedata.normalize("NFC", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = text.replace(PROTECTED_SPACE, " ")
    lines = [line.rstrip() for line in text.split("\n")]
    text = "\n".join(lines)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def protect_phrases(text: str) -> str:
    """Replace spaces inside significant phrases with PROTECTED_SPACE. Length-preserving."""
    for pattern in PRESERVE_PATTERNS:
        text = pattern.sub(lambda m: m.group(0).replace(" ", PROTECTED_SPACE), text)
    return text


def unprotect(text: str) -> str:
    return text.replace(PROTECTED_SPACE, " ")


def strip_enrichment(content: str) -> str:
    """Remove the content-type label and metrics suffix added by enrich()."""
    for prefix in CONTENT_TYPE_PREFIXES.values():
        if content.startswith(prefix):
            content = content[len(prefix):]
            break
    return _METRICS_SUFFIX.sub("", content)


def enrich(body: str) -> Chunk:
    """Classify `body`, extract its metrics and build the enriched chunk."""
    content_type = classify_content(body)
    metrics      = extract_metrics(body)
    content = CONTENT_TYPE_PREFIXES[content_type] + body + format_metrics(metrics)
    return Chunk(
        content=content,
        body=body,
        content_type=content_type.value,
        inline_metrics=metrics,
    )


def fallback_windows(text: str, chunk_size: int, chunk_overlap: int) -> list[str]:
    """
    Fixed-size windows that end at the latest separator found past
    FALLBACK_MIN_BREAK_RATIO of the window, trying separators in
    preference order. The window start always advances.
    """
    break_points = [s for s in DRILLING_SEPARATORS if s]
    min_offset   = chunk_size * FALLBACK_MIN_BREAK_RATIO
    pieces: list[str] = []
    start = 0

    while start < len(text):
        end = min(start + chunk_size, len(text))

        if end < len(text):
            for separator in break_points:
                found = text.rfind(separator, start, end)
                if found > start + min_offset:
                    end = found + len(separator)
                    break

        piece = text[start:end].strip()
        if piece:
            pieces.append(piece)
        if end >= len(text):
            break
        start = max(end - chunk_overlap, start + 1)

    return pieces


# ---------------------------------------------------------------------------
# Chunker
# ---------------------------------------------------------------------------

class DrillingReportChunker:
    """
    Stateless domain-aware chunker.

    Usage:
        chunker = DrillingReportChunker()
        chunks  = chunker.chunk(extraction.text)
    """

    def __init__(self, options: ChunkingOptions | None = None) -> None:
        self._options = options or ChunkingOptions.from_settings()

    def chunk(self, text: str, options: ChunkingOptions | None = None) -> list[Chunk]:
        opts = options or self._options
        opts.validate()

        if not isinstance(text, str) or not text.strip():
            raise ChunkingFailed("Invalid text input: must be a non-empty string")

        normalized = normalize_text(text)

        if len(normalized) < SHORT_TEXT_CHARS:
            logger.warning("Chunker | short text chars=%d, returning single chunk", len(normalized))
            return self._finalize([enrich(normalized)])

        try:
            kept, candidate_count = self._domain_chunks(normalized, opts)
        except Exception as exc:
            logger.warning("Chunker | domain chunking failed (%s), using fallback windows", exc, exc_info=True)
            kept = self._window_chunks(normalized, opts)
            candidate_count = len(kept)

        chunks = self._finalize(kept)
        logger.info(
            "Chunker | chunks=%d candidates=%d summary=%s avg_chars=%.0f",
            len(chunks), candidate_count, bool(chunks) and chunks[0].is_summary,
            sum(len(c.content) for c in chunks) / max(1, len(chunks)),
        )
        for c in chunks:
            logger.debug(
                "Chunker | index=%d chars=%d type=%s technical_values=%d",
                c.index, len(c.content), c.content_type, count_technical_values(c.content),
            )
        return chunks

    def _domain_chunks(self, normalized: str, opts: ChunkingOptions) -> tuple[list[Chunk], int]:
        """Split, enrich, filter and prepend the summary chunk."""
        candidates = self._split(normalized, opts)

        enriched = [enrich(c) for c in candidates if c.strip()]
        if not enriched:
            enriched = [enrich(normalized)]

        kept = [
            c for c in enriched
            if len(c.body) >= opts.min_chunk_chars and is_valid_chunk(c.body)
        ]
        if not kept:
            logger.warning(
                "Chunker | all %d candidates filtered out, keeping unfiltered candidates",
                len(enriched),
            )
            kept = enriched

        summary = build_structured_summary(normalized)
        if summary:
            kept.insert(0, Chunk(
                content=summary,
                body=summary,
                content_type=ContentType.STRUCTURED_SUMMARY.value,
            ))
        return kept, len(enriched)

    @staticmethod
    def _window_chunks(normalized: str, opts: ChunkingOptions) -> list[Chunk]:
        # no classification here: the domain tables may be what failed
        prefix = CONTENT_TYPE_PREFIXES[ContentType.DRILLING_GENERAL]
        return [
            Chunk(content=prefix + piece, body=piece, content_type=ContentType.DRILLING_GENERAL.value)
            for piece in fallback_windows(normalized, opts.chunk_size, opts.chunk_overlap)
        ]

    @staticmethod
    def _split(normalized: str, opts: ChunkingOptions) -> list[str]:
        splitter = RecursiveCharacterTextSplitter(
            chunk_size=opts.chunk_size,
            chunk_overlap=opts.chunk_overlap,
            separators=DRILLING_SEPARATORS,
            keep_separator=True,
            strip_whitespace=True,
            length_function=len,
        )
        pieces = splitter.split_text(protect_phrases(normalized))
        return [unprotect(p).strip() for p in pieces]

    @staticmethod
    def _finalize(chunks: list[Chunk]) -> list[Chunk]:
        total = len(chunks)
        return [
            dataclasses.replace(c, index=i, total_count=total)
            for i, c in enumerate(chunks)
        ]
