"""
Hybrid Text Extraction
══════════════════════

Runs the digital/OCR cascade and merges the outputs into one
ExtractionResult consumed by the chunker.

Strategy selection flow:
  1.  PyMuPDF digital text layer  →  quality score (quality.py)
  2.  Fast path: len > digital_min_chars AND
                 (quality > digital_quality_threshold OR len > digital_long_text_chars)
        → method=digital, OCR is never touched
  3.  Otherwise rasterize + OCR (ocr.py), per-page text joined with page markers,
      OCR quality = min(avg_confidence, 0.95)
  4.  Merge:
        digital ≥ 1.5 × OCR length and digital quality > 0.6   → digital
        OCR quality − digital quality > 0.2                      → ocr
        otherwise digital + supplemental OCR section             → hybrid
  5.  Fallbacks:
        digital failed outright, OCR has text  → ocr
        OCR produced nothing, digital has text → digital
        neither                                → ExtractionFailed

Password-protected and corrupted files stop the cascade at step 1: no
OCR pass can recover them. Every ExtractionFailed carries its
ExtractionErrorType and the remediation suggestions for that type.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from drillrag.core.config import Settings, settings as default_settings
from drillrag.core.exceptions import ExtractionErrorType, ExtractionFailed
from drillrag.processing.ocr import (
    BaseTextExtractor,
    ExtractionStrategyResult,
    OCRExtractor,
    PyMuPDFExtractor,
    get_ocr_engine,
)
from drillrag.processing.quality import score_text_quality

logger = logging.getLogger(__name__)

OCR_QUALITY_CAP = 0.95

# Merge rule thresholds
DIGITAL_LENGTH_RATIO      = 1.5
DIGITAL_PREFERRED_QUALITY = 0.6
OCR_QUALITY_MARGIN        = 0.2

HYBRID_SEPARATOR = "\n\n=== OCR SUPPLEMENTAL CONTENT ===\n\n"


class ExtractionMethod(str, Enum):
    DIGITAL = "digital"
    OCR     = "ocr"
    HYBRID  = "hybrid"


@dataclass(frozen=True)
class ExtractionResult:
    """
    Produced once per document; immutable.

    text          : merged document text handed to the chunker
    method        : which strategy (or combination) produced `text`
    quality_score : 0–1 heuristic estimate of extraction fidelity
    metadata      : page counts, per-strategy char counts and qualities, timings
    """
    text:          str
    method:        ExtractionMethod
    quality_score: float
    metadata:      dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

REMEDIATION: dict[ExtractionErrorType, tuple[str, list[str]]] = {
    ExtractionErrorType.IMAGE_BASED: (
        "This PDF appears to be image-based and cannot be processed.",
        ["Convert the PDF to a text-based format", "Ensure the PDF contains selectable text"],
    ),
    ExtractionErrorType.CORRUPTED: (
        "The PDF file appears to be corrupted or invalid.",
        ["Try re-saving or re-creating the PDF", "Upload a different PDF file"],
    ),
    ExtractionErrorType.PROTECTED: (
        "The PDF is password protected.",
        ["Remove the password protection", "Upload an unprotected version"],
    ),
    ExtractionErrorType.RESOURCE: (
        "The document exceeded processing time or memory limits.",
        ["Split the PDF into smaller files", "Try again later"],
    ),
    ExtractionErrorType.EMPTY: (
        "The document contains no pages.",
        ["Upload a PDF with at least one page"],
    ),
    ExtractionErrorType.UNKNOWN: (
        "Text could not be extracted from the PDF.",
        ["Upload a different PDF file"],
    ),
}

# Errors no further strategy can fix
CRITICAL_ERROR_TYPES = frozenset({ExtractionErrorType.PROTECTED, ExtractionErrorType.CORRUPTED})

_CORRUPTION_MARKERS = ("broken", "corrupt", "invalid", "format error", "no objects found", "not a pdf")


def classify_extraction_error(exc: BaseException) -> ExtractionErrorType:
    """Map a strategy exception onto an ExtractionErrorType."""
    message = str(exc).lower()

    if isinstance(exc, PermissionError) or "password" in message or "encrypted" in message:
        return ExtractionErrorType.PROTECTED
    # PyMuPDF raises FileDataError / EmptyFileError for unreadable streams
    if type(exc).__name__ in ("FileDataError", "EmptyFileError") or any(
        marker in message for marker in _CORRUPTION_MARKERS
    ):
        return ExtractionErrorType.CORRUPTED
    if isinstance(exc, (TimeoutError, MemoryError)) or "timeout" in message or "timed out" in message or "memory" in message:
        return ExtractionErrorType.RESOURCE
    return ExtractionErrorType.UNKNOWN


def extraction_failure(
    error_type: ExtractionErrorType,
    *,
    cause:   BaseException | None = None,
    context: dict[str, Any] | None = None,
) -> ExtractionFailed:
    """Build an ExtractionFailed carrying the user message and suggestions for `error_type`."""
    user_message, suggestions = REMEDIATION[error_type]
    return ExtractionFailed(
        user_message,
        error_type=error_type,
        cause=cause,
        context=context,
        suggestions=suggestions,
    )


# ---------------------------------------------------------------------------
# Hybrid extractor
# ---------------------------------------------------------------------------

class HybridTextExtractor:
    """
    Usage:
        extractor = HybridTextExtractor()
        result = await extractor.extract(pdf_bytes)

    Both strategies are injectable so tests can substitute fakes.
    """

    def __init__(
        self,
        digital:  BaseTextExtractor | None = None,
        ocr:      OCRExtractor | None = None,
        settings: Settings | None = None,
    ) -> None:
        cfg = settings or default_settings
        self._digital = digital or PyMuPDFExtractor()
        self._ocr     = ocr or OCRExtractor(
            get_ocr_engine(cfg.ocr_backend, region=cfg.aws_region, timeout_seconds=cfg.ocr_timeout_seconds),
            tier=cfg.ocr_quality_tier,
            language=cfg.ocr_language,
        )
        self._min_chars         = cfg.digital_min_chars
        self._quality_threshold = cfg.digital_quality_threshold
        self._long_text_chars   = cfg.digital_long_text_chars

    async def extract(self, pdf_bytes: bytes) -> ExtractionResult:
        if not pdf_bytes:
            raise extraction_failure(ExtractionErrorType.EMPTY, context={"bytes": 0})

        t0 = time.monotonic()

        # ── Step 1: digital text layer ───────────────────────────────────
        digital = await self._digital.extract(pdf_bytes)

        if digital.error is not None:
            error_type = classify_extraction_error(digital.error)
            if error_type in CRITICAL_ERROR_TYPES:
                logger.error(
                    "Extraction | critical error type=%s error=%s, stopping cascade",
                    error_type.value, digital.error,
                )
                raise extraction_failure(error_type, cause=digital.error)
        elif digital.page_count == 0:
            raise extraction_failure(ExtractionErrorType.EMPTY, context={"pages": 0})

        digital_text    = digital.full_text
        digital_quality = score_text_quality(digital_text, digital.page_count) if digital_text else 0.0

        # ── Step 2: fast path ────────────────────────────────────────────
        if len(digital_text) > self._min_chars and (
            digital_quality > self._quality_threshold or len(digital_text) > self._long_text_chars
        ):
            logger.info(
                "Extraction | method=digital chars=%d quality=%.3f pages=%d",
                len(digital_text), digital_quality, digital.page_count,
            )
            return self._result(
                digital_text, ExtractionMethod.DIGITAL, digital_quality,
                digital, None, digital_quality, 0.0, t0,
            )

        logger.info(
            "Extraction | digital insufficient chars=%d quality=%.3f, running OCR",
            len(digital_text), digital_quality,
        )

        # ── Step 3: OCR ──────────────────────────────────────────────────
        ocr = await self._ocr.extract(pdf_bytes, page_count=digital.page_count or None)
        ocr_text    = ocr.marked_text if ocr.pages else ""
        ocr_quality = min(ocr.avg_confidence, OCR_QUALITY_CAP) if ocr_text else 0.0

        # ── Step 4/5: merge or fall back ─────────────────────────────────
        if digital_text and ocr_text:
            method, text, quality = self._merge(digital_text, digital_quality, ocr_text, ocr_quality)
        elif ocr_text:
            method, text, quality = ExtractionMethod.OCR, ocr_text, ocr_quality
        elif digital_text:
            logger.warning("Extraction | OCR produced no text, falling back to digital")
            method, text, quality = ExtractionMethod.DIGITAL, digital_text, digital_quality
        else:
            cause = digital.error or ocr.error
            error_type = ExtractionErrorType.IMAGE_BASED
            if cause is not None:
                classified = classify_extraction_error(cause)
                if classified != ExtractionErrorType.UNKNOWN:
                    error_type = classified
            logger.error(
                "Extraction | no usable text type=%s digital_error=%s ocr_error=%s",
                error_type.value, digital.error, ocr.error,
            )
            raise extraction_failure(
                error_type,
                cause=cause,
                context={"pages": digital.page_count, "ocr_failed_pages": ocr.failed_pages},
            )

        logger.info(
            "Extraction | method=%s chars=%d quality=%.3f digital_q=%.3f ocr_q=%.3f",
            method.value, len(text), quality, digital_quality, ocr_quality,
        )
        return self._result(text, method, quality, digital, ocr, digital_quality, ocr_quality, t0)

    @staticmethod
    def _merge(
        digital_text: str, digital_quality: float,
        ocr_text: str, ocr_quality: float,
    ) -> tuple[ExtractionMethod, str, float]:
        if len(digital_text) >= DIGITAL_LENGTH_RATIO * len(ocr_text) and digital_quality > DIGITAL_PREFERRED_QUALITY:
            return ExtractionMethod.DIGITAL, digital_text, digital_quality
        if ocr_quality - digital_quality > OCR_QUALITY_MARGIN:
            return ExtractionMethod.OCR, ocr_text, ocr_quality
        return (
            ExtractionMethod.HYBRID,
            digital_text + HYBRID_SEPARATOR + ocr_text,
            max(digital_quality, ocr_quality),
        )

    @staticmethod
    def _result(
        text:            str,
        method:          ExtractionMethod,
        quality:         float,
        digital:         ExtractionStrategyResult,
        ocr:             ExtractionStrategyResult | None,
        digital_quality: float,
        ocr_quality:     float,
        t0:              float,
    ) -> ExtractionResult:
        metadata: dict[str, Any] = {
            "page_count":      digital.page_count or (ocr.page_count if ocr else 0),
            "digital_chars":   len(digital.full_text),
            "digital_quality": round(digital_quality, 4),
            "used_ocr":        ocr is not None,
            "elapsed_ms":      round((time.monotonic() - t0) * 1000, 1),
        }
        if ocr is not None:
            metadata.update({
                "ocr_chars":        ocr.total_chars,
                "ocr_pages":        len(ocr.pages),
                "ocr_failed_pages": list(ocr.failed_pages),
                "ocr_quality":      round(ocr_quality, 4),
            })
        return ExtractionResult(
            text=text,
            method=method,
            quality_score=round(quality, 4),
            metadata=metadata,
        )
