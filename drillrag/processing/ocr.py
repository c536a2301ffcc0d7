"""
Extraction Strategies  —  Digital Text Layer + Page-Image OCR
══════════════════════════════════════════════════════════════

Design: Strategy + Adapter
──────────────────────────
  Strategy 1: PyMuPDFExtractor  ("digital")
    - Native PDF text layer extraction, in-process, no API calls
    - Returns empty pages for scanned documents
    - Detects password protection and corrupted files (critical errors
      that stop the cascade; OCR cannot help with either)

  Strategy 2: OCRExtractor  ("ocr")
    - Rasterizes pages with PyMuPDF (get_pixmap at the tier's DPI)
    - Sends each page image to an OCR engine adapter
    - Pages are processed in batches; batch size and DPI scale with the
      quality tier (fast / balanced / high)
    - Per-page failures are logged and skipped; pages whose OCR text is
      under MIN_OCR_PAGE_CHARS are dropped

  OCR engine adapters (BaseOCREngine.recognize(image_bytes, lang)):
    TesseractOCREngine  pytesseract + Pillow, runs in-process
    TextractOCREngine   AWS Textract DetectDocumentText via boto3

Both strategies return ExtractionStrategyResult; HybridTextExtractor
(extractor.py) decides how to combine them.

All blocking work (PyMuPDF, Tesseract, boto3) runs in the default thread
executor under asyncio.wait_for so the event loop never stalls.
"""

from __future__ import annotations

import asyncio
import io
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

# OCR page text shorter than this is treated as noise and dropped
MIN_OCR_PAGE_CHARS = 10

# OCR timeout (seconds) per page recognition call
OCR_TIMEOUT_SECONDS = 120

PAGE_MARKER = "--- Page {page_number} ---"


class QualityTier(str, Enum):
    FAST     = "fast"
    BALANCED = "balanced"
    HIGH     = "high"


@dataclass(frozen=True)
class TierProfile:
    dpi:        int
    batch_size: int   # pages rendered + recognized concurrently


# Higher resolution costs memory per page, so batches shrink as DPI grows
TIER_PROFILES: dict[QualityTier, TierProfile] = {
    QualityTier.FAST:     TierProfile(dpi=150, batch_size=6),
    QualityTier.BALANCED: TierProfile(dpi=200, batch_size=4),
    QualityTier.HIGH:     TierProfile(dpi=300, batch_size=2),
}


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------

@dataclass
class PageText:
    """
    Text extracted from a single page.

    page_number       : 1-based page index
    text              : extracted text (may be empty for image-only pages)
    confidence        : 0.0–1.0; -1.0 = not applicable (digital text layer)
    extraction_method : "digital" | "ocr:tesseract" | "ocr:textract"
    """
    page_number:       int
    text:              str
    confidence:        float = -1.0
    extraction_method: str   = "unknown"


@dataclass
class ExtractionStrategyResult:
    """
    Full result from a single strategy run.

    page_count    : pages in the source document (not only those with text)
    error         : the exception that aborted the strategy, if any
    failed_pages  : pages whose OCR call raised
    """
    pages:         list[PageText]
    total_chars:   int
    strategy_name: str
    elapsed_ms:    float
    used_ocr:      bool = False
    page_count:    int  = 0
    error:         BaseException | None = None
    failed_pages:  list[int] = field(default_factory=list)

    @property
    def full_text(self) -> str:
        """Concatenate all non-empty pages with blank-line separators."""
        return "\n\n".join(p.text for p in self.pages if p.text.strip())

    @property
    def marked_text(self) -> str:
        """Concatenate pages, each preceded by a page marker line."""
        return "\n\n".join(
            f"{PAGE_MARKER.format(page_number=p.page_number)}\n{p.text}"
            for p in self.pages if p.text.strip()
        )

    @property
    def avg_confidence(self) -> float:
        values = [p.confidence for p in self.pages if p.confidence >= 0]
        return sum(values) / len(values) if values else -1.0

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.total_chars > 0


def _empty_result(strategy_name: str, used_ocr: bool, error: BaseException | None = None) -> ExtractionStrategyResult:
    return ExtractionStrategyResult(
        pages=[], total_chars=0,
        strategy_name=strategy_name,
        elapsed_ms=0.0, used_ocr=used_ocr,
        error=error,
    )


# ---------------------------------------------------------------------------
# OCR engine adapters
# ---------------------------------------------------------------------------

@dataclass
class OCRResult:
    text:       str
    confidence: float   # engine-reported mean confidence, 0–100


class BaseOCREngine(ABC):
    """
    Adapter contract for an external OCR engine.

    recognize() accepts a single rendered page image (PNG bytes) and
    returns its text plus a mean confidence on a 0–100 scale.
    Implementations raise on failure; the caller decides whether a page
    failure is fatal.
    """

    def __init__(self, timeout_seconds: float = OCR_TIMEOUT_SECONDS) -> None:
        self._timeout = timeout_seconds

    @property
    @abstractmethod
    def name(self) -> str:
        """Short engine name used in logs and PageText.extraction_method."""

    @abstractmethod
    def _recognize_sync(self, image_bytes: bytes, lang: str) -> OCRResult:
        """Blocking recognition, run in a thread executor."""

    async def recognize(self, image_bytes: bytes, lang: str = "eng") -> OCRResult:
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(
            loop.run_in_executor(None, self._recognize_sync, image_bytes, lang),
            timeout=self._timeout,
        )


class TesseractOCREngine(BaseOCREngine):
    """
    Local OCR via pytesseract.

    Requires the tesseract binary plus language data in the container.
    Uses image_to_data so per-word confidences are available; text is
    rebuilt line by line from the (block, paragraph, line) grouping.
    """

    def __init__(self, timeout_seconds: float = OCR_TIMEOUT_SECONDS, config: str = "--oem 3 --psm 3") -> None:
        super().__init__(timeout_seconds)
        self._config = config

    @property
    def name(self) -> str:
        return "tesseract"

    def _recognize_sync(self, image_bytes: bytes, lang: str) -> OCRResult:
        import pytesseract
        from PIL import Image

        with Image.open(io.BytesIO(image_bytes)) as image:
            data = pytesseract.image_to_data(
                image,
                lang=lang,
                config=self._config,
                output_type=pytesseract.Output.DICT,
            )

        lines: dict[tuple[int, int, int], list[str]] = {}
        confidences: list[float] = []

        for i, word in enumerate(data.get("text", [])):
            word = (word or "").strip()
            if not word:
                continue
            conf = float(data["conf"][i])
            if conf < 0:
                continue   # -1 marks layout-only boxes
            confidences.append(conf)
            line_key = (data["block_num"][i], data["par_num"][i], data["line_num"][i])
            lines.setdefault(line_key, []).append(word)

        text = "\n".join(" ".join(words) for _, words in sorted(lines.items()))
        avg  = sum(confidences) / len(confidences) if confidences else 0.0
        return OCRResult(text=text, confidence=avg)


class TextractOCREngine(BaseOCREngine):
    """
    AWS Textract DetectDocumentText on a single page image.

    Textract confidence is already on a 0–100 scale. Language is detected
    by the service; the lang argument is accepted for interface parity.
    """

    def __init__(self, region: str = "us-east-1", timeout_seconds: float = OCR_TIMEOUT_SECONDS) -> None:
        super().__init__(timeout_seconds)
        self._region = region

    @property
    def name(self) -> str:
        return "textract"

    def _recognize_sync(self, image_bytes: bytes, lang: str) -> OCRResult:
        import boto3

        client   = boto3.client("textract", region_name=self._region)
        response = client.detect_document_text(Document={"Bytes": image_bytes})

        lines: list[str] = []
        word_confidences: list[float] = []
        for block in response.get("Blocks", []):
            if block["BlockType"] == "LINE":
                lines.append(block.get("Text", ""))
            elif block["BlockType"] == "WORD":
                word_confidences.append(block.get("Confidence", 0.0))

        avg = sum(word_confidences) / len(word_confidences) if word_confidences else 0.0
        return OCRResult(text="\n".join(lines), confidence=avg)


def get_ocr_engine(backend: str, region: str = "us-east-1", timeout_seconds: float = OCR_TIMEOUT_SECONDS) -> BaseOCREngine:
    """Select the OCR engine adapter from configuration."""
    backend = backend.lower()
    if backend == "tesseract":
        return TesseractOCREngine(timeout_seconds=timeout_seconds)
    if backend == "textract":
        return TextractOCREngine(region=region, timeout_seconds=timeout_seconds)
    raise ValueError(
        f"Unknown OCR backend: '{backend}'. Valid options: 'tesseract', 'textract'"
    )


# ---------------------------------------------------------------------------
# PyMuPDF helpers (blocking, call from an executor)
# ---------------------------------------------------------------------------

def count_pages(pdf_bytes: bytes) -> int:
    import fitz

    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        if doc.needs_pass:
            raise PermissionError("PDF is password protected (encrypted)")
        return doc.page_count


def render_pages(pdf_bytes: bytes, page_numbers: list[int], dpi: int) -> list[tuple[int, bytes]]:
    """Render the given 1-based pages to PNG bytes at `dpi`."""
    import fitz

    images: list[tuple[int, bytes]] = []
    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        for page_number in page_numbers:
            pixmap = doc[page_number - 1].get_pixmap(dpi=dpi)
            images.append((page_number, pixmap.tobytes("png")))
    return images


# ---------------------------------------------------------------------------
# Abstract strategy
# ---------------------------------------------------------------------------

class BaseTextExtractor(ABC):
    """
    Abstract base for text extraction strategies.

    All implementations:
      - Accept raw PDF bytes (never a file path)
      - Return ExtractionStrategyResult
      - Never raise: failures are recorded on result.error so the caller
        can classify them and fall through to the next strategy
    """

    @property
    @abstractmethod
    def strategy_name(self) -> str:
        """Unique name for logging."""

    @abstractmethod
    async def extract(self, pdf_bytes: bytes) -> ExtractionStrategyResult:
        """Extract text from a PDF document provided as raw bytes."""


# ---------------------------------------------------------------------------
# Strategy 1: PyMuPDF digital text layer
# ---------------------------------------------------------------------------

class PyMuPDFExtractor(BaseTextExtractor):
    """
    Reads the native PDF text layer with PyMuPDF.

    Limitations:
      - Cannot read image-only pages (returns empty text for those)
      - Multi-column layouts may come back in column order
    """

    @property
    def strategy_name(self) -> str:
        return "digital"

    async def extract(self, pdf_bytes: bytes) -> ExtractionStrategyResult:
        loop = asyncio.get_running_loop()
        t0 = time.monotonic()

        try:
            result = await loop.run_in_executor(None, self._extract_sync, pdf_bytes)
        except Exception as exc:
            logger.warning("PyMuPDF extraction failed: %s", exc)
            result = _empty_result(self.strategy_name, used_ocr=False, error=exc)

        result.elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "PyMuPDF | pages=%d total_chars=%d elapsed_ms=%.0f error=%s",
            result.page_count, result.total_chars, result.elapsed_ms,
            type(result.error).__name__ if result.error else None,
        )
        return result

    def _extract_sync(self, pdf_bytes: bytes) -> ExtractionStrategyResult:
        import fitz

        pages: list[PageText] = []

        with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
            if doc.needs_pass:
                raise PermissionError("PDF is password protected (encrypted)")
            page_count = doc.page_count
            for page_num, page in enumerate(doc, start=1):
                raw = page.get_text("text") or ""
                pages.append(PageText(
                    page_number=page_num,
                    text=raw.strip(),
                    confidence=-1.0,
                    extraction_method=self.strategy_name,
                ))

        total = sum(len(p.text) for p in pages)
        return ExtractionStrategyResult(
            pages=pages, total_chars=total,
            strategy_name=self.strategy_name,
            elapsed_ms=0.0, used_ocr=False,
            page_count=page_count,
        )


# ---------------------------------------------------------------------------
# Strategy 2: rasterize + OCR
# ---------------------------------------------------------------------------

class OCRExtractor(BaseTextExtractor):
    """
    Page-image OCR using a pluggable engine.

    Pages are rendered and recognized in batches of the tier's batch_size;
    within a batch, recognition calls run concurrently.
    """

    def __init__(
        self,
        engine:   BaseOCREngine,
        tier:     QualityTier = QualityTier.BALANCED,
        language: str = "eng",
    ) -> None:
        self._engine   = engine
        self._tier     = QualityTier(tier)
        self._language = language

    @property
    def strategy_name(self) -> str:
        return "ocr"

    @property
    def profile(self) -> TierProfile:
        return TIER_PROFILES[self._tier]

    async def extract(self, pdf_bytes: bytes, page_count: int | None = None) -> ExtractionStrategyResult:
        loop = asyncio.get_running_loop()
        t0 = time.monotonic()

        try:
            if not page_count:
                page_count = await loop.run_in_executor(None, count_pages, pdf_bytes)
            result = await self._ocr_pages(pdf_bytes, page_count)
        except Exception as exc:
            logger.error("OCR extraction failed: %s", exc, exc_info=True)
            result = _empty_result(self.strategy_name, used_ocr=True, error=exc)

        result.elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "OCR | engine=%s tier=%s pages=%d/%d failed=%d total_chars=%d "
            "avg_conf=%.2f elapsed_ms=%.0f",
            self._engine.name, self._tier.value, len(result.pages), result.page_count,
            len(result.failed_pages), result.total_chars,
            result.avg_confidence, result.elapsed_ms,
        )
        return result

    async def _ocr_pages(self, pdf_bytes: bytes, page_count: int) -> ExtractionStrategyResult:
        loop    = asyncio.get_running_loop()
        profile = self.profile
        method  = f"ocr:{self._engine.name}"

        pages:  list[PageText] = []
        failed: list[int] = []

        for start in range(1, page_count + 1, profile.batch_size):
            numbers = list(range(start, min(start + profile.batch_size, page_count + 1)))
            images  = await loop.run_in_executor(None, render_pages, pdf_bytes, numbers, profile.dpi)

            outcomes = await asyncio.gather(
                *(self._engine.recognize(image, self._language) for _, image in images),
                return_exceptions=True,
            )

            for (page_number, _), outcome in zip(images, outcomes):
                if isinstance(outcome, BaseException):
                    logger.warning("OCR page failed | page=%d error=%s", page_number, outcome)
                    failed.append(page_number)
                    continue

                text = outcome.text.strip()
                if len(text) < MIN_OCR_PAGE_CHARS:
                    logger.debug("OCR page dropped | page=%d chars=%d", page_number, len(text))
                    continue

                pages.append(PageText(
                    page_number=page_number,
                    text=text,
                    confidence=round(outcome.confidence / 100.0, 3),
                    extraction_method=method,
                ))

        error = None
        if not pages and failed:
            error = RuntimeError(f"OCR failed on all {len(failed)} attempted pages")

        return ExtractionStrategyResult(
            pages=pages,
            total_chars=sum(len(p.text) for p in pages),
            strategy_name=self.strategy_name,
            elapsed_ms=0.0,
            used_ocr=True,
            page_count=page_count,
            error=error,
            failed_pages=failed,
        )
