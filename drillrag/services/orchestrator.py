"""
Document Processing Orchestrator

Drives one uploaded PDF through the ingestion pipeline:

  init      validate key / collection / user
  download  fetch bytes from the blob store (retried), check %PDF- header
  extract   HybridTextExtractor  → ExtractionResult
  chunk     DrillingReportChunker → list[Chunk]
  embed     EmbeddingPipeline     → IndexingReport, must meet
            settings.embedding_success_threshold
  save      ProcessedDocument row via the metadata store (retried)
  done

Any stage failure moves the document to failed(<stage>). The source object
lives inside a SourceArtifact scope, which deletes it on every exit that
did not reach `done`, including validation failures in `init`. A failure in
`embed` or `save` also purges the points already written for the key, so a
failed document leaves nothing searchable behind.

Extraction results are cached per key + content digest and chunk lists per
text digest (PipelineContext.extraction_cache / chunk_cache). Failures are
never cached.

Every failure returns a ProcessingOutcome carrying the stage, a classified
error type, a user-facing message and remediation suggestions. process()
never raises for document-level failures.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import posixpath
import time
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable

from drillrag.cache.context import PipelineContext
from drillrag.core.config import Settings, settings as default_settings
from drillrag.core.exceptions import (
    AuthorizationError,
    ExtractionFailed,
    NotFoundError,
    PipelineError,
    StageFailed,
    ValidationError,
)
from drillrag.core.retry import retry_async
from drillrag.models.records import ProcessedDocument
from drillrag.processing.chunking import Chunk, DrillingReportChunker
from drillrag.processing.embeddings import EmbeddingPipeline, IndexedDocument, IndexingReport
from drillrag.processing.extractor import ExtractionResult, HybridTextExtractor
from drillrag.services.metadata import MetadataStore
from drillrag.services.validation import validate_pdf_bytes, validate_processing_request
from drillrag.storage.s3 import S3BlobStore

logger = logging.getLogger(__name__)

METRICS_EMA_ALPHA = 0.1


def _digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class PipelineState(str, Enum):
    INIT     = "init"
    DOWNLOAD = "download"
    EXTRACT  = "extract"
    CHUNK    = "chunk"
    EMBED    = "embed"
    SAVE     = "save"
    DONE     = "done"
    FAILED   = "failed"


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------

ERROR_CATALOG: dict[str, tuple[str, list[str]]] = {
    "image_based_pdf": (
        "This PDF appears to be image-based and cannot be processed.",
        ["Convert the PDF to a text-based format", "Ensure the PDF contains selectable text"],
    ),
    "corrupted_pdf": (
        "The PDF file appears to be corrupted or invalid.",
        ["Try re-saving or re-creating the PDF", "Upload a different PDF file"],
    ),
    "protected_pdf": (
        "The PDF is password protected.",
        ["Remove the password protection", "Upload an unprotected version"],
    ),
    "file_too_large": (
        "The file exceeds the maximum supported size.",
        ["Compress the PDF", "Split the document into smaller files"],
    ),
    "embedding_error": (
        "The document could not be indexed for search.",
        ["Try again later", "Contact support if the problem persists"],
    ),
    "s3_error": (
        "The uploaded file could not be retrieved from storage.",
        ["Upload the file again", "Try again later"],
    ),
    "chunking_error": (
        "The document text could not be split for indexing.",
        ["Check that the PDF contains readable text", "Upload a different PDF file"],
    ),
    "validation_error": (
        "The processing request is invalid.",
        ["Upload a PDF file", "Use a collection name with letters, digits, '_' or '-'"],
    ),
    "metadata_error": (
        "The document was indexed but its record could not be saved.",
        ["Try again later"],
    ),
    "unknown_error": (
        "An unexpected error occurred while processing the document.",
        ["Try again later", "Contact support if the problem persists"],
    ),
}

_STAGE_ERROR_TYPES: dict[str, str] = {
    PipelineState.DOWNLOAD.value: "s3_error",
    PipelineState.CHUNK.value:    "chunking_error",
    PipelineState.EMBED.value:    "embedding_error",
    PipelineState.SAVE.value:     "metadata_error",
}


def classify_processing_error(stage: str, exc: BaseException) -> str:
    """Map a stage failure onto one ERROR_CATALOG key."""
    if isinstance(exc, ExtractionFailed):
        return exc.error_type.value if exc.error_type.value in ERROR_CATALOG else "unknown_error"
    if isinstance(exc, ValidationError):
        if "too large" in exc.message.lower():
            return "file_too_large"
        return "validation_error"
    if isinstance(exc, (NotFoundError, AuthorizationError)) and stage == PipelineState.DOWNLOAD.value:
        return "s3_error"
    return _STAGE_ERROR_TYPES.get(stage, "unknown_error")


# ---------------------------------------------------------------------------
# Request / outcome
# ---------------------------------------------------------------------------

@dataclass
class ProcessingRequest:
    key:        str
    collection: str
    user_id:    str
    file_name:  str | None = None    # defaults to the key's basename

    @property
    def display_name(self) -> str:
        return self.file_name or posixpath.basename(self.key or "")


@dataclass
class ProcessingOutcome:
    status:             str                   # "done" | "failed"
    key:                str
    stage:              str                   # last stage entered
    state_history:      list[str]
    total_chunks:       int   = 0
    successful_chunks:  int   = 0
    success_rate:       float = 0.0
    text_length:        int   = 0
    extraction_method:  str | None = None
    quality_score:      float | None = None
    processing_time_ms: int   = 0
    error_type:         str | None = None
    message:            str | None = None
    suggestions:        list[str] = field(default_factory=list)
    chunk_errors:       list[dict] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == PipelineState.DONE.value


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

@dataclass
class ProcessingMetrics:
    documents_processed:    int   = 0
    documents_failed:       int   = 0
    documents_deleted:      int   = 0
    vectors_purged:         int   = 0
    avg_processing_time_ms: float = 0.0
    total_chunks:           int   = 0
    total_text_chars:       int   = 0
    stage_errors:           Counter = field(default_factory=Counter)

    def record_success(self, elapsed_ms: float, chunks: int, text_chars: int) -> None:
        self.documents_processed += 1
        self.total_chunks        += chunks
        self.total_text_chars    += text_chars
        if self.documents_processed == 1:
            self.avg_processing_time_ms = elapsed_ms
        else:
            self.avg_processing_time_ms = (
                METRICS_EMA_ALPHA * elapsed_ms
                + (1 - METRICS_EMA_ALPHA) * self.avg_processing_time_ms
            )

    def record_failure(self, stage: str) -> None:
        self.documents_failed += 1
        self.stage_errors[stage] += 1

    def record_deletion(self) -> None:
        self.documents_deleted += 1

    def record_purge(self) -> None:
        self.vectors_purged += 1

    def snapshot(self, context: PipelineContext | None = None) -> dict:
        total = self.documents_processed + self.documents_failed
        data = {
            "documents_processed":    self.documents_processed,
            "documents_failed":       self.documents_failed,
            "documents_deleted":      self.documents_deleted,
            "vectors_purged":         self.vectors_purged,
            "success_rate":           round(self.documents_processed / total, 4) if total else 0.0,
            "avg_processing_time_ms": round(self.avg_processing_time_ms, 1),
            "total_chunks":           self.total_chunks,
            "total_text_chars":       self.total_text_chars,
            "stage_errors":           dict(self.stage_errors),
        }
        if context is not None:
            data["caches"] = context.stats()
        return data


# ---------------------------------------------------------------------------
# Source cleanup scope
# ---------------------------------------------------------------------------

class SourceArtifact:
    """
    Owns the uploaded object for the duration of one processing run.

    Usage:
        async with SourceArtifact(blob_store, key) as artifact:
            ...                      # any exception → object deleted
            artifact.keep()          # reached `done` → object kept

    Deletion happens at most once. A failed delete is logged and does not
    replace the error that caused the cleanup.
    """

    def __init__(
        self,
        blob_store: S3BlobStore,
        key:        str,
        metrics:    ProcessingMetrics | None = None,
    ) -> None:
        self._blob_store = blob_store
        self._key        = key
        self._metrics    = metrics
        self._kept       = False
        self.deleted     = False

    def keep(self) -> None:
        self._kept = True

    async def __aenter__(self) -> "SourceArtifact":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if self._kept or self.deleted or not self._key:
            return False
        try:
            await self._blob_store.delete(self._key)
        except Exception as delete_exc:
            logger.error(
                "SourceArtifact | delete failed key=%s error=%s", self._key, delete_exc,
                exc_info=True,
            )
            return False
        self.deleted = True
        if self._metrics is not None:
            self._metrics.record_deletion()
        logger.info("SourceArtifact | deleted key=%s reason=%s", self._key,
                    type(exc).__name__ if exc else "not_kept")
        return False


# ---------------------------------------------------------------------------
# Processor
# ---------------------------------------------------------------------------

class _StateTracker:
    def __init__(self) -> None:
        self.history: list[str] = [PipelineState.INIT.value]

    @property
    def current(self) -> str:
        return self.history[-1]

    def enter(self, state: PipelineState) -> None:
        self.history.append(state.value)


@dataclass
class _RunResult:
    extraction: ExtractionResult
    chunks:     list[Chunk]
    report:     IndexingReport


class DocumentProcessor:
    """
    Usage:
        processor = DocumentProcessor(blob_store, extractor, chunker, indexer, metadata, context)
        outcome   = await processor.process(ProcessingRequest(key, "drilling_reports", user_id))
    """

    def __init__(
        self,
        blob_store: S3BlobStore,
        extractor:  HybridTextExtractor,
        chunker:    DrillingReportChunker,
        indexer:    EmbeddingPipeline,
        metadata:   MetadataStore,
        context:    PipelineContext,
        settings:   Settings | None = None,
        metrics:    ProcessingMetrics | None = None,
        sleep:      Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        cfg = settings or default_settings
        self._blob_store = blob_store
        self._extractor  = extractor
        self._chunker    = chunker
        self._indexer    = indexer
        self._metadata   = metadata
        self._context    = context
        self._threshold  = cfg.embedding_success_threshold
        self._sleep      = sleep
        self.metrics     = metrics or ProcessingMetrics()

    async def process(self, request: ProcessingRequest) -> ProcessingOutcome:
        t0 = time.monotonic()
        tracker = _StateTracker()
        logger.info(
            "DocumentProcessor start | key=%s collection=%s user=%s",
            request.key, request.collection, request.user_id,
        )

        try:
            async with SourceArtifact(self._blob_store, request.key, self.metrics) as artifact:
                run = await self._run_stages(request, tracker)
                artifact.keep()
        except StageFailed as exc:
            return self._failed(request, tracker, exc, t0)

        elapsed_ms = int((time.monotonic() - t0) * 1000)
        tracker.enter(PipelineState.DONE)
        self.metrics.record_success(elapsed_ms, run.report.success_count, len(run.extraction.text))

        logger.info(
            "DocumentProcessor done | key=%s method=%s chunks=%d/%d elapsed_ms=%d",
            request.key, run.extraction.method.value, run.report.success_count,
            run.report.total_chunks, elapsed_ms,
        )
        return ProcessingOutcome(
            status=PipelineState.DONE.value,
            key=request.key,
            stage=PipelineState.DONE.value,
            state_history=list(tracker.history),
            total_chunks=run.report.total_chunks,
            successful_chunks=run.report.success_count,
            success_rate=run.report.success_rate,
            text_length=len(run.extraction.text),
            extraction_method=run.extraction.method.value,
            quality_score=run.extraction.quality_score,
            processing_time_ms=elapsed_ms,
            chunk_errors=[e.to_dict() for e in run.report.errors],
        )

    async def _run_stages(self, request: ProcessingRequest, tracker: _StateTracker) -> _RunResult:
        t0 = time.monotonic()
        policy = self._context.retry_policy

        # ── init ─────────────────────────────────────────────────────────
        try:
            validate_processing_request(request.key, request.collection, request.user_id)
        except ValidationError as exc:
            raise StageFailed(PipelineState.INIT.value, exc) from exc

        # ── download ─────────────────────────────────────────────────────
        tracker.enter(PipelineState.DOWNLOAD)
        try:
            data = await retry_async(
                lambda: self._blob_store.get(request.key),
                policy=policy,
                label=f"download key={request.key}",
                sleep=self._sleep,
            )
            validate_pdf_bytes(data, request.key)
        except Exception as exc:
            raise StageFailed(PipelineState.DOWNLOAD.value, exc) from exc

        # ── extract ──────────────────────────────────────────────────────
        tracker.enter(PipelineState.EXTRACT)
        extraction_key = f"{request.key}::{_digest(data)}"
        extraction = self._context.extraction_cache.get(extraction_key)
        if extraction is None:
            try:
                extraction = await self._extractor.extract(data)
            except Exception as exc:
                raise StageFailed(PipelineState.EXTRACT.value, exc) from exc
            self._context.extraction_cache.set(extraction_key, extraction)
        else:
            logger.info("DocumentProcessor | extraction cache hit key=%s", request.key)

        # ── chunk ────────────────────────────────────────────────────────
        tracker.enter(PipelineState.CHUNK)
        chunk_key = _digest(extraction.text.encode("utf-8"))
        cached_chunks = self._context.chunk_cache.get(chunk_key)
        if cached_chunks is None:
            try:
                chunks = self._chunker.chunk(extraction.text)
            except Exception as exc:
                raise StageFailed(PipelineState.CHUNK.value, exc) from exc
            self._context.chunk_cache.set(chunk_key, tuple(chunks))
        else:
            chunks = list(cached_chunks)
            logger.info("DocumentProcessor | chunk cache hit key=%s chunks=%d", request.key, len(chunks))

        # ── embed ────────────────────────────────────────────────────────
        tracker.enter(PipelineState.EMBED)
        document = IndexedDocument(
            key=request.key,
            name=request.display_name,
            user_id=request.user_id,
            extraction_method=extraction.method.value,
            extraction_quality=round(extraction.quality_score, 4),
        )
        try:
            report = await self._indexer.embed_and_index(chunks, request.collection, document)
            if not report.accepted(self._threshold):
                raise PipelineError(
                    f"Embedding success rate {report.success_rate:.2f} "
                    f"below threshold {self._threshold:.2f}",
                    context={
                        "success_count": report.success_count,
                        "total_chunks":  report.total_chunks,
                        "errors":        [e.to_dict() for e in report.errors[:10]],
                    },
                )
        except Exception as exc:
            await self._purge_vectors(request)
            raise StageFailed(PipelineState.EMBED.value, exc) from exc

        # ── save ─────────────────────────────────────────────────────────
        tracker.enter(PipelineState.SAVE)
        try:
            await retry_async(
                lambda: self._metadata.save_processed_document(
                    self._document_record(request, extraction, report, t0)
                ),
                policy=policy,
                label=f"save key={request.key}",
                sleep=self._sleep,
            )
        except Exception as exc:
            await self._purge_vectors(request)
            raise StageFailed(PipelineState.SAVE.value, exc) from exc

        return _RunResult(extraction=extraction, chunks=chunks, report=report)

    async def _purge_vectors(self, request: ProcessingRequest) -> None:
        """Best-effort removal of the points already written for this key."""
        try:
            await self._indexer.purge(request.collection, request.key)
        except Exception as exc:
            logger.error(
                "DocumentProcessor | vector purge failed key=%s collection=%s error=%s",
                request.key, request.collection, exc, exc_info=True,
            )
            return
        self.metrics.record_purge()
        logger.info("DocumentProcessor | purged vectors key=%s collection=%s", request.key, request.collection)

    @staticmethod
    def _document_record(
        request:    ProcessingRequest,
        extraction: ExtractionResult,
        report:     IndexingReport,
        t0:         float,
    ) -> ProcessedDocument:
        # fresh instance per attempt; a rolled-back session may hold the old one
        return ProcessedDocument(
            user_id=request.user_id,
            file_name=request.display_name,
            key=request.key,
            collection_name=request.collection,
            total_chunks=report.total_chunks,
            successful_chunks=report.success_count,
            success_rate=report.success_rate,
            text_length=len(extraction.text),
            extraction_method=extraction.method.value,
            quality_score=extraction.quality_score,
            processing_time_ms=int((time.monotonic() - t0) * 1000),
        )

    def _failed(
        self,
        request: ProcessingRequest,
        tracker: _StateTracker,
        exc:     StageFailed,
        t0:      float,
    ) -> ProcessingOutcome:
        cause      = exc.cause or exc
        error_type = classify_processing_error(exc.stage, cause)
        message, suggestions = ERROR_CATALOG[error_type]
        if isinstance(cause, PipelineError) and cause.suggestions:
            suggestions = cause.suggestions
        if isinstance(cause, (ValidationError, ExtractionFailed)):
            message = cause.message

        tracker.enter(PipelineState.FAILED)
        self.metrics.record_failure(exc.stage)

        chunk_errors = []
        if isinstance(cause, PipelineError):
            chunk_errors = list(cause.context.get("errors", []))

        logger.error(
            "DocumentProcessor failed | key=%s stage=%s error_type=%s error=%s",
            request.key, exc.stage, error_type, cause,
        )
        return ProcessingOutcome(
            status=PipelineState.FAILED.value,
            key=request.key,
            stage=exc.stage,
            state_history=list(tracker.history),
            processing_time_ms=int((time.monotonic() - t0) * 1000),
            error_type=error_type,
            message=message,
            suggestions=list(suggestions),
            chunk_errors=chunk_errors,
        )
