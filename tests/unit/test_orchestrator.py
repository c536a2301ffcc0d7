"""
Unit Tests — DocumentProcessor, SourceArtifact, ProcessingMetrics
══════════════════════════════════════════════════════════════════
Extractor and chunker are mocks; the EmbeddingPipeline is real and runs
against the fake embedder and the mock vector store.

Coverage targets:
  ✅ Happy path                    → done, metadata saved, source kept
  ✅ Chunk-stage failure           → failed(chunk), source deleted exactly once
  ✅ Invalid request               → failed(init), source still deleted
  ✅ Oversized download            → file_too_large, no download retry
  ✅ Missing %PDF- header          → validation_error at download
  ✅ Extraction failure            → catalog type + extractor suggestions
  ✅ Embedding below threshold     → embedding_error with chunk errors
  ✅ Metadata save retried; exhausted → metadata_error
  ✅ Delete failure is logged, not raised
  ✅ Failed embed / save stages purge the key's vectors; purge failure is logged
  ✅ Extraction cached per key + bytes, chunks cached per text digest
  ✅ Metrics: counts, EMA, stage errors, deletions
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from drillrag.core.exceptions import (
    ChunkingFailed,
    ExtractionErrorType,
    NotFoundError,
    TransientServiceError,
    ValidationError,
)
from drillrag.models.records import ProcessedDocument
from drillrag.processing.chunking import Chunk
from drillrag.processing.embeddings import EmbeddingPipeline
from drillrag.processing.extractor import (
    ExtractionMethod,
    ExtractionResult,
    extraction_failure,
)
from drillrag.services.orchestrator import (
    ERROR_CATALOG,
    DocumentProcessor,
    ProcessingMetrics,
    ProcessingRequest,
    SourceArtifact,
    classify_processing_error,
)
from tests.conftest import DRILLING_REPORT_TEXT, FakeEmbeddingProvider

KEY        = "uploads/user-1/bha2.pdf"
COLLECTION = "drilling_reports"


async def _no_sleep(_delay: float) -> None:
    return None


def _chunks(n: int) -> list[Chunk]:
    return [
        Chunk(
            content=f"DRILLING REPORT DATA: segment {i} of the motor run",
            body=f"segment {i} of the motor run",
            content_type="DRILLING_GENERAL",
            inline_metrics=(),
            index=i,
            total_count=n,
        )
        for i in range(n)
    ]


def _extraction() -> ExtractionResult:
    return ExtractionResult(
        text=DRILLING_REPORT_TEXT,
        method=ExtractionMethod.DIGITAL,
        quality_score=0.92,
        metadata={"page_count": 1},
    )


@pytest.fixture
def extractor():
    mock = MagicMock()
    mock.extract = AsyncMock(return_value=_extraction())
    return mock


@pytest.fixture
def chunker():
    mock = MagicMock()
    mock.chunk = MagicMock(return_value=_chunks(4))
    return mock


@pytest.fixture
def make_processor(mock_blob_store, extractor, chunker, mock_vector_store, mock_metadata, context, test_settings):
    def _build(embedder: FakeEmbeddingProvider | None = None) -> DocumentProcessor:
        indexer = EmbeddingPipeline(embedder or FakeEmbeddingProvider(), mock_vector_store, context, test_settings)
        return DocumentProcessor(
            mock_blob_store, extractor, chunker, indexer, mock_metadata, context,
            settings=test_settings, sleep=_no_sleep,
        )
    return _build


def _request(**overrides) -> ProcessingRequest:
    fields = {"key": KEY, "collection": COLLECTION, "user_id": "user-1"}
    fields.update(overrides)
    return ProcessingRequest(**fields)


# ─────────────────────────────────────────────────────────────────────────────
# Happy path
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.orchestrator
class TestProcessSuccess:

    async def test_document_reaches_done(self, make_processor, mock_blob_store, mock_metadata):
        outcome = await make_processor().process(_request())

        assert outcome.succeeded
        assert outcome.state_history == ["init", "download", "extract", "chunk", "embed", "save", "done"]
        assert outcome.total_chunks == 4
        assert outcome.successful_chunks == 4
        assert outcome.success_rate == 1.0
        assert outcome.extraction_method == "digital"
        assert outcome.text_length == len(DRILLING_REPORT_TEXT)
        assert outcome.error_type is None
        mock_blob_store.delete.assert_not_awaited()

    async def test_metadata_record_fields(self, make_processor, mock_metadata):
        await make_processor().process(_request())

        record = mock_metadata.save_processed_document.await_args.args[0]
        assert isinstance(record, ProcessedDocument)
        assert record.key == KEY
        assert record.file_name == "bha2.pdf"
        assert record.collection_name == COLLECTION
        assert record.successful_chunks == 4
        assert record.quality_score == 0.92

    async def test_display_name_override(self, make_processor, mock_vector_store):
        await make_processor().process(_request(file_name="BHA 2 Motor Report.pdf"))
        _, records = mock_vector_store.upsert.await_args_list[0].args
        assert records[0].payload["name"] == "BHA 2 Motor Report.pdf"


# ─────────────────────────────────────────────────────────────────────────────
# Failures & cleanup
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.orchestrator
class TestProcessFailures:

    async def test_chunk_failure_deletes_source_once(self, make_processor, chunker, mock_blob_store, mock_metadata):
        chunker.chunk.side_effect = ChunkingFailed("Text must be a non-empty string")

        outcome = await make_processor().process(_request())

        assert not outcome.succeeded
        assert outcome.stage == "chunk"
        assert outcome.state_history[-1] == "failed"
        assert outcome.error_type == "chunking_error"
        assert outcome.message == ERROR_CATALOG["chunking_error"][0]
        mock_blob_store.delete.assert_awaited_once_with(KEY)
        mock_metadata.save_processed_document.assert_not_awaited()

    async def test_invalid_request_fails_init_and_deletes(self, make_processor, mock_blob_store):
        outcome = await make_processor().process(_request(collection="bad name!"))

        assert outcome.stage == "init"
        assert outcome.state_history == ["init", "failed"]
        assert outcome.error_type == "validation_error"
        assert "Collection name" in outcome.message
        mock_blob_store.get.assert_not_awaited()
        mock_blob_store.delete.assert_awaited_once_with(KEY)

    async def test_empty_key_skips_delete(self, make_processor, mock_blob_store):
        outcome = await make_processor().process(_request(key=""))
        assert outcome.stage == "init"
        mock_blob_store.delete.assert_not_awaited()

    async def test_oversized_file_is_file_too_large(self, make_processor, mock_blob_store):
        mock_blob_store.get.side_effect = ValidationError("File too large (60.0MB > 50.0MB)")

        outcome = await make_processor().process(_request())

        assert outcome.stage == "download"
        assert outcome.error_type == "file_too_large"
        assert mock_blob_store.get.await_count == 1
        mock_blob_store.delete.assert_awaited_once_with(KEY)

    async def test_missing_object_is_s3_error(self, make_processor, mock_blob_store):
        mock_blob_store.get.side_effect = NotFoundError("Object not found")
        outcome = await make_processor().process(_request())
        assert outcome.error_type == "s3_error"
        assert mock_blob_store.get.await_count == 1

    async def test_transient_download_is_retried(self, make_processor, mock_blob_store, sample_pdf_bytes):
        mock_blob_store.get.side_effect = [TransientServiceError("SlowDown"), sample_pdf_bytes]
        outcome = await make_processor().process(_request())
        assert outcome.succeeded
        assert mock_blob_store.get.await_count == 2

    async def test_non_pdf_bytes_rejected(self, make_processor, mock_blob_store, extractor):
        mock_blob_store.get.return_value = b"PK\x03\x04 not a pdf"

        outcome = await make_processor().process(_request())

        assert outcome.stage == "download"
        assert outcome.error_type == "validation_error"
        extractor.extract.assert_not_awaited()

    async def test_extraction_failure_carries_suggestions(self, make_processor, extractor, mock_blob_store):
        extractor.extract.side_effect = extraction_failure(ExtractionErrorType.IMAGE_BASED)

        outcome = await make_processor().process(_request())

        assert outcome.stage == "extract"
        assert outcome.error_type == "image_based_pdf"
        assert "Convert the PDF to a text-based format" in outcome.suggestions
        mock_blob_store.delete.assert_awaited_once_with(KEY)

    async def test_embedding_below_threshold(self, make_processor, chunker, mock_metadata, mock_vector_store):
        chunks = _chunks(4)
        chunker.chunk.return_value = chunks
        embedder = FakeEmbeddingProvider(fail_on={
            c.content: ValidationError("input rejected") for c in chunks[:3]
        })

        outcome = await make_processor(embedder).process(_request())

        assert outcome.stage == "embed"
        assert outcome.error_type == "embedding_error"
        assert [e["chunk_index"] for e in outcome.chunk_errors] == [0, 1, 2]
        mock_metadata.save_processed_document.assert_not_awaited()
        # the one chunk that made it in is removed again
        mock_vector_store.delete_by_key.assert_awaited_once_with(COLLECTION, KEY)

    async def test_embedding_at_threshold_is_accepted(self, make_processor, chunker, mock_vector_store):
        chunks = _chunks(4)
        chunker.chunk.return_value = chunks
        embedder = FakeEmbeddingProvider(fail_on={
            c.content: ValidationError("input rejected") for c in chunks[:2]
        })

        outcome = await make_processor(embedder).process(_request())

        assert outcome.succeeded
        assert outcome.success_rate == 0.5
        assert len(outcome.chunk_errors) == 2
        mock_vector_store.delete_by_key.assert_not_awaited()

    async def test_metadata_save_retried_then_fails(
        self, make_processor, mock_metadata, mock_blob_store, mock_vector_store, context,
    ):
        mock_metadata.save_processed_document.side_effect = TransientServiceError("db unavailable")

        outcome = await make_processor().process(_request())

        assert outcome.stage == "save"
        assert outcome.error_type == "metadata_error"
        assert mock_metadata.save_processed_document.await_count == context.retry_policy.attempts
        records = [c.args[0] for c in mock_metadata.save_processed_document.await_args_list]
        assert len({id(r) for r in records}) == len(records)
        mock_blob_store.delete.assert_awaited_once_with(KEY)
        mock_vector_store.delete_by_key.assert_awaited_once_with(COLLECTION, KEY)

    async def test_chunk_failure_leaves_vectors_alone(self, make_processor, chunker, mock_vector_store):
        chunker.chunk.side_effect = ChunkingFailed("no text")
        await make_processor().process(_request())
        mock_vector_store.delete_by_key.assert_not_awaited()

    async def test_purge_failure_does_not_mask_outcome(self, make_processor, mock_metadata, mock_vector_store):
        mock_metadata.save_processed_document.side_effect = TransientServiceError("db unavailable")
        mock_vector_store.delete_by_key.side_effect = TransientServiceError("qdrant down")

        processor = make_processor()
        outcome = await processor.process(_request())

        assert outcome.stage == "save"
        assert outcome.error_type == "metadata_error"
        assert processor.metrics.vectors_purged == 0

    async def test_delete_failure_does_not_mask_outcome(self, make_processor, chunker, mock_blob_store):
        chunker.chunk.side_effect = ChunkingFailed("no text")
        mock_blob_store.delete.side_effect = TransientServiceError("delete refused")

        outcome = await make_processor().process(_request())

        assert outcome.error_type == "chunking_error"
        mock_blob_store.delete.assert_awaited_once_with(KEY)


# ─────────────────────────────────────────────────────────────────────────────
# Extraction & chunk caches
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.orchestrator
class TestStageCaches:

    async def test_reprocessing_same_object_skips_extract_and_chunk(
        self, make_processor, extractor, chunker, context,
    ):
        processor = make_processor()

        first  = await processor.process(_request())
        second = await processor.process(_request())

        assert first.succeeded and second.succeeded
        assert second.total_chunks == first.total_chunks
        extractor.extract.assert_awaited_once()
        chunker.chunk.assert_called_once()
        assert context.extraction_cache.hits == 1
        assert context.chunk_cache.hits == 1

    async def test_changed_bytes_under_same_key_are_extracted_again(
        self, make_processor, extractor, mock_blob_store, sample_pdf_bytes,
    ):
        processor = make_processor()
        await processor.process(_request())
        mock_blob_store.get.return_value = sample_pdf_bytes + b"\n% revised upload\n"
        await processor.process(_request())

        assert extractor.extract.await_count == 2

    async def test_identical_text_under_new_key_reuses_chunks(self, make_processor, extractor, chunker):
        processor = make_processor()
        await processor.process(_request())
        await processor.process(_request(key="uploads/user-1/bha2-copy.pdf"))

        assert extractor.extract.await_count == 2
        chunker.chunk.assert_called_once()

    async def test_failed_chunking_is_not_cached(self, make_processor, chunker):
        chunker.chunk.side_effect = [ChunkingFailed("no text"), _chunks(4)]
        processor = make_processor()

        failed  = await processor.process(_request())
        retried = await processor.process(_request())

        assert failed.stage == "chunk"
        assert retried.succeeded
        assert chunker.chunk.call_count == 2


# ─────────────────────────────────────────────────────────────────────────────
# SourceArtifact
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.orchestrator
class TestSourceArtifact:

    async def test_kept_artifact_is_not_deleted(self, mock_blob_store):
        async with SourceArtifact(mock_blob_store, KEY) as artifact:
            artifact.keep()
        mock_blob_store.delete.assert_not_awaited()

    async def test_exception_deletes_and_propagates(self, mock_blob_store):
        metrics = ProcessingMetrics()
        with pytest.raises(RuntimeError):
            async with SourceArtifact(mock_blob_store, KEY, metrics) as artifact:
                raise RuntimeError("boom")
        assert artifact.deleted
        assert metrics.documents_deleted == 1
        mock_blob_store.delete.assert_awaited_once_with(KEY)


# ─────────────────────────────────────────────────────────────────────────────
# Metrics & classification
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.unit
@pytest.mark.orchestrator
class TestProcessingMetrics:

    def test_ema_of_processing_time(self):
        metrics = ProcessingMetrics()
        metrics.record_success(1000, chunks=5, text_chars=100)
        metrics.record_success(2000, chunks=5, text_chars=100)
        assert metrics.avg_processing_time_ms == pytest.approx(1100.0)
        assert metrics.total_chunks == 10

    async def test_snapshot_after_mixed_runs(self, make_processor, extractor, chunker, context):
        processor = make_processor()
        await processor.process(_request())
        extractor.extract.return_value = ExtractionResult(
            text="Motor run 3 notes: no stalls, pulled at 9,800 ft.",
            method=ExtractionMethod.DIGITAL,
            quality_score=0.9,
        )
        chunker.chunk.side_effect = ChunkingFailed("no text")
        await processor.process(_request(key="uploads/user-1/bha3.pdf"))

        snapshot = processor.metrics.snapshot(context)

        assert snapshot["documents_processed"] == 1
        assert snapshot["documents_failed"] == 1
        assert snapshot["documents_deleted"] == 1
        assert snapshot["success_rate"] == 0.5
        assert snapshot["stage_errors"] == {"chunk": 1}
        assert "embedding_cache" in snapshot["caches"]
        assert snapshot["vectors_purged"] == 0
        assert snapshot["caches"]["extraction_cache"]["size"] == 2

    @pytest.mark.parametrize("stage, exc, expected", [
        ("download", NotFoundError("missing"), "s3_error"),
        ("download", TransientServiceError("503"), "s3_error"),
        ("download", ValidationError("File too large (60MB)"), "file_too_large"),
        ("extract", extraction_failure(ExtractionErrorType.PROTECTED), "protected_pdf"),
        ("extract", extraction_failure(ExtractionErrorType.RESOURCE), "unknown_error"),
        ("extract", RuntimeError("odd"), "unknown_error"),
        ("save", TransientServiceError("db"), "metadata_error"),
    ])
    def test_classification(self, stage, exc, expected):
        assert classify_processing_error(stage, exc) == expected
