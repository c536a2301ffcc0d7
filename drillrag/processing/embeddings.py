"""
Embedding & Indexing Pipeline  —  Per-Chunk Embed + Upsert with Retry
══════════════════════════════════════════════════════════════════════

Design goals:
  • Bounded fan-out: at most max_concurrent_embeddings chunks in flight
    (asyncio.Semaphore), so the provider's rate limit is respected
  • Rate limiting: the provider acquires the shared sliding-window limiter
    before every network request (cache hits are free)
  • Retry: embedding and upsert each go through core.retry.retry_async;
    validation / authorization / not-found errors are never retried
  • Partial success is normal: a chunk failure is recorded as a ChunkError
    and never aborts its siblings
  • Stable ordering: chunk indices are fixed by the chunker before fan-out,
    so payload chunk_index is independent of completion order

Acceptance:
  IndexingReport.accepted(threshold) compares success_rate against
  settings.embedding_success_threshold (default 0.5). Below it the
  orchestrator fails the whole document.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from drillrag.cache.context import PipelineContext
from drillrag.core.config import Settings, settings as default_settings
from drillrag.core.retry import retry_async
from drillrag.llm.providers import EmbeddingProvider
from drillrag.processing.chunking import Chunk
from drillrag.vectorstore.base import VectorRecord, VectorStoreBase

logger = logging.getLogger(__name__)

SECTION_TYPE = "full_text"

STAGE_EMBEDDING = "embedding"
STAGE_UPLOAD    = "upload"


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclass
class IndexedDocument:
    """Document-level fields copied into every chunk payload."""
    key:                str
    name:               str
    user_id:            str
    extraction_method:  str   = ""
    extraction_quality: float = 0.0
    created_at:         str   = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )


@dataclass
class ChunkError:
    chunk_index: int
    stage:       str     # "embedding" | "upload"
    message:     str

    def to_dict(self) -> dict:
        return {"chunk_index": self.chunk_index, "stage": self.stage, "message": self.message}


@dataclass
class IndexingReport:
    """
    success_count : chunks embedded AND written to the vector store
    error_count   : chunks that failed at either stage
    errors        : one ChunkError per failed chunk, ordered by chunk index
    """
    success_count: int
    error_count:   int
    errors:        list[ChunkError]
    total_chunks:  int
    elapsed_ms:    float = 0.0

    @property
    def success_rate(self) -> float:
        if self.total_chunks == 0:
            return 1.0
        return self.success_count / self.total_chunks

    def accepted(self, threshold: float) -> bool:
        return self.success_rate >= threshold


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

class EmbeddingPipeline:
    """
    Usage:
        pipeline = EmbeddingPipeline(provider, store, context)
        report   = await pipeline.embed_and_index(chunks, "document_embeddings", document)
        if not report.accepted(settings.embedding_success_threshold):
            ...
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        store:    VectorStoreBase,
        context:  PipelineContext,
        settings: Settings | None = None,
    ) -> None:
        cfg = settings or default_settings
        self._provider       = provider
        self._store          = store
        self._context        = context
        self._max_concurrent = max(1, cfg.max_concurrent_embeddings)

    async def embed_and_index(
        self,
        chunks:     list[Chunk],
        collection: str,
        document:   IndexedDocument,
    ) -> IndexingReport:
        t0 = time.monotonic()
        if not chunks:
            return IndexingReport(success_count=0, error_count=0, errors=[], total_chunks=0)

        logger.info(
            "EmbeddingPipeline | key=%s collection=%s chunks=%d concurrency=%d",
            document.key, collection, len(chunks), self._max_concurrent,
        )

        semaphore = asyncio.Semaphore(self._max_concurrent)
        outcomes  = await asyncio.gather(*(
            self._process_chunk(chunk, collection, document, semaphore)
            for chunk in chunks
        ))

        errors = sorted((e for e in outcomes if e is not None), key=lambda e: e.chunk_index)
        report = IndexingReport(
            success_count=len(chunks) - len(errors),
            error_count=len(errors),
            errors=errors,
            total_chunks=len(chunks),
            elapsed_ms=(time.monotonic() - t0) * 1000,
        )

        logger.info(
            "EmbeddingPipeline done | key=%s success=%d failed=%d rate=%.2f elapsed_ms=%.0f",
            document.key, report.success_count, report.error_count,
            report.success_rate, report.elapsed_ms,
        )
        return report

    async def purge(self, collection: str, key: str) -> None:
        """Remove every point written for `key` in `collection`."""
        await self._store.delete_by_key(collection, key)

    async def _process_chunk(
        self,
        chunk:      Chunk,
        collection: str,
        document:   IndexedDocument,
        semaphore:  asyncio.Semaphore,
    ) -> ChunkError | None:
        """Embed and upsert one chunk. Returns a ChunkError instead of raising."""
        policy = self._context.retry_policy

        async with semaphore:
            try:
                vector = await retry_async(
                    lambda: self._provider.embed_document(chunk.content),
                    policy=policy,
                    label=f"embed chunk={chunk.index}",
                )
            except Exception as exc:
                logger.error("Chunk embedding failed | index=%d error=%s", chunk.index, exc)
                return ChunkError(chunk.index, STAGE_EMBEDDING, str(exc))

            record = VectorRecord(
                id=str(uuid.uuid4()),
                vector=vector,
                payload=build_payload(chunk, document),
            )

            try:
                await retry_async(
                    lambda: self._store.upsert(collection, [record]),
                    policy=policy,
                    label=f"upsert chunk={chunk.index}",
                )
            except Exception as exc:
                logger.error("Chunk upload failed | index=%d error=%s", chunk.index, exc)
                return ChunkError(chunk.index, STAGE_UPLOAD, str(exc))

        return None


def build_payload(chunk: Chunk, document: IndexedDocument) -> dict:
    return {
        "key":                document.key,
        "name":               document.name,
        "content":            chunk.content,
        "body":               chunk.body,
        "content_type":       chunk.content_type,
        "metrics":            dict(chunk.inline_metrics),
        "section_type":       SECTION_TYPE,
        "chunk_index":        chunk.index,
        "total_chunks":       chunk.total_count,
        "user_id":            document.user_id,
        "created_at":         document.created_at,
        "extraction_method":  document.extraction_method,
        "extraction_quality": document.extraction_quality,
    }
