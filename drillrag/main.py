"""
Application wiring — Entry Point

Builds the ingestion and answer services from one Settings object and
manages their lifetime:

  configure_logging     root logger level / format
  PipelineContext       caches, rate limiter, retry policy (sweepers started)
  S3BlobStore           source PDFs
  HybridTextExtractor   digital text layer + configured OCR engine
  DrillingReportChunker domain-aware splitting
  EmbeddingPipeline     OpenAI embeddings → configured vector store
  SqlMetadataStore      processed_documents / query_records
  DocumentProcessor     ingestion state machine
  AnswerService         question → retrieval → completion

Usage:
    async with lifespan() as app:
        outcome = await app.processor.process(ProcessingRequest(key, "drilling_reports", user_id))
        answer  = await app.answers.answer("average ROP across all runs?", user_id, "drilling_reports")
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from drillrag.cache.context import PipelineContext
from drillrag.core.config import Settings, settings as default_settings
from drillrag.core.logging_setup import configure_logging
from drillrag.db.session import check_db_health, create_tables, dispose_engine
from drillrag.llm.providers import OpenAICompletionProvider, OpenAIEmbeddingProvider
from drillrag.processing.chunking import ChunkingOptions, DrillingReportChunker
from drillrag.processing.embeddings import EmbeddingPipeline
from drillrag.processing.extractor import HybridTextExtractor
from drillrag.rag.pipeline import AnswerService
from drillrag.rag.retriever import SearchEngine
from drillrag.services.metadata import SqlMetadataStore
from drillrag.services.orchestrator import DocumentProcessor
from drillrag.storage.s3 import S3BlobStore
from drillrag.vectorstore.base import VectorStoreBase
from drillrag.vectorstore.factory import get_vector_store

logger = logging.getLogger(__name__)


@dataclass
class DrillRAG:
    """The assembled services plus the collaborators that need closing."""
    settings:     Settings
    context:      PipelineContext
    vector_store: VectorStoreBase
    processor:    DocumentProcessor
    answers:      AnswerService

    def metrics(self) -> dict:
        return self.processor.metrics.snapshot(self.context)


def build_app(
    settings:     Settings | None = None,
    vector_store: VectorStoreBase | None = None,
) -> DrillRAG:
    """Construct every service. Nothing here opens a connection."""
    cfg     = settings or default_settings
    context = PipelineContext.from_settings(cfg)
    store   = vector_store or get_vector_store(cfg)
    metadata = SqlMetadataStore()

    embedder = OpenAIEmbeddingProvider(context, cfg)
    processor = DocumentProcessor(
        blob_store=S3BlobStore(cfg),
        extractor=HybridTextExtractor(settings=cfg),
        chunker=DrillingReportChunker(ChunkingOptions.from_settings(cfg)),
        indexer=EmbeddingPipeline(embedder, store, context, cfg),
        metadata=metadata,
        context=context,
        settings=cfg,
    )
    answers = AnswerService(
        embedder=embedder,
        completer=OpenAICompletionProvider(cfg),
        search_engine=SearchEngine(store, context, settings=cfg),
        metadata=metadata,
        context=context,
        settings=cfg,
    )
    return DrillRAG(
        settings=cfg,
        context=context,
        vector_store=store,
        processor=processor,
        answers=answers,
    )


@asynccontextmanager
async def lifespan(
    settings:      Settings | None = None,
    create_schema: bool = False,
) -> AsyncIterator[DrillRAG]:
    """
    On enter: configure logging, validate DB connectivity, ensure the default
    collection exists, start cache sweepers.
    On exit: stop sweepers, close the vector store client, dispose the pool.
    """
    cfg = settings or default_settings
    configure_logging(cfg)
    logger.info(
        "Starting drillrag | env=%s vector_store=%s ocr=%s",
        cfg.app_env, cfg.vector_store_backend, cfg.ocr_backend,
    )

    if create_schema:
        await create_tables()

    db_health = await check_db_health()
    if db_health["status"] != "ok":
        logger.critical("Database health check failed at startup: %s", db_health)
        raise RuntimeError(f"DB unavailable: {db_health}")

    app = build_app(cfg)
    await app.vector_store.ensure_collection(cfg.default_collection, cfg.embedding_dimensions)
    await app.context.start()
    logger.info("S3 bucket: %s | collection: %s", cfg.s3_bucket, cfg.default_collection)

    try:
        yield app
    finally:
        logger.info("Shutting down drillrag | metrics=%s", app.metrics())
        await app.context.close()
        await app.vector_store.close()
        await dispose_engine()
