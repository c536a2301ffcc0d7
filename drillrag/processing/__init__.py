"""
Document Processing Package
════════════════════════════

Post-download ingestion pipeline:

  Text Extraction → Domain Chunking → Embedding → Vector Upsert

Modules
───────
  ocr.py        Extraction strategies (PyMuPDF text layer, page-rendered OCR)
  quality.py    Heuristic 0–1 text quality score
  extractor.py  Hybrid digital/OCR cascade with merge rules
  domain.py     Drilling-report tables: separators, content types, metrics
  chunking.py   Domain-aware chunker with inline metric enrichment
  embeddings.py Bounded-concurrency embed + upsert with per-chunk retry
"""

from drillrag.processing.chunking import Chunk, ChunkingOptions, DrillingReportChunker
from drillrag.processing.embeddings import EmbeddingPipeline, IndexedDocument, IndexingReport
from drillrag.processing.extractor import ExtractionMethod, ExtractionResult, HybridTextExtractor

__all__ = [
    "Chunk",
    "ChunkingOptions",
    "DrillingReportChunker",
    "EmbeddingPipeline",
    "IndexedDocument",
    "IndexingReport",
    "ExtractionMethod",
    "ExtractionResult",
    "HybridTextExtractor",
]
