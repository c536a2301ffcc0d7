"""
Pinecone Vector Store — Collection-as-Namespace

Layout:
  One shared Pinecone index (settings.pinecone_index_name). Every logical
  collection maps to a namespace of that index:

    collection "document_embeddings" → namespace "document_embeddings"

  Namespace creation is implicit: Pinecone creates it on first upsert,
  so ensure_collection() only has to provision the shared index.

Differences from Qdrant:
  - score_threshold is applied client-side (Pinecone has no server filter)
  - metadata values must be str / number / bool / list[str]; nested
    payload values are JSON-encoded on write
  - the Pinecone SDK is synchronous; calls run in the default executor
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging

from pinecone import Pinecone, ServerlessSpec
from pinecone.exceptions import PineconeException

from drillrag.core.config import Settings, settings as default_settings
from drillrag.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    TransientServiceError,
    ValidationError,
)
from drillrag.vectorstore.base import ScoredPoint, VectorRecord, VectorStoreBase

logger = logging.getLogger(__name__)

# Pinecone request limits
UPSERT_BATCH_SIZE = 100
MAX_TOP_K         = 100


def translate_pinecone_error(exc: PineconeException, operation: str, collection: str) -> Exception:
    status  = getattr(exc, "status", None) or 0
    context = {"operation": operation, "collection": collection, "status_code": status}
    if status == 404:
        return NotFoundError(f"Pinecone index or namespace '{collection}' not found", cause=exc, context=context)
    if status in (400, 422):
        return ValidationError(f"Pinecone rejected {operation} request", cause=exc, context=context)
    if status in (401, 403):
        return AuthorizationError(f"Pinecone rejected credentials for {operation}", cause=exc, context=context)
    return TransientServiceError(f"Pinecone {operation} failed: {exc}", cause=exc, context=context)


def _sanitize_metadata(payload: dict) -> dict:
    """Coerce a payload into Pinecone's flat metadata value types."""
    metadata: dict = {}
    for key, value in payload.items():
        if value is None:
            continue
        if isinstance(value, (str, bool, int, float)):
            metadata[key] = value
        elif isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
            metadata[key] = list(value)
        else:
            metadata[key] = json.dumps(value, default=str)
    return metadata


class PineconeVectorStore(VectorStoreBase):
    def __init__(
        self,
        client:   Pinecone | None = None,
        settings: Settings | None = None,
    ) -> None:
        cfg = settings or default_settings
        self._settings   = cfg
        self._pc         = client or Pinecone(api_key=cfg.pinecone_api_key)
        self._index_name = cfg.pinecone_index_name
        self._index      = None

    @property
    def backend_name(self) -> str:
        return "pinecone"

    def _get_index(self):
        if self._index is None:
            self._index = self._pc.Index(self._index_name)
        return self._index

    async def _run(self, operation: str, collection: str, fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))
        except PineconeException as exc:
            raise translate_pinecone_error(exc, operation, collection) from exc

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def upsert(self, collection: str, records: list[VectorRecord]) -> int:
        index = self._get_index()
        total = 0
        for i in range(0, len(records), UPSERT_BATCH_SIZE):
            batch = records[i : i + UPSERT_BATCH_SIZE]
            vectors = [
                {"id": rec.id, "values": rec.vector, "metadata": _sanitize_metadata(rec.payload)}
                for rec in batch
            ]
            await self._run("upsert", collection, index.upsert, vectors=vectors, namespace=collection)
            total += len(batch)
            logger.debug(
                "Pinecone upsert | namespace=%s batch=%d total=%d", collection, len(batch), total,
            )
        return total

    async def search(
        self,
        collection:      str,
        vector:          list[float],
        limit:           int,
        score_threshold: float,
        filter:          dict | None = None,
    ) -> list[ScoredPoint]:
        index = self._get_index()
        top_k = min(limit, MAX_TOP_K)

        response = await self._run(
            "search", collection, index.query,
            vector=vector,
            top_k=top_k,
            namespace=collection,
            filter={k: {"$eq": v} for k, v in filter.items()} if filter else None,
            include_metadata=True,
            include_values=False,
        )

        results = [
            ScoredPoint(id=match.id, score=match.score, payload=dict(match.metadata or {}))
            for match in response.matches
            if match.score >= score_threshold
        ]
        logger.debug(
            "Pinecone search | namespace=%s top_k=%d threshold=%.2f results=%d",
            collection, top_k, score_threshold, len(results),
        )
        return results

    # ------------------------------------------------------------------
    # Collection administration
    # ------------------------------------------------------------------

    async def ensure_collection(self, collection: str, dimensions: int) -> bool:
        """Provision the shared index; namespaces need no provisioning."""
        existing = await self._run("ensure_collection", collection, self._pc.list_indexes)
        if self._index_name in [i.name for i in existing]:
            return False

        await self._run(
            "ensure_collection", collection, self._pc.create_index,
            name=self._index_name,
            dimension=dimensions,
            metric="cosine",
            spec=ServerlessSpec(cloud="aws", region=self._settings.aws_region),
        )
        logger.info("Pinecone index created | index=%s dims=%d", self._index_name, dimensions)
        return True

    async def delete_by_key(self, collection: str, key: str) -> None:
        index = self._get_index()
        await self._run(
            "delete", collection, index.delete,
            namespace=collection,
            filter={"key": {"$eq": key}},
        )
        logger.info("Pinecone delete_by_key | namespace=%s key=%s", collection, key)

    async def count(self, collection: str) -> int:
        index = self._get_index()
        stats = await self._run("count", collection, index.describe_index_stats)
        summary = (stats.namespaces or {}).get(collection)
        return summary.vector_count if summary else 0
