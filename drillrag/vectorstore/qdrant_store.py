"""
Qdrant Vector Store — default backend

Layout:
  One Qdrant collection per logical collection name (default
  "document_embeddings"), cosine distance, 1536-dim vectors, and a
  KEYWORD payload index on `key` so delete_by_key and key filters do not
  scan the whole collection.

Error translation (qdrant_client → pipeline taxonomy):
  UnexpectedResponse 404          → NotFoundError (collection missing)
  UnexpectedResponse 400/422      → ValidationError (bad vector size, bad filter)
  UnexpectedResponse 401/403      → AuthorizationError
  UnexpectedResponse 429/5xx      → TransientServiceError
  ResponseHandlingException,
  connection / timeout errors     → TransientServiceError
"""

from __future__ import annotations

import logging

from qdrant_client import AsyncQdrantClient, models
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse

from drillrag.core.config import Settings, settings as default_settings
from drillrag.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    PipelineError,
    TransientServiceError,
    ValidationError,
)
from drillrag.vectorstore.base import ScoredPoint, VectorRecord, VectorStoreBase

logger = logging.getLogger(__name__)

KEY_FIELD = "key"


def translate_qdrant_error(exc: Exception, operation: str, collection: str) -> Exception:
    if isinstance(exc, PipelineError):
        return exc

    context = {"operation": operation, "collection": collection}

    if isinstance(exc, UnexpectedResponse):
        status = exc.status_code or 0
        context["status_code"] = status
        if status == 404:
            return NotFoundError(f"Qdrant collection '{collection}' not found", cause=exc, context=context)
        if status in (400, 422):
            return ValidationError(f"Qdrant rejected {operation} request", cause=exc, context=context)
        if status in (401, 403):
            return AuthorizationError(f"Qdrant rejected credentials for {operation}", cause=exc, context=context)
        return TransientServiceError(f"Qdrant {operation} failed ({status})", cause=exc, context=context)

    if isinstance(exc, (ResponseHandlingException, ConnectionError, TimeoutError)):
        return TransientServiceError(f"Qdrant {operation} failed: {exc}", cause=exc, context=context)

    return exc


def build_filter(conditions: dict | None) -> models.Filter | None:
    """Translate a flat {field: value} map into a Qdrant must-match filter."""
    if not conditions:
        return None
    return models.Filter(must=[
        models.FieldCondition(key=field_name, match=models.MatchValue(value=value))
        for field_name, value in conditions.items()
    ])


class QdrantVectorStore(VectorStoreBase):
    """
    Usage:
        store = QdrantVectorStore()
        await store.ensure_collection("document_embeddings", 1536)
        await store.upsert("document_embeddings", records)
    """

    def __init__(
        self,
        client:   AsyncQdrantClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        cfg = settings or default_settings
        self._client = client or AsyncQdrantClient(
            url=cfg.qdrant_url,
            api_key=cfg.qdrant_api_key or None,
        )

    @property
    def backend_name(self) -> str:
        return "qdrant"

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def upsert(self, collection: str, records: list[VectorRecord]) -> int:
        if not records:
            return 0
        points = [
            models.PointStruct(id=rec.id, vector=rec.vector, payload=rec.payload)
            for rec in records
        ]
        try:
            await self._client.upsert(collection_name=collection, points=points, wait=True)
        except Exception as exc:
            raise translate_qdrant_error(exc, "upsert", collection) from exc

        logger.debug("Qdrant upsert | collection=%s points=%d", collection, len(points))
        return len(points)

    async def search(
        self,
        collection:      str,
        vector:          list[float],
        limit:           int,
        score_threshold: float,
        filter:          dict | None = None,
    ) -> list[ScoredPoint]:
        try:
            response = await self._client.query_points(
                collection_name=collection,
                query=vector,
                limit=limit,
                score_threshold=score_threshold,
                query_filter=build_filter(filter),
                with_payload=True,
            )
        except Exception as exc:
            raise translate_qdrant_error(exc, "search", collection) from exc

        results = [
            ScoredPoint(id=str(point.id), score=point.score, payload=point.payload or {})
            for point in response.points
        ]
        logger.debug(
            "Qdrant search | collection=%s limit=%d threshold=%.2f results=%d",
            collection, limit, score_threshold, len(results),
        )
        return results

    # ------------------------------------------------------------------
    # Collection administration
    # ------------------------------------------------------------------

    async def ensure_collection(self, collection: str, dimensions: int) -> bool:
        try:
            if await self._client.collection_exists(collection_name=collection):
                return False

            await self._client.create_collection(
                collection_name=collection,
                vectors_config=models.VectorParams(size=dimensions, distance=models.Distance.COSINE),
            )
            await self._client.create_payload_index(
                collection_name=collection,
                field_name=KEY_FIELD,
                field_schema=models.PayloadSchemaType.KEYWORD,
            )
        except Exception as exc:
            raise translate_qdrant_error(exc, "ensure_collection", collection) from exc

        logger.info("Qdrant collection created | collection=%s dims=%d", collection, dimensions)
        return True

    async def delete_by_key(self, collection: str, key: str) -> None:
        try:
            await self._client.delete(
                collection_name=collection,
                points_selector=models.FilterSelector(filter=build_filter({KEY_FIELD: key})),
                wait=True,
            )
        except Exception as exc:
            raise translate_qdrant_error(exc, "delete", collection) from exc
        logger.info("Qdrant delete_by_key | collection=%s key=%s", collection, key)

    async def count(self, collection: str) -> int:
        try:
            result = await self._client.count(collection_name=collection, exact=True)
        except Exception as exc:
            raise translate_qdrant_error(exc, "count", collection) from exc
        return result.count

    async def close(self) -> None:
        await self._client.close()
