"""
Search Engine — profile-driven similarity search with domain reranking

Flow for one query vector:

  1. Profile      limit / score_threshold from the query type
                  (query_classifier.SEARCH_PROFILES), overridable per call
  2. Search       vector store search, retried with exponential back-off
                  (settings.search_retries retries after the first attempt)
  3. Widen        aggregation query with zero hits at a threshold above
                  settings.fallback_score_threshold → exactly one more
                  search at the fallback threshold
  4. Rerank       DomainReranker (boost, re-sort, relevance labels,
                  aggregation annotations)

Any search failure that survives the retries surfaces as RetrievalFailed
chained to the underlying error.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from drillrag.cache.context import PipelineContext
from drillrag.core.config import Settings, settings as default_settings
from drillrag.core.exceptions import RetrievalFailed, ValidationError
from drillrag.core.retry import RetryPolicy, retry_async
from drillrag.rag.query_classifier import QueryType, profile_for
from drillrag.rag.reranker import DomainReranker, SearchResult, relevance_label
from drillrag.vectorstore.base import ScoredPoint, VectorStoreBase

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchOptions:
    query_type:      QueryType    = QueryType.GENERAL
    limit:           int | None   = None    # None → profile default
    score_threshold: float | None = None    # None → profile default
    filter:          dict | None  = None
    rerank:          bool         = True


class SearchEngine:
    """
    Usage:
        engine  = SearchEngine(store, context)
        results = await engine.search(vector, "document_embeddings",
                                      SearchOptions(query_type=QueryType.AGGREGATION))
    """

    def __init__(
        self,
        store:    VectorStoreBase,
        context:  PipelineContext,
        reranker: DomainReranker | None = None,
        settings: Settings | None = None,
        sleep:    Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        cfg = settings or default_settings
        self._store    = store
        self._reranker = reranker or DomainReranker()
        self._fallback_threshold = cfg.fallback_score_threshold
        self._policy = RetryPolicy(
            attempts=cfg.search_retries + 1,
            base_delay=context.retry_policy.base_delay,
            max_delay=context.retry_policy.max_delay,
        )
        self._sleep = sleep

    async def search(
        self,
        query_vector: list[float],
        collection:   str,
        options:      SearchOptions | None = None,
    ) -> list[SearchResult]:
        if not query_vector:
            raise ValidationError("Query vector must be a non-empty list")
        if not collection:
            raise ValidationError("Collection name must be a non-empty string")

        opts      = options or SearchOptions()
        profile   = profile_for(opts.query_type)
        limit     = opts.limit or profile.limit
        threshold = profile.score_threshold if opts.score_threshold is None else opts.score_threshold

        points = await self._search_once(query_vector, collection, limit, threshold, opts.filter)

        if (
            not points
            and opts.query_type == QueryType.AGGREGATION
            and threshold > self._fallback_threshold
        ):
            logger.info(
                "SearchEngine | aggregation query returned 0 results at threshold=%.2f, "
                "retrying at %.2f",
                threshold, self._fallback_threshold,
            )
            points = await self._search_once(
                query_vector, collection, limit, self._fallback_threshold, opts.filter,
            )

        if opts.rerank:
            results = self._reranker.rerank(points, opts.query_type)
        else:
            results = [_as_result(p, rank) for rank, p in enumerate(points, start=1)]

        logger.info(
            "SearchEngine | collection=%s type=%s limit=%d threshold=%.2f results=%d",
            collection, opts.query_type.value, limit, threshold, len(results),
        )
        return results

    async def _search_once(
        self,
        vector:     list[float],
        collection: str,
        limit:      int,
        threshold:  float,
        filter:     dict | None,
    ) -> list[ScoredPoint]:
        try:
            return await retry_async(
                lambda: self._store.search(collection, vector, limit, threshold, filter),
                policy=self._policy,
                label=f"search collection={collection}",
                sleep=self._sleep,
            )
        except Exception as exc:
            raise RetrievalFailed(
                f"Search failed: {exc}",
                cause=exc,
                context={"collection": collection, "limit": limit, "score_threshold": threshold},
            ) from exc


def _as_result(point: ScoredPoint, rank: int) -> SearchResult:
    return SearchResult(
        id=point.id,
        score=point.score,
        payload=point.payload,
        rank=rank,
        relevance=relevance_label(point.score),
        original_score=point.score,
    )
