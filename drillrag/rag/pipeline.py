"""
Answer Service — question → retrieval → completion

Full query path:

  User Query
    │
    ▼
  Response cache           ← keyed by normalized query + user + collection
    │ miss
    ▼
  Embed query              ← EmbeddingProvider (embedding cache, rate limiter)
    │
    ▼
  classify_query           ← aggregation / comparison / domain-specific / general
    │
    ▼
  SearchEngine             ← profile search, aggregation widening, domain rerank
    │
    ▼
  Context assembly         ← top CONTEXT_RESULT_LIMIT results, "=== file ===" blocks
    │
    ▼
  CompletionProvider       ← drilling-analyst system prompt
    │
    ▼
  QueryRecord (best effort) + response cache

An empty result set short-circuits with NO_RESULTS_ANSWER and is never
cached, so a document indexed a moment later is found on the next ask.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from drillrag.cache.context import PipelineContext
from drillrag.cache.ttl_cache import make_cache_key
from drillrag.core.config import Settings, settings as default_settings
from drillrag.core.exceptions import ValidationError
from drillrag.core.retry import retry_async
from drillrag.llm.providers import CompletionProvider, EmbeddingProvider
from drillrag.models.records import QueryRecord
from drillrag.rag.query_classifier import QueryType, classify_query
from drillrag.rag.reranker import SearchResult
from drillrag.rag.retriever import SearchEngine, SearchOptions
from drillrag.services.metadata import MetadataStore

logger = logging.getLogger(__name__)

NO_RESULTS_ANSWER = "I couldn't find relevant information to answer your question."

DRILLING_SYSTEM_PROMPT = """\
You are a directional drilling analyst answering questions about drilling \
and motor run reports. Use ONLY the report excerpts provided in the context.

Guidelines:
- Quote exact values with their units (ft, usft, ft/hr, klbs, psi, gpm, rpm).
- When asked for averages, totals, maximums or counts, compute them from every \
relevant excerpt and state how many values were used.
- When comparing equipment (motor make/model, bit vendor, BHA), present the \
values side by side.
- Name the source report for each fact you use.
- If the context does not contain the answer, say so plainly. Do not guess."""

AGGREGATION_HINT = (
    "\n\nThis question asks for statistics across many records. "
    "Use every relevant value in the context, not just the first match."
)


@dataclass
class Source:
    file_name: str
    score:     float
    rank:      int
    relevance: str

    def to_dict(self) -> dict:
        return {
            "file_name": self.file_name,
            "score":     round(self.score, 4),
            "rank":      self.rank,
            "relevance": self.relevance,
        }


@dataclass
class Answer:
    answer:        str
    sources:       list[Source] = field(default_factory=list)
    query_type:    str = QueryType.GENERAL.value
    results_count: int = 0
    token_usage:   int = 0
    cached:        bool = False
    elapsed_ms:    float = 0.0


def build_context(results: list[SearchResult], limit: int) -> str:
    blocks = [
        f"=== {r.file_name or 'unknown'} ===\n{r.content}"
        for r in results[:limit]
    ]
    return "\n\n".join(blocks)


def build_user_prompt(query: str, context: str, query_type: QueryType) -> str:
    prompt = f"Context from drilling reports:\n\n{context}\n\nQuestion: {query}"
    if query_type == QueryType.AGGREGATION:
        prompt += AGGREGATION_HINT
    return prompt


class AnswerService:
    """
    Usage:
        service = AnswerService(embedder, completer, search_engine, metadata, context)
        answer  = await service.answer("average ROP across all runs?", user_id, "drilling_reports")
    """

    def __init__(
        self,
        embedder:      EmbeddingProvider,
        completer:     CompletionProvider,
        search_engine: SearchEngine,
        metadata:      MetadataStore | None,
        context:       PipelineContext,
        settings:      Settings | None = None,
        sleep:         Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        cfg = settings or default_settings
        self._embedder      = embedder
        self._completer     = completer
        self._search_engine = search_engine
        self._metadata      = metadata
        self._context       = context
        self._context_limit = cfg.context_result_limit
        self._source_limit  = cfg.source_result_limit
        self._model         = cfg.llm_model
        self._temperature   = cfg.llm_temperature
        self._sleep         = sleep

    async def answer(self, query: str, user_id: str, collection: str) -> Answer:
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("Query must be a non-empty string")
        if not user_id:
            raise ValidationError("User ID is required")

        t0 = time.monotonic()
        cache_key = make_cache_key(query, identity=f"{user_id}:{collection}")
        cached = self._context.response_cache.get(cache_key)
        if cached is not None:
            logger.info("AnswerService | cache hit user=%s collection=%s", user_id, collection)
            return Answer(
                answer=cached.answer,
                sources=list(cached.sources),
                query_type=cached.query_type,
                results_count=cached.results_count,
                token_usage=cached.token_usage,
                cached=True,
                elapsed_ms=(time.monotonic() - t0) * 1000,
            )

        vector     = await self._embedder.embed(query)
        query_type = classify_query(query)
        results    = await self._search_engine.search(
            vector, collection, SearchOptions(query_type=query_type),
        )

        if not results:
            logger.info(
                "AnswerService | no results user=%s collection=%s type=%s",
                user_id, collection, query_type.value,
            )
            return Answer(
                answer=NO_RESULTS_ANSWER,
                query_type=query_type.value,
                elapsed_ms=(time.monotonic() - t0) * 1000,
            )

        context_text = build_context(results, self._context_limit)
        completion   = await self._completer.complete(
            DRILLING_SYSTEM_PROMPT, build_user_prompt(query, context_text, query_type),
        )

        sources = [
            Source(file_name=r.file_name, score=r.score, rank=r.rank, relevance=r.relevance)
            for r in results[: self._source_limit]
        ]
        answer = Answer(
            answer=completion.text,
            sources=sources,
            query_type=query_type.value,
            results_count=len(results),
            token_usage=completion.token_usage,
            elapsed_ms=(time.monotonic() - t0) * 1000,
        )

        await self._record_query(query, user_id, answer, completion.model or self._model)
        self._context.response_cache.set(cache_key, answer)

        logger.info(
            "AnswerService | user=%s type=%s results=%d tokens=%d elapsed_ms=%.0f",
            user_id, answer.query_type, answer.results_count, answer.token_usage, answer.elapsed_ms,
        )
        return answer

    async def _record_query(self, query: str, user_id: str, answer: Answer, model: str) -> None:
        """Persist the exchange; a storage failure never fails the answer."""
        if self._metadata is None:
            return
        try:
            await retry_async(
                lambda: self._metadata.save_query(QueryRecord(
                    user_id=user_id,
                    query_text=query,
                    answer=answer.answer,
                    model=model,
                    temperature=self._temperature,
                    total_tokens=answer.token_usage,
                    query_type=answer.query_type,
                    results_count=answer.results_count,
                    sources=[s.to_dict() for s in answer.sources],
                )),
                policy=self._context.retry_policy,
                label="save query record",
                sleep=self._sleep,
            )
        except Exception as exc:
            logger.error("AnswerService | query record not saved user=%s error=%s", user_id, exc)
