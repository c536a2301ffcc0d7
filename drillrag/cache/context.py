"""
PipelineContext — the shared mutable state of one process, made explicit.

Holds the embedding, response, extraction and chunk caches, the embedding
rate limiter and the retry policy. Components receive the context through their
constructor instead of reaching for module globals, so tests get a fresh,
isolated context per case.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from drillrag.cache.ttl_cache import TTLCache
from drillrag.core.config import Settings, settings as default_settings
from drillrag.core.rate_limit import SlidingWindowRateLimiter
from drillrag.core.retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    embedding_cache:  TTLCache
    response_cache:   TTLCache
    rate_limiter:     SlidingWindowRateLimiter
    extraction_cache: TTLCache
    chunk_cache:      TTLCache
    retry_policy:     RetryPolicy = field(default_factory=RetryPolicy)
    sweep_interval_seconds: float = 300.0

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "PipelineContext":
        cfg = settings or default_settings
        return cls(
            embedding_cache=TTLCache(
                "embeddings",
                max_entries=cfg.embedding_cache_max_entries,
                ttl_seconds=cfg.cache_ttl_seconds,
            ),
            response_cache=TTLCache(
                "responses",
                max_entries=cfg.response_cache_max_entries,
                ttl_seconds=cfg.cache_ttl_seconds,
            ),
            rate_limiter=SlidingWindowRateLimiter(
                max_requests=cfg.rate_limit_requests,
                window_seconds=cfg.rate_limit_window_seconds,
            ),
            extraction_cache=TTLCache(
                "extractions",
                max_entries=cfg.extraction_cache_max_entries,
                ttl_seconds=cfg.cache_ttl_seconds,
            ),
            chunk_cache=TTLCache(
                "chunks",
                max_entries=cfg.chunk_cache_max_entries,
                ttl_seconds=cfg.cache_ttl_seconds,
            ),
            retry_policy=RetryPolicy.from_settings(cfg),
            sweep_interval_seconds=cfg.cache_sweep_interval_seconds,
        )

    @property
    def caches(self) -> tuple[TTLCache, ...]:
        return (self.embedding_cache, self.response_cache, self.extraction_cache, self.chunk_cache)

    async def start(self) -> None:
        """Start background cache sweepers. Call from inside a running loop."""
        for cache in self.caches:
            cache.start_sweeper(self.sweep_interval_seconds)
        logger.info(
            "PipelineContext started | sweep_interval=%.0fs", self.sweep_interval_seconds,
        )

    async def close(self) -> None:
        for cache in self.caches:
            await cache.stop_sweeper()

    async def __aenter__(self) -> "PipelineContext":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def stats(self) -> dict:
        return {
            "embedding_cache":  self.embedding_cache.stats(),
            "response_cache":   self.response_cache.stats(),
            "extraction_cache": self.extraction_cache.stats(),
            "chunk_cache":      self.chunk_cache.stats(),
            "rate_limiter": {
                "in_window":   self.rate_limiter.in_window,
                "total_waits": self.rate_limiter.total_waits,
            },
        }
