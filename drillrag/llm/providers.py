"""
OpenAI Providers  —  Embeddings & Chat Completions
══════════════════════════════════════════════════

Thin adapters over openai.AsyncOpenAI. Each adapter:
  • translates SDK exceptions into the pipeline taxonomy at the boundary
      RateLimitError / timeouts / connection / 5xx  → TransientServiceError
      400 / 422                                     → ValidationError
      401 / 403                                     → AuthorizationError
      404                                           → NotFoundError
  • leaves retrying to the caller (SDK retries are disabled so back-off
    happens in exactly one place: core.retry.retry_async)

OpenAIEmbeddingProvider additionally:
  • serves repeated texts from the context's embedding cache: queries by
    normalized text (make_cache_key), chunk content by its exact SHA-256
  • acquires the context's sliding-window rate limiter before every
    network request (cache hits do not consume a slot)

Model selection:
  text-embedding-3-small  → 1536 dims  (default, must match the collection)
  gpt-4o                  → answers over retrieved context
"""

from __future__ import annotations

import hashlib
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

from drillrag.cache.context import PipelineContext
from drillrag.cache.ttl_cache import make_cache_key
from drillrag.core.config import Settings, settings as default_settings
from drillrag.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    PipelineError,
    TransientServiceError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Native dimensionality of text-embedding-3-small; other values are sent explicitly
DEFAULT_EMBEDDING_DIMENSIONS = 1536


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------

def translate_openai_error(exc: Exception, operation: str) -> Exception:
    """Map an openai SDK exception onto the pipeline taxonomy. Unknown errors pass through."""
    import openai

    if isinstance(exc, PipelineError):
        return exc

    if isinstance(exc, (openai.APITimeoutError, openai.APIConnectionError)):
        return TransientServiceError(f"{operation}: connection failed: {exc}", cause=exc)

    if isinstance(exc, openai.APIStatusError):
        status  = exc.status_code
        context = {"status_code": status, "operation": operation}
        if status == 429 or status >= 500:
            return TransientServiceError(f"{operation}: provider unavailable ({status})", cause=exc, context=context)
        if status in (401, 403):
            return AuthorizationError(f"{operation}: provider rejected credentials ({status})", cause=exc, context=context)
        if status == 404:
            return NotFoundError(f"{operation}: model or resource not found", cause=exc, context=context)
        return ValidationError(f"{operation}: provider rejected input ({status})", cause=exc, context=context)

    return exc


# ---------------------------------------------------------------------------
# Embeddings
# ---------------------------------------------------------------------------

def _require_text(text) -> None:
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Embedding input must be a non-empty string")


class EmbeddingProvider(ABC):
    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for a query string."""

    async def embed_document(self, text: str) -> list[float]:
        """Return the embedding vector for stored chunk content."""
        return await self.embed(text)


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """
    Usage:
        provider = OpenAIEmbeddingProvider(context)
        vector   = await provider.embed("avg ROP in the lateral")
    """

    def __init__(
        self,
        context:  PipelineContext,
        settings: Settings | None = None,
        client=None,
    ) -> None:
        cfg = settings or default_settings
        self._context    = context
        self._model      = cfg.embedding_model
        self._dimensions = cfg.embedding_dimensions
        self._api_key    = cfg.openai_api_key
        self._client     = client
        self.request_count = 0

    @property
    def model(self) -> str:
        return self._model

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(api_key=self._api_key, max_retries=0)
        return self._client

    async def embed(self, text: str) -> list[float]:
        """Case and whitespace variants of a query share one cache entry."""
        _require_text(text)
        return await self._embed(text, make_cache_key(text, identity=self._model))

    async def embed_document(self, text: str) -> list[float]:
        """Chunk content is cached under its exact bytes."""
        _require_text(text)
        digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
        return await self._embed(text, f"{self._model}#document::{digest}")

    async def _embed(self, text: str, cache_key: str) -> list[float]:
        cached = self._context.embedding_cache.get(cache_key)
        if cached is not None:
            return cached

        await self._context.rate_limiter.acquire()

        kwargs = {}
        if self._dimensions != DEFAULT_EMBEDDING_DIMENSIONS:
            kwargs["dimensions"] = self._dimensions

        t0 = time.monotonic()
        try:
            response = await self._get_client().embeddings.create(
                model=self._model,
                input=text,
                **kwargs,
            )
        except Exception as exc:
            raise translate_openai_error(exc, "embedding") from exc
        finally:
            self.request_count += 1

        vector = list(response.data[0].embedding)
        self._context.embedding_cache.set(cache_key, vector)

        logger.debug(
            "OpenAI embeddings | model=%s chars=%d dims=%d api_ms=%.0f",
            self._model, len(text), len(vector), (time.monotonic() - t0) * 1000,
        )
        return vector


# ---------------------------------------------------------------------------
# Chat completions
# ---------------------------------------------------------------------------

@dataclass
class Completion:
    text:        str
    token_usage: int
    model:       str = ""


class CompletionProvider(ABC):
    @abstractmethod
    async def complete(self, system_prompt: str, user_prompt: str) -> Completion:
        """Generate a completion for one system + user prompt pair."""


class OpenAICompletionProvider(CompletionProvider):
    def __init__(self, settings: Settings | None = None, client=None) -> None:
        cfg = settings or default_settings
        self._model       = cfg.llm_model
        self._temperature = cfg.llm_temperature
        self._max_tokens  = cfg.llm_max_tokens
        self._api_key     = cfg.openai_api_key
        self._client      = client

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(api_key=self._api_key, max_retries=0)
        return self._client

    async def complete(self, system_prompt: str, user_prompt: str) -> Completion:
        t0 = time.monotonic()
        try:
            response = await self._get_client().chat.completions.create(
                model=self._model,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user",   "content": user_prompt},
                ],
            )
        except Exception as exc:
            raise translate_openai_error(exc, "completion") from exc

        text   = response.choices[0].message.content or ""
        tokens = response.usage.total_tokens if response.usage else 0

        logger.info(
            "OpenAI completion | model=%s tokens=%d latency_ms=%.0f",
            self._model, tokens, (time.monotonic() - t0) * 1000,
        )
        return Completion(text=text, token_usage=tokens, model=self._model)
