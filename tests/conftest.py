"""
Root conftest.py — Shared fixtures for ALL unit tests

Fixture hierarchy:
  function-scoped : test_settings, context, fake_embedder, fake_completer,
                    mock_vector_store, mock_blob_store, mock_metadata,
                    sample_pdf_bytes, drilling_report_text

Environment strategy:
  - No test touches real S3, OpenAI, Qdrant, Pinecone or PostgreSQL.
  - Retry back-off is zeroed so retry paths run instantly.
  - The metadata store tests use an in-memory aiosqlite database.

How to run:
  pytest                                 # all tests
  pytest -m unit                         # unit tests only
  pytest tests/unit/test_chunking.py     # single file
"""

from __future__ import annotations

import os
from unittest.mock import AsyncMock, MagicMock

import pytest

# ─────────────────────────────────────────────────────────────────────────────
# Patch settings BEFORE any drillrag imports so modules read test config
# ─────────────────────────────────────────────────────────────────────────────

os.environ.setdefault("DATABASE_URL",          "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AWS_REGION",            "us-east-1")
os.environ.setdefault("AWS_ACCESS_KEY_ID",     "test")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "test")
os.environ.setdefault("S3_BUCKET",             "test-bucket")
os.environ.setdefault("VECTOR_STORE_BACKEND",  "qdrant")
os.environ.setdefault("QDRANT_URL",            "http://localhost:6333")
os.environ.setdefault("OPENAI_API_KEY",        "sk-test-key")
os.environ.setdefault("RETRY_BASE_DELAY",      "0")
os.environ.setdefault("RETRY_MAX_DELAY",       "0")
os.environ.setdefault("APP_ENV",               "development")

from drillrag.cache.context import PipelineContext  # noqa: E402
from drillrag.core.config import Settings  # noqa: E402
from drillrag.core.retry import RetryPolicy  # noqa: E402
from drillrag.llm.providers import Completion, CompletionProvider, EmbeddingProvider  # noqa: E402
from drillrag.vectorstore.base import VectorStoreBase  # noqa: E402


# ─────────────────────────────────────────────────────────────────────────────
# Settings & context
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        retry_max_attempts=3,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        rate_limit_requests=0,
        max_concurrent_embeddings=4,
        embedding_success_threshold=0.5,
    )


@pytest.fixture
def context(test_settings) -> PipelineContext:
    """Fresh caches, a disabled rate limiter and zero-delay retries per test."""
    ctx = PipelineContext.from_settings(test_settings)
    ctx.retry_policy = RetryPolicy(attempts=3, base_delay=0.0, max_delay=0.0)
    return ctx


# ─────────────────────────────────────────────────────────────────────────────
# Fake providers
# ─────────────────────────────────────────────────────────────────────────────

class FakeEmbeddingProvider(EmbeddingProvider):
    """
    Deterministic 8-dim vectors. Texts listed in `fail_on` always raise the
    error given for them; every call is counted.
    """

    def __init__(self, fail_on: dict[str, Exception] | None = None) -> None:
        self.fail_on = dict(fail_on or {})
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if text in self.fail_on:
            raise self.fail_on[text]
        seed = sum(ord(c) for c in text) % 97
        return [float((seed + i) % 11) / 10.0 for i in range(8)]


class FakeCompletionProvider(CompletionProvider):
    def __init__(self, text: str = "Average ROP was 85.2 ft/hr.", tokens: int = 120) -> None:
        self.text   = text
        self.tokens = tokens
        self.calls: list[tuple[str, str]] = []

    async def complete(self, system_prompt: str, user_prompt: str) -> Completion:
        self.calls.append((system_prompt, user_prompt))
        return Completion(text=self.text, token_usage=self.tokens, model="fake-model")


@pytest.fixture
def fake_embedder() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def fake_completer() -> FakeCompletionProvider:
    return FakeCompletionProvider()


# ─────────────────────────────────────────────────────────────────────────────
# Collaborator mocks
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def mock_vector_store():
    """VectorStoreBase mock: upsert succeeds, search returns nothing."""
    store = MagicMock(spec=VectorStoreBase)
    store.backend_name = "mock"
    store.upsert = AsyncMock(side_effect=lambda collection, records: len(records))
    store.search = AsyncMock(return_value=[])
    store.ensure_collection = AsyncMock(return_value=False)
    store.delete_by_key = AsyncMock(return_value=None)
    store.count = AsyncMock(return_value=0)
    store.close = AsyncMock(return_value=None)
    return store


@pytest.fixture
def sample_pdf_bytes() -> bytes:
    """Minimal byte string carrying the PDF header (content is never parsed)."""
    return (
        b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog /Pages 2 0 R >>\nendobj\n"
        b"trailer\n<< /Root 1 0 R >>\n%%EOF\n"
    )


@pytest.fixture
def mock_blob_store(sample_pdf_bytes):
    store = MagicMock()
    store.get = AsyncMock(return_value=sample_pdf_bytes)
    store.delete = AsyncMock(return_value=None)
    return store


@pytest.fixture
def mock_metadata():
    store = MagicMock()
    store.save_processed_document = AsyncMock(return_value=None)
    store.save_query = AsyncMock(return_value=None)
    return store


# ─────────────────────────────────────────────────────────────────────────────
# Sample text
# ─────────────────────────────────────────────────────────────────────────────

DRILLING_REPORT_TEXT = """\
MOTOR RUN REPORT - BHA #2

Motor Make: Rival Downhole Tools
Motor Model: 7/8 5.0 Stage
Stator Fit: 0.012 in interference
Bend Setting: 1.83 deg
Lobes: 7/8

BIT DATA
Bit Vendor: Ulterra
Bit Model: U616M
TFA: 1.052 sq in
Hole Size: 8.75 in

DRILLING PARAMETERS
Total Drilled: 4,250 usft over 38.5 hrs.
Avg ROP: 110.4 ft/hr rotating, 42.0 ft/hr sliding.
WOB: 25 klbs. Flow Rate: 550 gpm. Diff Press: 650 psi.
Motor RPM: 145 rpm surface plus motor output.

OPERATIONAL NOTES
Circulated bottoms up before trip. Pulled out of hole at 12,480 ft MD.
No motor stalls observed during the lateral section; torque remained steady.
"""


@pytest.fixture
def drilling_report_text() -> str:
    return DRILLING_REPORT_TEXT
