"""
Unit Tests — QdrantVectorStore, PineconeVectorStore + factory
═══════════════════════════════════════════════════════════════
AsyncQdrantClient is replaced with an AsyncMock and the Pinecone client with
a MagicMock (its sync calls run in the default executor); no server needed.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from pinecone.exceptions import PineconeException
from qdrant_client import models
from qdrant_client.http.exceptions import UnexpectedResponse

from drillrag.core.config import Settings
from drillrag.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    TransientServiceError,
    ValidationError,
)
from drillrag.vectorstore.base import VectorRecord
from drillrag.vectorstore.factory import get_vector_store
from drillrag.vectorstore.pinecone_store import (
    MAX_TOP_K,
    UPSERT_BATCH_SIZE,
    PineconeVectorStore,
    _sanitize_metadata,
)
from drillrag.vectorstore.qdrant_store import QdrantVectorStore, build_filter


def _unexpected(status: int) -> UnexpectedResponse:
    return UnexpectedResponse(status, "error", b"{}", httpx.Headers())


@pytest.fixture
def client() -> AsyncMock:
    mock = AsyncMock()
    mock.query_points = AsyncMock(return_value=SimpleNamespace(points=[
        SimpleNamespace(id="7f1c", score=0.83, payload={"content": "WOB: 25 klbs", "name": "bha2.pdf"}),
    ]))
    return mock


@pytest.mark.unit
@pytest.mark.retrieval
class TestQdrantVectorStore:

    async def test_search_maps_points(self, client):
        store = QdrantVectorStore(client=client)

        results = await store.search("drilling_reports", [0.1] * 8, 10, 0.45, {"key": "a.pdf"})

        assert [(r.id, r.score) for r in results] == [("7f1c", 0.83)]
        kwargs = client.query_points.await_args.kwargs
        assert kwargs["score_threshold"] == 0.45
        assert kwargs["limit"] == 10
        assert kwargs["query_filter"] == build_filter({"key": "a.pdf"})

    async def test_upsert_returns_point_count(self, client):
        store = QdrantVectorStore(client=client)
        records = [VectorRecord(id=f"id-{i}", vector=[0.0] * 8, payload={"key": "a.pdf"}) for i in range(3)]

        assert await store.upsert("drilling_reports", records) == 3
        assert await store.upsert("drilling_reports", []) == 0
        client.upsert.assert_awaited_once()

    async def test_ensure_collection_creates_key_index(self, client):
        client.collection_exists = AsyncMock(return_value=False)
        store = QdrantVectorStore(client=client)

        assert await store.ensure_collection("drilling_reports", 1536) is True
        client.create_payload_index.assert_awaited_once()
        assert client.create_payload_index.await_args.kwargs["field_name"] == "key"

    async def test_existing_collection_left_alone(self, client):
        client.collection_exists = AsyncMock(return_value=True)
        assert await QdrantVectorStore(client=client).ensure_collection("drilling_reports", 1536) is False
        client.create_collection.assert_not_awaited()

    @pytest.mark.parametrize("status, expected", [
        (404, NotFoundError),
        (400, ValidationError),
        (503, TransientServiceError),
        (429, TransientServiceError),
    ])
    async def test_errors_translated(self, client, status, expected):
        client.query_points.side_effect = _unexpected(status)
        with pytest.raises(expected):
            await QdrantVectorStore(client=client).search("drilling_reports", [0.1], 5, 0.3)

    async def test_delete_by_key_uses_key_filter(self, client):
        await QdrantVectorStore(client=client).delete_by_key("drilling_reports", "uploads/a.pdf")

        kwargs = client.delete.await_args.kwargs
        assert kwargs["collection_name"] == "drilling_reports"
        assert kwargs["points_selector"].filter == build_filter({"key": "uploads/a.pdf"})

    async def test_count_is_exact(self, client):
        client.count = AsyncMock(return_value=SimpleNamespace(count=7))

        assert await QdrantVectorStore(client=client).count("drilling_reports") == 7
        assert client.count.await_args.kwargs["exact"] is True

    def test_empty_filter_is_none(self):
        assert build_filter(None) is None
        assert build_filter({}) is None
        f = build_filter({"key": "a.pdf"})
        assert isinstance(f, models.Filter)
        assert f.must[0].key == "key"


@pytest.mark.unit
@pytest.mark.retrieval
class TestVectorStoreFactory:

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValueError, match="Unknown vector store backend"):
            get_vector_store(Settings(vector_store_backend="faiss"))


# ─────────────────────────────────────────────────────────────────────────────
# Pinecone
# ─────────────────────────────────────────────────────────────────────────────

def _pinecone_error(status: int) -> PineconeException:
    exc = PineconeException("error")
    exc.status = status
    return exc


@pytest.fixture
def pinecone_client() -> MagicMock:
    client = MagicMock()
    client.Index.return_value.query.return_value = SimpleNamespace(matches=[
        SimpleNamespace(id="a", score=0.82, metadata={"content": "WOB: 25 klbs", "key": "a.pdf"}),
        SimpleNamespace(id="b", score=0.41, metadata=None),
        SimpleNamespace(id="c", score=0.29, metadata={"content": "noise"}),
    ])
    return client


@pytest.mark.unit
@pytest.mark.retrieval
class TestPineconeVectorStore:

    async def test_search_filters_threshold_client_side(self, pinecone_client, test_settings):
        store = PineconeVectorStore(client=pinecone_client, settings=test_settings)

        results = await store.search("drilling_reports", [0.1] * 8, 500, 0.4, {"key": "a.pdf"})

        assert [(r.id, r.score) for r in results] == [("a", 0.82), ("b", 0.41)]
        assert results[1].payload == {}
        kwargs = pinecone_client.Index.return_value.query.call_args.kwargs
        assert kwargs["namespace"] == "drilling_reports"
        assert kwargs["top_k"] == MAX_TOP_K
        assert kwargs["filter"] == {"key": {"$eq": "a.pdf"}}
        pinecone_client.Index.assert_called_once_with(test_settings.pinecone_index_name)

    async def test_upsert_batches_into_namespace(self, pinecone_client, test_settings):
        store = PineconeVectorStore(client=pinecone_client, settings=test_settings)
        records = [
            VectorRecord(id=f"id-{i}", vector=[0.0] * 4, payload={"key": "a.pdf", "metrics": {"WOB": "25"}})
            for i in range(UPSERT_BATCH_SIZE + 5)
        ]

        assert await store.upsert("drilling_reports", records) == UPSERT_BATCH_SIZE + 5

        calls = pinecone_client.Index.return_value.upsert.call_args_list
        assert [len(c.kwargs["vectors"]) for c in calls] == [UPSERT_BATCH_SIZE, 5]
        assert all(c.kwargs["namespace"] == "drilling_reports" for c in calls)
        assert calls[0].kwargs["vectors"][0]["metadata"]["metrics"] == '{"WOB": "25"}'

    async def test_delete_by_key_filters_on_key(self, pinecone_client, test_settings):
        store = PineconeVectorStore(client=pinecone_client, settings=test_settings)

        await store.delete_by_key("drilling_reports", "uploads/a.pdf")

        pinecone_client.Index.return_value.delete.assert_called_once_with(
            namespace="drilling_reports", filter={"key": {"$eq": "uploads/a.pdf"}},
        )

    async def test_count_reads_namespace_stats(self, pinecone_client, test_settings):
        pinecone_client.Index.return_value.describe_index_stats.return_value = SimpleNamespace(
            namespaces={"drilling_reports": SimpleNamespace(vector_count=42)},
        )
        store = PineconeVectorStore(client=pinecone_client, settings=test_settings)

        assert await store.count("drilling_reports") == 42
        assert await store.count("other_reports") == 0

    async def test_ensure_collection_creates_missing_index(self, pinecone_client, test_settings):
        pinecone_client.list_indexes.return_value = [SimpleNamespace(name="unrelated")]
        store = PineconeVectorStore(client=pinecone_client, settings=test_settings)

        assert await store.ensure_collection("drilling_reports", 1536) is True
        kwargs = pinecone_client.create_index.call_args.kwargs
        assert kwargs["name"] == test_settings.pinecone_index_name
        assert kwargs["dimension"] == 1536

        pinecone_client.list_indexes.return_value = [SimpleNamespace(name=test_settings.pinecone_index_name)]
        assert await store.ensure_collection("drilling_reports", 1536) is False

    @pytest.mark.parametrize("status, expected", [
        (404, NotFoundError),
        (400, ValidationError),
        (403, AuthorizationError),
        (503, TransientServiceError),
        (0,   TransientServiceError),
    ])
    async def test_errors_translated(self, pinecone_client, test_settings, status, expected):
        pinecone_client.Index.return_value.query.side_effect = _pinecone_error(status)
        store = PineconeVectorStore(client=pinecone_client, settings=test_settings)

        with pytest.raises(expected):
            await store.search("drilling_reports", [0.1], 5, 0.3)

    def test_metadata_sanitized_to_flat_values(self):
        metadata = _sanitize_metadata({
            "key": "a.pdf", "chunk_index": 3, "score": 0.5, "flag": True,
            "tags": ["motor", "bha"], "metrics": {"ROP": "110"}, "missing": None,
        })

        assert metadata == {
            "key": "a.pdf", "chunk_index": 3, "score": 0.5, "flag": True,
            "tags": ["motor", "bha"], "metrics": '{"ROP": "110"}',
        }
