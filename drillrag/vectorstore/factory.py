"""
Vector Store Factory

Selects the backend (Qdrant | Pinecone) from settings.vector_store_backend.
The rest of the package only imports get_vector_store() and never touches
the concrete classes directly.
"""

from __future__ import annotations

from drillrag.core.config import Settings, settings as default_settings
from drillrag.vectorstore.base import VectorStoreBase


def get_vector_store(settings: Settings | None = None) -> VectorStoreBase:
    cfg = settings or default_settings
    backend = cfg.vector_store_backend.lower()

    if backend == "qdrant":
        from drillrag.vectorstore.qdrant_store import QdrantVectorStore
        return QdrantVectorStore(settings=cfg)

    if backend == "pinecone":
        from drillrag.vectorstore.pinecone_store import PineconeVectorStore
        return PineconeVectorStore(settings=cfg)

    raise ValueError(
        f"Unknown vector store backend: '{backend}'. "
        f"Valid options: 'qdrant', 'pinecone'"
    )
