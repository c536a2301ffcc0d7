"""
Vector Store — Abstract Base

Every concrete vector store backend (Qdrant, Pinecone) implements this
interface. The pipeline, search engine and answer service only speak this
protocol, so backends are swappable without touching retrieval code.

Collection contract:
  - `collection` names the logical index partition: a Qdrant collection,
    or a namespace inside the shared Pinecone index.
  - Collection names are validated upstream (^[a-zA-Z0-9_-]+$).
  - `filter` is a flat {payload_field: value} equality map; each backend
    translates it into its native filter syntax.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------

@dataclass
class VectorRecord:
    """A single embedding record to upsert into the vector store."""
    id:      str               # uuid4 string
    vector:  list[float]       # embedding from the configured provider
    payload: dict = field(default_factory=dict)
    # Fields always present in payload (set by EmbeddingPipeline):
    # - key:          str   blob-store key of the source PDF
    # - name:         str   file name shown in answers
    # - content:      str   enriched chunk text
    # - chunk_index:  int
    # - total_chunks: int


@dataclass
class ScoredPoint:
    """One result returned from a similarity search."""
    id:      str
    score:   float             # cosine similarity
    payload: dict = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------

class VectorStoreBase(ABC):

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Short backend identifier for logs."""

    @abstractmethod
    async def upsert(self, collection: str, records: list[VectorRecord]) -> int:
        """Insert or update records. Returns the number of vectors written."""

    @abstractmethod
    async def search(
        self,
        collection:      str,
        vector:          list[float],
        limit:           int,
        score_threshold: float,
        filter:          dict | None = None,
    ) -> list[ScoredPoint]:
        """
        Nearest-neighbour search. Results are ordered by descending score
        and every result has score ≥ score_threshold.
        """

    @abstractmethod
    async def ensure_collection(self, collection: str, dimensions: int) -> bool:
        """Create the collection (and its payload index) if missing. Returns True if created."""

    @abstractmethod
    async def delete_by_key(self, collection: str, key: str) -> None:
        """Delete every point whose payload `key` equals the given source key."""

    @abstractmethod
    async def count(self, collection: str) -> int:
        """Return total vectors in the collection."""

    async def close(self) -> None:
        """Release client resources. Default: nothing to release."""
