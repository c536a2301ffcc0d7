from drillrag.vectorstore.base import ScoredPoint, VectorRecord, VectorStoreBase
from drillrag.vectorstore.factory import get_vector_store

__all__ = ["VectorStoreBase", "VectorRecord", "ScoredPoint", "get_vector_store"]
