"""
RAG package — query classification, search, reranking and answering.

AnswerService lives in drillrag.rag.pipeline; import it from there so the
search components stay usable without the metadata store.
"""

from drillrag.rag.query_classifier import QueryType, classify_query
from drillrag.rag.reranker import DomainReranker, SearchResult
from drillrag.rag.retriever import SearchEngine, SearchOptions

__all__ = [
    "QueryType",
    "classify_query",
    "DomainReranker",
    "SearchResult",
    "SearchEngine",
    "SearchOptions",
]
