"""
Retrieval — session-scoped vector search, quality filtering, and reranking.

This module wraps the vector store behind a clean interface so that
callers never need to know which DB is backing retrieval.

Public surface
--------------
- :class:`HybridRetriever` — main entry point for ranked, justified search.
- :class:`VectorStoreBase` — abstract backend (subclass for Qdrant, etc.).
- :class:`ChromaVectorStore` — default Chroma backend.
- :class:`RerankerChain` / :func:`build_reranker_chain` — tiered final rerank.
- :class:`Chunk`, :class:`SearchResult`, :class:`RerankResult`,
  :class:`SearchOptions`, :class:`DocumentSummary` — data models.
"""

from curated_rag.retrieval.base import VectorStoreBase
from curated_rag.retrieval.models import (
    Chunk,
    DocumentSummary,
    MetadataFilter,
    RerankResult,
    SearchOptions,
    SearchResult,
)
from curated_rag.retrieval.reranker import RerankerChain, build_reranker_chain
from curated_rag.retrieval.retriever import HybridRetriever

__all__ = [
    "ChromaVectorStore",
    "Chunk",
    "DocumentSummary",
    "HybridRetriever",
    "MetadataFilter",
    "RerankResult",
    "RerankerChain",
    "SearchOptions",
    "SearchResult",
    "VectorStoreBase",
    "build_reranker_chain",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaVectorStore to avoid pulling in chromadb at import time."""
    if name == "ChromaVectorStore":
        from curated_rag.retrieval.chroma_store import ChromaVectorStore

        return ChromaVectorStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
