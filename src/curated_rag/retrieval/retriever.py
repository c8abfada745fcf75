"""Hybrid retriever: vector search, quality filter, and tiered reranking.

This module is the **primary public interface** for search.  It drives the
LangGraph workflow from :mod:`curated_rag.retrieval.graph` and returns
ranked, justified results scoped to one session.

Usage::

    from curated_rag.retrieval.retriever import HybridRetriever

    retriever = HybridRetriever(store, embedder)
    results = await retriever.search("What is the refund window?", "session-42")
    for r in results:
        print(r.source, r.rerank_score, r.relevance_reasoning)
"""

from __future__ import annotations

import logging
from typing import Any

from curated_rag.config import settings
from curated_rag.errors import InputError
from curated_rag.ingestion.embedder import Embedder
from curated_rag.retrieval.base import VectorStoreBase, require_session_id
from curated_rag.retrieval.graph import SearchState, build_search_graph
from curated_rag.retrieval.models import RerankResult, SearchOptions
from curated_rag.retrieval.reranker import RerankerChain, build_reranker_chain

logger = logging.getLogger(__name__)


class HybridRetriever:
    """Session-scoped search over any :class:`VectorStoreBase`.

    Parameters
    ----------
    store:
        A concrete vector-store backend.
    embedder:
        Embeds the query; must produce vectors of the store's dimension.
    chain:
        Final rerank chain.  Defaults to :func:`build_reranker_chain`.
    store_timeout:
        Seconds allowed per store call.
    """

    def __init__(
        self,
        store: VectorStoreBase,
        embedder: Embedder,
        chain: RerankerChain | None = None,
        *,
        store_timeout: float = settings.store_timeout,
    ) -> None:
        self._store = store
        self._embedder = embedder
        self._chain = chain or build_reranker_chain()
        self._graph = build_search_graph(
            store=store,
            embedder=embedder,
            chain=self._chain,
            store_timeout=store_timeout,
        )

    # -- public API -----------------------------------------------------------

    async def search(
        self,
        query: str,
        session_id: str,
        options: SearchOptions | None = None,
    ) -> list[RerankResult]:
        """Return at most ``options.top_k`` ranked results for *query*.

        Every result belongs to *session_id* and has
        ``validation_score >= options.min_validation_score``.  An empty
        session returns an empty list, not an error.

        Raises
        ------
        InputError
            Blank query or session id.
        EmbeddingError
            The query could not be embedded.
        StoreError
            The vector search failed after retries.
        """
        state = await self.run(query, session_id, options)
        return state.get("results", [])

    async def run(
        self,
        query: str,
        session_id: str,
        options: SearchOptions | None = None,
    ) -> dict[str, Any]:
        """Run the search graph and return its final state (``stages`` included)."""
        if not query or not query.strip():
            raise InputError("Query must not be empty")
        require_session_id(session_id)
        options = options or SearchOptions()

        initial: SearchState = {
            "query": query,
            "session_id": session_id,
            "top_k": options.top_k,
            "min_validation_score": options.min_validation_score,
            "use_reranking": options.use_reranking,
            "apply_diversity": options.diversity_boost,
            "candidates": [],
            "results": [],
            "stages": [],
        }
        state = await self._graph.ainvoke(initial)
        logger.info(
            "Search in session %s returned %d result(s) via %s",
            session_id,
            len(state.get("results", [])),
            " → ".join(state.get("stages", [])),
        )
        return state
