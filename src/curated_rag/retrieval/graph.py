"""LangGraph state machine for one hybrid-search query.

Graph topology::

      ┌───────────────┐
      │ vector_search  │   ← embed query, fetch 2×top_k session hits
      └──────┬────────┘
             ▼
      ┌───────────────┐   nothing left
      │    filter      ├──────────────────┐
      └──────┬────────┘                   │
             ▼                            │
      ┌────────────────┐                  │
      │heuristic_rerank │                 │
      └──────┬─────────┘                  │
             ▼                            │
      ┌───────────────┐                   │
      │diversity_boost │                  │
      └──────┬────────┘                   │
             ▼                            │
      ┌───────────────┐                   │
      │ final_rerank   │ cross-encoder → llm → heuristic
      └──────┬────────┘                   │
             ▼                            ▼
          [ END ] ◄───────────────────────┘

Every node returns only the keys it changed and appends its name to
``stages`` so the path a query took is visible in the final state.
"""

from __future__ import annotations

import operator
from typing import Annotated, Any, TypedDict

from langgraph.graph import END, StateGraph

from curated_rag.errors import retry_with_backoff
from curated_rag.ingestion.embedder import Embedder
from curated_rag.retrieval.base import VectorStoreBase, call_store
from curated_rag.retrieval.models import RerankResult, SearchResult
from curated_rag.retrieval.reranker import (
    LOCAL_ONLY_REASONING,
    HeuristicReranker,
    RerankerChain,
    apply_diversity_boost,
    heuristic_rerank,
)


class SearchState(TypedDict):
    """State flowing through the search graph.

    Attributes
    ----------
    query:
        The natural-language query.
    session_id:
        Partition the search is scoped to.
    top_k:
        Number of final results wanted.
    min_validation_score:
        Quality cut-off applied in the store and in ``filter``.
    use_reranking:
        Run the fallback chain in ``final_rerank``.
    apply_diversity:
        Run the diversity boost in ``diversity_boost``.
    candidates:
        Working candidate list, replaced by every stage.
    results:
        Final ranked results.
    stages:
        Names of the stages visited, in order.
    """

    query: str
    session_id: str
    top_k: int
    min_validation_score: float
    use_reranking: bool
    apply_diversity: bool
    candidates: list[SearchResult]
    results: list[RerankResult]
    stages: Annotated[list[str], operator.add]


def build_search_graph(
    *,
    store: VectorStoreBase,
    embedder: Embedder,
    chain: RerankerChain,
    store_timeout: float,
) -> Any:
    """Compile the search workflow over the given collaborators.

    Returns
    -------
    CompiledGraph
        A compiled LangGraph workflow ready for ``.ainvoke()``.
    """

    async def vector_search(state: SearchState) -> dict[str, Any]:
        query_vector = await embedder.embed(state["query"])
        hits = await retry_with_backoff(
            lambda: call_store(
                store.search,
                query_vector,
                top_k=state["top_k"] * 2,
                session_id=state["session_id"],
                min_validation_score=state["min_validation_score"],
                timeout=store_timeout,
                operation="search",
            ),
            name="vector search",
        )
        return {"candidates": hits, "stages": ["vector_search"]}

    def filter_candidates(state: SearchState) -> dict[str, Any]:
        threshold = state["min_validation_score"]
        kept = [c for c in state["candidates"] if c.validation_score >= threshold]
        return {"candidates": kept, "stages": ["filter"]}

    def rerank_locally(state: SearchState) -> dict[str, Any]:
        return {
            "candidates": heuristic_rerank(state["query"], state["candidates"]),
            "stages": ["heuristic_rerank"],
        }

    def boost_diversity(state: SearchState) -> dict[str, Any]:
        if not state["apply_diversity"]:
            return {"stages": ["diversity_boost:skipped"]}
        return {"candidates": apply_diversity_boost(state["candidates"]), "stages": ["diversity_boost"]}

    async def final_rerank(state: SearchState) -> dict[str, Any]:
        candidates = state["candidates"]
        if state["use_reranking"] and len(candidates) > 1:
            results = await chain.rerank(state["query"], candidates, state["top_k"])
        else:
            results = await HeuristicReranker(LOCAL_ONLY_REASONING).rerank(
                state["query"], candidates, state["top_k"]
            )
        tier = results[0].reranker if results else "none"
        return {"results": results, "stages": [f"rerank:{tier}"]}

    workflow = StateGraph(SearchState)

    # -- Nodes ---------------------------------------------------------------
    workflow.add_node("vector_search", vector_search)
    workflow.add_node("filter", filter_candidates)
    workflow.add_node("heuristic_rerank", rerank_locally)
    workflow.add_node("diversity_boost", boost_diversity)
    workflow.add_node("final_rerank", final_rerank)

    # -- Edges ---------------------------------------------------------------
    workflow.set_entry_point("vector_search")
    workflow.add_edge("vector_search", "filter")
    workflow.add_conditional_edges(
        "filter",
        _has_candidates,
        {
            "continue": "heuristic_rerank",
            "done": END,
        },
    )
    workflow.add_edge("heuristic_rerank", "diversity_boost")
    workflow.add_edge("diversity_boost", "final_rerank")
    workflow.add_edge("final_rerank", END)

    return workflow.compile()


def _has_candidates(state: SearchState) -> str:
    return "continue" if state.get("candidates") else "done"
