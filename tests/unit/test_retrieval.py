"""Unit tests for the retrieval layer — models, search graph, and HybridRetriever."""

from __future__ import annotations

import pytest

from curated_rag.errors import InputError
from curated_rag.retrieval.models import Chunk, DocumentSummary, MetadataFilter, RerankResult, SearchOptions, SearchResult
from curated_rag.retrieval.reranker import LOCAL_ONLY_REASONING, Reranker, RerankerChain
from curated_rag.retrieval.retriever import HybridRetriever

# ── Fixtures ────────────────────────────────────────────────────────────

DOCS = {
    "refunds.md": [
        "Refunds are issued within 30 days of purchase.",
        "Refund requests require the original receipt.",
        "Store credit is offered when no receipt is available.",
    ],
    "shipping.md": [
        "Standard shipping takes five business days.",
        "Express shipping is available for an extra fee.",
    ],
}


class RecordingReranker(Reranker):
    """Final tier that records its calls and reverses the incoming order."""

    name = "recording"

    def __init__(self) -> None:
        self.calls = 0

    async def rerank(self, query, candidates, top_k):
        self.calls += 1
        return [
            RerankResult.from_search_result(c, rerank_score=1.0 - i / 10, reasoning="recorded", reranker=self.name)
            for i, c in enumerate(reversed(list(candidates)))
        ][:top_k]


async def _load(store, embedder, session_id: str, *, score: float = 0.9) -> None:
    for filename, sentences in DOCS.items():
        chunks = [
            Chunk(
                content=text,
                source_filename=filename,
                file_type="md",
                chunk_index=i,
                validation_score=score,
                session_id=session_id,
            )
            for i, text in enumerate(sentences)
        ]
        store.upsert(chunks, await embedder.embed_batch([c.content for c in chunks]), session_id)


@pytest.fixture()
def final_tier() -> RecordingReranker:
    return RecordingReranker()


@pytest.fixture()
def retriever(store, embedder, final_tier) -> HybridRetriever:
    return HybridRetriever(store, embedder, RerankerChain([final_tier]))


# ── Model tests ─────────────────────────────────────────────────────────


class TestModels:
    def test_chunk_metadata_is_flat(self) -> None:
        chunk = Chunk(
            content="x", source_filename="a.pdf", file_type="pdf", chunk_index=2, validation_score=0.8, session_id="s"
        )
        meta = chunk.to_metadata()
        assert meta["filename"] == "a.pdf"
        assert meta["session_id"] == "s"
        assert isinstance(meta["upload_date"], str)

    def test_chunk_is_immutable(self) -> None:
        chunk = Chunk(
            content="x", source_filename="a.pdf", file_type="pdf", chunk_index=0, validation_score=0.8, session_id="s"
        )
        with pytest.raises(Exception):
            chunk.content = "y"  # type: ignore[misc]

    def test_chunk_rejects_out_of_range_score(self) -> None:
        with pytest.raises(ValueError):
            Chunk(content="x", source_filename="a", file_type="md", chunk_index=0, validation_score=1.5, session_id="s")

    def test_effective_score(self) -> None:
        result = SearchResult(content="x", source="a", similarity_score=0.4, validation_score=1.0)
        assert result.effective_score == 0.4
        assert result.model_copy(update={"score": 0.6}).effective_score == 0.6

    def test_rerank_result_str(self) -> None:
        result = RerankResult(
            content="Some long content about refunds.",
            source="refunds.md",
            chunk_index=1,
            similarity_score=0.8,
            validation_score=0.9,
            rerank_score=0.7,
            relevance_reasoning="r",
        )
        assert "[refunds.md§1]" in str(result)

    def test_insufficient_quality_flag(self) -> None:
        assert DocumentSummary(filename="a", avg_validation_score=0.0).insufficient_quality is True
        assert DocumentSummary(filename="a", avg_validation_score=0.8).insufficient_quality is False

    def test_metadata_filter_factories(self) -> None:
        assert MetadataFilter.at_least("validation_score", 0.7).operator == "gte"
        assert MetadataFilter.one_of("filename", ["a", "b"]).value == ["a", "b"]

    def test_search_options_validation(self) -> None:
        with pytest.raises(ValueError):
            SearchOptions(top_k=0)


# ── HybridRetriever tests ──────────────────────────────────────────────


class TestHybridRetriever:
    @pytest.mark.asyncio
    async def test_empty_session_returns_nothing(self, retriever: HybridRetriever, final_tier) -> None:
        state = await retriever.run("refund policy", "nobody")
        assert state["results"] == []
        assert state["stages"] == ["vector_search", "filter"]
        assert final_tier.calls == 0

    @pytest.mark.asyncio
    async def test_full_pipeline_stages(self, store, embedder, retriever: HybridRetriever) -> None:
        await _load(store, embedder, "s1")
        state = await retriever.run("refund receipt", "s1", SearchOptions(top_k=3))
        assert state["stages"] == [
            "vector_search",
            "filter",
            "heuristic_rerank",
            "diversity_boost",
            "rerank:recording",
        ]
        assert len(state["results"]) == 3

    @pytest.mark.asyncio
    async def test_results_belong_to_session(self, store, embedder, retriever: HybridRetriever) -> None:
        await _load(store, embedder, "A")
        await _load(store, embedder, "B")
        results = await retriever.search("shipping", "A", SearchOptions(top_k=10))
        ids_a = {c.id for c in store.chunks_for("A")}
        assert results
        assert all(r.id in ids_a for r in results)

    @pytest.mark.asyncio
    async def test_top_k_bound(self, store, embedder, retriever: HybridRetriever) -> None:
        await _load(store, embedder, "s1")
        results = await retriever.search("refund", "s1", SearchOptions(top_k=2))
        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_low_quality_chunks_are_excluded(self, store, embedder, retriever: HybridRetriever) -> None:
        await _load(store, embedder, "s1", score=0.5)
        assert await retriever.search("refund", "s1") == []
        relaxed = await retriever.search("refund", "s1", SearchOptions(min_validation_score=0.4))
        assert relaxed

    @pytest.mark.asyncio
    async def test_reranking_disabled(self, store, embedder, retriever: HybridRetriever, final_tier) -> None:
        await _load(store, embedder, "s1")
        results = await retriever.search("refund receipt", "s1", SearchOptions(top_k=3, use_reranking=False))
        assert final_tier.calls == 0
        assert all(r.relevance_reasoning == LOCAL_ONLY_REASONING for r in results)
        scores = [r.rerank_score for r in results]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_single_candidate_skips_chain(self, store, embedder, retriever: HybridRetriever, final_tier) -> None:
        chunk = Chunk(
            content="Only one chunk here.",
            source_filename="one.md",
            file_type="md",
            chunk_index=0,
            validation_score=0.9,
            session_id="solo",
        )
        store.upsert([chunk], await embedder.embed_batch([chunk.content]), "solo")
        results = await retriever.search("chunk", "solo")
        assert [r.id for r in results] == [chunk.id]
        assert final_tier.calls == 0

    @pytest.mark.asyncio
    async def test_diversity_toggle(self, store, embedder, retriever: HybridRetriever) -> None:
        await _load(store, embedder, "s1")
        state = await retriever.run("refund", "s1", SearchOptions(diversity_boost=False))
        assert "diversity_boost:skipped" in state["stages"]

    @pytest.mark.asyncio
    async def test_scores_are_retained(self, store, embedder, retriever: HybridRetriever) -> None:
        await _load(store, embedder, "s1")
        (first, *_) = await retriever.search("refund receipt", "s1")
        assert 0.0 <= first.similarity_score <= 1.0 + 1e-9
        assert first.reranker == "recording"
        assert first.relevance_reasoning == "recorded"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("query", "session"), [("", "s1"), ("   ", "s1"), ("refund", "")])
    async def test_blank_arguments(self, retriever: HybridRetriever, query: str, session: str) -> None:
        with pytest.raises(InputError):
            await retriever.search(query, session)
