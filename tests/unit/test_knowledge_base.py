"""Unit tests for the KnowledgeBase facade."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from curated_rag.errors import ErrorCode, StoreError
from curated_rag.ingestion.models import ChunkOptions, ValidationResult
from curated_rag.knowledge_base import KnowledgeBase
from curated_rag.retrieval.models import SearchOptions
from curated_rag.retrieval.reranker import HeuristicReranker, RerankerChain

TEXT = "Refunds are issued within 30 days. Receipts are required for refunds. Store credit is the fallback."


@pytest.fixture()
def validator() -> MagicMock:
    validator = MagicMock()

    async def _all_valid(texts):
        return [ValidationResult(is_valid=True, confidence=0.9) for _ in texts]

    validator.validate_many = AsyncMock(side_effect=_all_valid)
    return validator


@pytest.fixture()
def kb(store, embedder, validator, word_counter) -> KnowledgeBase:
    kb = KnowledgeBase(store, embedder, validator, RerankerChain([HeuristicReranker()]))
    kb.ingestion.token_counter = word_counter
    return kb


async def _ingest(kb: KnowledgeBase, filename: str, session_id: str) -> None:
    await kb.ingest_text(
        TEXT,
        filename=filename,
        file_type="md",
        session_id=session_id,
        options=ChunkOptions(max_tokens=8, overlap_size=0),
    )


class TestKnowledgeBase:
    @pytest.mark.asyncio
    async def test_ingest_then_search(self, kb: KnowledgeBase) -> None:
        await _ingest(kb, "policy.md", "s1")
        results = await kb.search("refunds receipts", "s1", SearchOptions(top_k=2))
        assert 1 <= len(results) <= 2
        assert all(r.source == "policy.md" for r in results)

    @pytest.mark.asyncio
    async def test_exact_chunk_ranks_first(self, kb: KnowledgeBase) -> None:
        report = await kb.ingest_text(
            TEXT,
            filename="policy.md",
            file_type="md",
            session_id="s1",
            options=ChunkOptions(max_tokens=8, overlap_size=0),
        )
        assert len(report.chunks) == 3
        target = report.chunks[1]

        results = await kb.search(target.content, "s1", SearchOptions(top_k=3))
        assert results[0].id == target.id
        assert results[0].content == target.content
        assert results[0].similarity_score == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_session_isolation(self, kb: KnowledgeBase) -> None:
        await _ingest(kb, "mine.md", "A")
        await _ingest(kb, "theirs.md", "B")
        results = await kb.search("refunds", "A", SearchOptions(top_k=10))
        assert results
        assert {r.source for r in results} == {"mine.md"}

    @pytest.mark.asyncio
    async def test_delete_cascades_within_session(self, kb: KnowledgeBase) -> None:
        await _ingest(kb, "policy.md", "A")
        await _ingest(kb, "policy.md", "B")

        deleted = await kb.delete_by_source("policy.md", "A")
        assert deleted == 3
        assert await kb.search("refunds", "A") == []
        assert await kb.search("refunds", "B")
        assert await kb.delete_by_source("policy.md", "A") == 0

    @pytest.mark.asyncio
    async def test_list_documents(self, kb: KnowledgeBase) -> None:
        await _ingest(kb, "one.md", "s1")
        await _ingest(kb, "two.md", "s1")
        docs = await kb.list_documents("s1")
        assert {d.filename for d in docs} == {"one.md", "two.md"}
        assert all(d.chunk_count == 3 for d in docs)

    @pytest.mark.asyncio
    async def test_delete_failure_is_reported_as_delete_failed(self, store, kb: KnowledgeBase) -> None:
        store.delete_by_source = MagicMock(side_effect=StoreError("disk full", retryable=False))
        with pytest.raises(StoreError) as info:
            await kb.delete_by_source("policy.md", "s1")
        assert info.value.code == ErrorCode.DELETE_FAILED
        assert info.value.details["filename"] == "policy.md"

    @pytest.mark.asyncio
    async def test_delete_keeps_connectivity_code(self, store, kb: KnowledgeBase) -> None:
        store.delete_by_source = MagicMock(
            side_effect=StoreError("db unreachable", code=ErrorCode.DB_CONNECTION_FAILED, retryable=False)
        )
        with pytest.raises(StoreError) as info:
            await kb.delete_by_source("policy.md", "s1")
        assert info.value.code == ErrorCode.DB_CONNECTION_FAILED

    @pytest.mark.asyncio
    async def test_health_check(self, store, kb: KnowledgeBase) -> None:
        assert await kb.health_check() is True
        store.health_check = MagicMock(return_value=False)
        assert await kb.health_check() is False
