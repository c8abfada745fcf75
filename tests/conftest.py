"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import math
import zlib
from collections.abc import Sequence
from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.embeddings import Embeddings
from langchain_core.messages import AIMessage

from curated_rag.config import settings
from curated_rag.ingestion.embedder import Embedder
from curated_rag.retrieval.base import VectorStoreBase, require_session_id
from curated_rag.retrieval.models import Chunk, DocumentSummary, SearchResult

DIM = 16


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Fakes ───────────────────────────────────────────────────────────────


class HashingEmbeddings(Embeddings):
    """Bag-of-words hashing embedder: texts sharing words point the same way."""

    def __init__(self, size: int = DIM) -> None:
        self.size = size

    def _vector(self, text: str) -> list[float]:
        vec = [0.0] * self.size
        for word in text.lower().split():
            vec[zlib.crc32(word.strip(".,!?").encode()) % self.size] += 1.0
        norm = math.sqrt(sum(v * v for v in vec))
        if norm == 0:
            vec[0] = 1.0
            return vec
        return [v / norm for v in vec]

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._vector(t) for t in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._vector(text)


class InMemoryVectorStore(VectorStoreBase):
    """Dict-backed store with cosine similarity, partitioned by session."""

    def __init__(self, dimension: int = DIM) -> None:
        super().__init__("test-collection", dimension)
        self.points: dict[str, tuple[Chunk, list[float]]] = {}
        self.upsert_calls = 0

    def ensure_collection(self) -> None:
        return None

    def upsert(self, chunks: Sequence[Chunk], vectors: Sequence[Sequence[float]], session_id: str) -> None:
        self.check_upsert(chunks, vectors, session_id)
        self.upsert_calls += 1
        for chunk, vector in zip(chunks, vectors):
            self.points[chunk.id] = (chunk, list(vector))

    def search(
        self,
        query_vector: Sequence[float],
        *,
        top_k: int,
        session_id: str,
        min_validation_score: float = 0.7,
    ) -> list[SearchResult]:
        require_session_id(session_id)
        self.check_query_vector(query_vector)
        hits = [
            SearchResult(
                id=chunk.id,
                content=chunk.content,
                source=chunk.source_filename,
                similarity_score=_cosine(query_vector, vector),
                validation_score=chunk.validation_score,
                chunk_index=chunk.chunk_index,
            )
            for chunk, vector in self.points.values()
            if chunk.session_id == session_id and chunk.validation_score >= min_validation_score
        ]
        hits.sort(key=lambda h: h.similarity_score, reverse=True)
        return hits[:top_k]

    def delete_by_source(self, filename: str, session_id: str) -> int:
        require_session_id(session_id)
        doomed = [
            pid
            for pid, (chunk, _) in self.points.items()
            if chunk.source_filename == filename and chunk.session_id == session_id
        ]
        for pid in doomed:
            del self.points[pid]
        return len(doomed)

    def list_documents(self, session_id: str) -> list[DocumentSummary]:
        require_session_id(session_id)
        summaries: dict[str, DocumentSummary] = {}
        for chunk, _ in self.points.values():
            if chunk.session_id != session_id:
                continue
            s = summaries.setdefault(
                chunk.source_filename,
                DocumentSummary(filename=chunk.source_filename, file_type=chunk.file_type),
            )
            s.avg_validation_score = (s.avg_validation_score * s.chunk_count + chunk.validation_score) / (
                s.chunk_count + 1
            )
            s.chunk_count += 1
        return list(summaries.values())

    def health_check(self) -> bool:
        return True

    def chunks_for(self, session_id: str) -> list[Chunk]:
        return sorted(
            (c for c, _ in self.points.values() if c.session_id == session_id),
            key=lambda c: (c.source_filename, c.chunk_index),
        )


def _cosine(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    return dot / (na * nb) if na and nb else 0.0


def word_count(text: str) -> int:
    """Token counter used in tests: one token per whitespace-delimited word."""
    return len(text.split())


def fake_llm(*contents: str) -> MagicMock:
    """Chat model double whose ``ainvoke`` returns *contents* in turn."""
    llm = MagicMock()
    llm.ainvoke = AsyncMock(side_effect=[AIMessage(content=c) for c in contents])
    return llm


# ── Fixtures ────────────────────────────────────────────────────────────


@pytest.fixture()
def store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture()
def embedder() -> Embedder:
    return Embedder(HashingEmbeddings(), dimension=DIM, timeout=5.0)


@pytest.fixture()
def no_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make retry_with_backoff sleep zero seconds between attempts."""
    monkeypatch.setattr(settings, "retry_base_delay", 0.0)


@pytest.fixture()
def make_llm():
    return fake_llm


@pytest.fixture()
def word_counter():
    return word_count
