"""Domain models for stored chunks, search results, and rerank results."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field

from curated_rag.config import settings


class MetadataFilter(BaseModel):
    """Declarative metadata filter for vector-store queries.

    Attributes
    ----------
    field:
        The metadata key to filter on (e.g. ``"session_id"``, ``"filename"``).
    operator:
        Comparison operator — one of ``eq``, ``ne``, ``gt``, ``gte``,
        ``lt``, ``lte``, ``in``, ``nin``.
    value:
        The value (or list of values for ``in`` / ``nin``) to compare against.
    """

    field: str
    operator: str = "eq"
    value: Any = None

    # -- helpers for common filters ------------------------------------------

    @classmethod
    def equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="eq", value=value)

    @classmethod
    def at_least(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="gte", value=value)

    @classmethod
    def one_of(cls, field: str, values: list[Any]) -> MetadataFilter:
        return cls(field=field, operator="in", value=values)


class Chunk(BaseModel):
    """One stored retrieval unit.

    Chunks are immutable: re-uploading a document produces new chunks with
    new ids and never edits existing ones.

    Attributes
    ----------
    id:
        Unique chunk identifier (also the vector-store point id).
    content:
        The chunk text.
    source_filename:
        Name of the uploaded document the chunk came from.
    file_type:
        Lower-cased extension of the source document.
    upload_date:
        UTC timestamp of the upload that created the chunk.
    chunk_index:
        Ordinal position of the chunk within the source document.
    validation_score:
        Quality-gate confidence in ``[0, 1]``.
    session_id:
        Partition key isolating one user's knowledge base.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    content: str
    source_filename: str
    file_type: str
    upload_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    chunk_index: int = Field(ge=0)
    validation_score: float = Field(ge=0.0, le=1.0)
    session_id: str = Field(min_length=1)

    def to_metadata(self) -> dict[str, Any]:
        """Flat, scalar-only payload stored next to the vector."""
        return {
            "filename": self.source_filename,
            "file_type": self.file_type,
            "upload_date": self.upload_date.isoformat(),
            "chunk_index": self.chunk_index,
            "validation_score": self.validation_score,
            "session_id": self.session_id,
        }


class SearchResult(BaseModel):
    """A nearest-neighbour hit returned by the vector store.

    ``similarity_score`` is the raw cosine similarity and never changes;
    ``score`` holds the working relevance written by the local rerank
    stages (heuristic + diversity).
    """

    id: str | None = None
    content: str
    source: str
    similarity_score: float
    validation_score: float
    chunk_index: int | None = None
    score: float | None = None

    @property
    def effective_score(self) -> float:
        return self.similarity_score if self.score is None else self.score


class RerankResult(SearchResult):
    """A final-ranked result with its justification."""

    rerank_score: float
    relevance_reasoning: str
    reranker: str = "heuristic"

    @classmethod
    def from_search_result(
        cls,
        result: SearchResult,
        *,
        rerank_score: float,
        reasoning: str,
        reranker: str,
    ) -> RerankResult:
        return cls(
            **result.model_dump(include=set(SearchResult.model_fields)),
            rerank_score=rerank_score,
            relevance_reasoning=reasoning,
            reranker=reranker,
        )

    def __str__(self) -> str:  # noqa: D105
        return f"[{self.source}§{self.chunk_index if self.chunk_index is not None else '?'}] {self.content[:120]}…"


class DocumentSummary(BaseModel):
    """Per-document aggregate of the chunks stored for one session."""

    filename: str
    file_type: str = ""
    upload_date: str = ""
    chunk_count: int = 0
    avg_validation_score: float = 0.0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def insufficient_quality(self) -> bool:
        return self.avg_validation_score == 0.0


class SearchOptions(BaseModel):
    """Query-time knobs for hybrid search."""

    top_k: int = Field(default=5, ge=1)
    min_validation_score: float = Field(default_factory=lambda: settings.min_validation_score, ge=0.0, le=1.0)
    use_reranking: bool = True
    diversity_boost: bool = True
