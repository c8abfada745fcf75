"""Models flowing through the ingestion pipeline."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from curated_rag.config import settings
from curated_rag.retrieval.models import Chunk


class ChunkOptions(BaseModel):
    """Chunking knobs.

    Attributes
    ----------
    max_tokens:
        Upper bound on tokens per chunk (a single longer sentence is kept
        whole).
    overlap_size:
        Number of trailing sentences of a flushed chunk re-injected at the
        start of the next one.
    preserve_sentence_boundaries:
        When ``False`` whitespace-delimited words are accumulated instead of
        sentences.
    """

    max_tokens: int = Field(default_factory=lambda: settings.chunk_max_tokens, gt=0)
    overlap_size: int = Field(default_factory=lambda: settings.chunk_overlap_sentences, ge=0)
    preserve_sentence_boundaries: bool = True


class ValidationResult(BaseModel):
    """Verdict of the quality classifier for one chunk."""

    is_valid: bool
    confidence: float
    issues: list[str] = Field(default_factory=list)
    reasoning: str = ""

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: object) -> float:
        return min(1.0, max(0.0, float(value)))  # type: ignore[arg-type]

    @field_validator("issues", mode="before")
    @classmethod
    def _coerce_issues(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return [str(v) for v in value]  # type: ignore[union-attr]


class IngestReport(BaseModel):
    """Outcome of ingesting one document."""

    filename: str
    session_id: str
    chunks: list[Chunk] = Field(default_factory=list)
    total_chunks: int = 0
    valid_chunks: int = 0
    avg_validation: float = 0.0
    insufficient_quality: bool = False
    warnings: list[str] = Field(default_factory=list)
