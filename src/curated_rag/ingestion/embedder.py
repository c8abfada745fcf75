"""Text → vector conversion with dimension enforcement."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from curated_rag.config import settings
from curated_rag.errors import EmbeddingError, ErrorCode

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)


def get_embedding_function() -> Embeddings:
    """Return the configured LangChain embedding backend.

    ``huggingface`` (default) runs a local sentence-transformer;
    ``openai`` calls the OpenAI embeddings API.
    """
    if settings.embedding_provider == "openai":
        from langchain_openai import OpenAIEmbeddings

        return OpenAIEmbeddings(model=settings.embedding_model, api_key=settings.openai_api_key)

    from langchain_huggingface import HuggingFaceEmbeddings

    return HuggingFaceEmbeddings(model_name=settings.embedding_model)


class Embedder:
    """Single and batch embedding with a fixed output dimension.

    Any backend failure, timeout, count mismatch or dimension mismatch is
    raised as a non-retryable :class:`EmbeddingError`: without vectors there
    is nothing to store.

    Parameters
    ----------
    embeddings:
        LangChain ``Embeddings`` backend; defaults to
        :func:`get_embedding_function` (built lazily).
    dimension:
        Expected vector size; must equal the vector store's.
    timeout:
        Seconds allowed per backend call.
    """

    def __init__(
        self,
        embeddings: Embeddings | None = None,
        *,
        dimension: int = settings.embedding_dimension,
        timeout: float = settings.embedding_timeout,
    ) -> None:
        self._embeddings = embeddings
        self.dimension = dimension
        self.timeout = timeout

    @property
    def embeddings(self) -> Embeddings:
        if self._embeddings is None:
            self._embeddings = get_embedding_function()
        return self._embeddings

    async def embed(self, text: str) -> list[float]:
        """Embed one query string."""
        try:
            vector = await asyncio.wait_for(self.embeddings.aembed_query(text), timeout=self.timeout)
        except Exception as exc:
            raise EmbeddingError(f"Query embedding failed: {exc!r}") from exc
        self._check_dimension([vector])
        return list(vector)

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts* in one backend call; output ``i`` matches ``texts[i]``."""
        if not texts:
            return []
        try:
            vectors = await asyncio.wait_for(
                self.embeddings.aembed_documents(list(texts)),
                timeout=self.timeout,
            )
        except Exception as exc:
            raise EmbeddingError(
                f"Batch embedding of {len(texts)} text(s) failed: {exc!r}",
                details={"count": len(texts)},
            ) from exc

        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Embedding backend returned {len(vectors)} vector(s) for {len(texts)} text(s)",
                details={"expected": len(texts), "received": len(vectors)},
            )
        self._check_dimension(vectors)
        logger.info("Embedded %d text(s) (dimension=%d)", len(vectors), self.dimension)
        return [list(v) for v in vectors]

    def _check_dimension(self, vectors: Sequence[Sequence[float]]) -> None:
        for i, vector in enumerate(vectors):
            if len(vector) != self.dimension:
                raise EmbeddingError(
                    f"Vector {i} has dimension {len(vector)}, expected {self.dimension}",
                    code=ErrorCode.DIMENSION_MISMATCH,
                    details={"index": i, "received": len(vector), "expected": self.dimension},
                )
