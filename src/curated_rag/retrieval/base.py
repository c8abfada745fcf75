"""Abstract base class for vector-store backends.

Adding a new backend (Qdrant, Pinecone, Weaviate …) only requires
subclassing :class:`VectorStoreBase` and implementing the abstract
methods.  The rest of the ingestion and retrieval stack is
backend-agnostic.

The session id is a mandatory partition key: every write and every read
takes it explicitly, and backends must apply it server-side.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

from curated_rag.errors import ErrorCode, InputError, StoreError
from curated_rag.retrieval.models import Chunk, DocumentSummary, SearchResult

T = TypeVar("T")


def require_session_id(session_id: str | None) -> str:
    """Return *session_id* or raise :class:`InputError` when it is blank."""
    if not session_id or not session_id.strip():
        raise InputError("Session ID required", code=ErrorCode.MISSING_SESSION)
    return session_id


class VectorStoreBase(ABC):
    """Backend-agnostic, session-partitioned vector-store interface.

    Parameters
    ----------
    collection_name:
        Logical name of the collection / index / namespace.
    dimension:
        Vector size fixed at collection creation.
    """

    def __init__(self, collection_name: str, dimension: int) -> None:
        self.collection_name = collection_name
        self.dimension = dimension

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def ensure_collection(self) -> None:
        """Create the collection (cosine metric, fixed dimension) if absent."""
        ...

    @abstractmethod
    def upsert(self, chunks: Sequence[Chunk], vectors: Sequence[Sequence[float]], session_id: str) -> None:
        """Store *chunks* with their *vectors* under *session_id* atomically."""
        ...

    @abstractmethod
    def search(
        self,
        query_vector: Sequence[float],
        *,
        top_k: int,
        session_id: str,
        min_validation_score: float = 0.7,
    ) -> list[SearchResult]:
        """Return up to *top_k* nearest chunks of *session_id*, best first.

        Only chunks with ``validation_score >= min_validation_score`` are
        returned.  An empty collection yields an empty list.
        """
        ...

    @abstractmethod
    def delete_by_source(self, filename: str, session_id: str) -> int:
        """Delete every chunk of *filename* in *session_id*; return the count."""
        ...

    @abstractmethod
    def list_documents(self, session_id: str) -> list[DocumentSummary]:
        """Aggregate stored chunks of *session_id* per source document."""
        ...

    @abstractmethod
    def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        ...

    # -- shared checks --------------------------------------------------------

    def check_upsert(
        self,
        chunks: Sequence[Chunk],
        vectors: Sequence[Sequence[float]],
        session_id: str,
    ) -> None:
        """Validate an upsert batch before anything is written."""
        require_session_id(session_id)
        if len(chunks) != len(vectors):
            raise InputError(
                f"Got {len(chunks)} chunks but {len(vectors)} vectors",
                details={"chunks": len(chunks), "vectors": len(vectors)},
            )
        for chunk, vector in zip(chunks, vectors):
            if chunk.session_id != session_id:
                raise InputError(
                    f"Chunk {chunk.id} belongs to another session",
                    code=ErrorCode.MISSING_SESSION,
                )
            if len(vector) != self.dimension:
                raise StoreError(
                    f"Vector for chunk {chunk.id} has dimension {len(vector)}, collection expects {self.dimension}",
                    code=ErrorCode.DIMENSION_MISMATCH,
                    retryable=False,
                )

    def check_query_vector(self, query_vector: Sequence[float]) -> None:
        if len(query_vector) != self.dimension:
            raise StoreError(
                f"Query vector has dimension {len(query_vector)}, collection expects {self.dimension}",
                code=ErrorCode.DIMENSION_MISMATCH,
                retryable=False,
            )


async def call_store(
    fn: Callable[..., T],
    *args: Any,
    timeout: float,
    operation: str,
    **kwargs: Any,
) -> T:
    """Run a blocking store call in a worker thread under *timeout*.

    A timeout surfaces as a retryable :class:`StoreError`.
    """
    try:
        return await asyncio.wait_for(asyncio.to_thread(fn, *args, **kwargs), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise StoreError(
            f"{operation} timed out after {timeout:.1f}s",
            code=ErrorCode.TIMEOUT,
        ) from exc
