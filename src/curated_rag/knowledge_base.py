"""Session-scoped knowledge base: the operations exposed to callers.

:class:`KnowledgeBase` wires the ingestion pipeline, the vector store and
the hybrid retriever together.  Every operation takes the session id
explicitly; nothing is shared across sessions.

Usage::

    from curated_rag.knowledge_base import build_knowledge_base

    kb = build_knowledge_base()
    report = await kb.ingest_file(pdf_bytes, filename="handbook.pdf", session_id="s-1")
    hits = await kb.search("parental leave policy", "s-1")
"""

from __future__ import annotations

import logging

from curated_rag.config import settings
from curated_rag.errors import ErrorCode, InputError, KBError, StoreError, retry_with_backoff
from curated_rag.ingestion.embedder import Embedder
from curated_rag.ingestion.models import ChunkOptions, IngestReport
from curated_rag.ingestion.service import IngestionService
from curated_rag.ingestion.validator import QualityValidator
from curated_rag.retrieval.base import VectorStoreBase, call_store, require_session_id
from curated_rag.retrieval.models import DocumentSummary, RerankResult, SearchOptions
from curated_rag.retrieval.reranker import RerankerChain
from curated_rag.retrieval.retriever import HybridRetriever

logger = logging.getLogger(__name__)

# Store failures without a more specific cause; reported as DELETE_FAILED.
_GENERIC_STORE_CODES = frozenset({ErrorCode.STORAGE_FAILED, ErrorCode.RETRIEVAL_FAILED, ErrorCode.UNKNOWN_ERROR})


class KnowledgeBase:
    """Facade over ingestion, search and document management.

    Parameters
    ----------
    store:
        Session-partitioned vector store.
    embedder:
        Shared by ingestion and query embedding.
    validator:
        Quality classifier used at ingest time.
    chain:
        Final rerank chain; defaults to the configured tier order.
    store_timeout:
        Seconds allowed per store call.
    """

    def __init__(
        self,
        store: VectorStoreBase,
        embedder: Embedder,
        validator: QualityValidator,
        chain: RerankerChain | None = None,
        *,
        store_timeout: float = settings.store_timeout,
    ) -> None:
        self.store = store
        self.store_timeout = store_timeout
        self.ingestion = IngestionService(store, embedder, validator, store_timeout=store_timeout)
        self.retriever = HybridRetriever(store, embedder, chain, store_timeout=store_timeout)

    # -- ingestion ------------------------------------------------------------

    async def ingest_text(
        self,
        text: str,
        *,
        filename: str,
        file_type: str,
        session_id: str,
        options: ChunkOptions | None = None,
    ) -> IngestReport:
        return await self.ingestion.ingest_text(
            text,
            filename=filename,
            file_type=file_type,
            session_id=session_id,
            options=options,
        )

    async def ingest_file(
        self,
        data: bytes,
        *,
        filename: str,
        session_id: str,
        options: ChunkOptions | None = None,
    ) -> IngestReport:
        return await self.ingestion.ingest_file(data, filename=filename, session_id=session_id, options=options)

    # -- retrieval ------------------------------------------------------------

    async def search(
        self,
        query: str,
        session_id: str,
        options: SearchOptions | None = None,
    ) -> list[RerankResult]:
        return await self.retriever.search(query, session_id, options)

    # -- document management --------------------------------------------------

    async def delete_by_source(self, filename: str, session_id: str) -> int:
        """Delete every chunk of *filename* in *session_id*.

        Returns
        -------
        int
            Number of chunks removed (``0`` when the document is unknown).
        """
        require_session_id(session_id)
        try:
            return await retry_with_backoff(
                lambda: call_store(
                    self.store.delete_by_source,
                    filename,
                    session_id,
                    timeout=self.store_timeout,
                    operation="delete",
                ),
                name=f"delete {filename}",
            )
        except KBError as exc:
            if isinstance(exc, InputError) or exc.code not in _GENERIC_STORE_CODES:
                raise
            raise StoreError(
                f"Delete of {filename!r} failed: {exc.message}",
                code=ErrorCode.DELETE_FAILED,
                details={"filename": filename, "session_id": session_id, "cause": exc.code.value},
                retryable=exc.retryable,
            ) from exc

    async def list_documents(self, session_id: str) -> list[DocumentSummary]:
        require_session_id(session_id)
        return await retry_with_backoff(
            lambda: call_store(
                self.store.list_documents,
                session_id,
                timeout=self.store_timeout,
                operation="list_documents",
            ),
            name="list documents",
        )

    async def health_check(self) -> bool:
        try:
            return await call_store(self.store.health_check, timeout=self.store_timeout, operation="health_check")
        except StoreError:
            logger.warning("Vector store health-check timed out")
            return False


def build_knowledge_base() -> KnowledgeBase:
    """Build a :class:`KnowledgeBase` from the global settings."""
    from curated_rag.retrieval.chroma_store import ChromaVectorStore
    from curated_rag.retrieval.reranker import build_reranker_chain

    return KnowledgeBase(
        ChromaVectorStore(),
        Embedder(),
        QualityValidator(),
        build_reranker_chain(),
    )
