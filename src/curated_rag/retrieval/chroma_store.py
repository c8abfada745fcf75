"""Chroma implementation of the vector-store abstraction."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

import chromadb

from curated_rag.config import settings
from curated_rag.errors import ErrorCode, StoreError, classify_exception
from curated_rag.retrieval.base import VectorStoreBase, require_session_id
from curated_rag.retrieval.models import Chunk, DocumentSummary, MetadataFilter, SearchResult

logger = logging.getLogger(__name__)

_OP_MAP = {
    "eq": "$eq",
    "ne": "$ne",
    "gt": "$gt",
    "gte": "$gte",
    "lt": "$lt",
    "lte": "$lte",
    "in": "$in",
    "nin": "$nin",
}


def _build_chroma_where(filters: list[MetadataFilter]) -> dict[str, Any] | None:
    """Convert a list of :class:`MetadataFilter` to Chroma ``where`` syntax."""
    if not filters:
        return None

    clauses: list[dict[str, Any]] = []
    for f in filters:
        chroma_op = _OP_MAP.get(f.operator)
        if chroma_op is None:
            raise ValueError(f"Unsupported filter operator: {f.operator!r}")
        clauses.append({f.field: {chroma_op: f.value}})

    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _session_where(session_id: str, *extra: MetadataFilter) -> dict[str, Any]:
    return _build_chroma_where([MetadataFilter.equals("session_id", session_id), *extra]) or {}


def _driver_error(message: str, exc: Exception, fallback: ErrorCode, details: dict[str, Any]) -> StoreError:
    """Wrap a Chroma exception, keeping *fallback* only when the cause is unrecognised."""
    code, retryable = classify_exception(exc)
    if code == ErrorCode.UNKNOWN_ERROR:
        code = fallback
    return StoreError(f"{message}: {exc}", code=code, details=details, retryable=retryable)


class ChromaVectorStore(VectorStoreBase):
    """Chroma-backed, session-partitioned vector store.

    Parameters
    ----------
    collection_name:
        Name of the Chroma collection.
    host:
        Chroma server hostname.
    port:
        Chroma server port.
    dimension:
        Vector size recorded on the collection at creation time.
    client:
        Pre-built Chroma client (e.g. ``chromadb.EphemeralClient()`` in
        tests).  When *None* an ``HttpClient`` for *host*/*port* is created.
    """

    def __init__(
        self,
        collection_name: str = settings.chroma_collection,
        *,
        host: str = settings.chroma_host,
        port: int = settings.chroma_port,
        dimension: int = settings.embedding_dimension,
        client: Any | None = None,
    ) -> None:
        super().__init__(collection_name, dimension)
        self._host = host
        self._port = port
        self._client = client if client is not None else chromadb.HttpClient(host=host, port=port)
        self._collection: Any | None = None

    # -- VectorStoreBase overrides --------------------------------------------

    def ensure_collection(self) -> None:
        self._get_collection()

    def upsert(self, chunks: Sequence[Chunk], vectors: Sequence[Sequence[float]], session_id: str) -> None:
        self.check_upsert(chunks, vectors, session_id)
        if not chunks:
            return
        collection = self._get_collection()
        try:
            # One RPC: ids, vectors, documents and metadata land together or not at all.
            collection.upsert(
                ids=[c.id for c in chunks],
                embeddings=[list(v) for v in vectors],
                documents=[c.content for c in chunks],
                metadatas=[c.to_metadata() for c in chunks],
            )
        except Exception as exc:
            raise _driver_error(
                f"Upsert into {self.collection_name!r} failed",
                exc,
                ErrorCode.STORAGE_FAILED,
                {"session_id": session_id, "count": len(chunks)},
            ) from exc
        logger.info(
            "Stored %d chunk(s) of %s for session %s",
            len(chunks),
            chunks[0].source_filename,
            session_id,
        )

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
        collection = self._get_collection()

        try:
            total = collection.count()
            if total == 0:
                logger.debug("Collection %s is empty", self.collection_name)
                return []
            results = collection.query(
                query_embeddings=[list(query_vector)],
                n_results=min(top_k, total),
                where=_session_where(session_id, MetadataFilter.at_least("validation_score", min_validation_score)),
                include=["documents", "metadatas", "distances"],
            )
        except Exception as exc:
            raise _driver_error(
                f"Search in {self.collection_name!r} failed",
                exc,
                ErrorCode.RETRIEVAL_FAILED,
                {"session_id": session_id},
            ) from exc

        hits: list[SearchResult] = []
        ids = (results.get("ids") or [[]])[0]
        docs = (results.get("documents") or [[]])[0]
        metas = (results.get("metadatas") or [[]])[0]
        distances = (results.get("distances") or [[]])[0]

        for point_id, content, meta, dist in zip(ids, docs, metas, distances):
            meta = meta or {}
            if meta.get("session_id") != session_id:
                logger.error("Dropping point %s from another session", point_id)
                continue
            # Cosine space: distance = 1 - cosine similarity.
            hits.append(
                SearchResult(
                    id=point_id,
                    content=content or "",
                    source=meta.get("filename", "unknown"),
                    similarity_score=1.0 - float(dist),
                    validation_score=float(meta.get("validation_score", 0.0)),
                    chunk_index=meta.get("chunk_index"),
                )
            )
        hits.sort(key=lambda h: h.similarity_score, reverse=True)
        logger.debug("Search for session %s returned %d hit(s)", session_id, len(hits))
        return hits

    def delete_by_source(self, filename: str, session_id: str) -> int:
        require_session_id(session_id)
        collection = self._get_collection()
        where = _session_where(session_id, MetadataFilter.equals("filename", filename))
        try:
            matched = collection.get(where=where, include=["metadatas"])
            count = len(matched.get("ids") or [])
            if count:
                collection.delete(where=where)
        except Exception as exc:
            raise _driver_error(
                f"Delete of {filename!r} failed",
                exc,
                ErrorCode.DELETE_FAILED,
                {"filename": filename, "session_id": session_id},
            ) from exc
        logger.info("Deleted %d chunk(s) of %s for session %s", count, filename, session_id)
        return count

    def list_documents(self, session_id: str) -> list[DocumentSummary]:
        require_session_id(session_id)
        collection = self._get_collection()
        try:
            points = collection.get(where=_session_where(session_id), include=["metadatas"])
        except Exception as exc:
            raise _driver_error(
                "Listing documents failed",
                exc,
                ErrorCode.RETRIEVAL_FAILED,
                {"session_id": session_id},
            ) from exc

        totals: dict[str, float] = {}
        summaries: dict[str, DocumentSummary] = {}
        for meta in points.get("metadatas") or []:
            meta = meta or {}
            filename = meta.get("filename", "unknown")
            summary = summaries.setdefault(
                filename,
                DocumentSummary(
                    filename=filename,
                    file_type=meta.get("file_type", ""),
                    upload_date=meta.get("upload_date", ""),
                ),
            )
            summary.chunk_count += 1
            totals[filename] = totals.get(filename, 0.0) + float(meta.get("validation_score", 0.0))

        for filename, summary in summaries.items():
            summary.avg_validation_score = totals[filename] / summary.chunk_count
        return sorted(summaries.values(), key=lambda s: s.upload_date, reverse=True)

    def health_check(self) -> bool:
        try:
            self._client.heartbeat()
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False

    # -- internals ------------------------------------------------------------

    def _get_collection(self) -> Any:
        if self._collection is not None:
            return self._collection
        try:
            try:
                collection = self._client.get_collection(self.collection_name)
            except Exception:
                logger.info(
                    "Creating collection %s (dimension=%d, cosine)",
                    self.collection_name,
                    self.dimension,
                )
                collection = self._client.get_or_create_collection(
                    self.collection_name,
                    metadata={"hnsw:space": "cosine", "dimension": self.dimension},
                )
        except Exception as exc:
            raise StoreError(
                f"Could not open collection {self.collection_name!r}: {exc}",
                code=ErrorCode.DB_CONNECTION_FAILED,
            ) from exc

        recorded = (collection.metadata or {}).get("dimension")
        if recorded is not None and int(recorded) != self.dimension:
            raise StoreError(
                f"Collection {self.collection_name!r} holds {recorded}-d vectors, configured dimension is {self.dimension}",
                code=ErrorCode.DIMENSION_MISMATCH,
                retryable=False,
            )
        self._collection = collection
        return collection
