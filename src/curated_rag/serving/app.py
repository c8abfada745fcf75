"""FastAPI application exposing the knowledge base as a REST API."""

from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import Depends, FastAPI, File, Header, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from curated_rag.config import settings
from curated_rag.errors import InputError, KBError, handle_kb_error
from curated_rag.knowledge_base import KnowledgeBase, build_knowledge_base
from curated_rag.retrieval.base import require_session_id
from curated_rag.retrieval.models import DocumentSummary, RerankResult, SearchOptions

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Curated RAG API",
    version="0.1.0",
    description="Quality-gated, session-scoped document knowledge base with hybrid search.",
)


# ── Dependencies ──────────────────────────────────────────────────────
@lru_cache(maxsize=1)
def get_knowledge_base() -> KnowledgeBase:
    """Process-wide knowledge base, built on first use."""
    return build_knowledge_base()


def get_session_id(x_session_id: str | None = Header(default=None)) -> str:
    """Read the mandatory ``X-Session-Id`` header."""
    return require_session_id(x_session_id)


# ── Request / Response schemas ────────────────────────────────────────
class SearchRequest(BaseModel):
    """Incoming search query."""

    query: str = Field(min_length=1)
    top_k: int = Field(default=5, ge=1)
    min_validation_score: float | None = Field(default=None, ge=0.0, le=1.0)
    use_reranking: bool = True
    diversity_boost: bool = True

    def to_options(self) -> SearchOptions:
        options = SearchOptions(
            top_k=self.top_k,
            use_reranking=self.use_reranking,
            diversity_boost=self.diversity_boost,
        )
        if self.min_validation_score is not None:
            options.min_validation_score = self.min_validation_score
        return options


class UploadResponse(BaseModel):
    """Outcome of one document upload."""

    filename: str
    total_chunks: int
    valid_chunks: int
    stored_chunks: int
    avg_validation: float
    insufficient_quality: bool
    warnings: list[str] = []


class DeleteResponse(BaseModel):
    filename: str
    deleted_chunks: int


# ── Error handling ────────────────────────────────────────────────────
@app.exception_handler(KBError)
async def kb_error_handler(request: Request, exc: KBError) -> JSONResponse:
    """Render a :class:`KBError` as ``{"error", "message", "retryable"}``."""
    info = handle_kb_error(exc, operation=f"{request.method} {request.url.path}", source=exc.details.get("filename"))
    if isinstance(exc, InputError):
        status = 400
    elif info.retryable:
        status = 503
    else:
        status = 500
    return JSONResponse(
        status_code=status,
        content={"error": info.code, "message": info.message, "retryable": info.retryable},
    )


# ── Routes ────────────────────────────────────────────────────────────
@app.get("/health")
async def health(kb: KnowledgeBase = Depends(get_knowledge_base)) -> dict[str, str]:
    """Liveness probe plus vector-store reachability."""
    store_ok = await kb.health_check()
    return {"status": "ok", "vector_store": "ok" if store_ok else "unavailable"}


@app.post("/documents", response_model=UploadResponse)
async def upload_document(
    file: UploadFile = File(...),
    session_id: str = Depends(get_session_id),
    kb: KnowledgeBase = Depends(get_knowledge_base),
) -> UploadResponse:
    """Ingest one uploaded document into the caller's session."""
    data = await file.read()
    report = await kb.ingest_file(data, filename=file.filename or "upload", session_id=session_id)
    return UploadResponse(
        filename=report.filename,
        total_chunks=report.total_chunks,
        valid_chunks=report.valid_chunks,
        stored_chunks=len(report.chunks),
        avg_validation=report.avg_validation,
        insufficient_quality=report.insufficient_quality,
        warnings=report.warnings,
    )


@app.get("/documents", response_model=list[DocumentSummary])
async def list_documents(
    session_id: str = Depends(get_session_id),
    kb: KnowledgeBase = Depends(get_knowledge_base),
) -> list[DocumentSummary]:
    """List the caller's documents, newest first."""
    return await kb.list_documents(session_id)


@app.delete("/documents/{filename}", response_model=DeleteResponse)
async def delete_document(
    filename: str,
    session_id: str = Depends(get_session_id),
    kb: KnowledgeBase = Depends(get_knowledge_base),
) -> DeleteResponse:
    """Delete every chunk of *filename* from the caller's session."""
    deleted = await kb.delete_by_source(filename, session_id)
    return DeleteResponse(filename=filename, deleted_chunks=deleted)


@app.post("/search", response_model=list[RerankResult])
async def search(
    request: SearchRequest,
    session_id: str = Depends(get_session_id),
    kb: KnowledgeBase = Depends(get_knowledge_base),
) -> list[RerankResult]:
    """Hybrid search over the caller's session."""
    return await kb.search(request.query, session_id, request.to_options())
