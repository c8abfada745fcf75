"""Document ingestion pipeline.

    text ─► chunk ─► validate (parallel) ─► quality filter ─► embed (batch) ─► upsert

Persistence is the last step and a single store call, so a failed or
cancelled ingest leaves nothing behind.  When no chunk passes the quality
gate, every chunk is still stored with ``validation_score=0`` and the
report is flagged ``insufficient_quality``; such chunks never surface in
searches with a positive threshold but remain listable and deletable.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from curated_rag.config import settings
from curated_rag.errors import ExtractionError, KBError, retry_with_backoff
from curated_rag.ingestion.chunker import TokenCounter, chunk_text
from curated_rag.ingestion.embedder import Embedder
from curated_rag.ingestion.loader import DocumentParser, extract_text, validate_upload
from curated_rag.ingestion.models import ChunkOptions, IngestReport, ValidationResult
from curated_rag.ingestion.validator import QualityValidator, filter_by_quality
from curated_rag.retrieval.base import VectorStoreBase, call_store, require_session_id
from curated_rag.retrieval.models import Chunk

logger = logging.getLogger(__name__)

INSUFFICIENT_QUALITY_WARNING = (
    'Document failed quality validation and is marked as "Insufficient Quality". '
    "Review and correct the content."
)


class IngestionService:
    """Turns extracted text into validated, embedded, stored chunks.

    Parameters
    ----------
    store:
        Session-partitioned vector store.
    embedder:
        Embedder whose dimension matches *store*.
    validator:
        Quality classifier wrapper.
    parser:
        ``bytes`` + extension → text; used by :meth:`ingest_file`.
    validation_threshold:
        Minimum classifier confidence for a chunk to count as valid.
    token_counter:
        Optional token counter forwarded to the chunker.
    store_timeout:
        Seconds allowed per store call.
    """

    def __init__(
        self,
        store: VectorStoreBase,
        embedder: Embedder,
        validator: QualityValidator,
        *,
        parser: DocumentParser = extract_text,
        validation_threshold: float = settings.validation_threshold,
        token_counter: TokenCounter | None = None,
        store_timeout: float = settings.store_timeout,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.validator = validator
        self.parser = parser
        self.validation_threshold = validation_threshold
        self.token_counter = token_counter
        self.store_timeout = store_timeout

    async def ingest_file(
        self,
        data: bytes,
        *,
        filename: str,
        session_id: str,
        options: ChunkOptions | None = None,
    ) -> IngestReport:
        """Validate an upload, extract its text (with retries) and ingest it."""
        require_session_id(session_id)
        file_type = validate_upload(filename, len(data))

        async def _extract() -> str:
            try:
                return await asyncio.to_thread(self.parser, data, file_type)
            except KBError:
                raise
            except Exception as exc:
                raise ExtractionError(
                    f"Text extraction failed: {exc}",
                    details={"filename": filename},
                ) from exc

        text = await retry_with_backoff(_extract, name=f"extract {filename}")
        logger.info("Extracted %d characters from %s", len(text), filename)
        return await self.ingest_text(
            text,
            filename=filename,
            file_type=file_type,
            session_id=session_id,
            options=options,
        )

    async def ingest_text(
        self,
        text: str,
        *,
        filename: str,
        file_type: str,
        session_id: str,
        options: ChunkOptions | None = None,
    ) -> IngestReport:
        """Chunk, validate, embed and store *text* as document *filename*.

        Returns
        -------
        IngestReport
            The stored chunks (with their validation scores) and quality
            statistics.  Blank text stores nothing.

        Raises
        ------
        EmbeddingError
            Vectors could not be produced; nothing was stored.
        StoreError
            The vector store rejected or failed the write after retries.
        """
        require_session_id(session_id)
        texts = chunk_text(text, options, token_counter=self.token_counter)
        report = IngestReport(filename=filename, session_id=session_id, total_chunks=len(texts))
        if not texts:
            logger.warning("No chunks produced for %s (session %s)", filename, session_id)
            return report

        validations = await self.validator.validate_many(texts)
        retained = filter_by_quality(validations, self.validation_threshold)
        report.valid_chunks = len(retained)
        report.avg_validation = _average_validation(validations)

        if retained:
            selected = [(i, validations[i].confidence) for i in retained]
        else:
            logger.warning(
                "No chunks of %s passed validation (avg=%.2f); storing with score 0",
                filename,
                report.avg_validation,
            )
            report.insufficient_quality = True
            report.warnings.append(INSUFFICIENT_QUALITY_WARNING)
            selected = [(i, 0.0) for i in range(len(texts))]

        uploaded_at = datetime.now(timezone.utc)
        chunks = [
            Chunk(
                content=texts[i],
                source_filename=filename,
                file_type=file_type,
                upload_date=uploaded_at,
                chunk_index=i,
                validation_score=score,
                session_id=session_id,
            )
            for i, score in selected
        ]

        vectors = await self.embedder.embed_batch([c.content for c in chunks])

        await retry_with_backoff(
            lambda: call_store(self.store.ensure_collection, timeout=self.store_timeout, operation="ensure_collection"),
            name="ensure collection",
        )
        await retry_with_backoff(
            lambda: call_store(
                self.store.upsert,
                chunks,
                vectors,
                session_id,
                timeout=self.store_timeout,
                operation="upsert",
            ),
            name=f"upsert {filename}",
        )

        report.chunks = chunks
        report.warnings.extend(_low_confidence_notes(validations, self.validation_threshold))
        logger.info(
            "Ingested %s for session %s: %d/%d chunk(s) valid, %d stored, avg validation %.2f",
            filename,
            session_id,
            report.valid_chunks,
            report.total_chunks,
            len(chunks),
            report.avg_validation,
        )
        return report


def _average_validation(validations: list[ValidationResult]) -> float:
    """Mean confidence, counting chunks judged invalid as 0."""
    scores = [v.confidence if v.is_valid else 0.0 for v in validations]
    return sum(scores) / len(scores) if scores else 0.0


def _low_confidence_notes(validations: list[ValidationResult], threshold: float, limit: int = 2) -> list[str]:
    notes = [v.reasoning for v in validations if v.is_valid and threshold <= v.confidence < 0.9 and v.reasoning]
    return notes[:limit]
