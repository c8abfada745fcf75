"""Error taxonomy, user-facing error mapping, and retry helpers.

Every failure that can reach a caller is a :class:`KBError` carrying a
stable :class:`ErrorCode` and a ``retryable`` flag, so callers can branch on
retryability without inspecting internals.  :func:`handle_kb_error` is the
single place that logs a failure and turns it into an :class:`ErrorInfo`.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from curated_rag.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorCode(str, Enum):
    # Upload
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    UNSUPPORTED_FORMAT = "UNSUPPORTED_FORMAT"
    MISSING_SESSION = "MISSING_SESSION"
    INVALID_INPUT = "INVALID_INPUT"
    EXTRACTION_FAILED = "EXTRACTION_FAILED"

    # Processing
    VALIDATION_FAILED = "VALIDATION_FAILED"
    EMBEDDING_FAILED = "EMBEDDING_FAILED"
    DIMENSION_MISMATCH = "DIMENSION_MISMATCH"

    # Storage
    STORAGE_FAILED = "STORAGE_FAILED"
    RETRIEVAL_FAILED = "RETRIEVAL_FAILED"
    DELETE_FAILED = "DELETE_FAILED"

    # Rerank
    RERANK_FAILED = "RERANK_FAILED"

    # Connectivity
    DB_CONNECTION_FAILED = "DB_CONNECTION_FAILED"
    API_RATE_LIMIT = "API_RATE_LIMIT"
    TIMEOUT = "TIMEOUT"

    UNKNOWN_ERROR = "UNKNOWN_ERROR"


class KBError(Exception):
    """Base class for knowledge-base failures.

    Parameters
    ----------
    message:
        Developer-facing description (the user-facing text comes from
        :func:`friendly_message`).
    code:
        Overrides the subclass default code.
    details:
        Arbitrary context (filename, sizes, upstream status, …).
    retryable:
        Overrides the subclass default retryability.
    """

    default_code: ErrorCode = ErrorCode.UNKNOWN_ERROR
    default_retryable: bool = True

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.retryable = self.default_retryable if retryable is None else retryable


class InputError(KBError):
    """Bad file type, size, or request arguments.  Never retried."""

    default_code = ErrorCode.INVALID_INPUT
    default_retryable = False


class ExtractionError(KBError):
    """The document parser failed.  Retried with exponential backoff."""

    default_code = ErrorCode.EXTRACTION_FAILED


class ClassificationError(KBError):
    """The quality classifier failed.  Always replaced by a safe default."""

    default_code = ErrorCode.VALIDATION_FAILED


class EmbeddingError(KBError):
    """No usable vectors; fatal for the current ingest."""

    default_code = ErrorCode.EMBEDDING_FAILED
    default_retryable = False


class StoreError(KBError):
    """Vector database failure."""

    default_code = ErrorCode.STORAGE_FAILED


class RerankTierError(KBError):
    """One rerank tier failed; the chain moves on to the next tier."""

    default_code = ErrorCode.RERANK_FAILED


class ErrorInfo(BaseModel):
    """Stable, user-facing description of a failure."""

    code: str
    message: str
    retryable: bool


_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.FILE_TOO_LARGE: "File is too large. Maximum size is {max_mb}MB.",
    ErrorCode.UNSUPPORTED_FORMAT: "File format not supported. Please upload one of: {allowed}.",
    ErrorCode.MISSING_SESSION: "Session ID required.",
    ErrorCode.INVALID_INPUT: "The request was invalid.",
    ErrorCode.EXTRACTION_FAILED: (
        "Unable to extract text from {source}. The file may be corrupted or password-protected."
    ),
    ErrorCode.VALIDATION_FAILED: "Unable to validate document quality. Upload will proceed without validation.",
    ErrorCode.EMBEDDING_FAILED: "Failed to generate embeddings. Please try again.",
    ErrorCode.DIMENSION_MISMATCH: "Embedding size does not match the knowledge base. A migration is required.",
    ErrorCode.STORAGE_FAILED: "Failed to store document in knowledge base. Please try again.",
    ErrorCode.RETRIEVAL_FAILED: "Failed to retrieve documents. Please try again.",
    ErrorCode.DELETE_FAILED: "Failed to delete {source}. Please try again.",
    ErrorCode.RERANK_FAILED: "Failed to rank results. Showing results by similarity instead.",
    ErrorCode.DB_CONNECTION_FAILED: "Unable to connect to knowledge base. Please try again.",
    ErrorCode.API_RATE_LIMIT: "Service is temporarily busy. Please try again in a moment.",
    ErrorCode.TIMEOUT: "Operation timed out. Please try again with a smaller file or simpler query.",
    ErrorCode.UNKNOWN_ERROR: "An unexpected error occurred. Please try again.",
}


def friendly_message(code: ErrorCode, source: str | None = None) -> str:
    """Return the human-readable message for *code*."""
    template = _MESSAGES.get(code, _MESSAGES[ErrorCode.UNKNOWN_ERROR])
    return template.format(
        source=source or "the document",
        max_mb=settings.max_file_size_bytes // (1024 * 1024),
        allowed=", ".join(settings.allowed_file_types),
    )


def classify_exception(exc: BaseException) -> tuple[ErrorCode, bool]:
    """Map an arbitrary exception to ``(code, retryable)``."""
    if isinstance(exc, KBError):
        return exc.code, exc.retryable
    if isinstance(exc, (TimeoutError, asyncio.TimeoutError)):
        return ErrorCode.TIMEOUT, True

    text = str(exc).lower()
    if "rate limit" in text or "429" in text:
        return ErrorCode.API_RATE_LIMIT, True
    if "connection" in text or "econnrefused" in text or isinstance(exc, ConnectionError):
        return ErrorCode.DB_CONNECTION_FAILED, True
    if "timeout" in text or "timed out" in text:
        return ErrorCode.TIMEOUT, True
    return ErrorCode.UNKNOWN_ERROR, True


def handle_kb_error(exc: BaseException, *, operation: str, source: str | None = None) -> ErrorInfo:
    """Log *exc* with its operation and source, and return an :class:`ErrorInfo`."""
    code, retryable = classify_exception(exc)
    logger.error(
        "%s failed (source=%s, code=%s): %s",
        operation,
        source or "-",
        code.value,
        exc,
        exc_info=exc if not isinstance(exc, KBError) else None,
    )
    return ErrorInfo(code=code.value, message=friendly_message(code, source), retryable=retryable)


def is_retryable(exc: BaseException) -> bool:
    """Retry predicate: non-retryable :class:`KBError`\\s stop immediately."""
    if not isinstance(exc, Exception):
        # Cancellation and interpreter exits always propagate.
        return False
    return classify_exception(exc)[1]


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int | None = None,
    base_delay: float | None = None,
    name: str = "operation",
) -> T:
    """Await *operation* with bounded exponential backoff.

    Delays are ``base_delay``, ``2×base_delay``, ``4×base_delay`` … between
    attempts.  The last exception is re-raised once attempts run out.
    """
    attempts = max_attempts or settings.retry_max_attempts
    delay = settings.retry_base_delay if base_delay is None else base_delay

    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=delay, min=delay, max=max(delay * 8, delay)),
        retry=retry_if_exception(is_retryable),
        before_sleep=before_sleep_log(logger, logging.INFO),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            logger.debug("%s attempt %d/%d", name, attempt.retry_state.attempt_number, attempts)
            result = await operation()
    return result
