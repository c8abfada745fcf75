"""Chunk quality gating via an LLM fact-checker.

The classifier is an external collaborator and is allowed to fail: any
failure (timeout, transport error, malformed output) is logged and replaced
by :data:`DEFAULT_VALIDATION`, so an ingest always completes.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from pydantic import ValidationError

from curated_rag.config import settings
from curated_rag.errors import ClassificationError
from curated_rag.ingestion.models import ValidationResult
from curated_rag.llm import get_llm, parse_json_payload
from curated_rag.prompts import build_validation_prompt

logger = logging.getLogger(__name__)

DEFAULT_VALIDATION = ValidationResult(
    is_valid=False,
    confidence=0.5,
    issues=["Validation failed"],
    reasoning="Could not validate content",
)


class QualityValidator:
    """Judges chunks with a chat model, one call per chunk, in parallel.

    Parameters
    ----------
    llm:
        Any LangChain chat model exposing ``ainvoke``.  Defaults to
        :func:`~curated_rag.llm.get_llm` with the validator model.
    timeout:
        Seconds allowed per classifier call.
    max_concurrency:
        Upper bound on in-flight classifier calls in :meth:`validate_many`.
    """

    def __init__(
        self,
        llm: Any | None = None,
        *,
        timeout: float = settings.classifier_timeout,
        max_concurrency: int = settings.validator_concurrency,
    ) -> None:
        self._llm = llm
        self.timeout = timeout
        self.max_concurrency = max_concurrency

    @property
    def llm(self) -> Any:
        if self._llm is None:
            self._llm = get_llm(temperature=0.0, model=settings.validator_model_name, timeout=self.timeout)
        return self._llm

    async def validate(self, text: str) -> ValidationResult:
        """Return the verdict for *text*; never raises on classifier failure."""
        try:
            return await asyncio.wait_for(self._classify(text), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Quality check timed out after %.1fs (chunk=%.60r)",
                self.timeout,
                text,
            )
        except ClassificationError as exc:
            logger.warning("Quality check failed (chunk=%.60r): %s", text, exc)
        except Exception:
            logger.exception("Quality classifier raised (chunk=%.60r)", text)
        return DEFAULT_VALIDATION.model_copy(deep=True)

    async def validate_many(self, texts: Sequence[str]) -> list[ValidationResult]:
        """Validate *texts* concurrently; result ``i`` belongs to ``texts[i]``."""
        if not texts:
            return []

        semaphore = asyncio.Semaphore(self.max_concurrency)
        results: list[ValidationResult | None] = [None] * len(texts)

        async def _run(index: int, text: str) -> None:
            async with semaphore:
                results[index] = await self.validate(text)

        await asyncio.gather(*(_run(i, t) for i, t in enumerate(texts)))

        passed = sum(1 for r in results if r is not None and r.is_valid)
        logger.info("Validated %d chunk(s): %d judged valid", len(texts), passed)
        return [r if r is not None else DEFAULT_VALIDATION.model_copy(deep=True) for r in results]

    async def _classify(self, text: str) -> ValidationResult:
        response = await self.llm.ainvoke(build_validation_prompt(text))
        try:
            payload = parse_json_payload(response.content)
            if not isinstance(payload, dict):
                raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
            return ValidationResult.model_validate(
                {
                    "is_valid": payload.get("is_valid", payload.get("isValid")),
                    "confidence": payload.get("confidence"),
                    "issues": payload.get("issues"),
                    "reasoning": payload.get("reasoning", ""),
                }
            )
        except (ValueError, TypeError, ValidationError) as exc:
            raise ClassificationError(
                f"Unparseable classifier response: {exc}",
                details={"response": str(response.content)[:200]},
            ) from exc


def filter_by_quality(validations: Sequence[ValidationResult], threshold: float) -> list[int]:
    """Indices of validations that pass *threshold*, in original order.

    A chunk passes when the classifier judged it valid with
    ``confidence >= threshold``.  Raising the threshold can only shrink the
    retained set.
    """
    return [i for i, v in enumerate(validations) if v.is_valid and v.confidence >= threshold]
