"""Reranking: local score adjustments and the tiered fallback chain.

Local, network-free stages:

* :func:`heuristic_rerank` — boosts similarity by query-term coverage and
  validation score.
* :func:`apply_diversity_boost` — spreads results across source documents.

Final rerank strategies share one contract,
``await reranker.rerank(query, candidates, top_k) -> list[RerankResult]``:

* :class:`CrossEncoderReranker` — Cohere-compatible ``/rerank`` service.
* :class:`LLMReranker` — chat model judgment with a short justification.
* :class:`HeuristicReranker` — keeps the local order; cannot fail.

:class:`RerankerChain` tries them strictly in order, one at a time, and
always ends on the heuristic tier.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError, field_validator

from curated_rag.config import settings
from curated_rag.errors import RerankTierError
from curated_rag.llm import get_llm, parse_json_payload
from curated_rag.prompts import build_rerank_prompt
from curated_rag.retrieval.models import RerankResult, SearchResult

logger = logging.getLogger(__name__)

HEURISTIC_REASONING = "Heuristic: term coverage + validation score"
LOCAL_ONLY_REASONING = "Ranked by hybrid vector + keyword matching"

FIRST_SOURCE_BOOST = 1.2
REPEAT_SOURCE_PENALTY = 0.9


# ---------------------------------------------------------------------------
# Local stages
# ---------------------------------------------------------------------------


def term_coverage(query: str, content: str) -> float:
    """Fraction of whitespace-split query terms literally present in *content*.

    Case-insensitive substring matching; an empty query covers nothing.
    """
    terms = query.lower().split()
    if not terms:
        return 0.0
    haystack = content.lower()
    return sum(1 for term in terms if term in haystack) / len(terms)


def heuristic_rerank(query: str, results: Sequence[SearchResult]) -> list[SearchResult]:
    """Rescore *results* and sort them best first.

    ``score = similarity × (1 + coverage × 0.3) × (0.8 + 0.2 × validation)``
    """
    rescored = [
        r.model_copy(
            update={
                "score": r.similarity_score
                * (1 + term_coverage(query, r.content) * 0.3)
                * (0.8 + 0.2 * r.validation_score)
            }
        )
        for r in results
    ]
    return sorted(rescored, key=lambda r: r.effective_score, reverse=True)


def apply_diversity_boost(results: Sequence[SearchResult]) -> list[SearchResult]:
    """Favour the first (best) result of each source, damp the repeats.

    The first result seen per source is multiplied by
    :data:`FIRST_SOURCE_BOOST`, later ones by :data:`REPEAT_SOURCE_PENALTY`;
    the list is then re-sorted (stable) best first.
    """
    seen: set[str] = set()
    boosted: list[SearchResult] = []
    for r in results:
        factor = REPEAT_SOURCE_PENALTY if r.source in seen else FIRST_SOURCE_BOOST
        seen.add(r.source)
        boosted.append(r.model_copy(update={"score": r.effective_score * factor}))
    return sorted(boosted, key=lambda r: r.effective_score, reverse=True)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class Reranker(ABC):
    """One tier of the final rerank chain."""

    name: str = "reranker"

    @abstractmethod
    async def rerank(self, query: str, candidates: Sequence[SearchResult], top_k: int) -> list[RerankResult]:
        """Return up to *top_k* results, best first.

        Raise on any failure; the chain takes care of falling back.
        """
        ...


class CrossEncoderReranker(Reranker):
    """Scores (query, document) pairs with a hosted cross-encoder.

    Speaks the Cohere ``/v1/rerank`` protocol: ``{"model", "query",
    "documents", "top_n"}`` in, ``{"results": [{"index",
    "relevance_score"}]}`` out.

    Parameters
    ----------
    api_url:
        Rerank endpoint.
    api_key:
        Bearer token; the tier fails immediately without one.
    model:
        Rerank model name sent to the service.
    timeout:
        HTTP timeout in seconds.
    transport:
        Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    name = "cross_encoder"

    def __init__(
        self,
        api_url: str = settings.rerank_api_url,
        api_key: str = settings.rerank_api_key,
        *,
        model: str = settings.rerank_model,
        timeout: float = settings.rerank_timeout,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._transport = transport

    async def rerank(self, query: str, candidates: Sequence[SearchResult], top_k: int) -> list[RerankResult]:
        if not self.api_key:
            raise RerankTierError("Rerank API key not configured")
        if not candidates:
            return []

        payload = {
            "model": self.model,
            "query": query,
            "documents": [c.content for c in candidates],
            "top_n": min(top_k, len(candidates)),
            "return_documents": False,
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                self.api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        if response.status_code >= 400:
            raise RerankTierError(
                f"Rerank service error: {response.status_code} {response.reason_phrase}",
                details={"status": response.status_code},
            )

        try:
            ranked = [
                (int(item["index"]), float(item["relevance_score"]))
                for item in response.json()["results"]
            ]
        except (ValueError, KeyError, TypeError) as exc:
            raise RerankTierError(f"Malformed rerank response: {exc}") from exc
        if not ranked:
            raise RerankTierError("Rerank service returned no results")

        results: list[RerankResult] = []
        for index, relevance in ranked:
            if not 0 <= index < len(candidates):
                raise RerankTierError(f"Rerank service returned unknown index {index}")
            results.append(
                RerankResult.from_search_result(
                    candidates[index],
                    rerank_score=relevance,
                    reasoning=f"Cross-encoder relevance: {relevance * 100:.1f}%",
                    reranker=self.name,
                )
            )
        results.sort(key=lambda r: r.rerank_score, reverse=True)
        return results[:top_k]


class _LLMRanking(BaseModel):
    index: int
    score: float
    reasoning: str = ""

    @field_validator("score", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> float:
        return min(1.0, max(0.0, float(value)))


class LLMReranker(Reranker):
    """Asks a chat model for a 0..1 relevance score and a justification per candidate.

    Parameters
    ----------
    llm:
        LangChain chat model exposing ``ainvoke``; defaults to
        :func:`~curated_rag.llm.get_llm`.
    """

    name = "llm"

    def __init__(self, llm: Any | None = None, *, timeout: float = settings.rerank_timeout) -> None:
        self._llm = llm
        self.timeout = timeout

    @property
    def llm(self) -> Any:
        if self._llm is None:
            self._llm = get_llm(temperature=0.0, timeout=self.timeout)
        return self._llm

    async def rerank(self, query: str, candidates: Sequence[SearchResult], top_k: int) -> list[RerankResult]:
        if not candidates:
            return []
        response = await self.llm.ainvoke(build_rerank_prompt(query, list(candidates), top_k))

        try:
            payload = parse_json_payload(response.content)
            if not isinstance(payload, list):
                raise ValueError(f"expected a JSON array, got {type(payload).__name__}")
            rankings = [_LLMRanking.model_validate(item) for item in payload]
        except (ValueError, TypeError, ValidationError) as exc:
            raise RerankTierError(f"Unparseable LLM ranking: {exc}") from exc

        results: list[RerankResult] = []
        seen: set[int] = set()
        for ranking in rankings:
            if not 0 <= ranking.index < len(candidates):
                raise RerankTierError(f"LLM ranked unknown index {ranking.index}")
            if ranking.index in seen:
                continue
            seen.add(ranking.index)
            results.append(
                RerankResult.from_search_result(
                    candidates[ranking.index],
                    rerank_score=ranking.score,
                    reasoning=ranking.reasoning or "LLM relevance judgment",
                    reranker=self.name,
                )
            )
        if not results:
            raise RerankTierError("LLM returned no rankings")
        results.sort(key=lambda r: r.rerank_score, reverse=True)
        return results[:top_k]


class HeuristicReranker(Reranker):
    """Adopts the incoming order and scores unchanged."""

    name = "heuristic"

    def __init__(self, reasoning: str = HEURISTIC_REASONING) -> None:
        self.reasoning = reasoning

    async def rerank(self, query: str, candidates: Sequence[SearchResult], top_k: int) -> list[RerankResult]:
        return [
            RerankResult.from_search_result(
                c,
                rerank_score=c.effective_score,
                reasoning=self.reasoning,
                reranker=self.name,
            )
            for c in candidates[:top_k]
        ]


# ---------------------------------------------------------------------------
# Chain
# ---------------------------------------------------------------------------


class RerankerChain:
    """Ordered fallback over :class:`Reranker` tiers.

    Tiers run sequentially; a tier is attempted only after the previous one
    raised, timed out, or produced nothing usable.  A
    :class:`HeuristicReranker` is appended when the list does not already
    end with one, so :meth:`rerank` always returns.

    Parameters
    ----------
    tiers:
        Strategies in priority order.
    timeout:
        Seconds allowed per tier.
    """

    def __init__(self, tiers: Sequence[Reranker], *, timeout: float = settings.rerank_timeout) -> None:
        tiers = list(tiers)
        if not tiers or not isinstance(tiers[-1], HeuristicReranker):
            tiers.append(HeuristicReranker())
        self.tiers = tiers
        self.timeout = timeout

    async def rerank(self, query: str, candidates: Sequence[SearchResult], top_k: int) -> list[RerankResult]:
        if not candidates:
            return []
        for tier in self.tiers:
            try:
                results = await asyncio.wait_for(tier.rerank(query, candidates, top_k), timeout=self.timeout)
            except asyncio.TimeoutError:
                logger.warning("Rerank tier %s timed out after %.1fs", tier.name, self.timeout)
                continue
            except Exception as exc:
                logger.warning("Rerank tier %s failed: %s", tier.name, exc, exc_info=not isinstance(exc, RerankTierError))
                continue
            if not results:
                logger.warning("Rerank tier %s returned no results", tier.name)
                continue
            logger.info("Reranked %d candidate(s) with %s → %d result(s)", len(candidates), tier.name, len(results))
            return results

        # Unreachable unless a custom terminal tier misbehaves.
        logger.error("All rerank tiers failed; keeping local order")
        return await HeuristicReranker().rerank(query, candidates, top_k)


TIER_ORDER = ("cross_encoder", "llm", "heuristic")


def build_reranker_chain(preferred: str | None = None, *, llm: Any | None = None) -> RerankerChain:
    """Build the default chain, leading with *preferred* (``settings.reranker_type``).

    The remaining tiers follow in canonical order
    ``cross_encoder → llm → heuristic``.
    """
    preferred = preferred or settings.reranker_type
    if preferred not in TIER_ORDER:
        raise ValueError(f"Unknown reranker type: {preferred!r}")

    factories = {
        "cross_encoder": CrossEncoderReranker,
        "llm": lambda: LLMReranker(llm),
        "heuristic": HeuristicReranker,
    }
    order = [preferred, *(name for name in TIER_ORDER if name != preferred)]
    return RerankerChain([factories[name]() for name in order])
