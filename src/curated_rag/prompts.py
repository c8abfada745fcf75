"""Prompt templates for the quality classifier and the LLM rerank judge.

Keeping prompts in one place makes them easy to audit, version, and A/B
test.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from langchain_core.messages import HumanMessage, SystemMessage

if TYPE_CHECKING:
    from langchain_core.messages import BaseMessage

    from curated_rag.retrieval.models import SearchResult

# ── 1. Chunk quality validation ───────────────────────────────────────

VALIDATION_SYSTEM = """\
You are a meticulous fact-checker. Evaluate whether the given text contains
factually accurate, well-formed information.

Check for:
1. Factual accuracy (are claims correct?)
2. Logical consistency (do statements contradict each other?)
3. Completeness (is critical context missing?)
4. Currency (is the information outdated?)

Examples:
- "A mortgage is a loan for buying property" → valid (correct definition)
- "Mortgages are always 50 years" → invalid (incorrect typical term)
- "Investing has no risk" → invalid (misleading, missing context)

Respond with **only** a JSON object:

  "is_valid"   – true or false
  "confidence" – number between 0.0 and 1.0
  "issues"     – list of problems found (empty when none)
  "reasoning"  – one or two sentences explaining the verdict
"""


def build_validation_prompt(chunk: str) -> list[BaseMessage]:
    """Build the prompt for a single chunk quality check."""
    return [
        SystemMessage(content=VALIDATION_SYSTEM),
        HumanMessage(content=f"Evaluate this content:\n\n{chunk}"),
    ]


# ── 2. Rerank judgment ────────────────────────────────────────────────

RERANK_SYSTEM = """\
You are a relevance evaluator for a retrieval system. Rank search results
by how well they answer the user's query.

For each result, assign a relevance score between 0.0 and 1.0 and explain
why in one short sentence.

Consider:
1. Direct answer to the query (highest priority)
2. Contextual relevance
3. Completeness of information
4. Specificity vs generality

Respond with **only** a JSON array, ordered by score (highest first):

  [{{"index": 0, "score": 0.95, "reasoning": "Directly answers ..."}}, ...]

Include only the {top_k} most relevant results.
"""


def build_rerank_prompt(query: str, candidates: list[SearchResult], top_k: int) -> list[BaseMessage]:
    """Build the prompt for the LLM rerank tier.

    Candidates are numbered by their position in *candidates*; the model
    must refer back to them through ``"index"``.
    """
    listing = _format_candidates(candidates)
    return [
        SystemMessage(content=RERANK_SYSTEM.format(top_k=top_k)),
        HumanMessage(content=f'Query: "{query}"\n\nResults to rank:\n{listing}'),
    ]


# ── Helpers ────────────────────────────────────────────────────────────


def _format_candidates(candidates: list[SearchResult]) -> str:
    parts: list[str] = []
    for i, candidate in enumerate(candidates):
        parts.append(
            f"[{i}] Source: {candidate.source}\n"
            f"Content: {candidate.content}\n"
            f"Vector Score: {candidate.similarity_score:.3f}"
        )
    return "\n---\n".join(parts)
