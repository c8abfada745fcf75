"""Sentence-aligned, token-bounded text chunking with sentence overlap."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from functools import lru_cache

import tiktoken

from curated_rag.ingestion.models import ChunkOptions

logger = logging.getLogger(__name__)

TokenCounter = Callable[[str], int]

# A run of non-terminators closed by terminators, or an unterminated tail.
_SENTENCE_RE = re.compile(r"[^.!?]*[.!?]+|[^.!?]+$")


@dataclass
class SentenceWindow:
    """Layout of one chunk over the unit (sentence or word) sequence.

    Attributes
    ----------
    units:
        Indices of the units making up the chunk, in order.
    overlap:
        How many leading entries of *units* were re-injected from the
        previous chunk.
    tokens:
        Sum of the unit token counts.
    """

    units: list[int] = field(default_factory=list)
    overlap: int = 0
    tokens: int = 0

    @property
    def fresh_units(self) -> list[int]:
        return self.units[self.overlap :]


@lru_cache(maxsize=1)
def _encoding() -> tiktoken.Encoding:
    return tiktoken.get_encoding("cl100k_base")


def count_tokens(text: str) -> int:
    """Count tokens with the ``cl100k_base`` encoding (GPT-4 family)."""
    return len(_encoding().encode(text))


def split_sentences(text: str) -> list[str]:
    """Split *text* on ``.``/``!``/``?`` runs; blank pieces are dropped."""
    return [s.strip() for s in _SENTENCE_RE.findall(text) if s.strip()]


def build_windows(counts: Sequence[int], options: ChunkOptions) -> list[SentenceWindow]:
    """Greedily pack units with token *counts* into overlapping windows.

    A window is flushed when the next unit would push it past
    ``options.max_tokens``.  The next window starts with the last
    ``options.overlap_size`` units of the flushed one (dropping leading
    overlap units until the seed plus the new unit fits) followed by the
    unit that triggered the flush.  A unit that alone exceeds the limit
    becomes its own window.
    """
    windows: list[SentenceWindow] = []
    current = SentenceWindow()

    for i, tokens in enumerate(counts):
        if current.units and current.tokens + tokens > options.max_tokens:
            windows.append(current)
            seed = current.units[-options.overlap_size :] if options.overlap_size else []
            while seed and sum(counts[j] for j in seed) + tokens > options.max_tokens:
                seed = seed[1:]
            current = SentenceWindow(
                units=[*seed, i],
                overlap=len(seed),
                tokens=sum(counts[j] for j in seed) + tokens,
            )
        else:
            current.units.append(i)
            current.tokens += tokens

    if current.units:
        windows.append(current)
    return windows


def chunk_text(
    text: str,
    options: ChunkOptions | None = None,
    *,
    token_counter: TokenCounter | None = None,
) -> list[str]:
    """Split *text* into bounded, overlapping, sentence-aligned chunks.

    Parameters
    ----------
    text:
        Plain text extracted from a document.
    options:
        Chunk size / overlap settings (defaults from configuration).
    token_counter:
        Callable returning the token count of a string.  Defaults to
        :func:`count_tokens`.

    Returns
    -------
    list[str]
        Chunks in document order; empty for blank input.
    """
    options = options or ChunkOptions()
    counter = token_counter or count_tokens

    if options.preserve_sentence_boundaries:
        units = split_sentences(text)
    else:
        units = text.split()
    if not units:
        return []

    counts = [counter(u) for u in units]
    windows = build_windows(counts, options)
    chunks = [" ".join(units[j] for j in w.units) for w in windows]

    logger.debug(
        "Chunked %d unit(s) into %d chunk(s) (max_tokens=%d, overlap=%d)",
        len(units),
        len(chunks),
        options.max_tokens,
        options.overlap_size,
    )
    return chunks
