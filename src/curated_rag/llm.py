"""LLM initialisation and structured-output parsing, the single place to swap providers.

Supports two modes:

1. **OpenAI cloud** (default) — set ``OPENAI_API_KEY``.
2. **OpenAI-compatible endpoint** — set ``LLM_BASE_URL`` (e.g. a vLLM
   server).  The endpoint exposes ``/v1/chat/completions`` so
   ``ChatOpenAI`` works unchanged.

Both the quality classifier and the LLM rerank tier go through
:func:`get_llm` and :func:`parse_json_payload`.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from langchain_openai import ChatOpenAI

from curated_rag.config import settings

logger = logging.getLogger(__name__)


def get_llm(
    temperature: float = 0.0,
    *,
    model: str | None = None,
    timeout: float | None = None,
) -> ChatOpenAI:
    """Return the configured chat model.

    When ``settings.llm_base_url`` is set the client is pointed at that
    endpoint instead of the OpenAI cloud API.  A dummy API key
    (``"EMPTY"``) is used because vLLM does not require authentication.
    """
    kwargs: dict = {
        "model": model or settings.llm_model_name,
        "temperature": temperature,
    }
    if timeout is not None:
        kwargs["timeout"] = timeout

    if settings.llm_base_url:
        logger.info("Using OpenAI-compatible endpoint: %s", settings.llm_base_url)
        kwargs["base_url"] = settings.llm_base_url
        # vLLM doesn't need a real key; LangChain requires a non-empty value.
        kwargs["api_key"] = settings.openai_api_key or "EMPTY"
    else:
        kwargs["api_key"] = settings.openai_api_key

    return ChatOpenAI(**kwargs)


def parse_json_payload(text: Any) -> Any:
    """Parse JSON emitted by an LLM, stripping incidental code fences.

    LLMs occasionally wrap JSON in ```json … ``` fences.  Raises
    :class:`ValueError` (``json.JSONDecodeError``) when the payload is not
    valid JSON so callers can treat it as a failed call.
    """
    if not isinstance(text, str):
        raise ValueError(f"Expected text content, got {type(text).__name__}")
    cleaned = re.sub(r"^```(?:json)?\s*", "", text.strip(), flags=re.IGNORECASE)
    cleaned = re.sub(r"\s*```$", "", cleaned)
    return json.loads(cleaned)
