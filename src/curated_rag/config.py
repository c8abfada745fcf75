"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # LLM (quality classifier + rerank judge)
    openai_api_key: str = Field(default="", description="OpenAI API key (or dummy value for local vLLM)")
    llm_model_name: str = Field(default="gpt-4o-mini", description="Model used for LLM rerank judgment")
    validator_model_name: str = Field(default="gpt-4.1-mini", description="Model used for chunk quality checks")
    llm_base_url: str = Field(
        default="",
        description=(
            "Base URL for the LLM API. Leave empty to use OpenAI cloud. "
            "Set to an OpenAI-compatible endpoint (e.g. vLLM) for local serving."
        ),
    )

    # Vector store
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_collection: str = "curated_kb"

    # Embedding
    embedding_provider: str = Field(default="huggingface", description="'huggingface' or 'openai'")
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_dimension: int = Field(default=384, gt=0, description="Fixed vector size of the collection")

    # Chunking
    chunk_max_tokens: int = Field(default=600, gt=0)
    chunk_overlap_sentences: int = Field(default=2, ge=0)

    # Quality gating
    validation_threshold: float = Field(default=0.7, ge=0.0, le=1.0, description="Ingest-time confidence cut-off")
    min_validation_score: float = Field(default=0.7, ge=0.0, le=1.0, description="Query-time validation cut-off")
    validator_concurrency: int = Field(default=8, gt=0)

    # Reranking
    reranker_type: str = Field(default="cross_encoder", description="Leading tier: cross_encoder, llm or heuristic")
    rerank_api_url: str = "https://api.cohere.ai/v1/rerank"
    rerank_api_key: str = ""
    rerank_model: str = "rerank-english-v3.0"

    # Timeouts (seconds)
    classifier_timeout: float = 30.0
    embedding_timeout: float = 60.0
    store_timeout: float = 15.0
    rerank_timeout: float = 20.0

    # Uploads
    max_file_size_bytes: int = 10 * 1024 * 1024
    allowed_file_types: list[str] = Field(default_factory=lambda: ["pdf", "docx", "txt", "md"])

    # Retries
    retry_max_attempts: int = Field(default=3, gt=0)
    retry_base_delay: float = Field(default=1.0, ge=0.0)

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton: import `settings` wherever needed.
settings = Settings()
