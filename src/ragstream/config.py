"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

# Non-OpenAI models are only reachable through an OpenAI-compatible gateway.
_GATEWAY_ALIASES = {"claude": "claude-3-5-sonnet", "gemini": "gemini-1.5-pro"}


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # LLM
    openai_api_key: str = Field(default="", description="OpenAI API key (or dummy value for local vLLM)")
    llm_model_name: str = Field(default="gpt-4o-mini", description="Default chat model identifier")
    llm_base_url: str = Field(
        default="",
        description=(
            "Base URL for an OpenAI-compatible chat API. Leave empty to use "
            "OpenAI cloud."
        ),
    )
    llm_temperature: float = 0.7
    llm_max_tokens: int = 2000
    llm_timeout_seconds: float = 30.0
    model_aliases: dict[str, str] = Field(
        default_factory=lambda: {"chatgpt": "gpt-4o-mini"},
        description=(
            "Public model names accepted by the chat API → provider model ids. "
            "'claude' and 'gemini' are added when llm_base_url is set."
        ),
    )

    # Embedding
    embedding_provider: str = Field(default="huggingface", description="'huggingface' or 'openai'")
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    rerank_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embed_batch_size: int = 16
    embed_batch_delay_seconds: float = 0.1

    # Vector store
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_collection: str = "ragstream_docs"

    # Redis (cache + queues)
    redis_url: str = "redis://localhost:6379/0"
    cache_backend: str = Field(default="redis", description="'memory' or 'redis'")
    queue_backend: str = Field(default="redis", description="'memory' or 'redis'")
    queue_prefix: str = "ragstream"
    cache_ttl_seconds: int = 3600

    # Retrieval / ranking
    top_k: int = 6
    search_k: int = 20
    score_threshold: float = 0.1
    mmr_lambda: float = 0.3
    max_history_turns: int = 8
    snippet_min_chars: int = 400
    snippet_max_chars: int = 800
    context_max_tokens: int = 4000
    chars_per_token: int = 4

    # Documents
    chunk_size: int = 1200
    chunk_overlap: int = 180
    storage_dir: str = "./storage"

    # Ingestion queue
    job_attempts: int = 3
    job_backoff_seconds: float = 2.0
    parse_concurrency: int = 4
    embed_concurrency: int = 4
    upsert_concurrency: int = 2

    # Chat request validation
    max_message_chars: int = 4000
    max_history_messages: int = 20

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "protected_namespaces": ()}

    @model_validator(mode="after")
    def _add_gateway_aliases(self) -> Settings:
        if self.llm_base_url and "model_aliases" not in self.model_fields_set:
            self.model_aliases = {**self.model_aliases, **_GATEWAY_ALIASES}
        return self


# Singleton for process entry points; core components take values via __init__.
settings = Settings()
