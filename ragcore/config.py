"""
Application Configuration

Manages environment variables and retrieval settings using Pydantic Settings.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Retrieval core settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Embedding provider ("openai" or "gemini")
    embedding_provider: str = "openai"
    openai_api_key: str = ""
    embedding_model: str = "text-embedding-3-small"
    embedding_base_url: str = "https://api.openai.com/v1"
    embedding_batch_size: int = 100
    embedding_timeout_seconds: float = 30.0

    # Google Gemini
    gemini_api_key: str = ""
    gemini_embedding_model: str = "gemini-embedding-001"

    # Vector storage ("chroma" or "memory")
    vector_backend: str = "chroma"
    rag_collection_name: str = "knowledge_vectors"
    chroma_persist_directory: str = "./data/chroma"

    # Retrieval defaults
    rag_top_k: int = 5
    rag_relevance_threshold: float = 0.7
    rag_max_context_length: int = 2000
    rag_min_query_length: int = 10

    # Chunking (approximate tokens, 4 chars per token)
    chunk_size: int = 500
    chunk_overlap: int = 50

    # Logging
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
