"""Application settings using Pydantic."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Relational store
    database_url: str = "sqlite:///data/grad_assistant.db"

    # Ollama LLM Configuration
    llm_ollama_base_url: str = "http://localhost:11434"
    llm_model_name: str = "llama3.1:8b"
    llm_temperature: float = 0.2
    llm_request_timeout: int = 120
    llm_num_ctx: int = 8192
    llm_num_predict: int = 1024

    # Embeddings + vector index
    embedding_model_name: str = "all-minilm"
    vector_store_dir: str = "data/vector_store"

    # Retrieval Configuration
    retrieval_threshold_strict: float = 0.50
    retrieval_threshold_relaxed: float = 0.35
    retrieval_top_k: int = 5

    # Context Configuration
    context_max_doc_chars: int = 2000
    context_max_total_chars: int = 8000

    # Presentation: demo mode buffers the answer into a single frame
    demo_mode: bool = False

    # HTTP
    cors_origins: list[str] = ["http://localhost:5173", "*"]

    # Per-client rate limits on the public widget endpoints
    rate_limit_enabled: bool = True
    rate_limit_chat_max: int = 20
    rate_limit_chat_window_seconds: int = 60
    rate_limit_events_max: int = 60
    rate_limit_events_window_seconds: int = 60

    # Logging
    log_level: str = "INFO"
    log_json: bool = True


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
