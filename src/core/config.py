"""Application configuration using Pydantic Settings.

All configuration is loaded from environment variables.
See .env.example for available settings.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # ============================================
    # Application
    # ============================================
    app_name: str = "AIQuiz RAG Service"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = False

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_prefix: str = "/api/v1"
    allowed_origins: list[str] = ["http://localhost:3000", "http://localhost:8080"]

    # ============================================
    # Vector Index (Qdrant or Chroma)
    # ============================================
    vector_store_type: Literal["qdrant", "chroma"] = "qdrant"
    index_url: str = Field(
        default="http://localhost:6333",
        description="Vector database URL, or ':memory:' for an in-process index",
    )
    qdrant_api_key: str | None = None
    default_collection_name: str = "aiquiz_documents"
    index_timeout_s: float = Field(
        default=30.0, gt=0, description="Timeout for each upsert/query call"
    )
    index_upsert_batch_size: int = 100

    # ============================================
    # Embeddings
    # ============================================
    embedding_backend: Literal["auto", "neural", "tfidf"] = Field(
        default="auto",
        description="auto probes the neural model and falls back to TF-IDF",
    )
    embedding_model_name: str = Field(
        default="sentence-transformers/all-MiniLM-L6-v2",
        description="sentence-transformers model name",
    )
    vector_dimension: int = Field(
        default=384, gt=0, description="Embedding vector dimensions (must match model)"
    )
    embedding_batch_size: int = Field(default=16, gt=0)
    embedding_cache_size: int = Field(default=1000, ge=0)
    embedding_max_input_chars: int = Field(default=2000, gt=0)
    embedding_probe_timeout_s: float = Field(default=10.0, gt=0)
    strict_embedding_match: bool = Field(
        default=False,
        description="Only search points embedded by the active backend",
    )

    # ============================================
    # Chunking
    # ============================================
    max_chunk_size: int = Field(default=500, gt=0)
    min_chunk_size: int = Field(default=150, gt=0)
    overlap_size: int = Field(default=75, ge=0)
    max_sentences_per_chunk: int = Field(default=5, gt=0)
    preserve_paragraphs: bool = True
    min_paragraph_length: int = 50

    # ============================================
    # PDF
    # ============================================
    pdf_max_size_bytes: int = 50 * 1024 * 1024  # 50 MiB
    pdf_warning_size_bytes: int = 20 * 1024 * 1024

    # ============================================
    # Search & Re-ranking
    # ============================================
    search_threshold: float = Field(default=0.15, ge=0.0, le=1.0)
    search_limit: int = Field(default=10, gt=0)
    search_max_limit: int = Field(default=50, gt=0)

    # Empirical boosts, kept tunable
    rerank_heading_boost: float = 0.10
    rerank_section_match_boost: float = 0.15
    rerank_front_matter_boost: float = 0.05
    rerank_front_matter_max_page: int = 3
    rerank_short_chunk_penalty: float = 0.10
    rerank_short_chunk_chars: int = 100
    rerank_prose_boost: float = 0.05

    # ============================================
    # Processing
    # ============================================
    max_concurrent_processing: int = Field(
        default=2, gt=0, description="Concurrent document ingests (CPU/memory heavy)"
    )

    # ============================================
    # Logging
    # ============================================
    log_level: str = "INFO"
    log_format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Accept lower-case level names from the environment."""
        return str(v).upper()

    @model_validator(mode="after")
    def check_chunk_sizes(self) -> "Settings":
        """Chunk sizes must leave room for at least one non-overlap sentence."""
        if self.min_chunk_size > self.max_chunk_size:
            raise ValueError("min_chunk_size must not exceed max_chunk_size")
        if self.overlap_size >= self.min_chunk_size:
            raise ValueError("overlap_size must be smaller than min_chunk_size")
        return self

    @property
    def index_in_memory(self) -> bool:
        """Whether the vector index runs in-process."""
        return self.index_url == ":memory:"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
