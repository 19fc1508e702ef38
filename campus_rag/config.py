"""Application configuration and environment-driven settings.

Defines the Settings class based on pydantic-settings to centralize configuration for:
- API keys and model names
- Data stores (PostgreSQL/pgvector, Redis) and cache defaults
- Chunking parameters (heading detection, chunk size, merge threshold)
- Retrieval/context assembly knobs (top-k, score floor, budget, dedup threshold)
- Conversation memory (summarization threshold, active window size)
- Ingestion throttling and crawler caps
- Per-user daily quota and logging

A warning is logged if OPENAI_API_KEY is not set when not running in Docker.
"""
import logging
import os
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Strongly-typed application settings loaded from environment variables.

    Uses pydantic-settings to populate fields from a .env file or process env.
    See individual field names for semantics and safe defaults.
    """
    # Required
    OPENAI_API_KEY: str = Field(default="", description="OpenAI API key")

    # Models
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_EMBEDDING_MODEL: str = "text-embedding-3-small"  # 1536 dims
    VECTOR_SIZE: Optional[int] = Field(
        default=None, description="Overrides the dimension derived from the embedding model"
    )

    # Data stores
    DATABASE_URL: str = "postgresql+psycopg2://rag_user:rag_pass@db:5432/rag_db"
    REDIS_URL: str = "redis://redis:6379/0"
    CACHE_TTL_SECONDS: int = 86400
    EMBEDDING_CACHE_ENABLED: bool = True
    VECTOR_BACKEND: str = "pgvector"  # or "memory"
    VECTOR_COLLECTION: str = "campus_docs"

    # Chunking
    HEADING_WORD_THRESHOLD: int = 8
    MAX_CHUNK_CHARS: int = 1800
    MIN_CHUNK_TOKENS: int = 30
    JUNK_PHRASES: List[str] = ["learn more", "read more"]

    # Retrieval/Generation
    TOP_K: int = 5
    MIN_SCORE: float = 0.2  # score floor, 0-1
    CONTEXT_MAX_CHARS: int = 7000
    SNIPPET_CUTOFF_CHARS: int = 1800
    DEDUP_SIMILARITY_THRESHOLD: float = 0.9
    MAX_OUTPUT_TOKENS: int = 500
    ANSWER_TEMPERATURE: float = 0.5
    FALLBACK_TEMPERATURE: float = 0.7

    # Conversation memory
    SUMMARIZE_THRESHOLD: int = 50
    MAX_CONTEXT_MESSAGES: int = 20

    # Ingestion
    INGEST_DELAY_MIN_SECONDS: float = 2.0
    INGEST_DELAY_MAX_SECONDS: float = 5.0
    SITEMAP_DELAY_SECONDS: float = 0.5
    DOMAIN_CAP: int = 1000
    DOMAIN_KEEP: int = 100
    HTTP_TIMEOUT_SECONDS: int = 20

    # Quota
    DAILY_MESSAGE_LIMIT: int = 20

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # Derived
    @property
    def EMBEDDING_DIM(self) -> int:
        """Embedding dimension for the configured embedding model.

        Returns:
            int: VECTOR_SIZE when set, else the dimension inferred from
            OPENAI_EMBEDDING_MODEL.
        """
        if self.VECTOR_SIZE:
            return self.VECTOR_SIZE
        # Map common OpenAI embedding models to dimensions
        model = self.OPENAI_EMBEDDING_MODEL.lower()
        if "text-embedding-3-small" in model:
            return 1536
        if "text-embedding-3-large" in model:
            return 3072
        # Fallback
        return 1536

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)


settings = Settings()

# Safety check for local dev (inside API container this must be set)
if os.environ.get("RUNNING_IN_DOCKER", "0") == "0":
    # Only warn in local context; clients raise ConfigurationError when used
    if not settings.OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY not set. Set it in .env before running ingestion or /chat.")
