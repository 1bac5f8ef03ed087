"""Configuration management"""
import logging
import os
from typing import Optional

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


def _optional_float(name: str) -> Optional[float]:
    value = os.getenv(name, "").strip()
    return float(value) if value else None


class Settings(BaseSettings):
    # Retrieval gateway
    rag_provider: str = os.getenv("RAG_PROVIDER", "pgIlike")
    rag_result_limit: int = int(os.getenv("RAG_RESULT_LIMIT") or 8)

    # Result cache - short TTL absorbs bursts of identical queries
    rag_cache_ttl_seconds: float = float(os.getenv("RAG_CACHE_TTL_SECONDS") or "15.0")
    # Unset means stale entries are served as fallback no matter how old
    rag_cache_max_staleness_seconds: Optional[float] = _optional_float("RAG_CACHE_MAX_STALENESS_SECONDS")

    # Circuit breaker guarding the active strategy
    rag_breaker_threshold: int = int(os.getenv("RAG_BREAKER_THRESHOLD") or 3)
    rag_breaker_cooldown_seconds: float = float(os.getenv("RAG_BREAKER_COOLDOWN_SECONDS") or "5.0")

    # PostgreSQL knowledge store
    postgres_url: str = os.getenv("POSTGRES_URL", "")
    postgres_connect_timeout_seconds: float = float(os.getenv("POSTGRES_CONNECT_TIMEOUT_SECONDS") or "5.0")
    postgres_command_timeout_seconds: float = float(os.getenv("POSTGRES_COMMAND_TIMEOUT_SECONDS") or "5.0")
    postgres_pool_size: int = int(os.getenv("POSTGRES_POOL_SIZE") or 5)
    postgres_max_overflow: int = int(os.getenv("POSTGRES_MAX_OVERFLOW") or 10)
    postgres_echo_sql: bool = os.getenv("POSTGRES_ECHO_SQL", "false").lower() == "true"

    # Embeddings (OpenAI-compatible API)
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    openai_base_url: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    embedding_model: str = os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small")
    embedding_dimensions: int = int(os.getenv("EMBEDDING_DIMENSIONS") or 1536)
    embedding_timeout_seconds: float = float(os.getenv("EMBEDDING_TIMEOUT_SECONDS") or "5.0")

    # Re-index job
    reindex_batch_size: int = int(os.getenv("REINDEX_BATCH_SIZE") or 200)
    reindex_retry_attempts: int = int(os.getenv("REINDEX_RETRY_ATTEMPTS") or 3)

    log_level: str = os.getenv("LOG_LEVEL", "info")

    # OpenTelemetry tracing
    tracing_enabled: bool = os.getenv("TRACING_ENABLED", "false").lower() == "true"
    tracing_exporter: str = os.getenv("TRACING_EXPORTER", "console")  # "otlp" or "console"
    tracing_otlp_endpoint: str = os.getenv("TRACING_OTLP_ENDPOINT", "http://localhost:4317")
    tracing_service_name: str = os.getenv("TRACING_SERVICE_NAME", "memory-rag")
    tracing_sample_rate: float = float(os.getenv("TRACING_SAMPLE_RATE") or "1.0")

    @property
    def rag_provider_name(self) -> "RAGProvider":
        """Parse RAG_PROVIDER, falling back to literal text search."""
        from memory_rag.retrieval.base import RAGProvider

        try:
            return RAGProvider(self.rag_provider)
        except ValueError:
            logger.warning(
                f"Unknown RAG_PROVIDER '{self.rag_provider}', using {RAGProvider.PG_ILIKE.value}"
            )
            return RAGProvider.PG_ILIKE

    @property
    def async_postgres_url(self) -> str:
        """POSTGRES_URL rewritten for the asyncpg driver"""
        url = self.postgres_url
        for prefix in ("postgres://", "postgresql://"):
            if url.startswith(prefix):
                return "postgresql+asyncpg://" + url[len(prefix):]
        return url

    class Config:
        env_file = ".env"
        extra = "ignore"
        # A blank variable means "use the default", not an invalid value
        env_ignore_empty = True


settings = Settings()
