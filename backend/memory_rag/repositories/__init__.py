"""Repository pattern implementations for knowledge-store access.

Usage:
    from memory_rag.repositories import MemoryRepository

    async with MemoryRepository() as repo:
        records = await repo.search_text("theme", limit=8)
"""

from memory_rag.repositories.base import (
    AsyncSessionRepository,
    RepositoryError,
    ConfigurationError,
    ConnectionError,
    QueryError,
)
from memory_rag.repositories.memory import MemoryRecord, MemoryRepository, PendingEmbedding

__all__ = [
    "AsyncSessionRepository",
    # Exceptions
    "RepositoryError",
    "ConfigurationError",
    "ConnectionError",
    "QueryError",
    # Concrete repositories
    "MemoryRepository",
    "MemoryRecord",
    "PendingEmbedding",
]
