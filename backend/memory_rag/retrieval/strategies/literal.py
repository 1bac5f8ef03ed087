"""Literal text retrieval strategy.

Case-insensitive substring match of the query against stored memories,
most recently updated first. Every match gets the same confidence: the only
ranking signal is recency.
"""

import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional

from memory_rag.config import settings
from memory_rag.repositories import MemoryRepository, RepositoryError
from memory_rag.retrieval.base import (
    RAGProvider,
    RetrievalResult,
    RetrievalStrategy,
    Snippet,
    SnippetSource,
)
from memory_rag.tracing import SpanAttributes, trace_operation

logger = logging.getLogger(__name__)

LITERAL_MATCH_CONFIDENCE = 0.6


class LiteralTextStrategy(RetrievalStrategy):
    """Substring search over ``memories.content``.

    Args:
        repository_factory: Callable returning an async-context-managed
            repository. Defaults to ``MemoryRepository``.
        limit: Maximum number of snippets. Defaults to settings.rag_result_limit.
    """

    provider = RAGProvider.PG_ILIKE

    def __init__(
        self,
        repository_factory: Optional[Callable[[], MemoryRepository]] = None,
        limit: Optional[int] = None,
    ):
        self._repository_factory = repository_factory or MemoryRepository
        self.limit = limit or settings.rag_result_limit

    @trace_operation(
        "rag.strategy.literal",
        lambda self, query, hints=None: {
            SpanAttributes.STRATEGY: self.name,
            SpanAttributes.QUERY_LENGTH: len(query or ""),
        },
    )
    async def search(
        self,
        query: str,
        hints: Optional[Mapping[str, Any]] = None,
    ) -> RetrievalResult:
        start_time = time.perf_counter()

        try:
            async with self._repository_factory() as repo:
                records = await repo.search_text(query or "", limit=self.limit)
        except RepositoryError as e:
            logger.error(f"Literal text search failed: {e}")
            return RetrievalResult.failure(error=str(e))

        snippets = [
            Snippet(
                source=SnippetSource.INTERNAL_DOCS,
                content=record.content,
                confidence=LITERAL_MATCH_CONFIDENCE,
                metadata=record.to_metadata(),
            )
            for record in records
        ]

        logger.debug(
            f"Literal text search returned {len(snippets)} snippets in "
            f"{(time.perf_counter() - start_time) * 1000:.1f}ms"
        )
        return RetrievalResult.success(snippets)

    def get_config(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "limit": self.limit,
            "confidence": LITERAL_MATCH_CONFIDENCE,
        }


__all__ = ["LiteralTextStrategy", "LITERAL_MATCH_CONFIDENCE"]
