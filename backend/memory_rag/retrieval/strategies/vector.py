"""Vector similarity retrieval strategy.

Embeds the query, then asks the knowledge store for the nearest memories by
L2 distance. Confidence is ``max(0, 1 - distance)``.

Any failure, whether from the embedding call or the similarity query, is
reported as a failed result and never raised.
"""

import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional

from memory_rag.config import settings
from memory_rag.embeddings import EmbeddingClient
from memory_rag.repositories import MemoryRepository
from memory_rag.retrieval.base import (
    RAGProvider,
    RetrievalResult,
    RetrievalStrategy,
    Snippet,
    SnippetSource,
)
from memory_rag.tracing import SpanAttributes, trace_operation

logger = logging.getLogger(__name__)


def distance_to_confidence(distance: Optional[float]) -> float:
    """Map an L2 distance onto [0, 1]; a missing distance counts as 0."""
    return min(1.0, max(0.0, 1.0 - float(distance or 0.0)))


class VectorSimilarityStrategy(RetrievalStrategy):
    """Nearest-neighbour search over precomputed memory embeddings.

    Args:
        embedder: Client used to embed the query. Defaults to EmbeddingClient().
        repository_factory: Callable returning an async-context-managed
            repository. Defaults to ``MemoryRepository``.
        limit: Maximum number of snippets. Defaults to settings.rag_result_limit.
    """

    provider = RAGProvider.VECTOR_DB

    def __init__(
        self,
        embedder: Optional[EmbeddingClient] = None,
        repository_factory: Optional[Callable[[], MemoryRepository]] = None,
        limit: Optional[int] = None,
    ):
        self._embedder = embedder or EmbeddingClient()
        self._repository_factory = repository_factory or MemoryRepository
        self.limit = limit or settings.rag_result_limit

    @trace_operation(
        "rag.strategy.vector",
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
            vector = await self._embedder.embed(query or "")
            async with self._repository_factory() as repo:
                records = await repo.search_nearest(vector, limit=self.limit)
        except Exception as e:
            logger.error(f"Vector similarity search failed: {e}")
            return RetrievalResult.failure(error=str(e))

        snippets = [
            Snippet(
                source=SnippetSource.INTERNAL_DOCS,
                content=record.content,
                confidence=distance_to_confidence(record.distance),
                metadata=record.to_metadata(),
            )
            for record in records
        ]

        logger.debug(
            f"Vector similarity search returned {len(snippets)} snippets in "
            f"{(time.perf_counter() - start_time) * 1000:.1f}ms"
        )
        return RetrievalResult.success(snippets)

    def get_config(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "limit": self.limit,
            "embedding": self._embedder.get_config(),
        }


__all__ = ["VectorSimilarityStrategy", "distance_to_confidence"]
