"""Retrieval strategies for the knowledge store.

The active strategy is picked once, when a gateway is built.
"""

from typing import Optional

from memory_rag.retrieval.base import RAGProvider, RetrievalStrategy
from memory_rag.retrieval.strategies.literal import LiteralTextStrategy
from memory_rag.retrieval.strategies.vector import VectorSimilarityStrategy


def create_strategy(provider: Optional[RAGProvider] = None, **kwargs) -> RetrievalStrategy:
    """Build the strategy for ``provider`` (default: from settings).

    Keyword arguments are passed to the strategy constructor.
    """
    if provider is None:
        from memory_rag.config import settings
        provider = settings.rag_provider_name

    if provider == RAGProvider.VECTOR_DB:
        return VectorSimilarityStrategy(**kwargs)
    return LiteralTextStrategy(**kwargs)


__all__ = ["LiteralTextStrategy", "VectorSimilarityStrategy", "create_strategy"]
