"""Retrieval layer backing the chat memory feature.

This package provides:
- Result types (snippets, citations, retrieval results)
- Retrieval strategies (literal text match, vector similarity)
- The retrieval gateway (result cache + circuit breaker + strategy)

Usage:
    from memory_rag.retrieval import create_default_gateway, format_context

    gateway = create_default_gateway()
    result = await gateway.retrieve("How do I enable dark mode?")
    prompt_context = format_context(result)
"""

from memory_rag.retrieval.base import (
    Citation,
    RAGProvider,
    RetrievalResult,
    RetrievalStrategy,
    Snippet,
    SnippetSource,
)
from memory_rag.retrieval.gateway import (
    GatewayStats,
    RetrievalGateway,
    create_default_gateway,
    format_context,
)

__all__ = [
    # Base classes
    "RAGProvider",
    "SnippetSource",
    "Snippet",
    "Citation",
    "RetrievalResult",
    "RetrievalStrategy",
    # Gateway
    "RetrievalGateway",
    "GatewayStats",
    "create_default_gateway",
    "format_context",
]
