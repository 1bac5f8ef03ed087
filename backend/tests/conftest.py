"""Pytest configuration and shared fixtures.

Provides a controllable clock, an in-memory stand-in for the knowledge store
and a scriptable retrieval strategy, so no test touches PostgreSQL or the
embeddings API.

Environment variables are set BEFORE any package import so that the
module-level ``settings`` object never picks up real credentials.
"""
import sys
import os

# Add backend to Python path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# =============================================================================
# CRITICAL: Set environment variables BEFORE any imports
# =============================================================================

os.environ.setdefault("RAG_PROVIDER", "pgIlike")
os.environ.setdefault("POSTGRES_URL", "")
os.environ.setdefault("OPENAI_API_KEY", "")
os.environ.setdefault("RAG_CACHE_TTL_SECONDS", "15.0")
os.environ.setdefault("RAG_BREAKER_THRESHOLD", "3")
os.environ.setdefault("RAG_BREAKER_COOLDOWN_SECONDS", "5.0")
os.environ.setdefault("TRACING_ENABLED", "false")

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

import pytest

from memory_rag.cache import ResultCache
from memory_rag.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from memory_rag.repositories import MemoryRecord, PendingEmbedding, QueryError
from memory_rag.retrieval.base import (
    RAGProvider,
    RetrievalResult,
    RetrievalStrategy,
    Snippet,
    SnippetSource,
)
from memory_rag.retrieval.gateway import RetrievalGateway


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeMemoryRepository:
    """In-memory stand-in for MemoryRepository.

    ``search_text`` mimics the SQL: case-insensitive substring match, newest
    first, NULL timestamps last. ``search_nearest`` returns ``nearest`` as-is.
    Set ``error`` to make every query raise it.
    """

    def __init__(
        self,
        records: Optional[List[MemoryRecord]] = None,
        nearest: Optional[List[MemoryRecord]] = None,
        pending: Optional[List[PendingEmbedding]] = None,
    ):
        self.records = records or []
        self.nearest = nearest or []
        self.pending = pending or []
        self.error: Optional[Exception] = None
        self.opened = 0
        self.closed = 0
        self.text_queries: List[str] = []
        self.vector_queries: List[List[float]] = []
        self.updated: Dict[Any, List[float]] = {}
        self.fail_updates_for: Set[Any] = set()

    def __call__(self) -> "FakeMemoryRepository":
        # Lets the instance itself serve as the repository factory
        return self

    async def __aenter__(self):
        self.opened += 1
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.closed += 1
        return None

    async def search_text(self, query: str, limit: int = 8) -> List[MemoryRecord]:
        self.text_queries.append(query)
        if self.error is not None:
            raise self.error
        matches = [r for r in self.records if query.lower() in r.content.lower()]
        dated = sorted((r for r in matches if r.updated_at), key=lambda r: r.updated_at, reverse=True)
        undated = [r for r in matches if not r.updated_at]
        return (dated + undated)[:limit]

    async def search_nearest(self, vector, limit: int = 8) -> List[MemoryRecord]:
        self.vector_queries.append(list(vector))
        if self.error is not None:
            raise self.error
        return self.nearest[:limit]

    async def find_missing_embeddings(self, limit: int = 200) -> List[PendingEmbedding]:
        if self.error is not None:
            raise self.error
        return self.pending[:limit]

    async def update_embedding(self, record_id, vector) -> None:
        if record_id in self.fail_updates_for:
            raise QueryError("update failed", "update_embedding")
        self.updated[record_id] = list(vector)


class StubStrategy(RetrievalStrategy):
    """Scriptable strategy that counts calls per query.

    Queries in ``fail_queries`` return a failed result, queries in
    ``raise_queries`` raise RuntimeError, everything else succeeds with one
    snippet echoing the query.
    """

    provider = RAGProvider.PG_ILIKE

    def __init__(self):
        self.calls: List[tuple] = []
        self.fail_queries: Set[str] = set()
        self.raise_queries: Set[str] = set()
        self.fail_all = False

    async def search(self, query: str, hints: Optional[Mapping[str, Any]] = None) -> RetrievalResult:
        self.calls.append((query, hints))
        if query in self.raise_queries:
            raise RuntimeError(f"backend exploded on {query}")
        if self.fail_all or query in self.fail_queries:
            return RetrievalResult.failure(error="connection refused")
        return RetrievalResult.success([
            Snippet(
                source=SnippetSource.INTERNAL_DOCS,
                content=f"match for {query}",
                confidence=0.6,
                metadata={"key": f"key-{query}"},
            )
        ])

    def calls_for(self, query: str) -> int:
        return sum(1 for q, _ in self.calls if q == query)


def make_record(
    key: str,
    content: str,
    updated_at: Optional[datetime] = None,
    distance: Optional[float] = None,
    layer: str = "permanent",
) -> MemoryRecord:
    return MemoryRecord(key=key, layer=layer, content=content, updated_at=updated_at, distance=distance)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def stub_strategy():
    return StubStrategy()


@pytest.fixture
def make_gateway(clock):
    """Factory building a gateway whose cache and breaker share the fake clock."""

    def _make(
        strategy: RetrievalStrategy,
        ttl_seconds: float = 15.0,
        threshold: int = 3,
        cooldown_seconds: float = 5.0,
        max_staleness_seconds: Optional[float] = None,
    ) -> RetrievalGateway:
        cache = ResultCache(
            ttl_seconds=ttl_seconds,
            max_staleness_seconds=max_staleness_seconds,
            clock=clock,
        )
        breaker = CircuitBreaker(
            CircuitBreakerConfig(
                name="test",
                failure_threshold=threshold,
                cooldown_seconds=cooldown_seconds,
            ),
            clock=clock,
        )
        return RetrievalGateway(strategy=strategy, cache=cache, breaker=breaker)

    return _make


@pytest.fixture
def sample_records():
    base = datetime(2025, 1, 1, tzinfo=timezone.utc)
    return [
        make_record("k1", "dark theme preference", updated_at=base),
        make_record("k2", "Prefers THEME music while coding", updated_at=base + timedelta(days=2)),
        make_record("k3", "timezone is UTC-3", updated_at=base + timedelta(days=1)),
        make_record("k4", "old theme note", updated_at=None),
    ]
