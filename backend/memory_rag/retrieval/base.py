"""Base classes for retrieval strategies.

This module defines the core interfaces and data structures shared by the
retrieval strategies and the retrieval gateway.
"""

import dataclasses
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


class RAGProvider(Enum):
    """Identifiers of the available retrieval strategies."""
    PG_ILIKE = "pgIlike"    # Literal text match
    VECTOR_DB = "vectorDB"  # Vector similarity


class SnippetSource(Enum):
    """Origin of a retrieved snippet."""
    INTERNAL_DOCS = "internalDocs"
    VECTOR_DB = "vectorDB"
    WEB_SEARCH = "webSearch"
    PARTNER_APIS = "partnerAPIs"


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


@dataclass(frozen=True)
class Snippet:
    """One retrieved unit of knowledge.

    Attributes:
        source: Where the snippet came from
        content: Text body
        confidence: Relevance in [0, 1]
        metadata: Record key, layer, last update and strategy-specific extras
    """
    source: SnippetSource
    content: str
    confidence: float
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source.value,
            "content": self.content,
            "confidence": self.confidence,
            "metadata": _jsonable(self.metadata),
        }


@dataclass(frozen=True)
class Citation:
    """Descriptive reference attached to a result. Never affects ranking."""
    source: str
    url: Optional[str] = None
    title: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"source": self.source}
        if self.url is not None:
            data["url"] = self.url
        if self.title is not None:
            data["title"] = self.title
        return data


@dataclass(frozen=True)
class RetrievalResult:
    """Result container for retrieval operations.

    A result with ``degraded=True`` did not come from a fresh, successful
    strategy call and must not be treated as fresh. A result with
    ``ok=False`` has no snippets unless a stale cached result was substituted.

    Attributes:
        ok: Whether the strategy executed without error
        degraded: Stale cache fallback or explicit empty fallback
        snippets: Retrieved snippets, highest confidence first
        citations: Optional descriptive citations
        error: Diagnostic message when the strategy failed
    """
    ok: bool
    degraded: bool = False
    snippets: Tuple[Snippet, ...] = ()
    citations: Optional[Tuple[Citation, ...]] = None
    error: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "snippets", tuple(self.snippets))
        if self.citations is not None:
            object.__setattr__(self, "citations", tuple(self.citations))

    @classmethod
    def success(cls, snippets, citations=None) -> "RetrievalResult":
        return cls(ok=True, snippets=tuple(snippets), citations=citations)

    @classmethod
    def failure(cls, error: Optional[str] = None) -> "RetrievalResult":
        """Empty degraded result reported by a strategy or the gateway."""
        return cls(ok=False, degraded=True, error=error)

    def as_degraded(self) -> "RetrievalResult":
        """Copy of this result flagged as degraded."""
        return dataclasses.replace(self, degraded=True)

    @property
    def is_empty(self) -> bool:
        return len(self.snippets) == 0

    @property
    def count(self) -> int:
        return len(self.snippets)

    @property
    def max_confidence(self) -> float:
        if not self.snippets:
            return 0.0
        return max(s.confidence for s in self.snippets)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        data: Dict[str, Any] = {
            "ok": self.ok,
            "degraded": self.degraded,
            "snippets": [s.to_dict() for s in self.snippets],
        }
        if self.citations is not None:
            data["citations"] = [c.to_dict() for c in self.citations]
        return data


class RetrievalStrategy(ABC):
    """Abstract base class for retrieval strategies.

    A strategy runs one retrieval technique against the knowledge store.
    Backend failures are reported as ``RetrievalResult.failure(...)`` rather
    than raised, so the gateway's circuit breaker sees them uniformly.

    Example:
        class CustomStrategy(RetrievalStrategy):
            provider = RAGProvider.PG_ILIKE

            async def search(self, query, hints=None) -> RetrievalResult:
                ...
    """

    provider: RAGProvider

    @property
    def name(self) -> str:
        """Identifier used in cache fingerprints and logs."""
        return self.provider.value

    @abstractmethod
    async def search(
        self,
        query: str,
        hints: Optional[Mapping[str, Any]] = None,
    ) -> RetrievalResult:
        """Retrieve snippets relevant to the query.

        Args:
            query: The search query string
            hints: Strategy-specific bag (domain context, user level, ...);
                may be ignored

        Returns:
            RetrievalResult with ``ok=False`` when the backend failed
        """
        pass

    def get_config(self) -> Dict[str, Any]:
        """Get the current configuration of this strategy."""
        return {"name": self.name}


__all__ = [
    "RAGProvider",
    "SnippetSource",
    "Snippet",
    "Citation",
    "RetrievalResult",
    "RetrievalStrategy",
]
