"""Short-lived in-process cache of retrieval results.

Entries are keyed by a fingerprint of (strategy, query, hints) and store the
time they were written. Freshness is checked lazily on read:

- entries younger than the TTL are served directly
- older entries are kept as fallback values for degraded responses, and are
  dropped only by ``clear()`` or by being overwritten

Only successful (``ok=True``) results are ever written.

Usage:
    cache = ResultCache(ttl_seconds=15.0)
    key = make_fingerprint("pgIlike", "theme", {})

    result = cache.get_fresh(key)
    if result is None:
        result = await strategy.search("theme")
        cache.put(key, result)
"""

import hashlib
import json
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional

if TYPE_CHECKING:
    from memory_rag.retrieval.base import RetrievalResult

logger = logging.getLogger(__name__)


def normalize_query(query: str) -> str:
    """Trim surrounding whitespace. Inner text, including case, is kept."""
    return (query or "").strip()


def _canonical(value: Any) -> Any:
    """Hints as nested lists with stringified, sorted map keys.

    Keys of any type are allowed; ``1`` and ``"1"`` collapse to the same key.
    """
    if isinstance(value, Mapping):
        items = [[str(k), _canonical(v)] for k, v in value.items()]
        return sorted(items, key=lambda item: item[0])
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    return value


def make_fingerprint(
    strategy_name: str,
    query: str,
    hints: Optional[Mapping[str, Any]] = None,
) -> str:
    """Compute a stable cache key for a retrieval request.

    Hints are serialized in canonical form (keys stringified and sorted at
    every level) so that logically equal hint maps produce the same key.
    Values JSON cannot encode fall back to ``str``; self-referencing hints
    fall back to ``repr``. Never raises. SHA-256 is used for a fixed-length
    key, not for security.

    Args:
        strategy_name: Identifier of the active strategy
        query: Raw query string (normalized here)
        hints: Optional hint map

    Returns:
        64-character hex digest
    """
    try:
        serialized_hints = json.dumps(_canonical(dict(hints or {})), default=str)
    except (TypeError, ValueError, RecursionError):
        serialized_hints = repr(hints)
    raw = f"{strategy_name}:{normalize_query(query)}:{serialized_hints}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheEntry:
    """A cached result and the time it was written."""
    inserted_at: float
    result: "RetrievalResult"


@dataclass
class CacheStats:
    """Statistics for result cache usage."""
    hits: int = 0
    misses: int = 0
    stale_reads: int = 0
    stores: int = 0
    rejected_stores: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


class ResultCache:
    """Fingerprint → (inserted_at, RetrievalResult) map with lazy TTL.

    Args:
        ttl_seconds: Age below which an entry counts as fresh
        max_staleness_seconds: Age above which an entry is no longer offered
            as a fallback. None keeps fallbacks indefinitely.
        clock: Monotonic time source in seconds, injectable for tests
    """

    def __init__(
        self,
        ttl_seconds: float = 15.0,
        max_staleness_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must not be negative")
        self.ttl_seconds = ttl_seconds
        self.max_staleness_seconds = max_staleness_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._stats = CacheStats()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    @property
    def stats(self) -> CacheStats:
        return CacheStats(**vars(self._stats))

    def _age(self, entry: CacheEntry) -> float:
        return self._clock() - entry.inserted_at

    def get_fresh(self, key: str) -> Optional["RetrievalResult"]:
        """Return the cached result if it is younger than the TTL."""
        entry = self._entries.get(key)
        if entry is not None and self._age(entry) < self.ttl_seconds:
            self._stats.hits += 1
            logger.debug(f"Result cache hit for {key[:12]}")
            return entry.result
        if entry is not None:
            self._stats.stale_reads += 1
        self._stats.misses += 1
        return None

    def get_fallback(self, key: str) -> Optional["RetrievalResult"]:
        """Return the last cached result regardless of TTL.

        Honors ``max_staleness_seconds`` when configured.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None
        if (
            self.max_staleness_seconds is not None
            and self._age(entry) > self.max_staleness_seconds
        ):
            logger.debug(f"Result cache fallback for {key[:12]} exceeds max staleness")
            return None
        return entry.result

    def put(self, key: str, result: "RetrievalResult") -> bool:
        """Store a successful result, overwriting any previous entry.

        Returns:
            True if stored, False if the result was not ok
        """
        if not result.ok:
            self._stats.rejected_stores += 1
            logger.debug(f"Refusing to cache failed result for {key[:12]}")
            return False
        self._entries[key] = CacheEntry(inserted_at=self._clock(), result=result)
        self._stats.stores += 1
        return True

    def clear(self) -> None:
        """Drop every entry."""
        count = len(self._entries)
        self._entries.clear()
        logger.info(f"Result cache cleared ({count} entries)")

    def get_status(self) -> Dict[str, Any]:
        stats = self.stats
        return {
            "entries": len(self._entries),
            "ttl_seconds": self.ttl_seconds,
            "max_staleness_seconds": self.max_staleness_seconds,
            "stats": {
                "hits": stats.hits,
                "misses": stats.misses,
                "stale_reads": stats.stale_reads,
                "stores": stats.stores,
                "rejected_stores": stats.rejected_stores,
                "hit_rate": stats.hit_rate,
            },
        }
