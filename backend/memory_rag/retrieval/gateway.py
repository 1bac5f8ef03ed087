"""Retrieval gateway.

Single entry point the chat flow uses to fetch memory context. For each
request it runs:

1. fingerprint the (strategy, query, hints) triple
2. fresh cache hit -> return it untouched
3. circuit open -> stale cached result flagged degraded, else empty degraded
4. call the strategy; on failure record it and fall back as in step 3
5. on success record it, cache the result and return it

``retrieve`` never raises: a broken backend shows up as ``degraded=True``.

Example:
    gateway = create_default_gateway()

    result = await gateway.retrieve("theme", {"domain": "ui"})
    context = format_context(result)
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

from memory_rag.cache import ResultCache, make_fingerprint, normalize_query
from memory_rag.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState
from memory_rag.metrics import (
    OUTCOME_CACHE_HIT,
    OUTCOME_EMPTY_FALLBACK,
    OUTCOME_FRESH,
    OUTCOME_STALE_FALLBACK,
    record_retrieval,
)
from memory_rag.retrieval.base import RetrievalResult, RetrievalStrategy
from memory_rag.tracing import SpanAttributes, create_span

logger = logging.getLogger(__name__)

NO_CONTEXT_MESSAGE = "No additional context found."


@dataclass
class GatewayStats:
    """Counters for gateway traffic and fallbacks."""
    requests: int = 0
    cache_hits: int = 0
    strategy_calls: int = 0
    strategy_failures: int = 0
    short_circuited: int = 0
    degraded_responses: int = 0
    total_latency_ms: float = 0.0

    @property
    def avg_latency_ms(self) -> float:
        return self.total_latency_ms / self.requests if self.requests else 0.0


class RetrievalGateway:
    """Cache, circuit breaker and one retrieval strategy behind ``retrieve``.

    The gateway owns its cache and breaker; nothing is shared between
    gateway instances or processes.

    Args:
        strategy: Active retrieval strategy, fixed for the gateway's lifetime
        cache: Result cache. Defaults to a 15 second TTL cache.
        breaker: Circuit breaker. Defaults to threshold 3, cooldown 5 seconds.
    """

    def __init__(
        self,
        strategy: RetrievalStrategy,
        cache: Optional[ResultCache] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self._strategy = strategy
        self._cache = cache if cache is not None else ResultCache()
        self._breaker = breaker if breaker is not None else CircuitBreaker(
            CircuitBreakerConfig(name=f"rag:{strategy.name}")
        )
        self._stats = GatewayStats()

    @property
    def strategy(self) -> RetrievalStrategy:
        return self._strategy

    @property
    def cache(self) -> ResultCache:
        return self._cache

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def circuit_state(self) -> CircuitState:
        return self._breaker.state

    @property
    def stats(self) -> GatewayStats:
        return GatewayStats(**vars(self._stats))

    def _fallback(self, key: str) -> Tuple[RetrievalResult, str]:
        """Last cached result for ``key`` marked degraded, else empty degraded."""
        self._stats.degraded_responses += 1
        cached = self._cache.get_fallback(key)
        if cached is not None:
            return cached.as_degraded(), OUTCOME_STALE_FALLBACK
        return RetrievalResult.failure(), OUTCOME_EMPTY_FALLBACK

    async def retrieve(
        self,
        query: str,
        hints: Optional[Mapping[str, Any]] = None,
    ) -> RetrievalResult:
        """Retrieve snippets for ``query``.

        Args:
            query: Search text. Empty is accepted but yields low-value matches.
            hints: Strategy-specific bag; part of the cache fingerprint

        Returns:
            RetrievalResult; degraded when it is not a fresh strategy result
        """
        start_time = time.perf_counter()
        attributes = {
            SpanAttributes.STRATEGY: self._strategy.name,
            SpanAttributes.QUERY_LENGTH: len(query or ""),
        }
        with create_span("rag.gateway.retrieve", attributes) as span:
            result, outcome = await self._retrieve(query, hints)

            latency_ms = (time.perf_counter() - start_time) * 1000
            self._stats.requests += 1
            self._stats.total_latency_ms += latency_ms
            record_retrieval(self._strategy.name, outcome, latency_ms)

            span.set_attribute(SpanAttributes.OUTCOME, outcome)
            span.set_attribute(SpanAttributes.RESULT_COUNT, result.count)
            span.set_attribute(SpanAttributes.RESULT_OK, result.ok)
            span.set_attribute(SpanAttributes.RESULT_DEGRADED, result.degraded)
            span.set_attribute(SpanAttributes.CIRCUIT_STATE, self._breaker.state.value)
            return result

    async def _retrieve(
        self,
        query: str,
        hints: Optional[Mapping[str, Any]],
    ) -> Tuple[RetrievalResult, str]:
        query = normalize_query(query)
        key = make_fingerprint(self._strategy.name, query, hints)

        cached = self._cache.get_fresh(key)
        if cached is not None:
            self._stats.cache_hits += 1
            return cached, OUTCOME_CACHE_HIT

        if not self._breaker.can_try():
            self._stats.short_circuited += 1
            logger.info(
                f"Retrieval short-circuited for strategy '{self._strategy.name}' "
                f"(circuit {self._breaker.state.value})"
            )
            return self._fallback(key)

        self._stats.strategy_calls += 1
        try:
            result = await self._strategy.search(query, dict(hints) if hints else {})
        except Exception as e:
            logger.error(f"Strategy '{self._strategy.name}' raised unexpectedly: {e}", exc_info=True)
            self._stats.strategy_failures += 1
            self._breaker.record_failure(e)
            return self._fallback(key)

        if not result.ok:
            self._stats.strategy_failures += 1
            self._breaker.record_failure()
            return self._fallback(key)

        self._breaker.record_success()
        self._cache.put(key, result)
        return result, OUTCOME_FRESH

    def clear_cache(self) -> None:
        self._cache.clear()

    def reset_circuit_breaker(self) -> None:
        self._breaker.reset()

    def get_status(self) -> Dict[str, Any]:
        """Gateway, breaker and cache status for health checks."""
        stats = self.stats
        return {
            "strategy": self._strategy.get_config(),
            "circuit_breaker": self._breaker.get_status(),
            "cache": self._cache.get_status(),
            "stats": {
                "requests": stats.requests,
                "cache_hits": stats.cache_hits,
                "strategy_calls": stats.strategy_calls,
                "strategy_failures": stats.strategy_failures,
                "short_circuited": stats.short_circuited,
                "degraded_responses": stats.degraded_responses,
                "avg_latency_ms": stats.avg_latency_ms,
            },
        }


def format_context(result: RetrievalResult) -> str:
    """Render a result as prompt context for the chat flow.

    Degraded results are still rendered when they carry snippets; an empty
    result becomes a fixed "no context" line rather than an error.
    """
    if result.is_empty:
        return NO_CONTEXT_MESSAGE

    context_parts = []
    for i, snippet in enumerate(result.snippets, 1):
        label = snippet.metadata.get("key") or snippet.source.value
        context_parts.append(f"[Memory {i}: {label}]\n{snippet.content.strip()}")

    return "\n\n---\n\n".join(context_parts)


def create_default_gateway(config=None, strategy: Optional[RetrievalStrategy] = None) -> RetrievalGateway:
    """Create a gateway wired from settings.

    Args:
        config: Settings object, defaults to ``memory_rag.config.settings``
        strategy: Optional strategy overriding RAG_PROVIDER

    Returns:
        RetrievalGateway with its own cache and breaker
    """
    if config is None:
        from memory_rag.config import settings as config

    if strategy is None:
        from memory_rag.retrieval.strategies import create_strategy
        strategy = create_strategy(config.rag_provider_name, limit=config.rag_result_limit)

    cache = ResultCache(
        ttl_seconds=config.rag_cache_ttl_seconds,
        max_staleness_seconds=config.rag_cache_max_staleness_seconds,
    )
    breaker = CircuitBreaker(
        CircuitBreakerConfig(
            name=f"rag:{strategy.name}",
            failure_threshold=config.rag_breaker_threshold,
            cooldown_seconds=config.rag_breaker_cooldown_seconds,
        )
    )

    logger.info(
        f"Retrieval gateway created: strategy={strategy.name}, "
        f"ttl={cache.ttl_seconds}s, threshold={breaker.config.failure_threshold}, "
        f"cooldown={breaker.config.cooldown_seconds}s"
    )
    return RetrievalGateway(strategy=strategy, cache=cache, breaker=breaker)


__all__ = [
    "RetrievalGateway",
    "GatewayStats",
    "NO_CONTEXT_MESSAGE",
    "format_context",
    "create_default_gateway",
]
