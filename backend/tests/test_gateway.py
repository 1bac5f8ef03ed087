"""Tests for the retrieval gateway: caching, short-circuiting and fallbacks."""

from types import SimpleNamespace

import pytest

from memory_rag.circuit_breaker import CircuitState
from memory_rag.retrieval.base import RAGProvider, RetrievalResult
from memory_rag.retrieval.gateway import (
    NO_CONTEXT_MESSAGE,
    RetrievalGateway,
    create_default_gateway,
    format_context,
)
from memory_rag.retrieval.strategies import LiteralTextStrategy

from tests.conftest import FakeMemoryRepository, StubStrategy, make_record


async def _trip(gateway, strategy, queries=("Q1", "Q2", "Q3")):
    strategy.fail_queries.update(queries)
    for query in queries:
        await gateway.retrieve(query)


class TestCaching:
    """Fresh results are served from the cache."""

    @pytest.mark.asyncio
    async def test_repeat_within_ttl_returns_same_result(self, make_gateway, stub_strategy, clock):
        gateway = make_gateway(stub_strategy)

        first = await gateway.retrieve("theme")
        clock.advance(10)
        second = await gateway.retrieve("theme")

        assert second is first
        assert stub_strategy.calls_for("theme") == 1
        assert gateway.stats.cache_hits == 1

    @pytest.mark.asyncio
    async def test_repeat_after_ttl_calls_strategy_again(self, make_gateway, stub_strategy, clock):
        gateway = make_gateway(stub_strategy)

        first = await gateway.retrieve("theme")
        clock.advance(15)
        second = await gateway.retrieve("theme")

        assert stub_strategy.calls_for("theme") == 2
        assert second is not first
        assert second.degraded is False

    @pytest.mark.asyncio
    async def test_surrounding_whitespace_shares_an_entry(self, make_gateway, stub_strategy):
        gateway = make_gateway(stub_strategy)

        await gateway.retrieve("theme")
        await gateway.retrieve("  theme\n")

        assert stub_strategy.calls == [("theme", {})]

    @pytest.mark.asyncio
    async def test_hints_are_part_of_the_fingerprint(self, make_gateway, stub_strategy):
        gateway = make_gateway(stub_strategy)

        await gateway.retrieve("theme", {"domain": "ui"})
        await gateway.retrieve("theme", {"domain": "ui"})
        await gateway.retrieve("theme", {"domain": "audio"})

        assert stub_strategy.calls == [
            ("theme", {"domain": "ui"}),
            ("theme", {"domain": "audio"}),
        ]

    @pytest.mark.asyncio
    async def test_failed_results_are_not_cached(self, make_gateway, stub_strategy):
        gateway = make_gateway(stub_strategy)
        stub_strategy.fail_queries.add("theme")

        await gateway.retrieve("theme")
        await gateway.retrieve("theme")

        assert stub_strategy.calls_for("theme") == 2
        assert len(gateway.cache) == 0

    @pytest.mark.asyncio
    async def test_clear_cache(self, make_gateway, stub_strategy):
        gateway = make_gateway(stub_strategy)

        await gateway.retrieve("theme")
        gateway.clear_cache()
        await gateway.retrieve("theme")

        assert stub_strategy.calls_for("theme") == 2

    @pytest.mark.asyncio
    async def test_nested_hints_with_mixed_key_types(self, make_gateway, stub_strategy):
        gateway = make_gateway(stub_strategy)

        first = await gateway.retrieve("theme", {"ctx": {1: "a", "b": 2}})
        second = await gateway.retrieve("theme", {"ctx": {"b": 2, 1: "a"}})

        assert first.ok is True
        assert second is first
        assert stub_strategy.calls_for("theme") == 1


class TestCircuitBreaking:
    """Repeated failures open the circuit and short-circuit new calls."""

    @pytest.mark.asyncio
    async def test_open_circuit_returns_empty_degraded_without_calling(self, make_gateway, stub_strategy):
        gateway = make_gateway(stub_strategy)

        await _trip(gateway, stub_strategy)
        result = await gateway.retrieve("Q4")

        assert gateway.circuit_state == CircuitState.OPEN
        assert result.ok is False
        assert result.degraded is True
        assert result.snippets == ()
        assert stub_strategy.calls_for("Q4") == 0
        assert gateway.stats.short_circuited == 1

    @pytest.mark.asyncio
    async def test_raised_exceptions_count_as_failures(self, make_gateway, stub_strategy):
        gateway = make_gateway(stub_strategy)
        stub_strategy.raise_queries.update({"Q1", "Q2", "Q3"})

        results = [await gateway.retrieve(q) for q in ("Q1", "Q2", "Q3")]

        assert all(r.ok is False and r.degraded is True for r in results)
        assert gateway.circuit_state == CircuitState.OPEN
        assert gateway.stats.strategy_failures == 3

    @pytest.mark.asyncio
    async def test_success_before_threshold_resets_failures(self, make_gateway, stub_strategy):
        gateway = make_gateway(stub_strategy)

        await _trip(gateway, stub_strategy, queries=("Q1", "Q2"))
        await gateway.retrieve("ok")
        await _trip(gateway, stub_strategy, queries=("Q3", "Q4"))

        assert gateway.circuit_state == CircuitState.CLOSED
        assert gateway.breaker.failure_count == 2

    @pytest.mark.asyncio
    async def test_half_open_trial_success_closes_circuit(self, make_gateway, stub_strategy, clock):
        gateway = make_gateway(stub_strategy)
        await _trip(gateway, stub_strategy)

        clock.advance(5)
        recovered = await gateway.retrieve("Q6")
        await gateway.retrieve("Q7")

        assert recovered.ok is True
        assert recovered.degraded is False
        assert gateway.circuit_state == CircuitState.CLOSED
        assert stub_strategy.calls_for("Q6") == 1
        assert stub_strategy.calls_for("Q7") == 1

    @pytest.mark.asyncio
    async def test_half_open_trial_failure_reopens(self, make_gateway, stub_strategy, clock):
        gateway = make_gateway(stub_strategy)
        await _trip(gateway, stub_strategy)

        clock.advance(5)
        stub_strategy.fail_all = True
        await gateway.retrieve("Q6")
        stub_strategy.fail_all = False
        result = await gateway.retrieve("Q7")

        assert gateway.circuit_state == CircuitState.OPEN
        assert result.degraded is True
        assert stub_strategy.calls_for("Q7") == 0

    @pytest.mark.asyncio
    async def test_reset_circuit_breaker(self, make_gateway, stub_strategy):
        gateway = make_gateway(stub_strategy)
        await _trip(gateway, stub_strategy)

        gateway.reset_circuit_breaker()
        result = await gateway.retrieve("Q4")

        assert gateway.circuit_state == CircuitState.CLOSED
        assert result.ok is True


class TestStaleFallback:
    """Expired entries are served, flagged degraded, when the backend is unavailable."""

    @pytest.mark.asyncio
    async def test_open_circuit_serves_stale_result(self, make_gateway, stub_strategy, clock):
        gateway = make_gateway(stub_strategy)

        original = await gateway.retrieve("Q5")
        clock.advance(16)
        await _trip(gateway, stub_strategy)
        result = await gateway.retrieve("Q5")

        assert stub_strategy.calls_for("Q5") == 1
        assert result.degraded is True
        assert result.ok is True
        assert result.snippets == original.snippets
        assert original.degraded is False

    @pytest.mark.asyncio
    async def test_strategy_failure_serves_stale_result(self, make_gateway, stub_strategy, clock):
        gateway = make_gateway(stub_strategy)

        await gateway.retrieve("theme")
        clock.advance(20)
        stub_strategy.fail_queries.add("theme")
        result = await gateway.retrieve("theme")

        assert gateway.circuit_state == CircuitState.CLOSED
        assert stub_strategy.calls_for("theme") == 2
        assert result.degraded is True
        assert result.count == 1

    @pytest.mark.asyncio
    async def test_stale_result_is_kept_after_failure(self, make_gateway, stub_strategy, clock):
        gateway = make_gateway(stub_strategy)

        await gateway.retrieve("theme")
        clock.advance(20)
        stub_strategy.fail_queries.add("theme")
        await gateway.retrieve("theme")
        again = await gateway.retrieve("theme")

        assert again.degraded is True
        assert again.count == 1

    @pytest.mark.asyncio
    async def test_max_staleness_limits_fallback(self, make_gateway, stub_strategy, clock):
        gateway = make_gateway(stub_strategy, max_staleness_seconds=60)

        await gateway.retrieve("theme")
        clock.advance(61)
        stub_strategy.fail_queries.add("theme")
        result = await gateway.retrieve("theme")

        assert result.ok is False
        assert result.degraded is True
        assert result.is_empty


class TestEndToEnd:
    """Gateway over the literal strategy and an in-memory store."""

    @pytest.mark.asyncio
    async def test_literal_match_through_gateway(self, make_gateway):
        repo = FakeMemoryRepository(records=[make_record("k1", "dark theme preference")])
        gateway = make_gateway(LiteralTextStrategy(repository_factory=repo))

        result = await gateway.retrieve("theme", {})

        assert result.ok is True
        assert result.degraded is False
        assert result.count == 1
        assert "theme" in result.snippets[0].content
        assert result.snippets[0].confidence == 0.6
        assert format_context(result) == "[Memory 1: k1]\ndark theme preference"

    @pytest.mark.asyncio
    async def test_unreachable_store_degrades_to_no_context(self, make_gateway):
        from memory_rag.repositories import QueryError

        repo = FakeMemoryRepository()
        repo.error = QueryError("timeout", "search_text")
        gateway = make_gateway(LiteralTextStrategy(repository_factory=repo))

        result = await gateway.retrieve("theme")

        assert result.degraded is True
        assert format_context(result) == NO_CONTEXT_MESSAGE


class TestStatusAndFactory:
    """Status reporting and construction from settings."""

    @pytest.mark.asyncio
    async def test_get_status(self, make_gateway, stub_strategy):
        gateway = make_gateway(stub_strategy)

        await gateway.retrieve("theme")
        await gateway.retrieve("theme")
        status = gateway.get_status()

        assert status["strategy"]["name"] == "pgIlike"
        assert status["circuit_breaker"]["state"] == "closed"
        assert status["cache"]["entries"] == 1
        assert status["stats"]["requests"] == 2
        assert status["stats"]["cache_hits"] == 1
        assert status["stats"]["strategy_calls"] == 1
        assert status["stats"]["avg_latency_ms"] >= 0

    def test_default_breaker_is_named_after_strategy(self):
        gateway = RetrievalGateway(StubStrategy())

        assert gateway.breaker.config.name == "rag:pgIlike"
        assert gateway.breaker.config.failure_threshold == 3
        assert gateway.cache.ttl_seconds == 15.0

    def test_create_default_gateway_reads_config(self):
        config = SimpleNamespace(
            rag_cache_ttl_seconds=30.0,
            rag_cache_max_staleness_seconds=120.0,
            rag_breaker_threshold=5,
            rag_breaker_cooldown_seconds=10.0,
        )

        gateway = create_default_gateway(config=config, strategy=StubStrategy())

        assert gateway.cache.ttl_seconds == 30.0
        assert gateway.cache.max_staleness_seconds == 120.0
        assert gateway.breaker.config.failure_threshold == 5
        assert gateway.breaker.config.cooldown_seconds == 10.0

    def test_create_default_gateway_builds_strategy(self):
        config = SimpleNamespace(
            rag_provider_name=RAGProvider.PG_ILIKE,
            rag_result_limit=3,
            rag_cache_ttl_seconds=15.0,
            rag_cache_max_staleness_seconds=None,
            rag_breaker_threshold=3,
            rag_breaker_cooldown_seconds=5.0,
        )

        gateway = create_default_gateway(config=config)

        assert isinstance(gateway.strategy, LiteralTextStrategy)
        assert gateway.strategy.limit == 3


def test_failure_result_shape():
    result = RetrievalResult.failure()

    assert (result.ok, result.degraded, result.snippets) == (False, True, ())
