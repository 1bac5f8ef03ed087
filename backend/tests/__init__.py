"""Backend test suite for the memory retrieval gateway.

Tests are organized by component:
- test_circuit_breaker.py, test_cache.py: in-process state machines
- test_embeddings.py: embedding client against httpx.MockTransport
- test_memory_repository.py: SQL construction and row mapping
- test_strategies.py, test_gateway.py: retrieval behaviour end to end
- test_reindex.py, test_config.py: job and configuration
- test_observability.py: tracing spans and Prometheus metrics

Run tests with:
    pytest                          # Run all tests
    pytest -k gateway               # Only gateway tests
"""
