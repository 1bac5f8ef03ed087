"""OpenTelemetry tracing for the retrieval gateway.

Spans cover one gateway request, the strategy call behind it and the
embedding request the vector strategy makes.

Usage:
    from memory_rag.tracing import create_span, SpanAttributes

    with create_span("rag.gateway.retrieve", {SpanAttributes.QUERY_LENGTH: len(query)}) as span:
        result = await strategy.search(query)
        span.set_attribute(SpanAttributes.RESULT_COUNT, result.count)

Until ``init_tracing`` installs a provider, spans come from the OpenTelemetry
API's default provider and record nothing.

Environment Variables:
    TRACING_ENABLED: Enable/disable tracing (default: false)
    TRACING_EXPORTER: "otlp" or "console" (default: console)
    TRACING_OTLP_ENDPOINT: OTLP gRPC endpoint (default: http://localhost:4317)
    TRACING_SERVICE_NAME: Service name in traces (default: memory-rag)
    TRACING_SAMPLE_RATE: Sampling ratio 0.0-1.0 (default: 1.0)
"""
import functools
import inspect
import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

from memory_rag import __version__
from memory_rag.config import settings

logger = logging.getLogger(__name__)

# Provider installed by init_tracing, None until then
_tracer_provider: Optional[TracerProvider] = None
_initialized = False


def init_tracing() -> bool:
    """Initialize OpenTelemetry tracing from settings.

    Returns:
        True if a tracer provider was installed, False if tracing is disabled
    """
    global _tracer_provider, _initialized

    if _initialized:
        logger.debug("Tracing already initialized")
        return _tracer_provider is not None

    _initialized = True
    if not settings.tracing_enabled:
        logger.info("Tracing is disabled (TRACING_ENABLED=false)")
        return False

    resource = Resource.create({
        SERVICE_NAME: settings.tracing_service_name,
        "service.version": __version__,
    })
    _tracer_provider = TracerProvider(
        resource=resource,
        sampler=TraceIdRatioBased(settings.tracing_sample_rate),
    )

    if settings.tracing_exporter == "otlp":
        _configure_otlp_exporter(_tracer_provider)
    else:
        _configure_console_exporter(_tracer_provider)

    trace.set_tracer_provider(_tracer_provider)
    _instrument_httpx()

    logger.info(
        f"OpenTelemetry tracing initialized: "
        f"exporter={settings.tracing_exporter}, "
        f"endpoint={settings.tracing_otlp_endpoint if settings.tracing_exporter == 'otlp' else 'stdout'}, "
        f"sample_rate={settings.tracing_sample_rate}"
    )
    return True


def _configure_otlp_exporter(provider: TracerProvider) -> None:
    """Configure OTLP gRPC exporter for sending traces to a collector."""
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    exporter = OTLPSpanExporter(endpoint=settings.tracing_otlp_endpoint, insecure=True)
    provider.add_span_processor(BatchSpanProcessor(exporter))
    logger.debug(f"OTLP exporter configured: {settings.tracing_otlp_endpoint}")


def _configure_console_exporter(provider: TracerProvider) -> None:
    """Configure console exporter for development/debugging."""
    from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor

    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    logger.debug("Console exporter configured")


def _instrument_httpx() -> None:
    """Instrument httpx so embedding requests get client spans."""
    from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

    HTTPXClientInstrumentor().instrument()
    logger.debug("httpx instrumentation enabled")


def get_tracer() -> trace.Tracer:
    """Get a tracer from the installed provider, or the global default."""
    if not _initialized:
        init_tracing()
    return trace.get_tracer("memory_rag", __version__, tracer_provider=_tracer_provider)


@contextmanager
def create_span(name: str, attributes: Optional[Dict[str, Any]] = None):
    """Create a span around a block.

    Exceptions leaving the block are recorded on the span and re-raised.

    Example:
        with create_span("rag.strategy.search", {"rag.strategy": "pgIlike"}) as span:
            records = await repo.search_text(query)
            span.set_attribute("rag.result.count", len(records))
    """
    with get_tracer().start_as_current_span(name, attributes=attributes) as span:
        yield span


def trace_operation(
    operation_name: str,
    extract_attributes: Optional[Callable[..., Dict[str, Any]]] = None,
) -> Callable:
    """Decorator wrapping a coroutine function in a span.

    Args:
        operation_name: Span name
        extract_attributes: Optional function receiving the call's arguments
            and returning span attributes
    """
    def decorator(func):
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"trace_operation expects a coroutine function, got {func!r}")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            attributes = extract_attributes(*args, **kwargs) if extract_attributes else None
            with create_span(operation_name, attributes):
                return await func(*args, **kwargs)

        return wrapper

    return decorator


def shutdown_tracing() -> None:
    """Flush and shut down the installed provider."""
    global _tracer_provider, _initialized

    if _tracer_provider is not None:
        _tracer_provider.shutdown()
        logger.info("Tracing shutdown complete")
    _tracer_provider = None
    _initialized = False


class SpanAttributes:
    """Span attribute names."""

    QUERY_LENGTH = "rag.query.length"

    STRATEGY = "rag.strategy"
    RESULT_COUNT = "rag.result.count"
    RESULT_OK = "rag.result.ok"
    RESULT_DEGRADED = "rag.result.degraded"
    OUTCOME = "rag.gateway.outcome"
    CIRCUIT_STATE = "rag.circuit.state"

    EMBEDDING_MODEL = "rag.embedding.model"
    EMBEDDING_INPUT_LENGTH = "rag.embedding.input_length"
