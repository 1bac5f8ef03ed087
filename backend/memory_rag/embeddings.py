"""Embedding client for an OpenAI-compatible embeddings API.

Converts free text into a fixed-length vector. Used by the vector similarity
strategy and by the re-index job.

The client does not retry. Callers that want retries wrap ``embed`` themselves
(see ``memory_rag.reindex``).

Usage:
    from memory_rag.embeddings import EmbeddingClient

    client = EmbeddingClient()
    vector = await client.embed("dark theme preference")
"""
import logging
from typing import Any, List, Optional

import httpx

from memory_rag.config import settings
from memory_rag.tracing import SpanAttributes, trace_operation

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """Base exception for embedding failures."""
    pass


class EmbeddingConfigurationError(EmbeddingError):
    """Raised when the API credential is missing."""
    pass


class EmbeddingUpstreamError(EmbeddingError):
    """Raised when the embedding service fails or returns a bad payload."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class EmbeddingClient:
    """Client for ``POST {base_url}/embeddings``.

    Args:
        api_key: Bearer credential. If not provided, reads from settings.
        model: Embedding model identifier. If not provided, reads from settings.
        base_url: API base URL. If not provided, reads from settings.
        timeout_seconds: Request timeout. If not provided, reads from settings.
        dimensions: Expected vector length, None to skip the check.
            If not provided, reads from settings.
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        dimensions: Optional[int] = -1,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.model = model or settings.embedding_model
        self.base_url = (base_url or settings.openai_base_url).rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.embedding_timeout_seconds
        self.dimensions = settings.embedding_dimensions if dimensions == -1 else dimensions
        self._transport = transport

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/embeddings"

    @trace_operation(
        "rag.embedding.request",
        lambda self, text: {
            SpanAttributes.EMBEDDING_MODEL: self.model,
            SpanAttributes.EMBEDDING_INPUT_LENGTH: len(text or ""),
        },
    )
    async def embed(self, text: str) -> List[float]:
        """Embed a single text.

        Empty text is passed through to the service unchanged.

        Args:
            text: Text to embed

        Returns:
            Embedding vector

        Raises:
            EmbeddingConfigurationError: If no API key is configured
            EmbeddingUpstreamError: On transport failure, non-success status
                or malformed payload
        """
        if not self.api_key:
            raise EmbeddingConfigurationError("OPENAI_API_KEY is required to run embeddings")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {"model": self.model, "input": text}

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(self.endpoint, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise EmbeddingUpstreamError(f"Embedding request failed: {e}") from e

        if not response.is_success:
            raise EmbeddingUpstreamError(
                f"Embedding request failed: {response.status_code} {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise EmbeddingUpstreamError(
                "Invalid embedding response: body is not JSON",
                status_code=response.status_code,
                body=response.text,
            ) from e

        vector = self._extract_vector(data)
        logger.debug(f"Embedded {len(text)} chars with {self.model} -> {len(vector)} dims")
        return vector

    def _extract_vector(self, data: Any) -> List[float]:
        """Pull ``data[0].embedding`` out of the response payload."""
        try:
            vector = data["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as e:
            raise EmbeddingUpstreamError("Invalid embedding response: missing embedding") from e

        if not isinstance(vector, list) or not all(
            isinstance(v, (int, float)) and not isinstance(v, bool) for v in vector
        ):
            raise EmbeddingUpstreamError("Invalid embedding response: embedding is not a numeric array")

        if self.dimensions is not None and len(vector) != self.dimensions:
            raise EmbeddingUpstreamError(
                f"Invalid embedding response: expected {self.dimensions} dims, got {len(vector)}"
            )
        return [float(v) for v in vector]

    def get_config(self):
        return {
            "model": self.model,
            "endpoint": self.endpoint,
            "dimensions": self.dimensions,
            "timeout_seconds": self.timeout_seconds,
            "api_key_configured": bool(self.api_key),
        }


__all__ = [
    "EmbeddingClient",
    "EmbeddingError",
    "EmbeddingConfigurationError",
    "EmbeddingUpstreamError",
]
