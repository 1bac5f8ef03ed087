"""Repository for the ``memories`` knowledge store.

Provides the two read queries the retrieval strategies need and the
read/write pair used by the re-index job.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import Select, Text, cast, select, update
from sqlalchemy.exc import SQLAlchemyError

from memory_rag.db_models import Memory
from memory_rag.repositories.base import (
    AsyncSessionRepository,
    ConnectionError,
    QueryError,
    RepositoryError,
)

logger = logging.getLogger(__name__)

# Driver-level failures reaching the store
CONNECTION_ERRORS = (OSError, asyncio.TimeoutError)
BACKEND_ERRORS = (SQLAlchemyError,) + CONNECTION_ERRORS


def content_to_text(content: Any) -> str:
    """Render JSONB content as text: strings as-is, anything else as JSON."""
    if isinstance(content, str):
        return content
    return json.dumps(content)


@dataclass(frozen=True)
class MemoryRecord:
    """Read-only view of a memory row returned by the search queries."""
    key: str
    layer: str
    content: str
    updated_at: Optional[datetime]
    distance: Optional[float] = None

    def to_metadata(self) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {
            "key": self.key,
            "layer": self.layer,
            "updatedAt": self.updated_at,
        }
        if self.distance is not None:
            metadata["distance"] = self.distance
        return metadata


@dataclass(frozen=True)
class PendingEmbedding:
    """A memory row whose embedding has not been computed yet."""
    id: uuid.UUID
    content: str


def build_text_search(query: str, limit: int) -> Select:
    """Case-insensitive substring match over ``content::text``, newest first.

    LIKE wildcards in ``query`` are escaped so they match literally.
    """
    return (
        select(Memory.key, Memory.layer, Memory.content, Memory.updated_at)
        .where(cast(Memory.content, Text).icontains(query, autoescape=True))
        .order_by(Memory.updated_at.desc().nulls_last())
        .limit(limit)
    )


def build_nearest_search(vector: Sequence[float], limit: int) -> Select:
    """Nearest neighbours by L2 distance over rows that have an embedding."""
    distance = Memory.embedding.l2_distance(list(vector))
    return (
        select(
            Memory.key,
            Memory.layer,
            Memory.content,
            Memory.updated_at,
            distance.label("distance"),
        )
        .where(Memory.embedding.isnot(None))
        .order_by(distance)
        .limit(limit)
    )


class MemoryRepository(AsyncSessionRepository):
    """Async repository over the ``memories`` table.

    Usage:
        async with MemoryRepository() as repo:
            records = await repo.search_text("theme", limit=8)
    """

    def _backend_error(self, operation: str, error: Exception) -> RepositoryError:
        """Log ``error`` and map it to ConnectionError or QueryError."""
        self._log_error(operation, error)
        if isinstance(error, CONNECTION_ERRORS):
            return ConnectionError(str(error), operation)
        return QueryError(str(error), operation)

    async def search_text(self, query: str, limit: int = 8) -> List[MemoryRecord]:
        """Find records whose content contains ``query``, ignoring case.

        Raises:
            ConnectionError: If the store cannot be reached
            QueryError: If the query fails to execute
        """
        self._log_operation("search_text", query_length=len(query), limit=limit)

        try:
            result = await self._session.execute(build_text_search(query, limit))
            rows = result.all()
        except BACKEND_ERRORS as e:
            raise self._backend_error("search_text", e) from e

        return [
            MemoryRecord(
                key=row.key,
                layer=row.layer,
                content=content_to_text(row.content),
                updated_at=row.updated_at,
            )
            for row in rows
        ]

    async def search_nearest(self, vector: Sequence[float], limit: int = 8) -> List[MemoryRecord]:
        """Find the records closest to ``vector``, ascending distance.

        Raises:
            ConnectionError: If the store cannot be reached
            QueryError: If the query fails to execute
        """
        self._log_operation("search_nearest", dims=len(vector), limit=limit)

        try:
            result = await self._session.execute(build_nearest_search(vector, limit))
            rows = result.all()
        except BACKEND_ERRORS as e:
            raise self._backend_error("search_nearest", e) from e

        return [
            MemoryRecord(
                key=row.key,
                layer=row.layer,
                content=content_to_text(row.content),
                updated_at=row.updated_at,
                distance=float(row.distance) if row.distance is not None else None,
            )
            for row in rows
        ]

    async def find_missing_embeddings(self, limit: int = 200) -> List[PendingEmbedding]:
        """Rows without an embedding, most recently updated first."""
        self._log_operation("find_missing_embeddings", limit=limit)

        stmt = (
            select(Memory.id, Memory.content)
            .where(Memory.embedding.is_(None))
            .order_by(Memory.updated_at.desc().nulls_last())
            .limit(limit)
        )
        try:
            result = await self._session.execute(stmt)
            rows = result.all()
        except BACKEND_ERRORS as e:
            raise self._backend_error("find_missing_embeddings", e) from e

        return [PendingEmbedding(id=row.id, content=content_to_text(row.content)) for row in rows]

    async def update_embedding(self, record_id: uuid.UUID, vector: Sequence[float]) -> None:
        """Store the embedding for one row and commit."""
        self._log_operation("update_embedding", record_id=str(record_id))

        stmt = update(Memory).where(Memory.id == record_id).values(embedding=list(vector))
        try:
            async with self.transaction():
                await self._session.execute(stmt)
        except BACKEND_ERRORS as e:
            raise self._backend_error("update_embedding", e) from e


__all__ = [
    "MemoryRecord",
    "PendingEmbedding",
    "MemoryRepository",
    "build_text_search",
    "build_nearest_search",
    "content_to_text",
]
