"""SQLAlchemy ORM mapping of the knowledge store.

Describes the existing ``memories`` table as far as retrieval and re-indexing
need it. The table and its indexes are created by migrations, not here.
"""

import uuid
from datetime import datetime
from typing import Any, List, Optional

from pgvector.sqlalchemy import Vector
from sqlalchemy import DateTime, Index, String, func
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from memory_rag.config import settings
from memory_rag.database import Base

# Must match the dimension of the deployed vector(N) column
EMBEDDING_DIMENSIONS = settings.embedding_dimensions


class Memory(Base):
    """One stored memory record.

    ``content`` is JSONB and may hold a plain string or a structured value.
    ``embedding`` is NULL until the re-index job has embedded the record.
    """

    __tablename__ = "memories"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    layer: Mapped[str] = mapped_column(String(32), nullable=False)  # context, temporary, permanent
    scope: Mapped[str] = mapped_column(String(32), nullable=False)  # agent_managed, user_owned
    content: Mapped[Any] = mapped_column(JSONB, nullable=False)
    tags: Mapped[Optional[List[str]]] = mapped_column(ARRAY(String), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=True,
    )
    embedding: Mapped[Optional[List[float]]] = mapped_column(
        Vector(EMBEDDING_DIMENSIONS),
        nullable=True,
    )

    __table_args__ = (
        Index("idx_memories_owner_scope_layer_exp", "owner_id", "scope", "layer", "expires_at"),
        Index("idx_memories_owner_key", "owner_id", "key"),
        Index(
            "idx_memories_embedding_hnsw",
            "embedding",
            postgresql_using="hnsw",
            postgresql_ops={"embedding": "vector_l2_ops"},
        ),
    )

    def __repr__(self) -> str:
        return f"<Memory(key={self.key}, layer={self.layer})>"
