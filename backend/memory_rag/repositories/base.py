"""Session-scoped repository base and the knowledge-store error types.

Strategies catch ``RepositoryError`` and report it as a failed retrieval
result, so every failure a repository can hit (missing URL, unusable driver,
unreachable server, bad SQL) surfaces as one of these types.

Usage:
    class NotesRepository(AsyncSessionRepository):
        async def count(self) -> int:
            result = await self._session.execute(select(func.count(Note.id)))
            return result.scalar_one()

    async with NotesRepository() as repo:
        total = await repo.count()
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Base exception for knowledge-store access.

    Args:
        message: What went wrong
        operation: Repository method that failed, shown as a prefix
        details: Extra diagnostic fields
    """

    def __init__(self, message: str, operation: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.operation}] {self.message}" if self.operation else self.message


class ConfigurationError(RepositoryError):
    """POSTGRES_URL is missing or names an unusable dialect/driver."""
    pass


class ConnectionError(RepositoryError):
    """The store could not be reached (socket error or timeout)."""
    pass


class QueryError(RepositoryError):
    """A statement failed to execute."""
    pass


class AsyncSessionRepository:
    """Opens one ``AsyncSession`` per ``async with`` block.

    Args:
        session_factory: Callable returning an ``AsyncSession``. Defaults to
            the shared factory from ``memory_rag.database``, resolved on entry.
    """

    def __init__(self, session_factory=None):
        self._session_factory = session_factory
        self._session = None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.disconnect()

    async def connect(self) -> None:
        """Open a session.

        Raises:
            ConfigurationError: If POSTGRES_URL is unset or the engine cannot
                be built from it
        """
        if self._session is not None:
            return

        if self._session_factory is None:
            # Import here to avoid circular imports
            from memory_rag.database import get_session_factory

            try:
                self._session_factory = get_session_factory()
            except SQLAlchemyError as e:
                self._log_error("connect", e)
                raise ConfigurationError(f"Cannot create database engine: {e}", "connect") from e

        self._session = self._session_factory()
        self._log_operation("connect")

    async def disconnect(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
            self._log_operation("disconnect")

    @asynccontextmanager
    async def transaction(self):
        """Commit on success, roll back and re-raise otherwise."""
        try:
            yield self._session
            await self._session.commit()
        except Exception as e:
            await self._session.rollback()
            self._log_error("transaction", e)
            raise

    def _log_operation(self, operation: str, **kwargs) -> None:
        logger.debug(
            f"{self.__class__.__name__}.{operation}",
            extra={"operation": operation, **kwargs},
        )

    def _log_error(self, operation: str, error: Exception) -> None:
        logger.error(
            f"{self.__class__.__name__}.{operation} failed: {error}",
            extra={"operation": operation, "error_type": type(error).__name__},
        )
