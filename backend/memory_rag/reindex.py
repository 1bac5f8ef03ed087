"""Backfill embeddings for memories that do not have one yet.

Fetches up to ``--limit`` rows whose embedding is NULL (newest first), embeds
their content and writes the vector back. Each embedding call is retried with
exponential backoff on upstream errors; a record that still fails is counted
and skipped.

Usage:
    memory-rag-reindex --limit 200

Prints a JSON summary such as ``{"updated": 198, "failed": 2}``.
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import asdict, dataclass
from typing import Callable, List, Optional

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from memory_rag.config import settings
from memory_rag.database import close_db
from memory_rag.embeddings import (
    EmbeddingClient,
    EmbeddingConfigurationError,
    EmbeddingUpstreamError,
)
from memory_rag.repositories import ConfigurationError, MemoryRepository, RepositoryError
from memory_rag.tracing import init_tracing, shutdown_tracing

logger = logging.getLogger(__name__)


@dataclass
class ReindexReport:
    """Outcome of one re-index run."""
    updated: int = 0
    failed: int = 0


async def _embed_with_retry(
    embedder: EmbeddingClient,
    text: str,
    attempts: int,
    min_wait: float,
    max_wait: float,
) -> List[float]:
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(EmbeddingUpstreamError),
        reraise=True,
    ):
        with attempt:
            return await embedder.embed(text)


async def reindex_missing_embeddings(
    embedder: Optional[EmbeddingClient] = None,
    repository_factory: Optional[Callable[[], MemoryRepository]] = None,
    limit: Optional[int] = None,
    retry_attempts: Optional[int] = None,
    retry_min_wait: float = 1.0,
    retry_max_wait: float = 10.0,
) -> ReindexReport:
    """Embed and store vectors for memories with a NULL embedding.

    Args:
        embedder: Embedding client. Defaults to EmbeddingClient().
        repository_factory: Callable returning a repository. Defaults to
            ``MemoryRepository``.
        limit: Maximum rows to process. Defaults to settings.reindex_batch_size.
        retry_attempts: Attempts per embedding call. Defaults to
            settings.reindex_retry_attempts.
        retry_min_wait: Minimum backoff between attempts (seconds)
        retry_max_wait: Maximum backoff between attempts (seconds)

    Returns:
        ReindexReport with updated and failed counts

    Raises:
        EmbeddingConfigurationError: If no API key is configured
        ConfigurationError: If POSTGRES_URL is not set
    """
    embedder = embedder or EmbeddingClient()
    repository_factory = repository_factory or MemoryRepository
    limit = limit or settings.reindex_batch_size
    attempts = retry_attempts or settings.reindex_retry_attempts
    report = ReindexReport()

    async with repository_factory() as repo:
        pending = await repo.find_missing_embeddings(limit=limit)
        logger.info(f"Re-indexing {len(pending)} memories without embeddings")

        for record in pending:
            try:
                vector = await _embed_with_retry(
                    embedder, record.content, attempts, retry_min_wait, retry_max_wait
                )
                await repo.update_embedding(record.id, vector)
                report.updated += 1
            except EmbeddingConfigurationError:
                raise
            except (EmbeddingUpstreamError, RepositoryError) as e:
                logger.error(f"Embed fail for {record.id}: {e}")
                report.failed += 1

    logger.info(f"Re-index finished: updated={report.updated} failed={report.failed}")
    return report


async def _run(limit: int) -> ReindexReport:
    try:
        return await reindex_missing_embeddings(limit=limit)
    finally:
        await close_db()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Backfill memory embeddings")
    parser.add_argument(
        "--limit",
        type=int,
        default=settings.reindex_batch_size,
        help=f"Maximum memories to embed (default: {settings.reindex_batch_size})",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    init_tracing()
    try:
        report = asyncio.run(_run(args.limit))
    except (EmbeddingConfigurationError, ConfigurationError) as e:
        logger.error(f"Re-index aborted: {e}")
        return 1
    finally:
        shutdown_tracing()

    print(json.dumps(asdict(report)))
    return 0


if __name__ == "__main__":
    sys.exit(main())
