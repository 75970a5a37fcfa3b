"""Entry point for the Textbook RAG service."""

import asyncio
import logging
from pathlib import Path

from textbook_rag.config import load_config
from textbook_rag.logging_setup import setup_logging
from textbook_rag.pipeline import build_pipeline

logger = logging.getLogger(__name__)


async def _startup() -> None:
    config = load_config()
    setup_logging(config.logging)

    # Ensure required directories exist
    Path(config.storage.sqlite_path).parent.mkdir(parents=True, exist_ok=True)
    Path(config.storage.uploads_dir).mkdir(parents=True, exist_ok=True)

    pipeline = build_pipeline(config)
    try:
        await pipeline.initialize()
        stats = await pipeline.get_database_stats()
        logger.info(
            "%s %s ready: %d books, %d chunks, %d vectors, subjects=%s",
            config.app.name,
            config.app.version,
            stats.total_books,
            stats.total_chunks,
            stats.vector_documents,
            ", ".join(stats.subjects) or "none",
        )
    finally:
        await pipeline.aclose()


def main() -> None:
    """Initialize the database and rebuild the vector index."""
    asyncio.run(_startup())


if __name__ == "__main__":
    main()
