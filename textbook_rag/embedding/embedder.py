"""Batched, paced embedding of text segments."""

import asyncio
import logging
import time
from collections.abc import Callable

from pydantic import BaseModel, Field

from textbook_rag.config import EmbeddingConfig
from textbook_rag.embedding.providers import EmbeddingProvider
from textbook_rag.exceptions import ConfigurationError, EmbeddingError

logger = logging.getLogger(__name__)

BatchProgress = Callable[[int, int], None]


class EmbeddingResult(BaseModel):
    """Vectors for one ``embed_one``/``embed_many`` call."""

    vectors: list[list[float]] = Field(default_factory=list)
    model: str
    dimension: int = 0
    processing_time_ms: float = 0.0


class Embedder:
    """Turns texts into vectors through an EmbeddingProvider.

    ``embed_many`` sends fixed-size batches one after another with a
    short pause between them, so results map back to inputs by
    position. A batch either succeeds whole or fails the call.

    Args:
        provider: The external embedding service.
        config: Batch size, pacing delay and input types.
    """

    def __init__(self, provider: EmbeddingProvider, config: EmbeddingConfig) -> None:
        self._provider = provider
        self._config = config

    @property
    def model(self) -> str:
        return self._provider.model

    async def aclose(self) -> None:
        await self._provider.aclose()

    async def embed_one(self, text: str, input_type: str | None = None) -> EmbeddingResult:
        """Embed a single text, by default as a search query."""
        started = time.perf_counter()
        vectors = await self._embed_batch(
            [text], input_type or self._config.query_input_type, batch_index=0
        )
        return EmbeddingResult(
            vectors=vectors,
            model=self.model,
            dimension=len(vectors[0]),
            processing_time_ms=(time.perf_counter() - started) * 1000,
        )

    async def embed_many(
        self,
        texts: list[str],
        on_progress: BatchProgress | None = None,
        input_type: str | None = None,
    ) -> EmbeddingResult:
        """Embed texts in order, batch by batch.

        Args:
            texts: Texts to embed.
            on_progress: Called with ``(done, total)`` after each batch.
            input_type: Provider input type, defaults to the document type.

        Returns:
            One vector per input text, positionally aligned.

        Raises:
            EmbeddingError: If any batch fails; no partial result is returned.
        """
        started = time.perf_counter()
        input_type = input_type or self._config.document_input_type
        batch_size = self._config.batch_size
        total = len(texts)
        vectors: list[list[float]] = []

        for batch_index, offset in enumerate(range(0, total, batch_size)):
            if offset > 0 and self._config.batch_delay_seconds > 0:
                await asyncio.sleep(self._config.batch_delay_seconds)

            batch = texts[offset:offset + batch_size]
            vectors.extend(await self._embed_batch(batch, input_type, batch_index))

            done = offset + len(batch)
            logger.debug("Embedded batch %d (%d/%d)", batch_index, done, total)
            if on_progress is not None:
                on_progress(done, total)

        dimension = len(vectors[0]) if vectors else 0
        if any(len(vector) != dimension for vector in vectors):
            raise EmbeddingError(
                "Embedding provider returned vectors of differing dimensions",
                details={"dimensions": sorted({len(v) for v in vectors})},
            )

        return EmbeddingResult(
            vectors=vectors,
            model=self.model,
            dimension=dimension,
            processing_time_ms=(time.perf_counter() - started) * 1000,
        )

    async def _embed_batch(
        self, batch: list[str], input_type: str, batch_index: int
    ) -> list[list[float]]:
        try:
            vectors = await self._provider.embed_batch(batch, input_type)
        except EmbeddingError as exc:
            raise EmbeddingError(
                f"Embedding batch {batch_index} failed: {exc.message}",
                batch_index=batch_index,
                details=dict(exc.details),
            ) from exc
        except ConfigurationError:
            raise
        except Exception as exc:
            raise EmbeddingError(
                f"Embedding batch {batch_index} failed: {exc}",
                batch_index=batch_index,
                details={"error_type": type(exc).__name__},
            ) from exc

        if len(vectors) != len(batch):
            raise EmbeddingError(
                f"Embedding batch {batch_index} returned {len(vectors)} vectors "
                f"for {len(batch)} texts",
                batch_index=batch_index,
            )
        return vectors
