"""Text embedding: provider clients and the batching embedder."""

from textbook_rag.embedding.embedder import Embedder, EmbeddingResult
from textbook_rag.embedding.providers import (
    CohereEmbeddingProvider,
    EmbeddingProvider,
    extract_embeddings,
)

__all__ = [
    "CohereEmbeddingProvider",
    "Embedder",
    "EmbeddingProvider",
    "EmbeddingResult",
    "extract_embeddings",
]
