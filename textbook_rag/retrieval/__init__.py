"""Similarity search over chunk embeddings."""

from textbook_rag.retrieval.rerank import apply_mmr, hybrid_rerank, keyword_scores
from textbook_rag.retrieval.vector_index import VectorIndex, cosine_similarity

__all__ = ["VectorIndex", "apply_mmr", "cosine_similarity", "hybrid_rerank", "keyword_scores"]
