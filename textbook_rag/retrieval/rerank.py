"""Keyword-hybrid re-ranking and MMR diversification of cosine results.

Both steps run on a candidate list already returned by
``VectorIndex.search``; neither touches the index. ``RAGPipeline.query``
applies them only when ``retrieval.rerank`` is enabled.
"""

import logging

import numpy as np

from textbook_rag.models.vector import SearchResult

logger = logging.getLogger(__name__)

MIN_TERM_LENGTH = 3


def keyword_terms(text: str) -> list[str]:
    """Lowercased whitespace-separated words of at least three characters."""
    return [word for word in text.lower().split() if len(word) >= MIN_TERM_LENGTH]


def keyword_scores(query: str, texts: list[str]) -> list[int]:
    """Count how many query terms occur in each text.

    A term repeated in the query counts once per repetition. Words are
    matched exactly, punctuation included.
    """
    terms = keyword_terms(query)
    scores = []
    for text in texts:
        words = set(keyword_terms(text))
        scores.append(sum(1 for term in terms if term in words))
    return scores


def hybrid_rerank(
    query: str,
    results: list[SearchResult],
    cosine_weight: float = 0.7,
    keyword_weight: float = 0.3,
) -> list[SearchResult]:
    """Blend cosine scores with keyword overlap and re-sort.

    Keyword scores are divided by the best keyword score among
    ``results``, so they fall in [0, 1] before weighting.

    Args:
        query: The question text.
        results: Cosine-ranked candidates.
        cosine_weight: Weight of the cosine score.
        keyword_weight: Weight of the normalized keyword score.

    Returns:
        New results with blended scores, best first. When no candidate
        shares a term with the query the input order and scores are kept.
    """
    if not results:
        return []

    scores = keyword_scores(query, [r.text for r in results])
    best = max(scores)
    if best == 0:
        logger.debug("No keyword overlap with %d candidates; keeping cosine order", len(results))
        return list(results)

    blended = [
        result.model_copy(
            update={"score": cosine_weight * result.score + keyword_weight * (score / best)}
        )
        for result, score in zip(results, scores)
    ]
    return sorted(blended, key=lambda r: r.score, reverse=True)


def apply_mmr(
    results: list[SearchResult],
    vectors: list[list[float]],
    top_k: int,
    mmr_lambda: float = 0.5,
) -> list[SearchResult]:
    """Pick ``top_k`` results balancing relevance against redundancy.

    The first result is always kept. Each next pick maximizes
    ``mmr_lambda * score + (1 - mmr_lambda) * (1 - s)``, where ``s`` is the
    highest cosine similarity to anything already picked. Ties go to the
    earlier result. With ``top_k`` or fewer results the input is returned
    unchanged.

    Raises:
        ValueError: If ``vectors`` and ``results`` differ in length.
    """
    if len(vectors) != len(results):
        raise ValueError(f"Got {len(vectors)} vectors for {len(results)} results")
    if len(results) <= top_k:
        return list(results)

    matrix = np.asarray(vectors, dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1)
    unit = matrix / np.where(norms > 0, norms, 1.0)[:, None]
    similarity = np.clip(unit @ unit.T, -1.0, 1.0)

    selected = [0]
    remaining = list(range(1, len(results)))
    while len(selected) < top_k and remaining:
        best = max(
            remaining,
            key=lambda i: mmr_lambda * results[i].score
            + (1 - mmr_lambda) * (1.0 - float(similarity[i, selected].max())),
        )
        selected.append(best)
        remaining.remove(best)

    return [results[i] for i in selected]
