"""Tests for keyword-hybrid re-ranking and MMR selection."""

import pytest

from textbook_rag.models.vector import SearchResult, VectorMetadata
from textbook_rag.retrieval.rerank import (
    apply_mmr,
    hybrid_rerank,
    keyword_scores,
    keyword_terms,
)


def _result(result_id: str, score: float, text: str = "") -> SearchResult:
    return SearchResult(
        id=result_id,
        text=text or f"text of {result_id}",
        metadata=VectorMetadata(
            book_id="b1",
            book_title="Book",
            subject="Science",
            page_start=1,
            page_end=1,
        ),
        score=score,
    )


class TestKeywordScores:
    def test_terms_drop_short_words(self) -> None:
        assert keyword_terms("The Cell is a UNIT") == ["the", "cell", "unit"]

    def test_counts_query_terms_present(self) -> None:
        scores = keyword_scores("cell membrane", ["The cell membrane is thin", "Atoms bond"])
        assert scores == [2, 0]

    def test_repeated_query_term_counts_twice(self) -> None:
        assert keyword_scores("cell cell", ["one cell"]) == [2]

    def test_punctuation_is_part_of_the_word(self) -> None:
        assert keyword_scores("cell?", ["the cell"]) == [0]


class TestHybridRerank:
    def test_keyword_overlap_can_reorder(self) -> None:
        atoms = _result("atoms", 0.9, "atoms bond together")
        cells = _result("cells", 0.8, "the cell membrane")

        ranked = hybrid_rerank("cell membrane", [atoms, cells])

        assert [r.id for r in ranked] == ["cells", "atoms"]
        assert ranked[0].score == pytest.approx(0.7 * 0.8 + 0.3)
        assert ranked[1].score == pytest.approx(0.7 * 0.9)

    def test_keyword_scores_are_normalized_by_best(self) -> None:
        one = _result("one", 0.5, "cell")
        both = _result("both", 0.5, "cell membrane")

        ranked = hybrid_rerank("cell membrane", [one, both], cosine_weight=0.0, keyword_weight=1.0)

        assert [r.score for r in ranked] == pytest.approx([1.0, 0.5])

    def test_no_overlap_keeps_cosine_order(self) -> None:
        results = [_result("a", 0.9, "atoms"), _result("b", 0.4, "forces")]
        assert hybrid_rerank("cell membrane", results) == results

    def test_inputs_are_not_modified(self) -> None:
        original = _result("cells", 0.8, "cell")
        hybrid_rerank("cell", [original])
        assert original.score == 0.8

    def test_empty(self) -> None:
        assert hybrid_rerank("cell", []) == []


class TestApplyMMR:
    def test_prefers_diverse_result_over_duplicate(self) -> None:
        results = [_result("r0", 0.9), _result("dup", 0.85), _result("other", 0.5)]
        vectors = [[1.0, 0.0], [1.0, 0.0], [0.0, 1.0]]

        picked = apply_mmr(results, vectors, top_k=2, mmr_lambda=0.5)

        assert [r.id for r in picked] == ["r0", "other"]

    def test_lambda_one_is_pure_relevance(self) -> None:
        results = [_result("r0", 0.9), _result("dup", 0.85), _result("other", 0.5)]
        vectors = [[1.0, 0.0], [1.0, 0.0], [0.0, 1.0]]

        picked = apply_mmr(results, vectors, top_k=2, mmr_lambda=1.0)

        assert [r.id for r in picked] == ["r0", "dup"]

    def test_zero_vector_counts_as_dissimilar(self) -> None:
        results = [_result("r0", 0.9), _result("zero", 0.4), _result("near", 0.6)]
        vectors = [[1.0, 0.0], [0.0, 0.0], [1.0, 0.0]]

        picked = apply_mmr(results, vectors, top_k=2)

        assert [r.id for r in picked] == ["r0", "zero"]

    def test_short_list_is_returned_unchanged(self) -> None:
        results = [_result("b", 0.2), _result("a", 0.9)]
        assert apply_mmr(results, [[1.0], [1.0]], top_k=2) == results

    def test_vector_count_must_match(self) -> None:
        with pytest.raises(ValueError, match="2 vectors for 3 results"):
            apply_mmr([_result("a", 1.0)] * 3, [[1.0], [1.0]], top_k=1)
