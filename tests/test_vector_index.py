"""Tests for the in-memory vector index."""

import threading

import pytest

from textbook_rag.models.vector import VectorEntry, VectorMetadata
from textbook_rag.retrieval.vector_index import VectorIndex, cosine_similarity


def _entry(
    entry_id: str,
    vector: list[float],
    subject: str = "Science",
    book_id: str = "b1",
    page: int = 1,
) -> VectorEntry:
    return VectorEntry(
        id=entry_id,
        text=f"text of {entry_id}",
        vector=vector,
        metadata=VectorMetadata(
            book_id=book_id,
            book_title=f"Book {book_id}",
            subject=subject,
            page_start=page,
            page_end=page,
        ),
    )


@pytest.fixture
def index() -> VectorIndex:
    index = VectorIndex()
    index.add(
        [
            _entry("bio-1", [1.0, 0.0, 0.0], subject="Biology", book_id="bio"),
            _entry("bio-2", [0.7, 0.7, 0.0], subject="Biology", book_id="bio"),
            _entry("chem-1", [0.0, 1.0, 0.0], subject="Chemistry", book_id="chem"),
            _entry("chem-2", [0.0, 0.0, 1.0], subject="Chemistry", book_id="chem"),
            _entry("phys-1", [-1.0, 0.0, 0.0], subject="Physics", book_id="phys"),
        ]
    )
    return index


class TestCosineSimilarity:
    def test_identical_vectors(self) -> None:
        assert cosine_similarity([0.3, 0.4], [0.3, 0.4]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self) -> None:
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite_vectors(self) -> None:
        assert cosine_similarity([1.0, 2.0], [-1.0, -2.0]) == pytest.approx(-1.0)

    def test_zero_vector_scores_zero(self) -> None:
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_dimension_mismatch(self) -> None:
        with pytest.raises(ValueError):
            cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])

    def test_scale_invariant(self) -> None:
        assert cosine_similarity([1.0, 2.0, 3.0], [10.0, 20.0, 30.0]) == pytest.approx(1.0)


class TestVectorIndexSearch:
    def test_identical_vector_ranks_first(self, index: VectorIndex) -> None:
        results = index.search([0.0, 1.0, 0.0])
        assert results[0].id == "chem-1"
        assert results[0].score == pytest.approx(1.0)

    def test_results_sorted_by_descending_score(self, index: VectorIndex) -> None:
        results = index.search([1.0, 0.2, 0.0], top_k=5)
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)
        assert all(-1.0 <= s <= 1.0 for s in scores)

    def test_subject_filter_applies_before_ranking(self, index: VectorIndex) -> None:
        results = index.search([1.0, 0.0, 0.0], subject="Chemistry", top_k=1)
        assert len(results) == 1
        assert results[0].metadata.subject == "Chemistry"

    def test_fewer_matches_than_top_k(self, index: VectorIndex) -> None:
        results = index.search([1.0, 0.0, 0.0], subject="Biology", top_k=5)
        assert [r.id for r in results] == ["bio-1", "bio-2"]

    def test_unknown_subject_returns_nothing(self, index: VectorIndex) -> None:
        assert index.search([1.0, 0.0, 0.0], subject="History") == []

    def test_empty_index_returns_nothing(self) -> None:
        assert VectorIndex().search([1.0, 0.0]) == []

    def test_ties_keep_insertion_order(self) -> None:
        index = VectorIndex()
        index.add([_entry("first", [1.0, 0.0]), _entry("second", [2.0, 0.0])])
        index.add([_entry("third", [3.0, 0.0])])

        assert [r.id for r in index.search([1.0, 0.0])] == ["first", "second", "third"]

    def test_zero_vector_entry_scores_zero(self) -> None:
        index = VectorIndex()
        index.add([_entry("zero", [0.0, 0.0]), _entry("one", [0.0, 1.0])])

        results = index.search([0.0, 1.0])
        assert [r.id for r in results] == ["one", "zero"]
        assert results[1].score == 0.0

    def test_result_carries_metadata(self, index: VectorIndex) -> None:
        result = index.search([0.0, 0.0, 1.0], top_k=1)[0]
        assert result.text == "text of chem-2"
        assert result.metadata.book_title == "Book chem"
        assert result.distance == pytest.approx(0.0)

    def test_invalid_top_k(self, index: VectorIndex) -> None:
        with pytest.raises(ValueError):
            index.search([1.0, 0.0, 0.0], top_k=0)

    def test_query_dimension_mismatch(self, index: VectorIndex) -> None:
        with pytest.raises(ValueError, match="dimension"):
            index.search([1.0, 0.0])


class TestVectorIndexMutation:
    def test_add_rejects_mixed_dimensions(self, index: VectorIndex) -> None:
        with pytest.raises(ValueError):
            index.add([_entry("ok", [1.0, 1.0, 1.0]), _entry("bad", [1.0, 1.0])])
        # the batch is rejected as a whole
        assert "ok" not in index
        assert len(index) == 5

    def test_reloading_same_entries_is_idempotent(self, index: VectorIndex) -> None:
        index.add([_entry("bio-1", [1.0, 0.0, 0.0], subject="Biology", book_id="bio")])
        assert len(index) == 5

    def test_upsert_replaces_vector(self, index: VectorIndex) -> None:
        index.add([_entry("phys-1", [0.0, 1.0, 0.0], subject="Physics", book_id="phys")])
        assert index.search([0.0, 1.0, 0.0], subject="Physics")[0].score == pytest.approx(1.0)

    def test_delete_by_book_id(self, index: VectorIndex) -> None:
        assert index.delete_by_book_id("chem") == 2
        assert len(index) == 3
        assert all(r.metadata.book_id != "chem" for r in index.search([0.0, 1.0, 0.0], top_k=5))

    def test_delete_unknown_book(self, index: VectorIndex) -> None:
        assert index.delete_by_book_id("missing") == 0
        assert len(index) == 5

    def test_deleting_everything_resets_dimension(self) -> None:
        index = VectorIndex()
        index.add([_entry("a", [1.0, 0.0])])
        index.delete_by_book_id("b1")

        assert index.dimension is None
        index.add([_entry("b", [1.0, 0.0, 0.0, 0.0])])
        assert index.dimension == 4

    def test_replace_swaps_contents(self, index: VectorIndex) -> None:
        count = index.replace([_entry("new", [0.0, 1.0])])
        assert count == 1
        assert "bio-1" not in index
        assert index.dimension == 2

    def test_clear(self, index: VectorIndex) -> None:
        index.clear()
        assert len(index) == 0
        assert index.dimension is None

    def test_stats(self, index: VectorIndex) -> None:
        stats = index.stats()
        assert stats.count == 5
        assert stats.distinct_subjects == ["Biology", "Chemistry", "Physics"]
        assert stats.distinct_books == ["bio", "chem", "phys"]

    def test_vectors_in_requested_order(self, index: VectorIndex) -> None:
        assert index.vectors(["chem-1", "bio-1"]) == [[0.0, 1.0, 0.0], [1.0, 0.0, 0.0]]

    def test_vectors_unknown_id(self, index: VectorIndex) -> None:
        with pytest.raises(KeyError):
            index.vectors(["missing"])

    def test_search_with_vectors_pairs_hits(self, index: VectorIndex) -> None:
        results, vectors = index.search_with_vectors([1.0, 0.0, 0.0], top_k=2)
        assert [r.id for r in results] == ["bio-1", "bio-2"]
        assert vectors == [[1.0, 0.0, 0.0], [0.7, 0.7, 0.0]]


class TestVectorIndexConcurrency:
    def test_search_never_sees_partial_add(self) -> None:
        index = VectorIndex()
        index.add([_entry("seed", [1.0, 0.0])])
        batch = [_entry(f"e{i}", [1.0, float(i)]) for i in range(500)]
        sizes: set[int] = set()
        added = threading.Event()

        def writer() -> None:
            index.add(batch)
            added.set()

        def reader() -> None:
            while not added.is_set():
                sizes.add(len(index.search([1.0, 0.0], top_k=1000)))
            sizes.add(len(index.search([1.0, 0.0], top_k=1000)))

        threads = [threading.Thread(target=reader), threading.Thread(target=writer)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert sizes <= {1, 501}
        assert 501 in sizes
