"""In-memory brute-force cosine similarity index."""

import logging
import threading
from collections.abc import Iterable

import numpy as np

from textbook_rag.models.vector import IndexStats, SearchResult, VectorEntry

logger = logging.getLogger(__name__)


def cosine_similarity(a: list[float] | np.ndarray, b: list[float] | np.ndarray) -> float:
    """Cosine similarity of two vectors; 0.0 when either has zero magnitude."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vector dimensions don't match: {va.shape[0]} vs {vb.shape[0]}")
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / norm, -1.0, 1.0))


class VectorIndex:
    """Process-wide similarity index over chunk embeddings.

    Entries are keyed by chunk id and kept in insertion order; adding an
    existing id replaces it in place, so loading the same store twice
    never double-counts. All mutations and searches take the same lock,
    so a search sees either none or all of an ``add``.

    The scan is linear. ``search`` is the only ranking path, so a different
    index structure can replace it without touching callers.
    """

    def __init__(self) -> None:
        self._entries: dict[str, VectorEntry] = {}
        self._dimension: int | None = None
        self._lock = threading.RLock()
        self._matrix: np.ndarray | None = None
        self._norms: np.ndarray | None = None
        self._subjects: np.ndarray | None = None
        self._ids: list[str] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        with self._lock:
            return entry_id in self._entries

    @property
    def dimension(self) -> int | None:
        return self._dimension

    def add(self, entries: Iterable[VectorEntry]) -> int:
        """Upsert entries by id.

        The whole batch is validated before anything is applied.

        Returns:
            Number of entries added or replaced.

        Raises:
            ValueError: If an entry's dimension differs from the index's.
        """
        batch = list(entries)
        if not batch:
            return 0

        with self._lock:
            dimension = self._dimension or len(batch[0].vector)
            for entry in batch:
                if len(entry.vector) != dimension:
                    raise ValueError(
                        f"Entry {entry.id} has dimension {len(entry.vector)}, "
                        f"index dimension is {dimension}"
                    )

            for entry in batch:
                self._entries[entry.id] = entry
            self._dimension = dimension
            self._invalidate()

        logger.debug("Indexed %d entries (%d total)", len(batch), len(self._entries))
        return len(batch)

    def search(
        self,
        query_vector: list[float],
        subject: str | None = None,
        top_k: int = 5,
    ) -> list[SearchResult]:
        """Rank entries by cosine similarity to ``query_vector``.

        The subject filter is applied before ranking. Fewer than
        ``top_k`` matching entries means all of them are returned.
        Equal scores keep insertion order.

        Raises:
            ValueError: If ``top_k`` < 1 or the query dimension is wrong.
        """
        if top_k < 1:
            raise ValueError(f"top_k must be at least 1, got {top_k}")

        with self._lock:
            if not self._entries:
                return []

            query = np.asarray(query_vector, dtype=np.float64)
            if query.ndim != 1 or query.shape[0] != self._dimension:
                raise ValueError(
                    f"Query vector dimension {query.shape[-1] if query.ndim else 0} "
                    f"does not match index dimension {self._dimension}"
                )

            matrix, norms, subjects = self._ensure_matrix()
            candidates = np.arange(len(self._ids))
            if subject is not None:
                candidates = candidates[subjects == subject]
            if candidates.size == 0:
                return []

            scores = self._scores(query, matrix[candidates], norms[candidates])
            order = np.argsort(-scores, kind="stable")[:top_k]

            results = []
            for position in order:
                entry = self._entries[self._ids[candidates[position]]]
                results.append(
                    SearchResult(
                        id=entry.id,
                        text=entry.text,
                        metadata=entry.metadata,
                        score=float(scores[position]),
                    )
                )
            return results

    def vectors(self, ids: Iterable[str]) -> list[list[float]]:
        """Stored vectors for ``ids``, in the given order.

        Raises:
            KeyError: If an id is not in the index.
        """
        with self._lock:
            return [self._entries[entry_id].vector for entry_id in ids]

    def search_with_vectors(
        self,
        query_vector: list[float],
        subject: str | None = None,
        top_k: int = 5,
    ) -> tuple[list[SearchResult], list[list[float]]]:
        """``search`` plus each hit's stored vector, read under one lock."""
        with self._lock:
            results = self.search(query_vector, subject=subject, top_k=top_k)
            return results, self.vectors(r.id for r in results)

    def replace(self, entries: Iterable[VectorEntry]) -> int:
        """Swap the whole index for ``entries`` in one step."""
        batch = list(entries)
        dimension = len(batch[0].vector) if batch else None
        for entry in batch:
            if len(entry.vector) != dimension:
                raise ValueError(
                    f"Entry {entry.id} has dimension {len(entry.vector)}, "
                    f"index dimension is {dimension}"
                )

        with self._lock:
            self._entries = {entry.id: entry for entry in batch}
            self._dimension = dimension
            self._invalidate()
        return len(self._entries)

    def delete_by_book_id(self, book_id: str) -> int:
        """Remove every entry of a book. Returns the number removed."""
        with self._lock:
            doomed = [
                entry_id
                for entry_id, entry in self._entries.items()
                if entry.metadata.book_id == book_id
            ]
            for entry_id in doomed:
                del self._entries[entry_id]
            if not self._entries:
                self._dimension = None
            self._invalidate()

        logger.info("Removed %d index entries for book %s", len(doomed), book_id)
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._dimension = None
            self._invalidate()

    def stats(self) -> IndexStats:
        with self._lock:
            entries = list(self._entries.values())
        return IndexStats(
            count=len(entries),
            distinct_subjects=sorted({e.metadata.subject for e in entries}),
            distinct_books=sorted({e.metadata.book_id for e in entries}),
        )

    def _invalidate(self) -> None:
        self._matrix = None
        self._norms = None
        self._subjects = None
        self._ids = []

    def _ensure_matrix(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        if self._matrix is None:
            self._ids = list(self._entries)
            entries = [self._entries[entry_id] for entry_id in self._ids]
            self._matrix = np.array([e.vector for e in entries], dtype=np.float64)
            self._norms = np.linalg.norm(self._matrix, axis=1)
            self._subjects = np.array([e.metadata.subject for e in entries], dtype=object)
        return self._matrix, self._norms, self._subjects

    @staticmethod
    def _scores(query: np.ndarray, matrix: np.ndarray, norms: np.ndarray) -> np.ndarray:
        denominators = norms * np.linalg.norm(query)
        dots = matrix @ query
        scores = np.zeros_like(dots)
        nonzero = denominators > 0
        scores[nonzero] = dots[nonzero] / denominators[nonzero]
        return np.clip(scores, -1.0, 1.0)
