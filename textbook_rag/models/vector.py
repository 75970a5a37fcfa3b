"""Vector index data models."""

from pydantic import BaseModel, Field


class VectorMetadata(BaseModel):
    """Display metadata denormalized onto each index entry."""

    book_id: str
    book_title: str
    subject: str
    page_start: int
    page_end: int
    section: str | None = None
    chunk_index: int = 0


class VectorEntry(BaseModel):
    """Queryable projection of a chunk and its embedding."""

    id: str
    text: str
    vector: list[float]
    metadata: VectorMetadata


class SearchResult(BaseModel):
    """A single ranked hit from the vector index."""

    id: str
    text: str
    metadata: VectorMetadata
    score: float

    @property
    def distance(self) -> float:
        return 1.0 - self.score


class IndexStats(BaseModel):
    """Summary of the vector index contents."""

    count: int = 0
    distinct_subjects: list[str] = Field(default_factory=list)
    distinct_books: list[str] = Field(default_factory=list)
