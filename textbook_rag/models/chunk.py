"""Chunk and embedding data models."""

from datetime import datetime
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator


class Chunk(BaseModel):
    """A page-bounded text segment of a book."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    book_id: str
    subject: str = ""
    page_start: int = Field(ge=1)
    page_end: int = Field(ge=1)
    section: str | None = None
    text: str
    token_count: int = 0
    chunk_index: int = 0  # ordinal position within the book
    embed_version: str = ""
    created_at: datetime = Field(default_factory=datetime.now)

    @model_validator(mode="after")
    def _check_page_range(self) -> "Chunk":
        if self.page_start > self.page_end:
            raise ValueError(
                f"page_start ({self.page_start}) must not exceed page_end ({self.page_end})"
            )
        return self


class Embedding(BaseModel):
    """The vector for exactly one chunk. Shares the chunk's id."""

    id: str
    book_id: str
    subject: str = ""
    dim: int = Field(gt=0)
    values: list[float]
    embed_version: str = ""
    created_at: datetime = Field(default_factory=datetime.now)

    @model_validator(mode="after")
    def _check_dimension(self) -> "Embedding":
        if len(self.values) != self.dim:
            raise ValueError(
                f"Embedding has {len(self.values)} values but dim is {self.dim}"
            )
        return self
