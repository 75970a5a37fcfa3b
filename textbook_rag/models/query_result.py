"""Query and ingest result data models."""

from typing import Literal

from pydantic import BaseModel, Field

from textbook_rag.models.book import Book

ProgressStage = Literal["parsing", "embedding", "persisting", "indexing"]


class TokenUsage(BaseModel):
    """Token accounting reported by the LLM provider."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class LLMResponse(BaseModel):
    """Raw completion returned by an LLM provider."""

    text: str
    model: str
    usage: TokenUsage = Field(default_factory=TokenUsage)


class SynthesizedAnswer(BaseModel):
    """A grounded answer with model and usage metadata."""

    text: str
    model: str
    usage: TokenUsage = Field(default_factory=TokenUsage)


class SourceCitation(BaseModel):
    """A source shown alongside an answer."""

    chunk_id: str = ""
    book_id: str = ""
    text: str
    book_title: str
    page_start: int
    page_end: int
    score: float


class QueryResult(BaseModel):
    """The response of a query: answer, cited sources and usage."""

    answer: str
    sources: list[SourceCitation] = Field(default_factory=list)
    model: str
    usage: TokenUsage = Field(default_factory=TokenUsage)


class IngestProgress(BaseModel):
    """A progress event emitted while a textbook is ingested."""

    stage: ProgressStage
    current: int
    total: int
    message: str = ""


class IngestResult(BaseModel):
    """The outcome of a successful ingest."""

    book: Book
    total_chunks: int
    total_embeddings: int
    processing_time_ms: float
