"""Data models for the textbook RAG service."""

from textbook_rag.models.book import Book, BookStatus
from textbook_rag.models.chat import ChatMessage, ChatSession, Source
from textbook_rag.models.chunk import Chunk, Embedding
from textbook_rag.models.parsed import ParsedDocument
from textbook_rag.models.query_result import (
    IngestProgress,
    IngestResult,
    LLMResponse,
    QueryResult,
    SourceCitation,
    SynthesizedAnswer,
    TokenUsage,
)
from textbook_rag.models.stats import DatabaseSnapshot, DatabaseStats
from textbook_rag.models.vector import (
    IndexStats,
    SearchResult,
    VectorEntry,
    VectorMetadata,
)

__all__ = [
    "Book",
    "BookStatus",
    "ChatMessage",
    "ChatSession",
    "Chunk",
    "DatabaseSnapshot",
    "DatabaseStats",
    "Embedding",
    "IndexStats",
    "IngestProgress",
    "IngestResult",
    "LLMResponse",
    "ParsedDocument",
    "QueryResult",
    "SearchResult",
    "Source",
    "SourceCitation",
    "SynthesizedAnswer",
    "TokenUsage",
    "VectorEntry",
    "VectorMetadata",
]
