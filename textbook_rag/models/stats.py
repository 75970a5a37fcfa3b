"""Database statistics and backup snapshot models."""

from pydantic import BaseModel, Field

from textbook_rag.models.book import Book
from textbook_rag.models.chat import ChatMessage, ChatSession
from textbook_rag.models.chunk import Chunk, Embedding


class DatabaseStats(BaseModel):
    """Record counts across the document store and the vector index."""

    total_books: int = 0
    total_chunks: int = 0
    total_embeddings: int = 0
    total_chat_sessions: int = 0
    vector_documents: int = 0
    subjects: list[str] = Field(default_factory=list)
    total_size: int = 0


class DatabaseSnapshot(BaseModel):
    """Full export of the document store, used for backup and restore."""

    books: list[Book] = Field(default_factory=list)
    chunks: list[Chunk] = Field(default_factory=list)
    embeddings: list[Embedding] = Field(default_factory=list)
    chat_sessions: list[ChatSession] = Field(default_factory=list)
    chat_messages: list[ChatMessage] = Field(default_factory=list)
