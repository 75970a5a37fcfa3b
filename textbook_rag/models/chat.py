"""Chat session data models."""

from datetime import datetime
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field


class Source(BaseModel):
    """A citation attached to an assistant message."""

    chunk_id: str
    book_id: str
    book_title: str
    page_start: int
    page_end: int
    relevance: float


class ChatMessage(BaseModel):
    """One turn in a chat session."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    session_id: str
    type: Literal["user", "ai"]
    content: str
    timestamp: datetime = Field(default_factory=datetime.now)
    sources: list[Source] = Field(default_factory=list)


class ChatSession(BaseModel):
    """A conversation owned by one user, scoped to a subject."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    subject: str
    book_id: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
