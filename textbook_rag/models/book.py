"""Book data model."""

from datetime import datetime
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field

BookStatus = Literal["pending", "processing", "completed", "failed"]


class Book(BaseModel):
    """Represents one ingested textbook."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    title: str
    subject: str
    page_count: int = 0
    byte_size: int = 0
    status: BookStatus = "pending"
    error_message: str | None = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
