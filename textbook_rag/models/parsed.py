"""Parsed document model for the ingestion pipeline."""

from pydantic import BaseModel, Field


class ParsedDocument(BaseModel):
    """The result of parsing an uploaded file.

    ``pages`` holds the extracted text of each page in order, so
    ``pages[0]`` is page 1. Pages without text are kept as empty
    strings so the page count stays accurate.
    """

    title: str
    pages: list[str] = Field(default_factory=list)
    source_name: str = ""
    file_format: str  # "pdf", "txt"
    byte_size: int = 0

    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def has_text(self) -> bool:
        return any(page.strip() for page in self.pages)
