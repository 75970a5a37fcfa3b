"""Textbook ingestion: parsing and chunking."""

from textbook_rag.ingestion.chunker import PageChunker, estimate_tokens
from textbook_rag.ingestion.parser import DocumentParser, detect_format

__all__ = ["DocumentParser", "PageChunker", "detect_format", "estimate_tokens"]
