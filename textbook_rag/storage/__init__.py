"""Local persistence for the RAG records."""

from textbook_rag.storage.database import DocumentStore, get_connection, initialize_database

__all__ = ["DocumentStore", "get_connection", "initialize_database"]
