"""Retrieval-augmented question answering over uploaded textbooks."""

from textbook_rag.config import AppConfig, load_config
from textbook_rag.pipeline import RAGPipeline, build_pipeline

__all__ = ["AppConfig", "RAGPipeline", "build_pipeline", "load_config"]
