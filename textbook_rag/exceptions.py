"""Exception hierarchy for the textbook RAG pipeline.

Each component raises its own error kind; the pipeline wraps them in a
single ``IngestError`` or ``QueryError`` that names the failing stage.
"""

from typing import Any


class RAGError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ValidationError(RAGError):
    """Raised when caller input is rejected. Never retried."""


class ParseError(RAGError):
    """Raised when a document cannot be parsed into text."""


class EmbeddingError(RAGError):
    """Raised when an embedding batch fails as a whole."""

    def __init__(
        self,
        message: str,
        batch_index: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = details or {}
        if batch_index is not None:
            details["batch_index"] = batch_index
        self.batch_index = batch_index
        super().__init__(message, details)


class SynthesisError(RAGError):
    """Raised when the LLM provider fails or returns an empty completion."""


class PersistenceError(RAGError):
    """Raised when a document store write or read fails."""


class ConfigurationError(RAGError):
    """Raised when provider credentials are missing at first use."""


class _StageError(RAGError):
    """Pipeline failure annotated with the stage it occurred in."""

    operation = "operation"

    def __init__(self, stage: str, cause: BaseException) -> None:
        self.stage = stage
        self.cause = cause
        cause_message = getattr(cause, "message", None) or str(cause) or type(cause).__name__
        super().__init__(
            f"{self.operation} failed during {stage}: {cause_message}",
            {"stage": stage, "error_type": type(cause).__name__},
        )


class IngestError(_StageError):
    """Unified failure of ``process_textbook``."""

    operation = "Ingest"


class QueryError(_StageError):
    """Unified failure of ``query``."""

    operation = "Query"
