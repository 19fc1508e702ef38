"""Exception hierarchy shared by the ingestion, retrieval and chat layers.

Errors with no safe default (configuration, embedding dimension mismatch)
propagate to the caller. Validation errors are raised before any external
call. Provider/store errors are wrapped so batch jobs can recover them into a
page status.
"""
from __future__ import annotations


class RagError(Exception):
    """Base class for all errors raised by campus_rag."""


class ConfigurationError(RagError):
    """Raised when a required setting (API key, URL) is missing."""


class ValidationError(RagError):
    """Raised for malformed caller input, before any external call."""


class InvalidUrlError(ValidationError):
    """Raised when a URL cannot be parsed or is not http(s)."""


class EmptyQuestionError(ValidationError):
    """Raised when a question is empty or whitespace only."""


class ConversationNotFoundError(RagError):
    """Raised when a conversation does not exist or belongs to another user."""


class EmbeddingDimensionError(RagError):
    """Raised when embedding vectors do not match the configured vector size."""

    def __init__(self, actual: int | None, expected: int) -> None:
        super().__init__(f"Embedding dimension {actual} does not match vector size: {expected}")
        self.actual = actual
        self.expected = expected


class VectorStoreError(RagError):
    """Raised when the vector store backend cannot be reached or rejects a call."""

    def __init__(self, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.__cause__ = cause


class ScrapeError(RagError):
    """Raised when a page cannot be fetched or parsed."""


class AnswerGenerationError(RagError):
    """Raised when answer generation fails before the stream completes."""


class QuotaExceededError(RagError):
    """Raised when a user exhausts the daily message quota."""
