"""
Custom exception classes for the retrieval core.
"""

from typing import Optional


class RAGError(Exception):
    """Base exception for all retrieval core errors."""

    def __init__(self, message: str, detail: Optional[str] = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class ConfigurationError(RAGError):
    """Raised when a required credential or setting is missing. Never retried."""

    def __init__(self, message: str = "Embedding provider API key not configured"):
        super().__init__(
            message=message,
            detail="Set OPENAI_API_KEY (or GEMINI_API_KEY) in the environment.",
        )


class UpstreamError(RAGError):
    """Raised when the embedding provider fails or returns a malformed response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message=message, detail=f"status={status_code}" if status_code else None)


class DimensionMismatch(RAGError):
    """Raised when two vectors compared in one search differ in length."""

    def __init__(self, len_a: int, len_b: int):
        self.len_a = len_a
        self.len_b = len_b
        super().__init__(
            message=f"Vectors must have the same length ({len_a} != {len_b})",
        )


class StorageError(RAGError):
    """Raised when the durable store fails. The in-memory index stays valid."""

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message=message, detail=detail)


class InvalidStatusTransition(RAGError):
    """Raised on a knowledge source status change the state machine forbids."""

    def __init__(self, source_id: str, current: str, target: str):
        super().__init__(
            message=f"Source '{source_id}' cannot move from {current} to {target}",
            detail="Use reindex to restart indexing of a finished source.",
        )
