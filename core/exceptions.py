# core/exceptions.py
"""Error taxonomy for the retrieval and synthesis pipeline"""
from typing import Any, Optional

from core.domain import ErrorCode


class RAGError(Exception):
    """Base error carrying a user-facing error code"""

    default_code = ErrorCode.PROCESSING_FAILED

    def __init__(self, message: str, error_code: Optional[ErrorCode] = None):
        self.message = message
        self.error_code = error_code or self.default_code
        super().__init__(message)

    def __str__(self):
        # Format used for logging and progress store
        return f"[{self.error_code.value}] {self.message}"


class ExtractionError(RAGError):
    """Text could not be read from a document. Absorbed per document."""
    default_code = ErrorCode.EXTRACTION_FAILED


class EmbeddingError(RAGError):
    """Embedding provider failed terminally or retries were exhausted."""
    default_code = ErrorCode.EMBEDDING_FAILED

    def __init__(self, message: str, attempts: int = 0, last_response: Any = None):
        self.attempts = attempts
        self.last_response = last_response
        super().__init__(message)


class SearchTierError(RAGError):
    """A search tier failed. Treated as zero results by the orchestrator."""
    default_code = ErrorCode.SEARCH_FAILED

    def __init__(self, message: str, tier: Optional[str] = None):
        self.tier = tier
        super().__init__(message)


class LLMServiceError(RAGError):
    """Chat-completion transport failure"""
    default_code = ErrorCode.LLM_UNAVAILABLE


class RelevanceCheckError(RAGError):
    """Relevance call failed. Resolved to the configured default verdict."""
    default_code = ErrorCode.RELEVANCE_CHECK_FAILED


class SynthesisError(RAGError):
    """Answer generation failed. Fatal for the request."""
    default_code = ErrorCode.SYNTHESIS_FAILED
