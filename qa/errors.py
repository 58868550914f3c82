"""
Exception hierarchy for the report Q&A pipeline.

Each layer raises the narrowest error it can; the service layer decides
which ones become a denial, a retryable failure or a hard failure.
"""
from __future__ import annotations


class QAError(Exception):
    """Base class for all pipeline errors."""


class EmbeddingError(QAError):
    """The embedding provider could not embed a text."""


class ChunkStorageError(QAError):
    """Chunks for a report could not be persisted."""


class RetrievalError(QAError):
    """Context retrieval (query embedding or similarity search) failed."""


class LLMError(QAError):
    """The text-generation provider returned an error."""

    retryable = False

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class LLMTimeoutError(LLMError):
    """The text-generation call exceeded its timeout."""

    retryable = True


class LLMRateLimitError(LLMError):
    """The provider rejected the call because of rate limiting."""

    retryable = True


class TransientModelError(QAError):
    """Model call failed after all retries. Safe for the caller to retry later."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class InvalidModelResponseError(QAError):
    """The model answered, but the answer cannot be trusted."""


class ResponseParseError(InvalidModelResponseError):
    """No JSON object could be decoded from the model response."""


class SchemaValidationError(InvalidModelResponseError):
    """The decoded JSON does not satisfy the answer contract."""

    def __init__(self, message: str, issues: list[str] | None = None):
        super().__init__(message)
        self.issues = issues or []


class ConversationNotFoundError(QAError):
    """No conversation exists for the given id."""


class UnknownTierError(QAError):
    """The subscription tier has no quota configuration."""
