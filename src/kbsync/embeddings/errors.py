"""Typed error hierarchy for embedding providers."""

from __future__ import annotations

from dataclasses import dataclass

__all__ = [
    "EmbeddingError",
    "EmbeddingConfigurationError",
    "EmbeddingRequestError",
    "EmbeddingRetryableError",
    "EmbeddingRateLimitError",
    "EmbeddingRetryExceededError",
    "EmbeddingInputTooLargeError",
    "EmbeddingDimMismatchError",
]


@dataclass(slots=True)
class EmbeddingError(RuntimeError):
    """Base error raised by embedding providers."""

    message: str
    provider: str
    model: str
    request_id: str | None = None
    status_code: int | None = None

    def __post_init__(self) -> None:
        RuntimeError.__init__(self, self.message)


@dataclass(slots=True)
class EmbeddingConfigurationError(EmbeddingError):
    """Raised when the provider configuration is invalid."""


@dataclass(slots=True)
class EmbeddingRequestError(EmbeddingError):
    """Raised for non-retryable request errors."""


@dataclass(slots=True)
class EmbeddingRetryableError(EmbeddingError):
    """Raised for retryable transport or server-side errors."""


@dataclass(slots=True)
class EmbeddingRateLimitError(EmbeddingRetryableError):
    """Raised when the provider returns a rate limiting response."""


@dataclass(slots=True)
class EmbeddingRetryExceededError(EmbeddingError):
    """Raised when retry attempts are exhausted."""

    attempts: int = 0


@dataclass(slots=True)
class EmbeddingInputTooLargeError(EmbeddingError):
    """Raised when a single input exceeds provider token limits."""

    token_count: int | None = None
    limit: int | None = None


@dataclass(slots=True)
class EmbeddingDimMismatchError(EmbeddingError):
    """Raised when the provider returns vectors with unexpected dimension."""

    expected: int | None = None
    actual: int | None = None
