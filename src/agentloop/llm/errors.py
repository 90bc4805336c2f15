"""Error taxonomy shared by model adapters and the model manager.

Every failure that crosses the adapter boundary is an :class:`LLMError`
carrying an :class:`LLMErrorCode`. The manager decides whether to retry
or fall back by looking at the code alone, so adapters are responsible
for classifying vendor exceptions before they escape.
"""

import asyncio
from enum import Enum


class LLMErrorCode(str, Enum):
    """Classification codes for LLM failures."""

    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    RATE_LIMIT_ERROR = "RATE_LIMIT_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"
    MODEL_NOT_FOUND = "MODEL_NOT_FOUND"
    CONTEXT_LENGTH_EXCEEDED = "CONTEXT_LENGTH_EXCEEDED"
    CONTENT_FILTER = "CONTENT_FILTER"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    CANCELLED = "CANCELLED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


RETRYABLE_CODES = frozenset({LLMErrorCode.RATE_LIMIT_ERROR, LLMErrorCode.NETWORK_ERROR})


class LLMError(Exception):
    """Error raised by adapters and the model manager."""

    def __init__(
        self,
        message: str,
        code: LLMErrorCode = LLMErrorCode.UNKNOWN_ERROR,
        provider: str = "unknown",
        cause: BaseException | None = None,
    ):
        """Initialize the error.

        Args:
            message: Human-readable description
            code: Classification code
            provider: Provider name of the adapter that failed
            cause: Underlying exception, if any
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.provider = provider
        self.cause = cause

    @property
    def retryable(self) -> bool:
        """Whether the manager may retry the failed call."""
        return self.code in RETRYABLE_CODES

    @property
    def cancelled(self) -> bool:
        """Whether this error reports a cancellation."""
        return self.code is LLMErrorCode.CANCELLED

    def __repr__(self) -> str:
        return f"LLMError(code={self.code.value}, provider={self.provider!r}, message={self.message!r})"


def cancelled_error(provider: str = "unknown") -> LLMError:
    """Build the error raised when a cancellation signal fires."""
    return LLMError("Operation cancelled", LLMErrorCode.CANCELLED, provider)


def classify_error(error: BaseException, provider: str = "unknown") -> LLMError:
    """Wrap an arbitrary exception into an :class:`LLMError`.

    Adapters map vendor exceptions themselves; this covers whatever slips
    through (plain timeouts, socket errors, bugs in a custom adapter).

    Args:
        error: Exception to classify
        provider: Provider name to attach

    Returns:
        The error itself if it already is an LLMError, otherwise a new one
    """
    if isinstance(error, LLMError):
        return error
    if isinstance(error, asyncio.CancelledError):
        return LLMError("Operation cancelled", LLMErrorCode.CANCELLED, provider, error)
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return LLMError(str(error) or "Request timed out", LLMErrorCode.TIMEOUT, provider, error)
    if isinstance(error, ConnectionError):
        return LLMError(str(error), LLMErrorCode.NETWORK_ERROR, provider, error)
    return LLMError(str(error) or type(error).__name__, LLMErrorCode.UNKNOWN_ERROR, provider, error)


def is_cancellation(error: BaseException) -> bool:
    """Return True if ``error`` represents a cancellation."""
    return isinstance(error, LLMError) and error.cancelled
